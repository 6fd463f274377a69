"""Request / response models for the invoice intelligence pass."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class IntelligenceLine(BaseModel):
    line_id: int = 0
    description: str = ""
    unit_cost: Optional[float] = None
    quantity: Optional[float] = None


class IntelligenceRequest(BaseModel):
    invoice_number: Optional[str] = None
    vehicle_label: Optional[str] = None
    odometer_label: Optional[str] = None
    invoice_label: Optional[str] = None
    lines: list[IntelligenceLine] = []


class LineClassification(BaseModel):
    line_id: int = 0
    description: str = ""
    classified_category: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    method: str = ""
    version: str = ""
    was_classified: bool = False


class FieldNormalization(BaseModel):
    field_name: str = ""
    original_value: str = ""
    normalized_value: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    method: str = ""
    version: str = ""
    was_normalized: bool = False


class IntelligenceResult(BaseModel):
    success: bool = False
    line_classifications: list[LineClassification] = []
    field_normalizations: list[FieldNormalization] = []
    warnings: list[str] = []
    errors: list[str] = []
    processing_time_ms: float = 0.0


class ClassifyRequest(BaseModel):
    description: str
    unit_cost: Optional[float] = None
    quantity: Optional[float] = None


class NormalizeRequest(BaseModel):
    label: str
    context: str = ""
    field_name: str = ""
