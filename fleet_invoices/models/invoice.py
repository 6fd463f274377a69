"""Pydantic models for the invoice processing pipeline.

Confidence fields use a 0-100 scale and are clamped on assignment by
the services that compute them (see ``config.clamp_confidence``); the
``Field`` bounds below are the last line of defense.
"""
from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, Field

# Classification labels produced by the rule-based classifier.
PART = "Part"
LABOR = "Labor"
TAX_FEE = "Tax/Fee"
UNCLASSIFIED = "Unclassified"
OTHER = "Other"

# Processing methods recorded on ComprehensiveInvoiceProcessingResult.
METHOD_AI_ENHANCED = "AI-Enhanced"
METHOD_AI_RATE_LIMITED = "AI-RateLimited"
METHOD_AI_EMPTY_RESPONSE = "AI-EmptyResponse"
METHOD_AI_JSON_ERROR = "AI-JsonError"
METHOD_AI_ERROR = "AI-Error"
METHOD_FALLBACK = "Fallback-RuleBased"
METHOD_ALL_FAILED = "AllSystemsFailed"


# ---------------------------------------------------------------------------
# Canonical staging record (output of the OCR strategy runner)
# ---------------------------------------------------------------------------


class LineItemData(BaseModel):
    line_number: int = Field(default=1, ge=1)
    description: str = ""
    unit_cost: float = 0.0
    quantity: float = 1.0
    total_cost: float = 0.0
    part_number: Optional[str] = None
    category: Optional[str] = None
    classified_category: str = UNCLASSIFIED
    classification_confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    extraction_confidence: float = Field(default=0.0, ge=0.0, le=100.0)

    @property
    def extracted_unit_cost(self) -> Optional[float]:
        """Unit cost as read from the document, or None when none was found."""
        return self.unit_cost or None


class InvoiceData(BaseModel):
    vehicle_id: Optional[str] = None
    odometer: Optional[int] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[dt.date] = None
    total_cost: Optional[float] = None
    total_parts_cost: Optional[float] = None
    total_labor_cost: Optional[float] = None
    line_items: list[LineItemData] = []


class OcrResult(BaseModel):
    success: bool = False
    error_message: Optional[str] = None
    strategy: str = ""
    invoice_data: Optional[InvoiceData] = None
    overall_confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    raw_payload: dict[str, Any] = {}
    failed_strategies: list[str] = []


# ---------------------------------------------------------------------------
# Classifier / normalizer results
# ---------------------------------------------------------------------------


class ClassificationResult(BaseModel):
    classification: str = UNCLASSIFIED
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    matched_keywords: set[str] = set()
    method: str = ""
    version: str = ""


class NormalizationResult(BaseModel):
    normalized_label: str = ""
    original_label: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    was_normalized: bool = False
    method: str = ""
    version: str = ""


# ---------------------------------------------------------------------------
# Orchestrator output
# ---------------------------------------------------------------------------


class ProcessedLineItem(BaseModel):
    line_number: int = 0
    description: str = ""
    classification: str = OTHER
    unit_cost: float = 0.0
    quantity: float = 0.0
    total_cost: float = 0.0
    part_number: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)


class ComprehensiveInvoiceProcessingResult(BaseModel):
    success: bool = False
    error_message: Optional[str] = None
    processing_method: str = ""
    rate_limit_encountered: bool = False
    vehicle_id: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[dt.date] = None
    odometer: Optional[int] = None
    total_cost: Optional[float] = None
    description: Optional[str] = None
    line_items: list[ProcessedLineItem] = []
    overall_confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    processing_notes: list[str] = []


# ---------------------------------------------------------------------------
# Upload response
# ---------------------------------------------------------------------------


class InvoiceProcessingResponse(BaseModel):
    job_id: str = ""
    success: bool = False
    message: str = ""
    errors: list[str] = []
    warnings: list[str] = []
    confidence: float = 0.0
    document_url: Optional[str] = None
    invoice: Optional[InvoiceData] = None
    result: Optional[ComprehensiveInvoiceProcessingResult] = None
