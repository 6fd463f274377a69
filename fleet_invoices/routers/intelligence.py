"""Router exposing the classifier, the field normalizer and the intelligence pass."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from fleet_invoices.models.intelligence import (
    ClassifyRequest,
    FieldNormalization,
    IntelligenceLine,
    IntelligenceRequest,
    IntelligenceResult,
    LineClassification,
    NormalizeRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/intelligence", tags=["intelligence"])


@router.post("/classify", response_model=LineClassification)
async def classify_line(body: ClassifyRequest, request: Request) -> LineClassification:
    if not body.description.strip():
        raise HTTPException(status_code=422, detail="'description' must not be empty.")
    service = request.app.state.intelligence
    return service.classify_line(
        IntelligenceLine(description=body.description, unit_cost=body.unit_cost, quantity=body.quantity)
    )


@router.post("/normalize", response_model=FieldNormalization)
async def normalize_label(body: NormalizeRequest, request: Request) -> FieldNormalization:
    service = request.app.state.intelligence
    return service.normalize_field(body.field_name or body.label, body.label, body.context)


@router.post("/process", response_model=IntelligenceResult)
async def process_invoice(body: IntelligenceRequest, request: Request) -> IntelligenceResult:
    service = request.app.state.intelligence
    return service.process(body)
