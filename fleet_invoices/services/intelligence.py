"""Invoice intelligence pass: header label normalization plus line classification."""
from __future__ import annotations

import logging
import time

from fleet_invoices.models.intelligence import (
    FieldNormalization,
    IntelligenceLine,
    IntelligenceRequest,
    IntelligenceResult,
    LineClassification,
)
from fleet_invoices.models.invoice import UNCLASSIFIED
from fleet_invoices.services.classifier import LineItemClassifier
from fleet_invoices.services.field_normalizer import FieldNormalizer

logger = logging.getLogger(__name__)

# (result field name, request attribute, normalizer context)
HEADER_LABELS = (
    ("VehicleLabel", "vehicle_label", "vehicle identifier"),
    ("OdometerLabel", "odometer_label", "odometer reading"),
    ("InvoiceLabel", "invoice_label", "invoice number"),
)


class InvoiceIntelligenceService:
    def __init__(self, classifier: LineItemClassifier, normalizer: FieldNormalizer) -> None:
        self.classifier = classifier
        self.normalizer = normalizer

    def classify_line(self, line: IntelligenceLine) -> LineClassification:
        result = self.classifier.classify(line.description, line.unit_cost, line.quantity)
        return LineClassification(
            line_id=line.line_id,
            description=line.description,
            classified_category=result.classification,
            confidence=result.confidence,
            method=result.method,
            version=result.version,
            was_classified=result.classification != UNCLASSIFIED,
        )

    def normalize_field(self, field_name: str, value: str, context: str = "") -> FieldNormalization:
        result = self.normalizer.normalize(value, context)
        return FieldNormalization(
            field_name=field_name,
            original_value=value,
            normalized_value=result.normalized_label,
            confidence=result.confidence,
            method=result.method,
            version=result.version,
            was_normalized=result.was_normalized,
        )

    def process(self, request: IntelligenceRequest) -> IntelligenceResult:
        started = time.perf_counter()
        result = IntelligenceResult(success=True)
        logger.info("Starting intelligence processing for invoice %s", request.invoice_number or "<unknown>")

        for field_name, attr, context in HEADER_LABELS:
            value = getattr(request, attr)
            if not value or not value.strip():
                continue
            try:
                result.field_normalizations.append(self.normalize_field(field_name, value, context))
            except Exception as e:
                logger.warning("Failed to normalize field %s with value %r", field_name, value, exc_info=True)
                result.warnings.append(f"Failed to normalize field {field_name}: {e}")

        if request.lines:
            for line in request.lines:
                try:
                    result.line_classifications.append(self.classify_line(line))
                except Exception as e:
                    logger.warning("Failed to classify line item %d", line.line_id, exc_info=True)
                    result.warnings.append(f"Failed to classify line item {line.line_id}: {e}")
        else:
            result.warnings.append("No line items found for classification")

        result.processing_time_ms = round((time.perf_counter() - started) * 1000, 3)
        logger.info(
            "Intelligence processing done in %.1fms: %d classifications, %d normalizations, %d warnings",
            result.processing_time_ms, len(result.line_classifications),
            len(result.field_normalizations), len(result.warnings),
        )
        return result
