"""Rule-based fallback used when AI reprocessing is unavailable.

Purely local: lines are classified with the keyword classifier, part
numbers are pulled out with an ordered list of OEM patterns, and header
identifiers get their label prefixes stripped.
"""
from __future__ import annotations

import logging
import re
from collections import Counter

from fleet_invoices.models.invoice import (
    METHOD_FALLBACK,
    OTHER,
    UNCLASSIFIED,
    ComprehensiveInvoiceProcessingResult,
    InvoiceData,
    ProcessedLineItem,
)
from fleet_invoices.services.classifier import LineItemClassifier, RuleBasedLineItemClassifier

logger = logging.getLogger(__name__)

LINE_CONFIDENCE = 0.65
OVERALL_CONFIDENCE = 0.65

# Most specific first; the first match of acceptable length wins.
PART_NUMBER_PATTERNS = [
    re.compile(r"\b[A-Z0-9]{3,}-[A-Z0-9]{3,}-[A-Z0-9]{2,}\b", re.IGNORECASE),  # 15400-RTA-003
    re.compile(r"\b[0-9]{5}-[0-9A-Z]{5,}\b", re.IGNORECASE),                  # 90915-YZZD2
    re.compile(r"\bF[0-9A-Z]{2}Z-[0-9A-Z]{4,}-[A-Z]{2,}\b", re.IGNORECASE),   # F1XZ-6731-AB
    re.compile(r"\bPN?\d{4,8}\b", re.IGNORECASE),                             # P12345
    re.compile(r"\b[A-Z0-9]{3,}-[A-Z0-9]{2,}\b", re.IGNORECASE),
    re.compile(r"\b[A-Z]{2,}[0-9]{3,}[A-Z]*\b", re.IGNORECASE),               # PF454
    re.compile(r"\b[0-9]{4,}[A-Z]{0,3}\b", re.IGNORECASE),                    # 12345A
]
PART_NUMBER_MIN_LENGTH = 4
PART_NUMBER_MAX_LENGTH = 25

_VEHICLE_PREFIX = re.compile(r"^(UNIT|VEHICLE|CAR|VIN)[:\s#]*", re.IGNORECASE)
_INVOICE_PREFIX = re.compile(r"^(INVOICE|INV|RECEIPT|RCP)[:\s#-]*", re.IGNORECASE)
_VIN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")

_SINGLE_CATEGORY_SUMMARIES = {
    "Part": "Automotive parts replacement",
    "Labor": "Vehicle maintenance service",
    "Tax/Fee": "Service fees and charges",
}
DEFAULT_SUMMARY = "General automotive service"


# ── Header and part-number helpers ───────────────────────────────────────

def extract_part_number(description: str | None) -> str | None:
    if not description or not description.strip():
        return None
    for pattern in PART_NUMBER_PATTERNS:
        match = pattern.search(description)
        if match:
            candidate = match.group(0).strip()
            if PART_NUMBER_MIN_LENGTH <= len(candidate) <= PART_NUMBER_MAX_LENGTH:
                return candidate
    return None


def normalize_vehicle_id(vehicle_id: str | None) -> str | None:
    """Strip a UNIT/VEHICLE/CAR/VIN label and uppercase: "Vehicle # abc123" → "ABC123"."""
    if not vehicle_id or not vehicle_id.strip():
        return vehicle_id
    cleaned = _VEHICLE_PREFIX.sub("", vehicle_id.strip().upper())
    if _VIN.match(cleaned):
        return cleaned
    return cleaned or vehicle_id


def normalize_invoice_number(invoice_number: str | None) -> str | None:
    if not invoice_number or not invoice_number.strip():
        return invoice_number
    cleaned = _INVOICE_PREFIX.sub("", invoice_number.strip())
    return cleaned or invoice_number


def summarize_categories(line_items: list[ProcessedLineItem]) -> str:
    """One-line service summary from the most frequent line categories."""
    if not line_items:
        return DEFAULT_SUMMARY
    top = [name for name, _ in Counter(li.classification for li in line_items).most_common(2)]
    if len(top) == 1:
        return _SINGLE_CATEGORY_SUMMARIES.get(top[0], DEFAULT_SUMMARY)
    return f"Automotive service including {top[0].lower()} and {top[1].lower()}"


# ── Processor ────────────────────────────────────────────────────────────

class FallbackInvoiceProcessor:
    def __init__(self, classifier: LineItemClassifier | None = None) -> None:
        self.classifier = classifier or RuleBasedLineItemClassifier()

    def _process_line(self, line) -> ProcessedLineItem:
        # Description only; costs never reach the tie-break.
        classification = self.classifier.classify(line.description).classification
        return ProcessedLineItem(
            line_number=line.line_number,
            description=line.description,
            classification=OTHER if classification == UNCLASSIFIED else classification,
            unit_cost=line.unit_cost,
            quantity=line.quantity,
            total_cost=line.total_cost,
            part_number=extract_part_number(line.description),
            confidence=LINE_CONFIDENCE,
        )

    def process(self, invoice_data: InvoiceData) -> ComprehensiveInvoiceProcessingResult:
        """Build a result from OCR data alone.

        Never raises: failures come back as ``success=False`` with a
        "Fallback processing failed" message.
        """
        result = ComprehensiveInvoiceProcessingResult(success=True, processing_method=METHOD_FALLBACK)
        try:
            logger.info("Starting fallback processing for %d line items", len(invoice_data.line_items))
            result.line_items = [self._process_line(line) for line in invoice_data.line_items]
            result.vehicle_id = normalize_vehicle_id(invoice_data.vehicle_id)
            result.invoice_number = normalize_invoice_number(invoice_data.invoice_number)
            result.invoice_date = invoice_data.invoice_date
            result.odometer = invoice_data.odometer
            result.total_cost = invoice_data.total_cost
            result.description = summarize_categories(result.line_items)
            result.overall_confidence = OVERALL_CONFIDENCE
            result.processing_notes.append("Processed using rule-based fallback method")
            result.processing_notes.append(
                f"Classified {len(result.line_items)} line items using keyword matching"
            )
        except Exception as e:
            logger.exception("Fallback processing failed")
            result.success = False
            result.error_message = f"Fallback processing failed: {e}"
            return result

        logger.info("Fallback processing completed: %d line items", len(result.line_items))
        return result
