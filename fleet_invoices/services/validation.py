"""Upload-time validation of OCR invoice data.

Missing identifiers and dates are defaulted in place and reported as
warnings.  Errors block persistence.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from fleet_invoices.models.invoice import InvoiceData

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_invoice_data(
    data: InvoiceData,
    now: Callable[[], datetime] = datetime.now,
) -> ValidationResult:
    """Validate *data*, filling defaults for vehicle ID, invoice number and date."""
    result = ValidationResult()
    current = now()

    if not data.vehicle_id or not data.vehicle_id.strip():
        data.vehicle_id = f"VEH-{current:%Y%m%d}-{random.randint(1000, 9999)}"
        result.warnings.append(f"Vehicle ID not found in document, generated default: {data.vehicle_id}")

    if not data.invoice_number or not data.invoice_number.strip():
        data.invoice_number = f"INV-{current:%Y%m%d%H%M%S}"
        result.warnings.append(f"Invoice Number not found in document, generated default: {data.invoice_number}")

    if data.invoice_date is None:
        data.invoice_date = current.date()
        result.warnings.append("Invoice Date not found in document, using today's date")

    if data.total_cost is None or data.total_cost <= 0:
        result.errors.append("Total Cost must be greater than 0")

    if data.invoice_date > (current + timedelta(days=1)).date():
        result.warnings.append("Invoice date is in the future")

    if data.odometer is not None and data.odometer < 0:
        result.errors.append("Odometer reading cannot be negative")

    if not data.line_items:
        result.warnings.append("No line items found in invoice")

    for line in data.line_items:
        if not line.description or not line.description.strip():
            result.errors.append(f"Line {line.line_number}: Description is required")
        if line.unit_cost < 0:
            result.errors.append(f"Line {line.line_number}: Unit cost cannot be negative")
        if line.quantity <= 0:
            result.errors.append(f"Line {line.line_number}: Quantity must be greater than 0")
        if line.total_cost < 0:
            result.errors.append(f"Line {line.line_number}: Total cost cannot be negative")

    if result.errors:
        logger.warning("Invoice data failed validation: %s", "; ".join(result.errors))
    return result
