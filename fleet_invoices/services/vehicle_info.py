"""Vehicle identifier and odometer recovery from analyzed documents.

Used when the structured invoice fields do not carry a vehicle ID.  Sources
are tried strongest first: explicitly named fields, then any other string
field, then document lines that mention a vehicle keyword, then every line.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from fleet_invoices.models.document import DocumentAnalysis
from fleet_invoices.utils import clean_vehicle_id

logger = logging.getLogger(__name__)


# ── Data structures ──────────────────────────────────────────────────────

@dataclass
class VehicleMatch:
    vehicle_id: str
    confidence: float  # 0-1, same scale as analyzer field confidence
    source: str


# ── Patterns and word lists ──────────────────────────────────────────────

EXPLICIT_VEHICLE_FIELDS = (
    "Vehicle ID", "VehicleID", "Vehicle Id", "VehicleId", "VEHICLE ID",
    "Vehicle Number", "VehicleNumber", "Unit ID", "UnitID", "Fleet ID", "FleetID",
)

EXCLUDED_FIELDS = (
    "VendorName", "CompanyName", "BusinessName", "ServiceProvider", "InvoiceFrom",
    "InvoiceNumber", "InvoiceId", "InvoiceDate", "Invoice", "InvoiceTotal", "Total",
    "TotalAmount", "Amount", "AmountDue", "DueDate", "Date",
)

_VEHICLE_LINE_KEYWORDS = (
    "vehicle id", "vehicle number", "unit id", "fleet id", "vin",
    "license plate", "vehicle:", "unit:", "fleet:",
)

_EXPLICIT_PATTERNS = [
    re.compile(r"(?i)vehicle\s*id[:\s]*([A-Z0-9\-]{3,15})"),
    re.compile(r"(?i)vehicle[:\s#\-]*([A-Z0-9\-]{3,15})"),
    re.compile(r"(?i)unit[:\s#\-]*([A-Z0-9\-]{3,15})"),
    re.compile(r"(?i)fleet[:\s#\-]*([A-Z0-9\-]{3,15})"),
    re.compile(r"\b[A-HJ-NPR-Z0-9]{17}\b"),
    re.compile(r"(?i)(?:license|plate|tag)[:\s]*([A-Z0-9\-\s]{3,10})"),
    re.compile(r"\b([A-Z]+-?VEH-?\d{3,4})\b"),
    re.compile(r"\b(VEH-?\d{3,4})\b"),
    re.compile(r":\s*([A-Z0-9\-]{4,15})\b"),
]

_GENERAL_PATTERNS = [
    re.compile(r"\b([A-Z]+-?VEH-?\d{3,4})\b"),
    re.compile(r"\b(VEH-?\d{3,4})\b"),
    re.compile(r"\b[A-HJ-NPR-Z0-9]{17}\b"),
    re.compile(r"(?i)(?:vehicle|car|auto|veh)[:\s#\-]*([A-Z0-9\-]{4,15})"),
    re.compile(r"(?i)(?:stock|unit|fleet)[:\s#\-]*([A-Z0-9\-]{4,15})"),
    re.compile(r"\b([A-Z]{2,4}-VEH-?\d{3,6})\b"),
]

_NOISE_WORDS = (
    "the", "and", "for", "with", "service", "repair", "invoice", "total",
    "amount", "date", "time", "glass", "auto", "brake", "tire", "oil",
)
_BUSINESS_WORDS = ("auto", "glass", "brake", "tire", "service", "center", "shop", "garage", "repair", "parts")

# Identifiers shaped like invoice/bill numbers are never vehicle IDs.
_INVOICE_LIKE = [
    re.compile(r"^AGE-?\d{4}$"),
    re.compile(r"^INV-?\d{3,6}$"),
    re.compile(r"^BILL-?\d{3,6}$"),
    re.compile(r"^[A-Z]{3}-?\d{4}-?\d{4}$"),
]

_ODOMETER_KEYWORDS = ("odometer", "mileage", "miles", "km", "kilometers")


# ── Validation ───────────────────────────────────────────────────────────

def is_valid_vehicle_id(candidate: str | None, strict: bool = False) -> bool:
    if not candidate or not candidate.strip():
        return False
    if len(candidate) < 3 or len(candidate) > 20:
        return False

    lower = candidate.lower()
    if any(lower == noise or (strict and noise in lower) for noise in _NOISE_WORDS):
        return False
    if not re.search(r"[A-Za-z0-9]", candidate):
        return False
    if re.match(r"^\d+\.?\d*$", candidate):
        return False
    if any(p.match(candidate) for p in _INVOICE_LIKE):
        return False

    if strict:
        if lower in _BUSINESS_WORDS:
            return False
        if not re.search(r"\d", candidate):
            return False
    return True


def _first_valid(text: str, patterns: list[re.Pattern[str]]) -> str | None:
    for pattern in patterns:
        for match in pattern.finditer(text):
            captured = (match.group(1) if pattern.groups else match.group(0)).strip()
            if is_valid_vehicle_id(captured, strict=True):
                return captured.upper()
    return None


def extract_vehicle_id_from_text(text: str | None, explicit: bool = False) -> str | None:
    """Find a vehicle identifier in a single line of text.

    Explicit mode (the line already mentions a vehicle keyword) tries the
    keyword-anchored patterns before the general ones.
    """
    if not text:
        return None
    if explicit:
        found = _first_valid(text, _EXPLICIT_PATTERNS)
        if found:
            return found
    return _first_valid(text, _GENERAL_PATTERNS)


def _has_vehicle_keyword(text: str) -> bool:
    lower = text.lower()
    return any(k in lower for k in _VEHICLE_LINE_KEYWORDS)


# ── Extraction ───────────────────────────────────────────────────────────

def _from_fields(analysis: DocumentAnalysis) -> VehicleMatch | None:
    for name in EXPLICIT_VEHICLE_FIELDS:
        field = analysis.fields.get(name)
        if field is None or field.value_type != "string":
            continue
        cleaned = clean_vehicle_id(field.as_text())
        if cleaned:
            confidence = field.confidence if field.confidence is not None else 0.9
            logger.info("Vehicle ID found in explicit field %s: %s", name, cleaned)
            return VehicleMatch(cleaned, min(0.99, max(0.9, confidence)), f"field:{name}")

    for name, field in analysis.fields.items():
        if any(excluded.lower() in name.lower() for excluded in EXCLUDED_FIELDS):
            continue
        if field.value_type != "string":
            continue
        found = extract_vehicle_id_from_text(field.as_text(), explicit=False)
        if found:
            logger.info("Vehicle ID found in field %s: %s", name, found)
            return VehicleMatch(found, 0.6, f"field:{name}")
    return None


def _from_lines(lines: list[str]) -> VehicleMatch | None:
    for line in lines:
        if _has_vehicle_keyword(line):
            found = extract_vehicle_id_from_text(line, explicit=True)
            if found:
                logger.info("Vehicle ID found in vehicle line: %s", found)
                return VehicleMatch(found, 0.8, "text:keyword")

    for line in lines:
        found = extract_vehicle_id_from_text(line, explicit=False)
        if found:
            logger.info("Vehicle ID found in document text: %s", found)
            return VehicleMatch(found, 0.6, "text:general")
    return None


def extract_vehicle_info(analysis: DocumentAnalysis) -> VehicleMatch | None:
    """Recover a vehicle ID from fields, then from document lines."""
    if analysis.fields:
        logger.debug("Available document fields: %s", ", ".join(analysis.fields))
    match = _from_fields(analysis) or _from_lines(analysis.lines)
    if match is None:
        return None
    match.vehicle_id = clean_vehicle_id(match.vehicle_id)
    return match if match.vehicle_id else None


def extract_odometer(lines: list[str]) -> int | None:
    """Read an odometer value from lines mentioning mileage.

    Comma-grouped numbers ("67,890") are preferred over bare runs of three
    or more digits.
    """
    for line in lines:
        text = line.lower()
        if not any(k in text for k in _ODOMETER_KEYWORDS):
            continue
        grouped = re.search(r"\d{1,3}(?:,\d{3})+", text)
        if grouped:
            return int(grouped.group(0).replace(",", ""))
        for number in re.findall(r"\d+", text):
            if len(number) >= 3:
                return int(number)
    return None
