"""Shared text and number helpers for the invoice pipeline."""
from __future__ import annotations

import re
from datetime import date, datetime

_VEHICLE_PREFIXES = ("VEHICLE:", "CAR:", "AUTO:", "VEH:", "UNIT:", "STOCK:")
_NUMERIC = re.compile(r"[\d,]+\.?\d*")


def clean_vehicle_id(vehicle_id: str | None) -> str:
    """Normalize a vehicle identifier for storage.

    Uppercases, strips one known label prefix ("UNIT:", "VEH:", ...), then
    drops whitespace and anything that is not a word character or dash:
    " unit: ab 12-3 " → "AB12-3".
    """
    if not vehicle_id:
        return ""
    cleaned = vehicle_id.strip().upper()
    for prefix in _VEHICLE_PREFIXES:
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):].strip()
            break
    cleaned = re.sub(r"\s+", "", cleaned)
    return re.sub(r"[^\w\-]", "", cleaned)


def clean_invoice_number(invoice_number: str | None) -> str:
    if not invoice_number:
        return ""
    cleaned = invoice_number.strip().upper()
    if cleaned.startswith(("INVOICE:", "INV:")):
        return cleaned.split(":")[1].strip()
    if cleaned.startswith("#"):
        return cleaned[1:]
    return cleaned


def clean_description(description: str | None) -> str:
    if not description:
        return ""
    return re.sub(r"\s+", " ", description).strip()


def extract_amount(text: str | None) -> float | None:
    """Pull the first money-like number out of *text* ("$1,234.50" → 1234.5)."""
    if not text:
        return None
    match = _NUMERIC.search(text)
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def parse_quantity(text: str | None) -> float | None:
    if not text:
        return None
    try:
        return float(text.strip().replace(",", ""))
    except ValueError:
        return None


def parse_date(value: str | date | None) -> date | None:
    """Parse a date string in the formats service invoices commonly use."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if not text:
        return None

    for fmt in [
        "%Y-%m-%d", "%m/%d/%Y", "%m-%d-%Y", "%m/%d/%y", "%m-%d-%y",
        "%d/%m/%Y", "%d.%m.%Y", "%Y/%m/%d", "%d %b %Y", "%d %B %Y",
        "%B %d, %Y", "%b %d, %Y", "%Y-%m-%dT%H:%M:%S",
    ]:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None
