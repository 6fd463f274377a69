"""Turn a ``DocumentAnalysis`` into canonical ``InvoiceData``.

One interpreter per analysis model:

* prebuilt-invoice: typed document fields and the ``Items`` array, with
  tables as a fallback source of line items and part numbers
* prebuilt-document: key/value pairs plus tables
* prebuilt-read: regexes over raw text lines

Table-derived line items carry fixed placeholder confidences (70 for the
invoice model, 60 for the document model); the strategy runner uses these
to tell table parsing apart from structured extraction.
"""
from __future__ import annotations

import logging
import re
from typing import Callable

from thefuzz import fuzz

from fleet_invoices.config import clamp_confidence
from fleet_invoices.models.document import DocumentAnalysis, DocumentField, DocumentTable
from fleet_invoices.models.invoice import LABOR, PART, InvoiceData, LineItemData, OcrResult
from fleet_invoices.services.classifier import LineItemClassifier
from fleet_invoices.services.keywords import SUMMARY_ROW_KEYWORDS, VALID_ITEM_KEYWORDS
from fleet_invoices.services.vehicle_info import extract_odometer, extract_vehicle_info
from fleet_invoices.utils import extract_amount, parse_date, parse_quantity

logger = logging.getLogger(__name__)

PREBUILT_TABLE_CONFIDENCE = 70
GENERAL_TABLE_CONFIDENCE = 60
READ_MODEL_CONFIDENCE = 40

_FUZZY_THRESHOLD = 85

_PART_NUMBER_PATTERNS = [
    re.compile(r"\b\d{5}-[A-Z]{3}-\d{3}\b", re.IGNORECASE),
    re.compile(r"\b[A-Z0-9]{3,}-[A-Z0-9]{2,}\b", re.IGNORECASE),
    re.compile(r"\b[A-Z0-9]{5,12}\b", re.IGNORECASE),
    re.compile(r"\b\d{4,6}-\d{3,6}\b", re.IGNORECASE),
    re.compile(r"\bPN?\d{4,8}\b", re.IGNORECASE),
]

_PART_NUMBER_STOPWORDS = {"the", "and", "for", "with", "item", "part", "qty", "each", "service", "oil", "filter"}

_READ_VEHICLE = re.compile(r"(?i)(?:vehicle|vin|car)\s*:?\s*([A-Z0-9-]+)")
_READ_INVOICE = re.compile(r"(?i)(?:invoice|inv)\s*#?\s*:?\s*([A-Z0-9-]+)")
_READ_DATE = re.compile(r"(\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{4}-\d{2}-\d{2})")
_READ_TOTAL = re.compile(r"(?i)total[:\s]*\$?([\d,]+\.?\d*)")


# ---------------------------------------------------------------------------
# Part numbers
# ---------------------------------------------------------------------------


def is_likely_part_number(candidate: str | None) -> bool:
    if not candidate or len(candidate) < 3:
        return False
    if not re.search(r"[A-Z0-9]", candidate, re.IGNORECASE):
        return False
    if candidate.isdigit():
        return len(candidate) >= 5
    if candidate.lower() in _PART_NUMBER_STOPWORDS:
        return False
    return bool(re.search(r"[A-Z].*\d|\d.*[A-Z]|-", candidate, re.IGNORECASE))


def extract_part_number_from_description(description: str | None) -> str | None:
    """Find a part-number-looking token ("15400-RFA-003", "PN123456")."""
    if not description or not description.strip():
        return None
    for pattern in _PART_NUMBER_PATTERNS:
        for match in pattern.finditer(description):
            candidate = match.group(0).strip()
            if is_likely_part_number(candidate):
                return candidate
    return None


# ---------------------------------------------------------------------------
# Table parsing
# ---------------------------------------------------------------------------


def is_valid_line_item(description: str) -> bool:
    desc = description.lower()
    return any(k in desc for k in VALID_ITEM_KEYWORDS)


def is_summary_row(description: str | None) -> bool:
    """True for subtotal / tax / amount-due style rows.

    Rows that name a recognizable part or service are never summaries.
    """
    if not description or not description.strip():
        return False
    raw = description.strip().lower()
    desc = re.sub(r"[:()\[\]\-_.]", " ", raw)
    desc = re.sub(r"\s+", " ", desc).strip()

    if is_valid_line_item(desc):
        return False
    if any(k in desc for k in SUMMARY_ROW_KEYWORDS):
        return True
    if re.match(r"^\d+\.?\d*\s*%?\s*(tax|vat|gst|hst)", raw):
        return True
    if re.search(r"(tax|vat|gst|hst)\s*\(\d+\.?\d*\s*%\)", raw):
        return True
    if re.match(r"^\$\s*\d+[,.]?\d*\s*$", raw):
        return True
    if re.match(r"^\d+\.\d{2}\s*$", raw):
        return True
    return False


def _is_part_number_header(header: str) -> bool:
    return "part" in header and any(k in header for k in ("number", "no", "#"))


def _classify_line(item: LineItemData, classifier: LineItemClassifier) -> None:
    result = classifier.classify(item.description, item.extracted_unit_cost, item.quantity)
    item.category = result.classification
    item.classified_category = result.classification
    item.classification_confidence = result.confidence
    if item.category != PART:
        item.part_number = None


def _fill_costs(item: LineItemData) -> None:
    if item.quantity <= 0:
        item.quantity = 1.0
    if item.unit_cost == 0 and item.total_cost > 0:
        item.unit_cost = item.total_cost / item.quantity
    if item.total_cost == 0 and item.unit_cost > 0:
        item.total_cost = item.unit_cost * item.quantity


def parse_table_line_items(
    tables: list[DocumentTable],
    classifier: LineItemClassifier,
    line_confidence: float,
) -> list[LineItemData]:
    """Read line items out of analyzer tables using row-0 headers."""
    items: list[LineItemData] = []
    line_number = 1

    for table in tables:
        if table.row_count <= 1:
            continue
        headers = table.headers()
        logger.debug("Table headers: %s", headers)

        for row_index in range(1, table.row_count):
            cells = table.row(row_index)
            if not cells:
                continue

            item = LineItemData(line_number=line_number, quantity=0.0, extraction_confidence=line_confidence)
            for cell in cells:
                header = headers.get(cell.column_index)
                content = cell.content.strip()
                if header is None or not content:
                    continue

                if any(k in header for k in ("description", "item", "service")):
                    item.description = content
                elif _is_part_number_header(header):
                    item.part_number = content
                elif "quantity" in header or "qty" in header:
                    item.quantity = parse_quantity(content) or item.quantity
                elif "unit" in header and ("price" in header or "cost" in header):
                    item.unit_cost = extract_amount(content) or item.unit_cost
                elif "total" in header or "amount" in header:
                    item.total_cost = extract_amount(content) or item.total_cost
                elif "price" in header or "cost" in header:
                    cost = extract_amount(content) or 0.0
                    if item.unit_cost == 0:
                        item.unit_cost = cost
                    if item.total_cost == 0:
                        item.total_cost = cost

            if not item.description:
                continue
            if is_summary_row(item.description):
                logger.debug("Skipping summary row: %r", item.description)
                continue

            _fill_costs(item)
            _classify_line(item, classifier)
            items.append(item)
            line_number += 1

    return items


def supplement_part_numbers_from_tables(tables: list[DocumentTable], line_items: list[LineItemData]) -> int:
    """Copy part numbers from a table's part-number column onto Part lines.

    Rows are matched to line items by description (fuzzy token-set match or
    substring), falling back to row order.  Returns the number of lines
    updated.
    """
    updated = 0
    for table in tables:
        if table.row_count <= 1:
            continue
        headers = table.headers()
        part_col = next((col for col, h in sorted(headers.items()) if _is_part_number_header(h)), None)
        if part_col is None:
            continue
        desc_col = next(
            (col for col, h in sorted(headers.items()) if "description" in h or "item" in h),
            None,
        )

        for row_index in range(1, table.row_count):
            part_cell = table.cell(row_index, part_col)
            if part_cell is None or not part_cell.content.strip():
                continue
            part_number = part_cell.content.strip()
            desc_cell = table.cell(row_index, desc_col) if desc_col is not None else None
            table_desc = desc_cell.content.strip().lower() if desc_cell else ""

            match: LineItemData | None = None
            if table_desc:
                match = next(
                    (
                        li for li in line_items
                        if li.description and (
                            table_desc in li.description.lower()
                            or fuzz.token_set_ratio(li.description.lower(), table_desc) >= _FUZZY_THRESHOLD
                        )
                    ),
                    None,
                )
            if match is None and row_index <= len(line_items):
                match = line_items[row_index - 1]

            if match is not None and not match.part_number and match.category == PART:
                match.part_number = part_number
                updated += 1
                logger.debug("Part number %s attached to line %d", part_number, match.line_number)
    return updated


def apply_totals(data: InvoiceData) -> None:
    data.total_parts_cost = sum(li.total_cost for li in data.line_items if li.category == PART)
    data.total_labor_cost = sum(li.total_cost for li in data.line_items if li.category == LABOR)
    if data.total_cost is None:
        data.total_cost = sum(li.total_cost for li in data.line_items)


# ---------------------------------------------------------------------------
# prebuilt-invoice
# ---------------------------------------------------------------------------


def _field_amount(field: DocumentField) -> float | None:
    if isinstance(field.value, (int, float)):
        return float(field.value)
    return extract_amount(field.as_text())


def _structured_line_items(
    items_field: DocumentField,
    classifier: LineItemClassifier,
    scores: list[float],
) -> list[LineItemData]:
    line_items: list[LineItemData] = []
    for entry in items_field.items:
        if entry.value_type != "object":
            continue
        props = entry.properties
        item = LineItemData(line_number=len(line_items) + 1)
        line_scores: list[float] = []

        desc = props.get("Description")
        if desc is not None and desc.as_text():
            item.description = desc.as_text()
        amount = props.get("Amount")
        if amount is not None:
            item.total_cost = _field_amount(amount) or 0.0
        qty = props.get("Quantity")
        if qty is not None and isinstance(qty.value, (int, float)):
            item.quantity = float(qty.value)
        unit = props.get("UnitPrice")
        if unit is not None and _field_amount(unit) is not None:
            item.unit_cost = _field_amount(unit) or 0.0
        elif item.quantity > 0:
            item.unit_cost = item.total_cost / item.quantity

        for f in (desc, amount, qty, unit):
            if f is not None and f.confidence is not None:
                line_scores.append(f.confidence)
                scores.append(f.confidence)

        _classify_line(item, classifier)
        if item.category == PART:
            pn_field = props.get("PartNumber")
            if pn_field is not None and pn_field.as_text():
                item.part_number = pn_field.as_text()
            if not item.part_number:
                item.part_number = extract_part_number_from_description(item.description)
            if not item.part_number:
                for name in ("ProductCode", "ItemCode", "Code", "SKU", "Part"):
                    code_field = props.get(name)
                    if code_field is not None and is_likely_part_number(code_field.as_text()):
                        item.part_number = code_field.as_text()
                        break

        item.extraction_confidence = sum(line_scores) / len(line_scores) * 100 if line_scores else 0.0
        line_items.append(item)
    return line_items


def interpret_prebuilt_invoice(analysis: DocumentAnalysis, classifier: LineItemClassifier) -> tuple[InvoiceData, float]:
    data = InvoiceData()
    scores: list[float] = []
    fields = analysis.fields

    def _take(names: tuple[str, ...]) -> DocumentField | None:
        for name in names:
            f = fields.get(name)
            if f is not None and (f.value is not None or f.content):
                scores.append(f.confidence if f.confidence is not None else 0.5)
                return f
        return None

    invoice_id = _take(("InvoiceId", "InvoiceNumber"))
    if invoice_id is not None:
        data.invoice_number = invoice_id.as_text() or None
    invoice_date = _take(("InvoiceDate", "Date"))
    if invoice_date is not None:
        data.invoice_date = parse_date(invoice_date.value) or parse_date(invoice_date.content)
    total = _take(("InvoiceTotal", "TotalAmount", "AmountDue"))
    if total is not None:
        data.total_cost = _field_amount(total)
    vehicle = fields.get("VehicleId")
    if vehicle is not None and vehicle.value_type == "string" and vehicle.as_text():
        data.vehicle_id = vehicle.as_text()
        scores.append(vehicle.confidence if vehicle.confidence is not None else 0.5)

    if not data.vehicle_id:
        match = extract_vehicle_info(analysis)
        if match is not None:
            data.vehicle_id = match.vehicle_id
            scores.append(match.confidence)

    data.odometer = extract_odometer(analysis.lines)

    items_field = fields.get("Items")
    if items_field is not None and items_field.items:
        data.line_items = _structured_line_items(items_field, classifier, scores)
    if not data.line_items:
        data.line_items = parse_table_line_items(analysis.tables, classifier, PREBUILT_TABLE_CONFIDENCE)
        scores.extend(0.7 for _ in data.line_items)

    supplement_part_numbers_from_tables(analysis.tables, data.line_items)
    apply_totals(data)

    return data, sum(scores) / len(scores) * 100 if scores else 75.0


# ---------------------------------------------------------------------------
# prebuilt-document
# ---------------------------------------------------------------------------


def interpret_general_document(analysis: DocumentAnalysis, classifier: LineItemClassifier) -> tuple[InvoiceData, float]:
    data = InvoiceData()
    scores: list[float] = []

    for kv in analysis.key_value_pairs:
        key = kv.key.lower()
        value = kv.value.strip()
        if "vehicle" in key or "vin" in key:
            data.vehicle_id = value or data.vehicle_id
            scores.append(kv.confidence)
        elif "invoice" in key and "number" in key:
            data.invoice_number = value or data.invoice_number
            scores.append(kv.confidence)
        elif "date" in key:
            parsed = parse_date(value)
            if parsed is not None:
                data.invoice_date = parsed
                scores.append(kv.confidence)
        elif "total" in key or "amount" in key:
            amount = extract_amount(value)
            if amount is not None:
                data.total_cost = amount
                scores.append(kv.confidence)

    data.line_items = parse_table_line_items(analysis.tables, classifier, GENERAL_TABLE_CONFIDENCE)
    scores.extend(0.6 for _ in data.line_items)

    return data, sum(scores) / len(scores) * 100 if scores else 50.0


# ---------------------------------------------------------------------------
# prebuilt-read
# ---------------------------------------------------------------------------


def _first_capture_with_digit(pattern: re.Pattern[str], line: str) -> str | None:
    for m in pattern.finditer(line):
        if any(c.isdigit() for c in m.group(1)):
            return m.group(1)
    return None


def interpret_read_model(analysis: DocumentAnalysis, classifier: LineItemClassifier) -> tuple[InvoiceData, float]:
    data = InvoiceData()
    for line in analysis.lines:
        if not data.vehicle_id:
            data.vehicle_id = _first_capture_with_digit(_READ_VEHICLE, line)
        if not data.invoice_number:
            data.invoice_number = _first_capture_with_digit(_READ_INVOICE, line)
        if data.invoice_date is None:
            m = _READ_DATE.search(line)
            if m:
                data.invoice_date = parse_date(m.group(0))
        if data.total_cost is None:
            m = _READ_TOTAL.search(line)
            if m:
                data.total_cost = extract_amount(m.group(1))
    return data, float(READ_MODEL_CONFIDENCE)


Interpreter = Callable[[DocumentAnalysis, LineItemClassifier], tuple[InvoiceData, float]]

INTERPRETERS: dict[str, Interpreter] = {
    "prebuilt-invoice": interpret_prebuilt_invoice,
    "prebuilt-document": interpret_general_document,
    "prebuilt-read": interpret_read_model,
}


def interpret(
    analysis: DocumentAnalysis,
    classifier: LineItemClassifier,
    strategy: str,
    model_id: str,
) -> OcrResult:
    """Run the interpreter for *model_id* and wrap it in an ``OcrResult``."""
    interpreter = INTERPRETERS.get(model_id)
    if interpreter is None:
        raise ValueError(f"No interpreter for model {model_id!r}")
    data, confidence = interpreter(analysis, classifier)
    logger.info(
        "%s interpreted: %d line items, confidence %.1f",
        strategy, len(data.line_items), confidence,
    )
    return OcrResult(
        success=True,
        strategy=strategy,
        invoice_data=data,
        overall_confidence=clamp_confidence(confidence),
        raw_payload=analysis.raw,
    )
