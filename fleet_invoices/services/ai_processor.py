"""AI reprocessing of an OCR payload into a comprehensive invoice result.

The raw analyzer payload is reduced to key/value pairs and table rows,
sent to the chat-completion client with a JSON-only instruction, and the
reply is parsed into a ``ComprehensiveInvoiceProcessingResult``.

Known failure signals (rate limiting, empty or malformed replies, API
errors) come back as ``success=False`` with a distinct processing method.
Anything unexpected propagates so the orchestrator can take its
emergency path.
"""
from __future__ import annotations

import json
import logging
import math
from typing import Any

from fleet_invoices.config import to_percent_confidence
from fleet_invoices.errors import ChatCompletionError, JsonParseFailure, RateLimitExceeded
from fleet_invoices.models.invoice import (
    METHOD_AI_EMPTY_RESPONSE,
    METHOD_AI_ENHANCED,
    METHOD_AI_ERROR,
    METHOD_AI_JSON_ERROR,
    METHOD_AI_RATE_LIMITED,
    OTHER,
    ComprehensiveInvoiceProcessingResult,
    ProcessedLineItem,
)
from fleet_invoices.services.chat_client import ChatCompletionClient
from fleet_invoices.utils import parse_date

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 300

# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

COMPREHENSIVE_PROMPT = """\
You are an expert automotive invoice processor. Analyze the following simplified \
vehicle maintenance invoice data and return a structured result with all required fields.

INSTRUCTIONS:
- Return ONLY valid JSON (no markdown fences, no commentary). Start with { and end with }.
- Normalize header fields: vehicle ID, invoice number, invoice date, odometer, total cost.
- Classify each line item as one of: Part, Labor, Fee, Tax, Other.
  - Labor is work performed by technicians: replacement, installation, service,
    repair, change, maintenance, mount, install, replace.
  - Part is the physical item being sold, named without an action word.
  - "Cabin Filter Replacement" and "Engine Filter Replacement" are Labor.
  - Fee covers shop, disposal and environmental charges; Tax covers government taxes.
- Extract part numbers when present, otherwise null.
- Write a short standardized maintenance summary for the description, e.g.
  "Oil Change Service", "Brake System Service", "Engine Service",
  "System Diagnostics", "Routine Maintenance", "General Service".
- Rate confidence 0.0-1.0 for every line and overall.

JSON SCHEMA:
{
  "success": true,
  "header": {
    "vehicleId": "...",
    "invoiceNumber": "...",
    "invoiceDate": "2025-08-22",
    "odometer": 67890,
    "totalCost": 284.50,
    "description": "..."
  },
  "lineItems": [
    {
      "lineNumber": 1,
      "description": "...",
      "classification": "Part|Labor|Fee|Tax|Other",
      "unitCost": 45.00,
      "quantity": 1,
      "totalCost": 45.00,
      "partNumber": null,
      "confidence": 0.95
    }
  ],
  "overallConfidence": 0.92,
  "processingNotes": ["..."]
}
"""


# ---------------------------------------------------------------------------
# Payload reduction
# ---------------------------------------------------------------------------


def _table_rows(table: dict[str, Any]) -> list[str]:
    rows: dict[int, list[tuple[int, str]]] = {}
    for cell in table.get("cells") or []:
        rows.setdefault(cell.get("rowIndex", 0), []).append(
            (cell.get("columnIndex", 0), cell.get("content") or "")
        )
    return [
        " | ".join(text for _, text in sorted(cells))
        for _, cells in sorted(rows.items())
    ]


def build_reduced_text(raw_payload: dict[str, Any]) -> str:
    """Reduce an analyzer payload to the text the model actually needs.

    Only key/value pairs and table rows are kept; page geometry, spans and
    per-word data are dropped.  Payloads without an ``analyzeResult`` fall
    back to their plain ``content``.
    """
    result = raw_payload.get("analyzeResult")
    if not isinstance(result, dict):
        content = raw_payload.get("content") or ""
        logger.warning("Payload has no analyzeResult, using plain content (%d chars)", len(content))
        return "=== EXTRACTED INVOICE TEXT ===\n" + content

    parts = ["=== INVOICE CONTENT ==="]

    pairs = result.get("keyValuePairs")
    if pairs:
        parts.append("\n--- Key Information ---")
        for kv in pairs:
            key = ((kv.get("key") or {}).get("content") or "").strip()
            value = ((kv.get("value") or {}).get("content") or "").strip()
            if key and value:
                parts.append(f"{key}: {value}")

    tables = result.get("tables")
    if tables:
        parts.append("\n--- Line Items ---")
        for table in tables:
            parts.extend(_table_rows(table))

    reduced = "\n".join(parts)
    original_size = len(json.dumps(raw_payload, default=str))
    if original_size:
        logger.info(
            "Analyzer payload reduced: %d -> %d chars (%.1f%% reduction)",
            original_size, len(reduced), (original_size - len(reduced)) / original_size * 100,
        )
    return reduced


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def isolate_json_object(text: str) -> str:
    """Return the first brace-balanced ``{...}`` in *text*.

    Braces inside JSON strings are ignored, so code fences and commentary
    around the object are tolerated.  Returns the stripped text unchanged
    when no balanced object is found.
    """
    cleaned = text.strip()
    start = cleaned.find("{")
    if start < 0:
        return cleaned

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(cleaned)):
        ch = cleaned[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return cleaned[start:i + 1]
    return cleaned


def _preview(text: str) -> str:
    return text[:PREVIEW_CHARS] + "..." if len(text) > PREVIEW_CHARS else text


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(str(value).replace(",", "").replace("$", ""))
    except (ValueError, OverflowError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(str(value).replace(",", "")))
    except (ValueError, OverflowError):
        return None


def _expect(payload: dict, key: str, kind: type, raw: str, cleaned: str) -> Any:
    """Return ``payload[key]`` (empty when absent) or raise if it has the wrong JSON type."""
    value = payload.get(key)
    if value is None:
        return kind()
    if not isinstance(value, kind):
        expected = "object" if kind is dict else "array"
        raise JsonParseFailure(
            f"'{key}' must be a JSON {expected}, got {type(value).__name__}",
            raw_response=raw,
            cleaned_response=cleaned,
        )
    return value


def parse_ai_response(text: str) -> ComprehensiveInvoiceProcessingResult:
    """Parse a chat-completion reply into a successful result.

    Raises ``JsonParseFailure`` when no JSON object can be decoded or when
    ``header``, ``lineItems`` or ``processingNotes`` has the wrong JSON type.
    Unreadable numbers are treated as missing.
    """
    cleaned = isolate_json_object(text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise JsonParseFailure(str(e), raw_response=text, cleaned_response=cleaned) from e
    if not isinstance(payload, dict):
        raise JsonParseFailure("Response is not a JSON object", raw_response=text, cleaned_response=cleaned)

    header = _expect(payload, "header", dict, text, cleaned)
    line_items = _expect(payload, "lineItems", list, text, cleaned)
    notes = _expect(payload, "processingNotes", list, text, cleaned)

    total = header.get("totalCost")
    result = ComprehensiveInvoiceProcessingResult(
        success=True,
        processing_method=METHOD_AI_ENHANCED,
        vehicle_id=_as_str(header.get("vehicleId")),
        invoice_number=_as_str(header.get("invoiceNumber")),
        invoice_date=parse_date(_as_str(header.get("invoiceDate"))),
        odometer=_as_int(header.get("odometer")),
        total_cost=_as_float(total) if total is not None else None,
        description=_as_str(header.get("description")),
        overall_confidence=to_percent_confidence(_as_float(payload.get("overallConfidence"))),
    )

    for item in line_items:
        if not isinstance(item, dict):
            continue
        result.line_items.append(ProcessedLineItem(
            line_number=_as_int(item.get("lineNumber")) or 0,
            description=_as_str(item.get("description")) or "",
            classification=_as_str(item.get("classification")) or OTHER,
            unit_cost=_as_float(item.get("unitCost")),
            quantity=_as_float(item.get("quantity")),
            total_cost=_as_float(item.get("totalCost")),
            part_number=_as_str(item.get("partNumber")),
            confidence=to_percent_confidence(_as_float(item.get("confidence"))),
        ))

    result.processing_notes = [n for n in notes if isinstance(n, str)]
    return result


def is_rate_limit_message(message: str | None) -> bool:
    if not message:
        return False
    lower = message.lower()
    return "rate limit" in lower or "429" in lower


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------


class AIInvoiceProcessor:
    def __init__(self, client: ChatCompletionClient, prompt: str = COMPREHENSIVE_PROMPT) -> None:
        self.client = client
        self.prompt = prompt

    async def process(self, raw_payload: dict[str, Any]) -> ComprehensiveInvoiceProcessingResult:
        reduced = build_reduced_text(raw_payload)
        logger.debug("AI prompt length: %d chars", len(self.prompt) + len(reduced))

        try:
            response = await self.client.complete(self.prompt, reduced)
        except RateLimitExceeded as e:
            logger.warning("AI processing rate limited: %s", e)
            return ComprehensiveInvoiceProcessingResult(
                error_message=str(e),
                processing_method=METHOD_AI_RATE_LIMITED,
                rate_limit_encountered=True,
            )
        except ChatCompletionError as e:
            if is_rate_limit_message(str(e)):
                logger.warning("AI processing rate limited: %s", e)
                return ComprehensiveInvoiceProcessingResult(
                    error_message=str(e),
                    processing_method=METHOD_AI_RATE_LIMITED,
                    rate_limit_encountered=True,
                )
            logger.warning("AI processing failed: %s", e)
            return ComprehensiveInvoiceProcessingResult(
                error_message=str(e),
                processing_method=METHOD_AI_ERROR,
            )

        logger.debug("AI response length: %d chars", len(response or ""))
        if not response or not response.strip():
            logger.error("AI returned an empty response")
            return ComprehensiveInvoiceProcessingResult(
                error_message="AI returned an empty response",
                processing_method=METHOD_AI_EMPTY_RESPONSE,
                processing_notes=[f"Original response: {response!r}"],
            )

        try:
            result = parse_ai_response(response)
        except JsonParseFailure as e:
            logger.warning(
                "Failed to parse AI JSON response (original %d chars, cleaned %d chars): %s",
                len(e.raw_response), len(e.cleaned_response), e,
            )
            return ComprehensiveInvoiceProcessingResult(
                error_message=f"Invalid JSON response from AI: {e}",
                processing_method=METHOD_AI_JSON_ERROR,
                processing_notes=[
                    f"JSON parsing error: {e}",
                    f"Original response length: {len(e.raw_response)}",
                    f"Cleaned response length: {len(e.cleaned_response)}",
                    f"Original response preview: {_preview(e.raw_response)}",
                    f"Cleaned response preview: {_preview(e.cleaned_response)}",
                ],
            )

        logger.info(
            "AI processing completed: %d line items, confidence %.1f",
            len(result.line_items), result.overall_confidence,
        )
        return result
