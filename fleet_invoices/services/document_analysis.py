"""Document-analysis adapters.

Both analyzers return a ``DocumentAnalysis`` built from the Azure Document
Intelligence ``analyzeResult`` JSON shape, so downstream interpretation
does not care which engine produced it:

* ``AzureDocumentAnalyzer`` calls the REST API with httpx (submit, then
  poll the ``Operation-Location`` URL until the job settles).
* ``LocalPdfAnalyzer`` reads text-based PDFs with pdfplumber / PyMuPDF and
  emits the same shape.  Used in development when no endpoint is set.
"""
from __future__ import annotations

import asyncio
import io
import logging
import re
from functools import partial
from typing import Any, Protocol

import fitz  # PyMuPDF
import httpx
import pdfplumber

from fleet_invoices.config import (
    DOCUMENT_ANALYSIS_API_VERSION,
    DOCUMENT_ANALYSIS_ENDPOINT,
    DOCUMENT_ANALYSIS_KEY,
    DOCUMENT_ANALYSIS_MAX_POLLS,
    DOCUMENT_ANALYSIS_POLL_INTERVAL_SECONDS,
    DOCUMENT_ANALYSIS_TIMEOUT_SECONDS,
)
from fleet_invoices.errors import ExtractionFailure
from fleet_invoices.models.document import (
    DocumentAnalysis,
    DocumentField,
    DocumentTable,
    KeyValuePair,
    TableCell,
)

logger = logging.getLogger(__name__)

# Minimum characters on a page to count it as carrying a text layer.
_TEXT_THRESHOLD = 20

_KEY_VALUE_LINE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9 #./()-]{1,40}?)\s*[:#]\s*(.+?)\s*$")


class DocumentAnalyzer(Protocol):
    async def analyze(self, document: bytes, model_id: str) -> DocumentAnalysis: ...


# ---------------------------------------------------------------------------
# analyzeResult JSON → DocumentAnalysis
# ---------------------------------------------------------------------------


def _parse_field(raw: dict[str, Any]) -> DocumentField:
    value_type = raw.get("type", "string")
    value: Any = None
    items: list[DocumentField] = []
    properties: dict[str, DocumentField] = {}

    if value_type == "string":
        value = raw.get("valueString")
    elif value_type == "date":
        value = raw.get("valueDate")
    elif value_type == "currency":
        value = (raw.get("valueCurrency") or {}).get("amount")
    elif value_type == "number":
        value = raw.get("valueNumber")
    elif value_type == "integer":
        value = raw.get("valueInteger")
    elif value_type == "array":
        items = [_parse_field(i) for i in raw.get("valueArray") or [] if isinstance(i, dict)]
    elif value_type == "object":
        properties = {
            k: _parse_field(v) for k, v in (raw.get("valueObject") or {}).items() if isinstance(v, dict)
        }

    return DocumentField(
        value_type=value_type,
        value=value,
        content=raw.get("content") or "",
        confidence=raw.get("confidence"),
        items=items,
        properties=properties,
    )


def parse_analyze_result(payload: dict[str, Any], model_id: str) -> DocumentAnalysis:
    """Build a ``DocumentAnalysis`` from an analyze-operation response.

    Accepts either the full operation body (``{"status": ..., "analyzeResult": {...}}``)
    or the bare ``analyzeResult`` object.
    """
    result = payload.get("analyzeResult", payload)

    lines = [
        line.get("content", "")
        for page in result.get("pages") or []
        for line in page.get("lines") or []
        if line.get("content")
    ]

    key_value_pairs = [
        KeyValuePair(
            key=(kv.get("key") or {}).get("content", ""),
            value=(kv.get("value") or {}).get("content", ""),
            confidence=kv.get("confidence") or 0.0,
        )
        for kv in result.get("keyValuePairs") or []
    ]

    tables = [
        DocumentTable(
            row_count=t.get("rowCount", 0),
            column_count=t.get("columnCount", 0),
            cells=[
                TableCell(
                    row_index=c.get("rowIndex", 0),
                    column_index=c.get("columnIndex", 0),
                    content=c.get("content") or "",
                )
                for c in t.get("cells") or []
            ],
        )
        for t in result.get("tables") or []
    ]

    fields: dict[str, DocumentField] = {}
    documents = result.get("documents") or []
    if documents:
        fields = {
            name: _parse_field(raw)
            for name, raw in (documents[0].get("fields") or {}).items()
            if isinstance(raw, dict)
        }

    return DocumentAnalysis(
        model_id=model_id,
        content=result.get("content") or "\n".join(lines),
        fields=fields,
        key_value_pairs=key_value_pairs,
        tables=tables,
        lines=lines,
        raw=payload,
    )


# ---------------------------------------------------------------------------
# Azure Document Intelligence (REST)
# ---------------------------------------------------------------------------


class AzureDocumentAnalyzer:
    def __init__(
        self,
        endpoint: str = DOCUMENT_ANALYSIS_ENDPOINT,
        api_key: str = DOCUMENT_ANALYSIS_KEY,
        api_version: str = DOCUMENT_ANALYSIS_API_VERSION,
        timeout: float = DOCUMENT_ANALYSIS_TIMEOUT_SECONDS,
        poll_interval: float = DOCUMENT_ANALYSIS_POLL_INTERVAL_SECONDS,
        max_polls: int = DOCUMENT_ANALYSIS_MAX_POLLS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.api_version = api_version
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {"Ocp-Apim-Subscription-Key": self.api_key}

    async def analyze(self, document: bytes, model_id: str) -> DocumentAnalysis:
        if not self.endpoint:
            raise ExtractionFailure("Document analysis endpoint is not configured", strategy=model_id)

        url = (
            f"{self.endpoint}/formrecognizer/documentModels/{model_id}:analyze"
            f"?api-version={self.api_version}"
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    url,
                    content=document,
                    headers={**self._headers(), "Content-Type": "application/octet-stream"},
                )
                resp.raise_for_status()
                operation_url = resp.headers.get("Operation-Location")
                if not operation_url:
                    raise ExtractionFailure("Analyze response had no Operation-Location header", strategy=model_id)
                payload = await self._poll(client, operation_url, model_id)
        except httpx.HTTPStatusError as e:
            logger.warning("Document analysis %s failed (%d)", model_id, e.response.status_code)
            raise ExtractionFailure(
                f"Document analysis request failed with status {e.response.status_code}",
                strategy=model_id,
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Document analysis %s transport error", model_id, exc_info=True)
            raise ExtractionFailure(f"Document analysis request failed: {e}", strategy=model_id) from e

        analysis = parse_analyze_result(payload, model_id)
        logger.info(
            "Document analysis %s: %d fields, %d tables, %d lines",
            model_id, len(analysis.fields), len(analysis.tables), len(analysis.lines),
        )
        return analysis

    async def _poll(self, client: httpx.AsyncClient, operation_url: str, model_id: str) -> dict[str, Any]:
        for _ in range(self.max_polls):
            resp = await client.get(operation_url, headers=self._headers())
            resp.raise_for_status()
            payload = resp.json()
            status = str(payload.get("status", "")).lower()
            if status == "succeeded":
                return payload
            if status == "failed":
                error = (payload.get("error") or {}).get("message", "analysis failed")
                raise ExtractionFailure(f"Document analysis failed: {error}", strategy=model_id)
            await asyncio.sleep(self.poll_interval)
        raise ExtractionFailure(
            f"Document analysis did not finish after {self.max_polls} polls", strategy=model_id
        )


# ---------------------------------------------------------------------------
# Local PDF analyzer (pdfplumber + PyMuPDF)
# ---------------------------------------------------------------------------


def _has_text_layer(pdf_bytes: bytes) -> bool:
    """Return True if any page carries extractable text."""
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception:
        logger.warning("PyMuPDF could not open document", exc_info=True)
        return False
    try:
        return any(len((page.get_text("text") or "").strip()) > _TEXT_THRESHOLD for page in doc)
    finally:
        doc.close()


def _table_payload(rows: list[list[str | None]]) -> dict[str, Any]:
    cells = [
        {"rowIndex": r, "columnIndex": c, "content": (cell or "").strip()}
        for r, row in enumerate(rows)
        for c, cell in enumerate(row)
    ]
    return {
        "rowCount": len(rows),
        "columnCount": max((len(row) for row in rows), default=0),
        "cells": cells,
    }


def _key_value_payload(lines: list[str]) -> list[dict[str, Any]]:
    pairs = []
    for line in lines:
        m = _KEY_VALUE_LINE.match(line)
        if m:
            pairs.append({
                "key": {"content": m.group(1).strip()},
                "value": {"content": m.group(2).strip()},
                "confidence": 0.8,
            })
    return pairs


def build_local_payload(pdf_bytes: bytes, model_id: str) -> dict[str, Any]:
    """Read a text-based PDF into an ``analyzeResult``-shaped dict.

    The read model gets text only; the document model also gets
    ``Key: value`` pairs; tables are included for every model except read.
    """
    if not _has_text_layer(pdf_bytes):
        raise ExtractionFailure("Document has no text layer", strategy=model_id)

    pages: list[dict[str, Any]] = []
    tables: list[dict[str, Any]] = []
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        for idx, page in enumerate(pdf.pages):
            text = page.extract_text() or ""
            pages.append({
                "pageNumber": idx + 1,
                "lines": [{"content": ln.strip()} for ln in text.splitlines() if ln.strip()],
            })
            if model_id != "prebuilt-read":
                for raw_table in page.extract_tables() or []:
                    rows = [[str(c) if c is not None else None for c in row] for row in raw_table]
                    if rows:
                        tables.append(_table_payload(rows))

    all_lines = [ln["content"] for p in pages for ln in p["lines"]]
    result: dict[str, Any] = {
        "modelId": model_id,
        "content": "\n".join(all_lines),
        "pages": pages,
        "tables": tables,
    }
    if model_id == "prebuilt-document":
        result["keyValuePairs"] = _key_value_payload(all_lines)
    return {"status": "succeeded", "analyzeResult": result}


class LocalPdfAnalyzer:
    async def analyze(self, document: bytes, model_id: str) -> DocumentAnalysis:
        if not document:
            raise ExtractionFailure("Empty document", strategy=model_id)
        loop = asyncio.get_running_loop()
        try:
            payload = await loop.run_in_executor(None, partial(build_local_payload, document, model_id))
        except ExtractionFailure:
            raise
        except Exception as e:
            logger.exception("Local PDF analysis failed for %s", model_id)
            raise ExtractionFailure(f"Local PDF analysis failed: {e}", strategy=model_id) from e

        analysis = parse_analyze_result(payload, model_id)
        logger.info(
            "Local analysis %s: %d tables, %d lines",
            model_id, len(analysis.tables), len(analysis.lines),
        )
        return analysis
