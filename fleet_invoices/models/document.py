"""Pydantic models describing document-analysis output.

These mirror the subset of the Azure Document Intelligence ``analyzeResult``
shape that the pipeline actually interprets: document fields with
per-field confidence, key/value pairs, tables and text lines.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class DocumentField(BaseModel):
    value_type: str = "string"  # string | date | number | integer | currency | array | object
    value: Any = None
    content: str = ""
    confidence: Optional[float] = None  # 0-1, as reported by the analyzer
    items: list["DocumentField"] = []
    properties: dict[str, "DocumentField"] = {}

    def as_text(self) -> str:
        """Best-effort string form of the field value."""
        if isinstance(self.value, str) and self.value.strip():
            return self.value.strip()
        if self.content:
            return self.content.strip()
        if self.value is not None and not isinstance(self.value, (list, dict)):
            return str(self.value)
        return ""


class KeyValuePair(BaseModel):
    key: str = ""
    value: str = ""
    confidence: float = 0.0


class TableCell(BaseModel):
    row_index: int
    column_index: int
    content: str = ""


class DocumentTable(BaseModel):
    row_count: int = 0
    column_count: int = 0
    cells: list[TableCell] = []

    def headers(self) -> dict[int, str]:
        """Lower-cased header text keyed by column index (row 0)."""
        return {
            cell.column_index: cell.content.lower()
            for cell in self.cells
            if cell.row_index == 0
        }

    def row(self, row_index: int) -> list[TableCell]:
        return sorted(
            (cell for cell in self.cells if cell.row_index == row_index),
            key=lambda c: c.column_index,
        )

    def cell(self, row_index: int, column_index: int) -> Optional[TableCell]:
        for c in self.cells:
            if c.row_index == row_index and c.column_index == column_index:
                return c
        return None


class DocumentAnalysis(BaseModel):
    model_id: str = ""
    content: str = ""
    fields: dict[str, DocumentField] = {}
    key_value_pairs: list[KeyValuePair] = []
    tables: list[DocumentTable] = []
    lines: list[str] = []
    raw: dict[str, Any] = {}
