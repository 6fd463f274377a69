from __future__ import annotations

import datetime as dt

import pytest

from fleet_invoices.models.document import DocumentTable, TableCell
from fleet_invoices.models.invoice import InvoiceData, LineItemData
from fleet_invoices.services.classifier import RuleBasedLineItemClassifier
from fleet_invoices.services.field_normalizer import DictionaryFieldNormalizer


def make_table(rows: list[list[str]]) -> DocumentTable:
    """Build a DocumentTable from a header row plus data rows."""
    return DocumentTable(
        row_count=len(rows),
        column_count=max(len(r) for r in rows),
        cells=[
            TableCell(row_index=r, column_index=c, content=text)
            for r, row in enumerate(rows)
            for c, text in enumerate(row)
        ],
    )


def table_payload(rows: list[list[str]]) -> dict:
    """The analyzeResult JSON form of ``make_table``."""
    return {
        "rowCount": len(rows),
        "columnCount": max(len(r) for r in rows),
        "cells": [
            {"rowIndex": r, "columnIndex": c, "content": text}
            for r, row in enumerate(rows)
            for c, text in enumerate(row)
        ],
    }


@pytest.fixture
def classifier() -> RuleBasedLineItemClassifier:
    return RuleBasedLineItemClassifier()


@pytest.fixture
def normalizer() -> DictionaryFieldNormalizer:
    return DictionaryFieldNormalizer()


@pytest.fixture
def invoice_data() -> InvoiceData:
    return InvoiceData(
        vehicle_id="VEH-1234",
        invoice_number="INV-5001",
        invoice_date=dt.date(2025, 8, 22),
        odometer=67890,
        total_cost=142.5,
        line_items=[
            LineItemData(line_number=1, description="Oil Filter", unit_cost=12.5, quantity=1, total_cost=12.5,
                         category="Part"),
            LineItemData(line_number=2, description="Labor 1.5 hr", unit_cost=80, quantity=1.5, total_cost=120,
                         category="Labor"),
            LineItemData(line_number=3, description="Shop supplies fee", unit_cost=10, quantity=1, total_cost=10,
                         category="Tax/Fee"),
        ],
    )


@pytest.fixture
def table_factory():
    return make_table


@pytest.fixture
def table_payload_factory():
    return table_payload
