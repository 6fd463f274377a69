from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from fleet_invoices.models.invoice import (
    LABOR,
    METHOD_FALLBACK,
    OTHER,
    PART,
    TAX_FEE,
    InvoiceData,
    LineItemData,
    ProcessedLineItem,
)
from fleet_invoices.services.fallback_processor import (
    DEFAULT_SUMMARY,
    FallbackInvoiceProcessor,
    extract_part_number,
    normalize_invoice_number,
    normalize_vehicle_id,
    summarize_categories,
)


def _lines(*classifications: str) -> list[ProcessedLineItem]:
    return [ProcessedLineItem(classification=c) for c in classifications]


class TestHeaderNormalization:
    @pytest.mark.parametrize("raw, expected", [
        ("Vehicle # abc123", "ABC123"),
        ("unit: 42-b", "42-B"),
        ("VIN: 1HGCM82633A004352", "1HGCM82633A004352"),
        ("TRK-2041", "TRK-2041"),
    ])
    def test_vehicle_id(self, raw, expected):
        assert normalize_vehicle_id(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_vehicle_id_blank_passthrough(self, raw):
        assert normalize_vehicle_id(raw) == raw

    @pytest.mark.parametrize("raw, expected", [
        ("INV: 123", "123"),
        ("Invoice #-5521", "5521"),
        ("Receipt 88", "88"),
        ("RO-5521", "RO-5521"),
    ])
    def test_invoice_number(self, raw, expected):
        assert normalize_invoice_number(raw) == expected

    def test_label_only_keeps_original(self):
        assert normalize_invoice_number("INVOICE") == "INVOICE"


class TestPartNumberExtraction:
    @pytest.mark.parametrize("description, expected", [
        ("Oil filter 15400-RTA-003", "15400-RTA-003"),
        ("Toyota filter 90915-YZZD2", "90915-YZZD2"),
        ("ACDELCO PF454 oil filter", "PF454"),
        ("Motorcraft F1XZ-6731-AB", "F1XZ-6731-AB"),
    ])
    def test_patterns(self, description, expected):
        assert extract_part_number(description) == expected

    @pytest.mark.parametrize("description", ["Wiper blade", "Labor 1.5 hr", "", None])
    def test_no_part_number(self, description):
        assert extract_part_number(description) is None


class TestSummary:
    def test_empty(self):
        assert summarize_categories([]) == DEFAULT_SUMMARY

    @pytest.mark.parametrize("classification, expected", [
        (PART, "Automotive parts replacement"),
        (LABOR, "Vehicle maintenance service"),
        (TAX_FEE, "Service fees and charges"),
        (OTHER, DEFAULT_SUMMARY),
    ])
    def test_single_category(self, classification, expected):
        assert summarize_categories(_lines(classification, classification)) == expected

    def test_two_most_common(self):
        summary = summarize_categories(_lines(PART, LABOR, LABOR, TAX_FEE))
        assert summary == "Automotive service including labor and part"


class TestFallbackInvoiceProcessor:
    def test_process(self, invoice_data):
        result = FallbackInvoiceProcessor().process(invoice_data)

        assert result.success
        assert result.processing_method == METHOD_FALLBACK
        assert [li.classification for li in result.line_items] == [PART, LABOR, TAX_FEE]
        assert all(li.confidence == 0.65 for li in result.line_items)
        assert result.overall_confidence == 0.65
        assert result.vehicle_id == "VEH-1234"
        assert result.invoice_number == "5001"
        assert result.invoice_date == invoice_data.invoice_date
        assert result.odometer == 67890
        assert result.total_cost == 142.5
        assert result.description == "Automotive service including part and labor"
        assert result.processing_notes == [
            "Processed using rule-based fallback method",
            "Classified 3 line items using keyword matching",
        ]

    def test_unclassified_becomes_other(self):
        data = InvoiceData(line_items=[LineItemData(description="Widget ACX-2291 kit"), LineItemData(description="Widget")])
        result = FallbackInvoiceProcessor().process(data)
        assert result.line_items[1].classification == OTHER
        assert result.line_items[0].part_number == "ACX-2291"

    def test_costs_do_not_drive_classification(self):
        data = InvoiceData(line_items=[
            LineItemData(description="Widget", unit_cost=5, quantity=1, total_cost=5),
            LineItemData(description="Gizmo", unit_cost=250, quantity=1, total_cost=250),
        ])
        result = FallbackInvoiceProcessor().process(data)
        assert [li.classification for li in result.line_items] == [OTHER, OTHER]
        assert [li.unit_cost for li in result.line_items] == [5, 250]

    def test_classifier_failure_is_reported(self, invoice_data):
        classifier = MagicMock()
        classifier.classify.side_effect = RuntimeError("boom")
        result = FallbackInvoiceProcessor(classifier).process(invoice_data)

        assert not result.success
        assert result.error_message == "Fallback processing failed: boom"
