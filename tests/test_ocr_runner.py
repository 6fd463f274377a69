from __future__ import annotations

import asyncio
import datetime as dt

import pytest

from fleet_invoices.errors import AllStrategiesFailed, ExtractionFailure
from fleet_invoices.models.document import DocumentAnalysis, DocumentField, KeyValuePair
from fleet_invoices.models.invoice import LABOR, PART, InvoiceData, LineItemData, OcrResult
from fleet_invoices.services.ocr_runner import (
    ALL_STRATEGIES_FAILED,
    STRATEGIES,
    OcrStrategyRunner,
    completeness_score,
    has_structured_line_items,
    is_better_result,
    merge_invoice_data,
)


class FakeAnalyzer:
    """Serves canned analyses (or raises canned errors) per model id."""

    def __init__(self, responses: dict):
        self.responses = responses
        self.calls: list[str] = []

    async def analyze(self, document: bytes, model_id: str) -> DocumentAnalysis:
        self.calls.append(model_id)
        response = self.responses[model_id]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return await response()
        return response


def _confident_invoice() -> DocumentAnalysis:
    item = DocumentField(value_type="object", properties={
        "Description": DocumentField(value="Brake rotor", confidence=0.95),
        "Amount": DocumentField(value_type="currency", value=100.0, confidence=0.95),
    })
    return DocumentAnalysis(model_id="prebuilt-invoice", fields={
        "InvoiceId": DocumentField(value="INV-1", confidence=0.95),
        "InvoiceTotal": DocumentField(value_type="currency", value=100.0, confidence=0.95),
        "Items": DocumentField(value_type="array", items=[item]),
    })


def _general_document(make_table) -> DocumentAnalysis:
    return DocumentAnalysis(
        model_id="prebuilt-document",
        key_value_pairs=[KeyValuePair(key="Invoice Number", value="RO-5521", confidence=0.9)],
        tables=[make_table([
            ["Description", "Qty", "Unit Price", "Amount"],
            ["Oil Filter", "1", "$12.50", "$12.50"],
            ["Labor 1.5 hr", "1.5", "$80.00", "$120.00"],
        ])],
    )


def _read_model() -> DocumentAnalysis:
    return DocumentAnalysis(model_id="prebuilt-read", lines=["Vehicle: TRK-2041", "Date 08/22/2025"])


def _result(data: InvoiceData, confidence: float) -> OcrResult:
    return OcrResult(success=True, invoice_data=data, overall_confidence=confidence)


class TestResultComparison:
    def test_completeness_score(self, invoice_data):
        assert completeness_score(invoice_data) == 100
        assert completeness_score(InvoiceData()) == 0
        assert completeness_score(None) == 0

    def test_zero_total_does_not_count(self):
        assert completeness_score(InvoiceData(total_cost=0)) == 0

    def test_structured_line_items(self):
        table_parsed = InvoiceData(line_items=[LineItemData(extraction_confidence=70), LineItemData(extraction_confidence=60)])
        structured = InvoiceData(line_items=[LineItemData(extraction_confidence=92), LineItemData(extraction_confidence=88)])
        assert not has_structured_line_items(table_parsed)
        assert has_structured_line_items(structured)
        assert not has_structured_line_items(InvoiceData())

    def test_structured_beats_confident_table_parse(self):
        structured = _result(InvoiceData(line_items=[LineItemData(extraction_confidence=80)]), 50)
        table_parsed = _result(InvoiceData(line_items=[LineItemData(extraction_confidence=70)]), 95)
        assert is_better_result(structured, table_parsed)
        assert not is_better_result(table_parsed, structured)

    def test_line_items_beat_none(self):
        with_items = _result(InvoiceData(line_items=[LineItemData(extraction_confidence=70)]), 40)
        without = _result(InvoiceData(invoice_number="X"), 90)
        assert is_better_result(with_items, without)

    def test_confidence_needs_margin(self):
        current = _result(InvoiceData(invoice_number="A"), 70)
        assert not is_better_result(_result(InvoiceData(invoice_number="B"), 74), current)
        assert is_better_result(_result(InvoiceData(invoice_number="B"), 76), current)

    def test_completeness_breaks_ties(self):
        current = _result(InvoiceData(invoice_number="A"), 70)
        fuller = _result(InvoiceData(invoice_number="B", vehicle_id="V1"), 70)
        assert is_better_result(fuller, current)


class TestMerge:
    def test_fills_only_missing_fields(self):
        primary = InvoiceData(vehicle_id="A")
        secondary = InvoiceData(
            vehicle_id="B",
            invoice_number="INV-9",
            invoice_date=dt.date(2025, 1, 2),
            total_cost=50.0,
            odometer=1000,
            line_items=[LineItemData(description="Oil")],
        )
        merge_invoice_data(primary, secondary)
        assert primary.vehicle_id == "A"
        assert primary.invoice_number == "INV-9"
        assert primary.invoice_date == dt.date(2025, 1, 2)
        assert primary.total_cost == 50.0
        assert primary.odometer == 1000
        assert [li.description for li in primary.line_items] == ["Oil"]
        assert primary.line_items[0] is not secondary.line_items[0]

    def test_keeps_existing_line_items(self):
        primary = InvoiceData(line_items=[LineItemData(description="Kept")])
        merge_invoice_data(primary, InvoiceData(line_items=[LineItemData(description="Other")]))
        assert [li.description for li in primary.line_items] == ["Kept"]


class TestOcrStrategyRunner:
    @pytest.mark.asyncio
    async def test_stops_early_on_confident_result(self):
        analyzer = FakeAnalyzer({"prebuilt-invoice": _confident_invoice()})
        result = await OcrStrategyRunner(analyzer).run(b"%PDF")

        assert result.success
        assert result.strategy == "Prebuilt Invoice"
        assert analyzer.calls == ["prebuilt-invoice"]
        assert result.overall_confidence == 100
        assert result.failed_strategies == []

    @pytest.mark.asyncio
    async def test_merges_gaps_from_other_strategies(self, table_factory):
        analyzer = FakeAnalyzer({
            "prebuilt-invoice": RuntimeError("boom"),
            "prebuilt-document": _general_document(table_factory),
            "prebuilt-read": _read_model(),
        })
        result = await OcrStrategyRunner(analyzer).run(b"%PDF")

        assert result.success
        assert result.strategy == "General Document"
        assert analyzer.calls == [s.model_id for s in STRATEGIES]
        assert result.failed_strategies == ["Prebuilt Invoice: boom"]

        data = result.invoice_data
        assert data.invoice_number == "RO-5521"
        assert data.vehicle_id == "TRK-2041"
        assert data.invoice_date == dt.date(2025, 8, 22)
        assert data.total_cost == 132.5
        assert data.total_parts_cost == 12.5
        assert data.total_labor_cost == 120
        assert [li.category for li in data.line_items] == [PART, LABOR]
        # base 70 + completeness 90/10 + agreement 5
        assert result.overall_confidence == pytest.approx(84.0)

    @pytest.mark.asyncio
    async def test_all_strategies_failing(self):
        analyzer = FakeAnalyzer({s.model_id: ExtractionFailure("bad document") for s in STRATEGIES})
        runner = OcrStrategyRunner(analyzer)

        result = await runner.run(b"%PDF")
        assert not result.success
        assert result.error_message == ALL_STRATEGIES_FAILED
        assert len(result.failed_strategies) == 3

        with pytest.raises(AllStrategiesFailed):
            await runner.run_or_raise(b"%PDF")

    @pytest.mark.asyncio
    async def test_strategy_timeout_is_recorded(self):
        async def slow():
            await asyncio.sleep(1)
            return _confident_invoice()

        analyzer = FakeAnalyzer({"prebuilt-invoice": slow, "prebuilt-read": _read_model()})
        runner = OcrStrategyRunner(
            analyzer,
            strategies=(STRATEGIES[0], STRATEGIES[2]),
            strategy_timeout=0.01,
        )
        result = await runner.run(b"%PDF")

        assert result.success
        assert result.strategy == "Read Model"
        assert result.failed_strategies == ["Prebuilt Invoice: timed out"]

    @pytest.mark.asyncio
    async def test_deadline_skips_remaining_strategies(self):
        analyzer = FakeAnalyzer({})
        result = await OcrStrategyRunner(analyzer, deadline=-1).run(b"%PDF")
        assert not result.success
        assert analyzer.calls == []
        assert result.failed_strategies == ["Prebuilt Invoice: skipped after deadline"]
