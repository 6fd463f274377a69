from __future__ import annotations

import fitz  # PyMuPDF
import httpx
import pytest

from fleet_invoices.errors import ExtractionFailure
from fleet_invoices.services.document_analysis import (
    AzureDocumentAnalyzer,
    LocalPdfAnalyzer,
    parse_analyze_result,
)

ENDPOINT = "https://di.example.com"
OPERATION_URL = f"{ENDPOINT}/formrecognizer/documentModels/prebuilt-invoice/analyzeResults/op-1"

SUCCEEDED = {
    "status": "succeeded",
    "analyzeResult": {
        "pages": [{"lines": [{"content": "Vehicle: TRK-2041"}]}],
        "documents": [{"fields": {
            "InvoiceId": {"type": "string", "valueString": "INV-7", "confidence": 0.93},
        }}],
    },
}


def _analyzer(handler, **kwargs) -> AzureDocumentAnalyzer:
    return AzureDocumentAnalyzer(
        endpoint=ENDPOINT,
        api_key="test-key",
        poll_interval=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _pdf(lines: list[str]) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "\n".join(lines), fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


class TestParseAnalyzeResult:
    def test_accepts_bare_result(self):
        analysis = parse_analyze_result({"pages": [{"lines": [{"content": "A"}, {"content": "B"}]}]}, "prebuilt-read")
        assert analysis.lines == ["A", "B"]
        assert analysis.content == "A\nB"
        assert analysis.model_id == "prebuilt-read"

    def test_typed_fields(self):
        analysis = parse_analyze_result({"analyzeResult": {"documents": [{"fields": {
            "InvoiceTotal": {"type": "currency", "valueCurrency": {"amount": 42.5}, "content": "$42.50"},
            "Pages": {"type": "integer", "valueInteger": 2},
            "Items": {"type": "array", "valueArray": [
                {"type": "object", "valueObject": {
                    "Description": {"type": "string", "valueString": "Wiper blade"},
                }},
            ]},
        }}]}}, "prebuilt-invoice")

        assert analysis.fields["InvoiceTotal"].value == 42.5
        assert analysis.fields["InvoiceTotal"].as_text() == "$42.50"
        assert analysis.fields["Pages"].value == 2
        (item,) = analysis.fields["Items"].items
        assert item.properties["Description"].as_text() == "Wiper blade"

    def test_key_value_pairs_and_tables(self, table_payload_factory):
        analysis = parse_analyze_result({"analyzeResult": {
            "keyValuePairs": [{"key": {"content": "Unit"}, "value": {"content": "88"}, "confidence": 0.7}],
            "tables": [table_payload_factory([["Description", "Amount"], ["Oil change", "$45.00"]])],
        }}, "prebuilt-document")

        (kv,) = analysis.key_value_pairs
        assert (kv.key, kv.value, kv.confidence) == ("Unit", "88", 0.7)
        (table,) = analysis.tables
        assert table.headers() == {0: "description", 1: "amount"}
        assert table.cell(1, 1).content == "$45.00"

    def test_empty_payload(self):
        analysis = parse_analyze_result({}, "prebuilt-read")
        assert analysis.fields == {}
        assert analysis.lines == []
        assert analysis.content == ""


class TestAzureDocumentAnalyzer:
    @pytest.mark.asyncio
    async def test_submits_and_polls_until_succeeded(self):
        seen: list[httpx.Request] = []
        statuses = iter([{"status": "running"}, SUCCEEDED])

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "POST":
                return httpx.Response(202, headers={"Operation-Location": OPERATION_URL})
            return httpx.Response(200, json=next(statuses))

        analysis = await _analyzer(handler).analyze(b"%PDF", "prebuilt-invoice")

        assert analysis.fields["InvoiceId"].as_text() == "INV-7"
        assert analysis.lines == ["Vehicle: TRK-2041"]
        assert [r.method for r in seen] == ["POST", "GET", "GET"]
        submit = seen[0]
        assert "/documentModels/prebuilt-invoice:analyze" in submit.url.path
        assert submit.headers["Ocp-Apim-Subscription-Key"] == "test-key"
        assert submit.content == b"%PDF"

    @pytest.mark.asyncio
    async def test_failed_operation(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(202, headers={"Operation-Location": OPERATION_URL})
            return httpx.Response(200, json={"status": "failed", "error": {"message": "bad scan"}})

        with pytest.raises(ExtractionFailure, match="bad scan") as exc_info:
            await _analyzer(handler).analyze(b"%PDF", "prebuilt-invoice")
        assert exc_info.value.strategy == "prebuilt-invoice"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"code": "Unauthorized"}})

        with pytest.raises(ExtractionFailure, match="status 401"):
            await _analyzer(handler).analyze(b"%PDF", "prebuilt-read")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExtractionFailure, match="connection refused"):
            await _analyzer(handler).analyze(b"%PDF", "prebuilt-read")

    @pytest.mark.asyncio
    async def test_missing_operation_location(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(202)

        with pytest.raises(ExtractionFailure, match="Operation-Location"):
            await _analyzer(handler).analyze(b"%PDF", "prebuilt-read")

    @pytest.mark.asyncio
    async def test_gives_up_after_max_polls(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(202, headers={"Operation-Location": OPERATION_URL})
            return httpx.Response(200, json={"status": "running"})

        with pytest.raises(ExtractionFailure, match="after 2 polls"):
            await _analyzer(handler, max_polls=2).analyze(b"%PDF", "prebuilt-read")

    @pytest.mark.asyncio
    async def test_requires_endpoint(self):
        with pytest.raises(ExtractionFailure, match="not configured"):
            await AzureDocumentAnalyzer(endpoint="").analyze(b"%PDF", "prebuilt-read")


class TestLocalPdfAnalyzer:
    LINES = [
        "Midtown Fleet Service",
        "Invoice Number: 10045",
        "Vehicle: TRK-2041",
        "Odometer: 67,890",
    ]

    @pytest.mark.asyncio
    async def test_read_model_lines(self):
        analysis = await LocalPdfAnalyzer().analyze(_pdf(self.LINES), "prebuilt-read")
        assert "Vehicle: TRK-2041" in analysis.lines
        assert analysis.key_value_pairs == []

    @pytest.mark.asyncio
    async def test_document_model_key_value_pairs(self):
        analysis = await LocalPdfAnalyzer().analyze(_pdf(self.LINES), "prebuilt-document")
        pairs = {kv.key: kv.value for kv in analysis.key_value_pairs}
        assert pairs["Invoice Number"] == "10045"
        assert pairs["Vehicle"] == "TRK-2041"

    @pytest.mark.asyncio
    async def test_empty_document(self):
        with pytest.raises(ExtractionFailure, match="Empty document"):
            await LocalPdfAnalyzer().analyze(b"", "prebuilt-read")

    @pytest.mark.asyncio
    async def test_not_a_pdf(self):
        with pytest.raises(ExtractionFailure, match="no text layer"):
            await LocalPdfAnalyzer().analyze(b"plain bytes", "prebuilt-read")
