from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient

from fleet_invoices.main import app
from fleet_invoices.models.invoice import InvoiceProcessingResponse
from fleet_invoices.routers import invoices as invoices_router


class FakePipeline:
    def __init__(self):
        self.calls: list[tuple[str, str, bytes]] = []

    async def process(self, job_id: str, filename: str, document: bytes) -> InvoiceProcessingResponse:
        self.calls.append((job_id, filename, document))
        return InvoiceProcessingResponse(
            job_id=job_id,
            success=True,
            message="Invoice processed successfully",
            confidence=88,
        )


@pytest.fixture
def pipeline() -> FakePipeline:
    return FakePipeline()


@pytest.fixture
def client(tmp_path, monkeypatch, pipeline):
    monkeypatch.setattr(invoices_router, "UPLOAD_DIR", str(tmp_path))
    with TestClient(app) as test_client:
        app.state.pipeline = pipeline
        yield test_client


class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestInvoiceEndpoints:
    def test_upload_and_reload(self, client, pipeline, tmp_path):
        resp = client.post(
            "/api/invoices/upload",
            files={"file": ("invoice.pdf", b"%PDF-1.7 test", "application/pdf")},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Invoice processed successfully"

        job_id = body["job_id"]
        assert pipeline.calls == [(job_id, "invoice.pdf", b"%PDF-1.7 test")]
        assert os.path.isfile(tmp_path / "jobs" / job_id / "processing_result.json")

        reloaded = client.get(f"/api/invoices/{job_id}")
        assert reloaded.status_code == 200
        assert reloaded.json() == body

    def test_unsupported_extension(self, client, pipeline):
        resp = client.post("/api/invoices/upload", files={"file": ("invoice.docx", b"data", "application/msword")})
        assert resp.status_code == 422
        assert "unsupported extension" in resp.json()["detail"]
        assert pipeline.calls == []

    def test_empty_file(self, client):
        resp = client.post("/api/invoices/upload", files={"file": ("invoice.pdf", b"", "application/pdf")})
        assert resp.status_code == 422

    def test_file_too_large(self, client, monkeypatch):
        monkeypatch.setattr(invoices_router, "MAX_FILE_SIZE_MB", 0)
        resp = client.post("/api/invoices/upload", files={"file": ("invoice.pdf", b"%PDF", "application/pdf")})
        assert resp.status_code == 413

    def test_unknown_job(self, client):
        assert client.get("/api/invoices/does-not-exist").status_code == 404

    def test_corrupted_result(self, client, tmp_path):
        job_dir = tmp_path / "jobs" / "broken"
        job_dir.mkdir(parents=True)
        (job_dir / "processing_result.json").write_text("{not json", encoding="utf-8")
        assert client.get("/api/invoices/broken").status_code == 500


class TestIntelligenceEndpoints:
    def test_classify(self, client):
        resp = client.post("/api/intelligence/classify", json={"description": "Oil Filter", "unit_cost": 12.5, "quantity": 1})
        assert resp.status_code == 200
        body = resp.json()
        assert body["classified_category"] == "Part"
        assert body["was_classified"] is True

    def test_classify_requires_description(self, client):
        assert client.post("/api/intelligence/classify", json={"description": "  "}).status_code == 422

    def test_normalize(self, client):
        resp = client.post("/api/intelligence/normalize", json={"label": "Unit #", "field_name": "VehicleLabel"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["field_name"] == "VehicleLabel"
        assert body["normalized_value"] == "VehicleID"
        assert body["confidence"] == 95

    def test_process(self, client):
        resp = client.post("/api/intelligence/process", json={
            "invoice_number": "INV-5001",
            "odometer_label": "Mileage",
            "lines": [{"line_id": 1, "description": "Labor 2.5 hr"}],
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert [c["classified_category"] for c in body["line_classifications"]] == ["Labor"]
        assert [n["normalized_value"] for n in body["field_normalizations"]] == ["Odometer"]
