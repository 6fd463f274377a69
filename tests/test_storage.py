from __future__ import annotations

import io
import os
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from fleet_invoices import storage


@pytest.fixture
def local_storage(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "_client", None)
    monkeypatch.setattr(storage, "S3_ENDPOINT", "")
    monkeypatch.setattr(storage, "_LOCAL_STORAGE_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def s3_client(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr(storage, "_client", client)
    monkeypatch.setattr(storage, "S3_ENDPOINT", "https://s3.example.com")
    monkeypatch.setattr(storage, "S3_BUCKET", "invoices-bucket")
    return client


class TestKeys:
    def test_document_key(self):
        key = storage.build_document_key("job-1", "scans/invoice.pdf", now=datetime(2025, 8, 22))
        assert key == "invoices/2025/08/22/job-1/invoice.pdf"

    def test_path_components_are_dropped(self):
        key = storage.build_document_key("job-1", "../../etc/passwd.pdf", now=datetime(2025, 1, 5))
        assert key == "invoices/2025/01/05/job-1/passwd.pdf"

    def test_missing_name(self):
        assert storage.build_document_key("job-1", "", now=datetime(2025, 1, 5)).endswith("/job-1/upload.pdf")

    @pytest.mark.parametrize("filename, expected", [
        ("invoice.PDF", "application/pdf"),
        ("scan.jpeg", "image/jpeg"),
        ("scan.tiff", "image/tiff"),
        ("notes.bin", "application/octet-stream"),
    ])
    def test_content_type(self, filename, expected):
        assert storage.content_type_for(filename) == expected


class TestLocalFallback:
    @pytest.mark.asyncio
    async def test_archive_and_download(self, local_storage):
        url = await storage.archive_document("job-1", "invoice.pdf", b"%PDF-1.7")

        assert url.startswith("local://")
        path = url[len("local://"):]
        assert path.startswith(str(local_storage))
        assert path.endswith(os.path.join("job-1", "invoice.pdf"))
        with open(path, "rb") as f:
            assert f.read() == b"%PDF-1.7"

        key = os.path.relpath(path, local_storage)
        assert await storage.download_file(key) == b"%PDF-1.7"


class TestS3:
    @pytest.mark.asyncio
    async def test_upload(self, s3_client):
        url = await storage.upload_file("invoices/k.png", b"png", "image/png")

        assert url == "https://s3.example.com/invoices-bucket/invoices/k.png"
        s3_client.put_object.assert_called_once_with(
            Bucket="invoices-bucket", Key="invoices/k.png", Body=b"png", ContentType="image/png",
        )

    @pytest.mark.asyncio
    async def test_upload_error_propagates(self, s3_client):
        s3_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject",
        )
        with pytest.raises(ClientError):
            await storage.upload_file("invoices/k.pdf", b"data")

    @pytest.mark.asyncio
    async def test_download(self, s3_client):
        s3_client.get_object.return_value = {"Body": io.BytesIO(b"stored")}
        assert await storage.download_file("invoices/k.pdf") == b"stored"
        s3_client.get_object.assert_called_once_with(Bucket="invoices-bucket", Key="invoices/k.pdf")
