"""S3-compatible archive for uploaded invoice documents.

Falls back to the local ``output/documents`` directory when S3 credentials
are not configured (local dev).
"""
from __future__ import annotations

import logging
import os
from datetime import datetime

import aiofiles
import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from fleet_invoices.config import (
    S3_ACCESS_KEY,
    S3_BUCKET,
    S3_ENDPOINT,
    S3_REGION,
    S3_SECRET_KEY,
    UPLOAD_DIR,
)

logger = logging.getLogger(__name__)

_client = None

_LOCAL_STORAGE_DIR = os.path.join(UPLOAD_DIR, "documents")

_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}


def _get_client():
    global _client
    if _client is not None:
        return _client

    if not S3_ENDPOINT or not S3_ACCESS_KEY:
        logger.warning("S3 credentials not configured -- storage will use local fallback")
        return None

    _client = boto3.client(
        "s3",
        endpoint_url=S3_ENDPOINT,
        aws_access_key_id=S3_ACCESS_KEY,
        aws_secret_access_key=S3_SECRET_KEY,
        region_name=S3_REGION,
        config=BotoConfig(signature_version="s3v4"),
    )
    logger.info("S3 client initialized: endpoint=%s, bucket=%s", S3_ENDPOINT, S3_BUCKET)
    return _client


def _local_path(key: str) -> str:
    full_path = os.path.join(_LOCAL_STORAGE_DIR, key)
    os.makedirs(os.path.dirname(full_path), exist_ok=True)
    return full_path


def content_type_for(filename: str) -> str:
    return _CONTENT_TYPES.get(os.path.splitext(filename)[1].lower(), "application/octet-stream")


def build_document_key(job_id: str, filename: str, now: datetime | None = None) -> str:
    """Archive key: ``invoices/YYYY/MM/DD/<job_id>/<basename>``."""
    stamp = (now or datetime.now()).strftime("%Y/%m/%d")
    safe_name = os.path.basename(filename) or "upload.pdf"
    return f"invoices/{stamp}/{job_id}/{safe_name}"


async def upload_file(key: str, data: bytes, content_type: str = "application/pdf") -> str:
    """Upload a file to S3 (or local fallback). Returns the storage URL/path."""
    client = _get_client()

    if client is None:
        path = _local_path(key)
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
        logger.info("Local upload: %s (%d bytes)", path, len(data))
        return f"local://{path}"

    try:
        client.put_object(
            Bucket=S3_BUCKET,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
    except ClientError:
        logger.exception("S3 upload failed for key=%s", key)
        raise
    url = f"{S3_ENDPOINT}/{S3_BUCKET}/{key}"
    logger.info("S3 upload: %s (%d bytes)", key, len(data))
    return url


async def download_file(key: str) -> bytes:
    """Download a file from S3 (or local fallback)."""
    client = _get_client()

    if client is None:
        async with aiofiles.open(os.path.join(_LOCAL_STORAGE_DIR, key), "rb") as f:
            return await f.read()

    try:
        response = client.get_object(Bucket=S3_BUCKET, Key=key)
    except ClientError:
        logger.exception("S3 download failed for key=%s", key)
        raise
    return response["Body"].read()


async def archive_document(job_id: str, filename: str, data: bytes) -> str:
    key = build_document_key(job_id, filename)
    return await upload_file(key, data, content_type_for(filename))
