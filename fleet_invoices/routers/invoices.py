"""Router for invoice upload and result lookup.

Endpoints
---------
POST /api/invoices/upload   -- Upload one invoice document and run the full
                               processing pipeline.
GET  /api/invoices/{job_id} -- Reload the persisted response of a prior upload.
"""
from __future__ import annotations

import json
import logging
import os
import uuid

import aiofiles
from fastapi import APIRouter, File, HTTPException, Request, UploadFile

from fleet_invoices.config import ALLOWED_EXTENSIONS, MAX_FILE_SIZE_MB, UPLOAD_DIR
from fleet_invoices.models.invoice import InvoiceProcessingResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["invoices"])

RESULT_FILENAME = "processing_result.json"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _validate_file(file: UploadFile) -> None:
    """Validate the file extension.  Raises ``HTTPException(422)``."""
    if not file.filename:
        raise HTTPException(status_code=422, detail="Uploaded file has no filename.")

    ext = os.path.splitext(file.filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=422,
            detail=f"File '{file.filename}' has unsupported extension '{ext}'. "
                   f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
        )


async def _read_and_validate_size(file: UploadFile) -> bytes:
    """Read the upload and enforce ``MAX_FILE_SIZE_MB``.  Raises ``HTTPException(413)``."""
    contents = await file.read()
    max_bytes = MAX_FILE_SIZE_MB * 1024 * 1024
    if len(contents) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File '{file.filename}' exceeds the {MAX_FILE_SIZE_MB} MB limit "
                   f"({len(contents) / (1024 * 1024):.1f} MB).",
        )
    if not contents:
        raise HTTPException(status_code=422, detail=f"File '{file.filename}' is empty.")
    return contents


def _result_path(job_id: str) -> str:
    return os.path.join(UPLOAD_DIR, "jobs", job_id, RESULT_FILENAME)


async def _save_json(path: str, data: dict) -> None:
    """Write a dict as formatted JSON to disk."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def _load_json(path: str) -> dict:
    """Read and parse a JSON file from disk."""
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        content = await f.read()
    return json.loads(content)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/api/invoices/upload", response_model=InvoiceProcessingResponse)
async def upload_invoice(
    request: Request,
    file: UploadFile = File(..., description="Invoice document (PDF or image)"),
) -> InvoiceProcessingResponse:
    _validate_file(file)
    contents = await _read_and_validate_size(file)

    job_id = str(uuid.uuid4())
    safe_name = os.path.basename(file.filename or "upload.pdf")
    logger.info("Created job %s for %s", job_id, safe_name)

    pipeline = request.app.state.pipeline
    response: InvoiceProcessingResponse = await pipeline.process(job_id, safe_name, contents)

    await _save_json(_result_path(job_id), response.model_dump(mode="json"))
    logger.info("Job %s finished: success=%s, message=%s", job_id, response.success, response.message)
    return response


@router.get("/api/invoices/{job_id}", response_model=InvoiceProcessingResponse)
async def get_invoice(job_id: str) -> InvoiceProcessingResponse:
    """Retrieve the persisted processing response of a prior upload."""
    path = _result_path(os.path.basename(job_id))
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found.")

    try:
        data = await _load_json(path)
        return InvoiceProcessingResponse(**data)
    except Exception:
        logger.exception("Failed to read processing result for job %s", job_id)
        raise HTTPException(
            status_code=500, detail="Failed to load job data. The result file may be corrupted."
        )
