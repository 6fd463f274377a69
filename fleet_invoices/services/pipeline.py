"""End-to-end processing of one uploaded invoice document.

archive → OCR strategies → validation → AI / fallback orchestration.
Every stage failure is folded into an ``InvoiceProcessingResponse``;
``errors`` block persistence, ``warnings`` do not.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fleet_invoices.config import DOCUMENT_ANALYSIS_ENDPOINT
from fleet_invoices.errors import AllStrategiesFailed
from fleet_invoices.models.invoice import InvoiceData, InvoiceProcessingResponse
from fleet_invoices.services.ai_processor import AIInvoiceProcessor
from fleet_invoices.services.chat_client import AnthropicChatClient
from fleet_invoices.services.classifier import RuleBasedLineItemClassifier
from fleet_invoices.services.comprehensive_processor import ComprehensiveInvoiceProcessor
from fleet_invoices.services.document_analysis import AzureDocumentAnalyzer, LocalPdfAnalyzer
from fleet_invoices.services.fallback_processor import FallbackInvoiceProcessor
from fleet_invoices.services.ocr_runner import OcrStrategyRunner
from fleet_invoices.services.validation import validate_invoice_data
from fleet_invoices.storage import archive_document

logger = logging.getLogger(__name__)

Archiver = Callable[[str, str, bytes], Awaitable[str]]


class InvoicePipeline:
    def __init__(
        self,
        runner: OcrStrategyRunner,
        orchestrator: ComprehensiveInvoiceProcessor,
        archive: Archiver = archive_document,
    ) -> None:
        self.runner = runner
        self.orchestrator = orchestrator
        self.archive = archive

    async def process(self, job_id: str, filename: str, document: bytes) -> InvoiceProcessingResponse:
        response = InvoiceProcessingResponse(job_id=job_id)
        logger.info("Job %s: processing %s (%d bytes)", job_id, filename, len(document))
        try:
            return await self._run(response, job_id, filename, document)
        except Exception as e:
            logger.exception("Job %s: unexpected error processing %s", job_id, filename)
            response.success = False
            response.message = "Unexpected error occurred"
            response.errors.append(f"Processing error: {e}")
            return response

    async def _run(
        self,
        response: InvoiceProcessingResponse,
        job_id: str,
        filename: str,
        document: bytes,
    ) -> InvoiceProcessingResponse:
        # ---- 1. Archive the original document ----
        try:
            response.document_url = await self.archive(job_id, filename, document)
        except Exception as e:
            logger.exception("Job %s: document archive failed", job_id)
            response.message = "File upload failed"
            response.errors.append(f"File upload failed: {e}")
            return response

        # ---- 2. OCR strategies ----
        try:
            ocr = await self.runner.run_or_raise(document)
        except AllStrategiesFailed as e:
            response.message = "OCR processing failed"
            response.errors.append(f"Document analysis error: {e}")
            return response

        for failure in ocr.failed_strategies:
            response.warnings.append(f"OCR strategy failed: {failure}")
        logger.info("Job %s: OCR completed via %s (%.1f%%)", job_id, ocr.strategy, ocr.overall_confidence)

        # ---- 3. Validate (fills default identifiers in place) ----
        invoice = ocr.invoice_data or InvoiceData()
        validation = validate_invoice_data(invoice)
        response.invoice = invoice
        response.warnings.extend(validation.warnings)
        if not validation.is_valid:
            response.message = "Data validation failed"
            response.errors.extend(validation.errors)
            return response

        # ---- 4. AI reprocessing with fallback ----
        result = await self.orchestrator.process(ocr.raw_payload, invoice)
        response.result = result
        if not result.success:
            response.message = "Invoice processing failed"
            response.errors.append(result.error_message or "Invoice processing failed")
            return response

        response.success = True
        response.message = "Invoice processed successfully"
        response.confidence = ocr.overall_confidence
        logger.info(
            "Job %s: processed via %s, %d warnings",
            job_id, result.processing_method, len(response.warnings),
        )
        return response


def build_default_pipeline() -> InvoicePipeline:
    """Wire the concrete analyzer, classifier and chat client from config."""
    if DOCUMENT_ANALYSIS_ENDPOINT:
        analyzer = AzureDocumentAnalyzer()
    else:
        logger.warning("Document analysis endpoint not configured -- using local PDF analyzer")
        analyzer = LocalPdfAnalyzer()

    classifier = RuleBasedLineItemClassifier()
    runner = OcrStrategyRunner(analyzer, classifier=classifier)
    orchestrator = ComprehensiveInvoiceProcessor(
        AIInvoiceProcessor(AnthropicChatClient()),
        FallbackInvoiceProcessor(classifier),
    )
    return InvoicePipeline(runner, orchestrator)
