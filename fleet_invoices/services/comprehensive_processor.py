"""Comprehensive processing orchestrator.

Runs an explicit state machine over the OCR result:

    ATTEMPT_AI ── success ──────────────► DONE
        │  rate limited / other failure
        ▼
    FALLBACK ──── success ──────────────► DONE
        │  failure
        ▼
    EMERGENCY ─── success ──────────────► DONE
        │  failure
        ▼
    ALL_FAILED

An unexpected exception in ATTEMPT_AI or FALLBACK jumps straight to
EMERGENCY, which re-runs the rule-based fallback once more.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

from fleet_invoices.config import AI_TIMEOUT_SECONDS
from fleet_invoices.models.invoice import (
    METHOD_AI_ERROR,
    METHOD_ALL_FAILED,
    OTHER,
    ComprehensiveInvoiceProcessingResult,
    InvoiceData,
    ProcessedLineItem,
)
from fleet_invoices.services.ai_processor import AIInvoiceProcessor
from fleet_invoices.services.fallback_processor import FallbackInvoiceProcessor

logger = logging.getLogger(__name__)

BACKFILL_LINE_CONFIDENCE = 0.70
DEFAULT_DESCRIPTION = "Automotive Service"


class ProcessingState(str, Enum):
    ATTEMPT_AI = "AttemptAI"
    FALLBACK = "Fallback"
    EMERGENCY = "Emergency"
    DONE = "Done"
    ALL_FAILED = "AllFailed"


class AIOutcome(str, Enum):
    SUCCESS = "Success"
    RATE_LIMITED = "RateLimited"
    OTHER_FAILURE = "OtherFailure"


def _join_errors(*messages: str | None) -> str:
    return "; ".join(m for m in messages if m)


def ai_outcome(result: ComprehensiveInvoiceProcessingResult) -> AIOutcome:
    if result.success:
        return AIOutcome.SUCCESS
    if result.rate_limit_encountered:
        return AIOutcome.RATE_LIMITED
    return AIOutcome.OTHER_FAILURE


def backfill_from_ocr(result: ComprehensiveInvoiceProcessingResult, ocr: InvoiceData) -> None:
    """Fill fields the AI left empty from the OCR data; never overwrite."""
    notes = result.processing_notes
    if not result.vehicle_id and ocr.vehicle_id:
        result.vehicle_id = ocr.vehicle_id
        notes.append("Vehicle ID filled from OCR data")
    if not result.invoice_number and ocr.invoice_number:
        result.invoice_number = ocr.invoice_number
        notes.append("Invoice Number filled from OCR data")
    if result.invoice_date is None and ocr.invoice_date is not None:
        result.invoice_date = ocr.invoice_date
        notes.append("Invoice Date filled from OCR data")
    if result.odometer is None and ocr.odometer is not None:
        result.odometer = ocr.odometer
        notes.append("Odometer filled from OCR data")
    if result.total_cost is None and ocr.total_cost is not None:
        result.total_cost = ocr.total_cost
        notes.append("Total Cost filled from OCR data")

    if not result.description:
        result.description = DEFAULT_DESCRIPTION
        notes.append("Default description applied")

    # Trailing OCR lines the model dropped.
    missing = ocr.line_items[len(result.line_items):]
    if missing:
        notes.append(f"Filled {len(missing)} missing line items from OCR data")
        for line in missing:
            result.line_items.append(ProcessedLineItem(
                line_number=line.line_number,
                description=line.description,
                classification=OTHER,
                unit_cost=line.unit_cost,
                quantity=line.quantity,
                total_cost=line.total_cost,
                part_number=line.part_number,
                confidence=BACKFILL_LINE_CONFIDENCE,
            ))


class ComprehensiveInvoiceProcessor:
    def __init__(
        self,
        ai_processor: AIInvoiceProcessor,
        fallback: FallbackInvoiceProcessor | None = None,
        ai_timeout: float | None = AI_TIMEOUT_SECONDS,
    ) -> None:
        self.ai_processor = ai_processor
        self.fallback = fallback or FallbackInvoiceProcessor()
        self.ai_timeout = ai_timeout

    async def _attempt_ai(self, raw_payload: dict[str, Any]) -> ComprehensiveInvoiceProcessingResult:
        call = self.ai_processor.process(raw_payload)
        if not self.ai_timeout:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.ai_timeout)
        except asyncio.TimeoutError:
            logger.warning("AI processing timed out after %ss", self.ai_timeout)
            return ComprehensiveInvoiceProcessingResult(
                error_message=f"AI processing timed out after {self.ai_timeout}s",
                processing_method=METHOD_AI_ERROR,
            )

    async def process(
        self,
        raw_payload: dict[str, Any],
        invoice_data: InvoiceData,
    ) -> ComprehensiveInvoiceProcessingResult:
        """Produce the final result for one invoice.

        Never raises; total failure is reported with the
        ``AllSystemsFailed`` processing method.
        """
        logger.info("Starting comprehensive invoice processing")
        state = ProcessingState.ATTEMPT_AI
        ai_result: ComprehensiveInvoiceProcessingResult | None = None
        result: ComprehensiveInvoiceProcessingResult | None = None
        primary_error = ""
        fallback_error = ""

        while state not in (ProcessingState.DONE, ProcessingState.ALL_FAILED):
            if state is ProcessingState.ATTEMPT_AI:
                try:
                    ai_result = await self._attempt_ai(raw_payload)
                except Exception as e:
                    logger.exception("Unexpected error during AI processing")
                    primary_error = str(e)
                    state = ProcessingState.EMERGENCY
                    continue

                if ai_outcome(ai_result) is AIOutcome.SUCCESS:
                    logger.info("AI processing succeeded with confidence %.1f", ai_result.overall_confidence)
                    backfill_from_ocr(ai_result, invoice_data)
                    ai_result.processing_notes.append("Primary processing completed using AI")
                    result = ai_result
                    state = ProcessingState.DONE
                else:
                    state = ProcessingState.FALLBACK

            elif state is ProcessingState.FALLBACK:
                outcome = ai_outcome(ai_result)
                if outcome is AIOutcome.RATE_LIMITED:
                    logger.warning("AI rate limit encountered, switching to fallback processing")
                else:
                    logger.error("AI processing failed: %s", ai_result.error_message)

                try:
                    fallback_result = self.fallback.process(invoice_data)
                except Exception as e:
                    logger.exception("Unexpected error during fallback processing")
                    primary_error = _join_errors(ai_result.error_message, str(e))
                    state = ProcessingState.EMERGENCY
                    continue

                if not fallback_result.success:
                    primary_error = _join_errors(ai_result.error_message, fallback_result.error_message)
                    state = ProcessingState.EMERGENCY
                    continue

                if outcome is AIOutcome.RATE_LIMITED:
                    fallback_result.rate_limit_encountered = True
                    fallback_result.processing_notes.append(
                        "Rate limit encountered - processed using intelligent fallback system"
                    )
                else:
                    fallback_result.processing_notes.append("AI processing failed - processed using fallback system")
                fallback_result.processing_notes.append(f"Original AI error: {ai_result.error_message}")
                result = fallback_result
                state = ProcessingState.DONE

            elif state is ProcessingState.EMERGENCY:
                logger.warning("Running emergency fallback processing")
                try:
                    emergency = self.fallback.process(invoice_data)
                except Exception as e:
                    logger.exception("Emergency fallback also failed")
                    fallback_error = str(e)
                    state = ProcessingState.ALL_FAILED
                    continue

                if not emergency.success:
                    logger.error("Emergency fallback also failed: %s", emergency.error_message)
                    fallback_error = emergency.error_message or ""
                    state = ProcessingState.ALL_FAILED
                    continue

                emergency.processing_notes.append("Emergency fallback processing after system error")
                emergency.processing_notes.append(f"Original error: {primary_error}")
                result = emergency
                state = ProcessingState.DONE

        if state is ProcessingState.ALL_FAILED:
            return ComprehensiveInvoiceProcessingResult(
                success=False,
                error_message=(
                    "Both primary and fallback processing failed. "
                    f"Primary: {primary_error}, Fallback: {fallback_error}"
                ),
                processing_method=METHOD_ALL_FAILED,
            )

        logger.info(
            "Comprehensive processing finished via %s (%d line items)",
            result.processing_method, len(result.line_items),
        )
        return result
