"""Multi-strategy OCR extraction.

Strategies run one after another, most structured model first.  Each
successful result competes with the current best (see ``is_better_result``);
the loop stops early once the best result is confident and has line items.
The winner is then enhanced: gaps are filled from the other successful
results, strings are cleaned, lines are re-scored with the expanded
keyword set and the confidence is recomputed.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from fleet_invoices.config import OCR_STRATEGY_TIMEOUT_SECONDS, clamp_confidence
from fleet_invoices.errors import AllStrategiesFailed
from fleet_invoices.models.invoice import UNCLASSIFIED, InvoiceData, OcrResult
from fleet_invoices.services.classifier import LineItemClassifier, RuleBasedLineItemClassifier
from fleet_invoices.services.document_analysis import DocumentAnalyzer
from fleet_invoices.services.ocr_extraction import apply_totals, interpret
from fleet_invoices.utils import clean_description, clean_invoice_number, clean_vehicle_id

logger = logging.getLogger(__name__)

ALL_STRATEGIES_FAILED = "All OCR analysis strategies failed"

EARLY_EXIT_CONFIDENCE = 85
CONFIDENCE_MARGIN = 5
# Confidences assigned to naively table-parsed line items.
PLACEHOLDER_LINE_CONFIDENCES = (60, 70)


# ── Data structures ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class OcrStrategy:
    name: str
    model_id: str


STRATEGIES: tuple[OcrStrategy, ...] = (
    OcrStrategy("Prebuilt Invoice", "prebuilt-invoice"),
    OcrStrategy("General Document", "prebuilt-document"),
    OcrStrategy("Read Model", "prebuilt-read"),
)


# ── Result comparison ────────────────────────────────────────────────────

def completeness_score(data: InvoiceData | None) -> int:
    """0-100 score of how many header fields and line items are populated."""
    if data is None:
        return 0
    score = 0
    if data.invoice_number:
        score += 20
    if data.invoice_date is not None:
        score += 15
    if data.total_cost is not None and data.total_cost > 0:
        score += 25
    if data.vehicle_id:
        score += 10
    if data.line_items:
        score += 20
    if data.odometer is not None:
        score += 10
    return score


def has_structured_line_items(data: InvoiceData | None) -> bool:
    """True when most scored line items did not come from naive table parsing."""
    if data is None or not data.line_items:
        return False
    scores = [li.extraction_confidence for li in data.line_items if li.extraction_confidence > 0]
    if not scores:
        return False
    non_default = sum(1 for s in scores if s not in PLACEHOLDER_LINE_CONFIDENCES)
    return non_default > len(scores) / 2


def is_better_result(new: OcrResult, current: OcrResult) -> bool:
    new_structured = has_structured_line_items(new.invoice_data)
    current_structured = has_structured_line_items(current.invoice_data)
    if new_structured != current_structured:
        return new_structured

    new_has_items = bool(new.invoice_data and new.invoice_data.line_items)
    current_has_items = bool(current.invoice_data and current.invoice_data.line_items)
    if new_has_items != current_has_items:
        return new_has_items

    if new.overall_confidence > current.overall_confidence + CONFIDENCE_MARGIN:
        return True

    return completeness_score(new.invoice_data) > completeness_score(current.invoice_data)


def merge_invoice_data(primary: InvoiceData, secondary: InvoiceData) -> None:
    """Fill empty fields of *primary* from *secondary*; never overwrite."""
    if not primary.vehicle_id and secondary.vehicle_id:
        primary.vehicle_id = secondary.vehicle_id
    if not primary.invoice_number and secondary.invoice_number:
        primary.invoice_number = secondary.invoice_number
    if primary.invoice_date is None and secondary.invoice_date is not None:
        primary.invoice_date = secondary.invoice_date
    if primary.total_cost is None and secondary.total_cost is not None:
        primary.total_cost = secondary.total_cost
    if primary.odometer is None and secondary.odometer is not None:
        primary.odometer = secondary.odometer
    if not primary.line_items and secondary.line_items:
        primary.line_items = [li.model_copy() for li in secondary.line_items]


# ── Runner ───────────────────────────────────────────────────────────────

class OcrStrategyRunner:
    def __init__(
        self,
        analyzer: DocumentAnalyzer,
        classifier: LineItemClassifier | None = None,
        reclassifier: LineItemClassifier | None = None,
        strategies: tuple[OcrStrategy, ...] = STRATEGIES,
        strategy_timeout: float | None = OCR_STRATEGY_TIMEOUT_SECONDS,
        deadline: float | None = None,
    ) -> None:
        self.analyzer = analyzer
        self.classifier = classifier or RuleBasedLineItemClassifier()
        self.reclassifier = reclassifier or RuleBasedLineItemClassifier.expanded()
        self.strategies = strategies
        self.strategy_timeout = strategy_timeout
        self.deadline = deadline

    async def _run_strategy(self, document: bytes, strategy: OcrStrategy) -> OcrResult:
        call = self.analyzer.analyze(document, strategy.model_id)
        if self.strategy_timeout:
            analysis = await asyncio.wait_for(call, timeout=self.strategy_timeout)
        else:
            analysis = await call
        return interpret(analysis, self.classifier, strategy.name, strategy.model_id)

    async def run(self, document: bytes) -> OcrResult:
        """Analyze *document* with every strategy and return the enhanced best result.

        Never raises for analysis problems: failure is reported as
        ``success=False`` with ``ALL_STRATEGIES_FAILED``.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        best: OcrResult | None = None
        successes: list[OcrResult] = []
        failed: list[str] = []

        for strategy in self.strategies:
            if self.deadline is not None and loop.time() - started > self.deadline:
                logger.warning("OCR deadline reached, skipping %s and later strategies", strategy.name)
                failed.append(f"{strategy.name}: skipped after deadline")
                break

            logger.info("Trying OCR strategy: %s", strategy.name)
            try:
                result = await self._run_strategy(document, strategy)
            except asyncio.TimeoutError:
                logger.warning("Strategy %s timed out after %ss", strategy.name, self.strategy_timeout)
                failed.append(f"{strategy.name}: timed out")
                continue
            except Exception as e:
                logger.warning("Strategy %s failed: %s", strategy.name, e, exc_info=True)
                failed.append(f"{strategy.name}: {e}")
                continue

            successes.append(result)
            logger.info("Strategy %s completed with confidence %.1f", strategy.name, result.overall_confidence)
            if best is None or is_better_result(result, best):
                best = result

            if best.overall_confidence >= EARLY_EXIT_CONFIDENCE and best.invoice_data and best.invoice_data.line_items:
                logger.info("High confidence result from %s, stopping further attempts", best.strategy)
                break

        if best is None:
            logger.error(ALL_STRATEGIES_FAILED)
            return OcrResult(success=False, error_message=ALL_STRATEGIES_FAILED, failed_strategies=failed)

        enhanced = self._enhance(best, successes)
        enhanced.failed_strategies = failed
        logger.info(
            "Enhanced OCR completed: best strategy %s, confidence %.1f",
            enhanced.strategy, enhanced.overall_confidence,
        )
        return enhanced

    async def run_or_raise(self, document: bytes) -> OcrResult:
        result = await self.run(document)
        if not result.success:
            raise AllStrategiesFailed(result.error_message or ALL_STRATEGIES_FAILED)
        return result

    def _enhance(self, best: OcrResult, successes: list[OcrResult]) -> OcrResult:
        data = (best.invoice_data or InvoiceData()).model_copy(deep=True)
        for other in successes:
            if other is not best and other.invoice_data is not None:
                merge_invoice_data(data, other.invoice_data)

        if data.vehicle_id:
            data.vehicle_id = clean_vehicle_id(data.vehicle_id) or None
        if data.invoice_number:
            data.invoice_number = clean_invoice_number(data.invoice_number) or None
        for item in data.line_items:
            item.description = clean_description(item.description)
            rescored = self.reclassifier.classify(item.description, item.extracted_unit_cost, item.quantity)
            if rescored.classification != UNCLASSIFIED:
                item.category = rescored.classification
                item.classified_category = rescored.classification
                item.classification_confidence = rescored.confidence
        apply_totals(data)

        base = max(r.overall_confidence for r in successes)
        bonus = completeness_score(data) / 100 * 10
        agreement = 5 if len(successes) > 1 else 0
        return OcrResult(
            success=True,
            strategy=best.strategy,
            invoice_data=data,
            overall_confidence=clamp_confidence(min(100, base + bonus + agreement)),
            raw_payload=best.raw_payload,
        )
