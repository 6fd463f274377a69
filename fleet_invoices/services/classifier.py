"""Rule-based line-item classification.

Each invoice line is scored against keyword sets plus a handful of
description and cost heuristics and labelled Part, Labor, Tax/Fee or
Unclassified.  Tax/Fee keywords win outright; otherwise the higher of the
part and labor scores decides, with a fixed tie-break ladder when they are
equal.
"""
from __future__ import annotations

import logging
import re
from typing import Protocol

from fleet_invoices.models.invoice import (
    LABOR,
    PART,
    TAX_FEE,
    UNCLASSIFIED,
    ClassificationResult,
)
from fleet_invoices.services.keywords import (
    EXPANDED_LABOR_KEYWORDS,
    EXPANDED_PART_KEYWORDS,
    LABOR_KEYWORDS,
    PART_KEYWORDS,
    SERVICE_ACTIONS,
    TAX_FEE_KEYWORDS,
    TIME_UNITS,
)

logger = logging.getLogger(__name__)

_TOKEN_SPLIT = re.compile(r"[\s\-_/\\,.()\[\]]+")
_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")


class LineItemClassifier(Protocol):
    version: str
    classifier_type: str

    def classify(
        self,
        description: str | None,
        unit_cost: float | None = None,
        quantity: float | None = None,
    ) -> ClassificationResult: ...


# ---------------------------------------------------------------------------
# Description heuristics
# ---------------------------------------------------------------------------


def tokenize(description: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT.split(description.lower()) if t]


def contains_service_action(description: str) -> bool:
    return any(word in SERVICE_ACTIONS for word in description.lower().split())


def contains_time_pattern(description: str) -> bool:
    """True for phrases like ``2.5 hr`` or ``1 hour``."""
    words = description.lower().split()
    for i, word in enumerate(words):
        if word in TIME_UNITS and i > 0:
            prev = words[i - 1]
            if _NUMBER.match(prev) or "." in prev or "," in prev:
                return True
    return False


def contains_part_number(description: str) -> bool:
    """True when a word looks like a part number (``AC-PF52``, ``PF454``)."""
    for word in description.split():
        if "-" in word and len(word) > 4 and word[0].isalnum():
            return True
        if word[0].isalpha() and any(c.isdigit() for c in word) and len(word) > 3:
            return True
    return False


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class RuleBasedLineItemClassifier:
    """Keyword-scoring classifier.

    The keyword sets are injectable so the OCR enhancement pass can run the
    same rules over a wider vocabulary (see ``expanded()``).
    """

    version = "v1.0"
    classifier_type = "Rule-based"

    def __init__(
        self,
        part_keywords: frozenset[str] = PART_KEYWORDS,
        labor_keywords: frozenset[str] = LABOR_KEYWORDS,
        tax_fee_keywords: frozenset[str] = TAX_FEE_KEYWORDS,
    ) -> None:
        self.part_keywords = part_keywords
        self.labor_keywords = labor_keywords
        self.tax_fee_keywords = tax_fee_keywords

    @classmethod
    def expanded(cls) -> RuleBasedLineItemClassifier:
        return cls(EXPANDED_PART_KEYWORDS, EXPANDED_LABOR_KEYWORDS, TAX_FEE_KEYWORDS)

    def _result(self, classification: str, confidence: float, matched: list[str] | None = None) -> ClassificationResult:
        return ClassificationResult(
            classification=classification,
            confidence=confidence,
            matched_keywords=set(matched or []),
            method=self.classifier_type,
            version=self.version,
        )

    def classify(
        self,
        description: str | None,
        unit_cost: float | None = None,
        quantity: float | None = None,
    ) -> ClassificationResult:
        if not description or not description.strip():
            return self._result(UNCLASSIFIED, 0)

        result = self._classify(description, unit_cost, quantity)
        logger.debug(
            "Classified %r as %s (%.0f%%)",
            description, result.classification, result.confidence,
        )
        return result

    def _classify(
        self,
        description: str,
        unit_cost: float | None,
        quantity: float | None,
    ) -> ClassificationResult:
        tokens = tokenize(description)

        tax_matches = [t for t in tokens if t in self.tax_fee_keywords]
        if tax_matches:
            return self._result(TAX_FEE, min(95, 70 + 10 * len(tax_matches)), tax_matches)

        part_matches = [t for t in tokens if t in self.part_keywords]
        labor_matches = [t for t in tokens if t in self.labor_keywords]
        part_score = 15 * len(part_matches)
        labor_score = 15 * len(labor_matches)

        if unit_cost is not None and quantity is not None and unit_cost > 50 and quantity <= 2:
            part_score += 10
        has_service_action = contains_service_action(description)
        if has_service_action:
            labor_score += 25
        if contains_time_pattern(description):
            labor_score += 20
        if contains_part_number(description):
            part_score += 15

        # Floor is 60 when the losing side scored nothing ("Oil Filter" -> Part@60)
        # and 50 when it scored ("Brake Pad Replacement" -> Part@50).
        if part_score > labor_score:
            floor = 60 if labor_score == 0 else 50
            return self._result(PART, min(95, max(floor, part_score + 10)), part_matches)
        if labor_score > part_score:
            floor = 60 if part_score == 0 else 50
            return self._result(LABOR, min(95, max(floor, labor_score + 10)), labor_matches)

        # Tie, including no signal at all.
        if has_service_action:
            return self._result(LABOR, 60, labor_matches)
        if part_matches and not labor_matches:
            return self._result(PART, 60, part_matches)
        if unit_cost is not None:
            if unit_cost < 20:
                return self._result(LABOR, 40)
            if unit_cost > 100:
                return self._result(PART, 45)
        return self._result(UNCLASSIFIED, 20)
