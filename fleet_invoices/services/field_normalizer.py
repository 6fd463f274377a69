"""Map free-form invoice field labels onto the canonical header schema.

Resolution order (first hit wins):

1. exact case-insensitive dictionary lookup (95)
2. lookup after dropping punctuation (85)
3. fuzzy Levenshtein match at >= 0.70 similarity (50-80)
4. substring rules over label + caller-supplied context (55-60)
5. otherwise the label is returned unchanged (100, not normalized)
"""
from __future__ import annotations

import logging
from typing import Protocol

from rapidfuzz.distance import Levenshtein

from fleet_invoices.models.invoice import NormalizationResult
from fleet_invoices.services.keywords import (
    INVOICE_DATE,
    INVOICE_NUMBER,
    LABEL_MAPPINGS,
    ODOMETER,
    VEHICLE_ID,
)

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.70


class FieldNormalizer(Protocol):
    version: str
    normalizer_type: str

    def normalize(self, label: str | None, context: str = "") -> NormalizationResult: ...


def _alphanumeric(label: str) -> str:
    return "".join(c for c in label if c.isalnum() or c == " ").strip()


def _infer_from_context(label: str, context: str) -> tuple[str, float] | None:
    context = context.lower()
    label = label.lower()

    if any(k in context for k in ("invoice", "number", "ro")) and any(k in label for k in ("#", "no", "num")):
        return INVOICE_NUMBER, 60
    if any(k in context for k in ("vehicle", "unit", "fleet")) and any(k in label for k in ("#", "id", "reg")):
        return VEHICLE_ID, 60
    if any(k in context for k in ("mile", "km", "distance")) and any(k in label for k in ("reading", "meter", "odo")):
        return ODOMETER, 60
    if "date" in context or "date" in label:
        return INVOICE_DATE, 55
    return None


class DictionaryFieldNormalizer:
    version = "v1.0"
    normalizer_type = "Dictionary-based"

    def _result(self, normalized: str, original: str, confidence: float, was_normalized: bool) -> NormalizationResult:
        return NormalizationResult(
            normalized_label=normalized,
            original_label=original,
            confidence=confidence,
            was_normalized=was_normalized,
            method=self.normalizer_type,
            version=self.version,
        )

    def normalize(self, label: str | None, context: str = "") -> NormalizationResult:
        if not label or not label.strip():
            return self._result(label or "", label or "", 0, False)

        result = self._normalize(label, context or "")
        if result.was_normalized:
            logger.debug(
                "Normalized %r to %r (%.0f%%)",
                label, result.normalized_label, result.confidence,
            )
        return result

    def _normalize(self, label: str, context: str) -> NormalizationResult:
        clean = label.strip()

        direct = LABEL_MAPPINGS.get(clean.lower())
        if direct is not None:
            return self._result(direct, label, 95, direct.lower() != label.lower())

        stripped = LABEL_MAPPINGS.get(_alphanumeric(clean).lower())
        if stripped is not None:
            return self._result(stripped, label, 85, True)

        fuzzy = self._fuzzy_match(clean)
        if fuzzy is not None:
            return self._result(fuzzy[0], label, fuzzy[1], True)

        if context.strip():
            inferred = _infer_from_context(clean, context)
            if inferred is not None:
                return self._result(inferred[0], label, inferred[1], True)

        return self._result(label, label, 100, False)

    @staticmethod
    def _fuzzy_match(label: str) -> tuple[str, float] | None:
        lowered = label.lower()
        best_target = ""
        best_score = 0.0
        for key, target in LABEL_MAPPINGS.items():
            score = Levenshtein.normalized_similarity(lowered, key)
            if score > best_score and score >= FUZZY_THRESHOLD:
                best_score = score
                best_target = target
        if not best_target:
            return None
        return best_target, min(80.0, 50 + (best_score - FUZZY_THRESHOLD) * 100)
