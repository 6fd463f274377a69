"""Exception hierarchy and typed outcomes for the invoice pipeline.

Most of these never escape a service boundary: the runner, the AI
processor and the orchestrator catch them and fold them into result
models carrying ``success`` / ``error_message`` / processing notes.
"""
from __future__ import annotations

from enum import Enum


class FleetInvoiceError(Exception):
    """Base class for all pipeline errors."""


# ---------------------------------------------------------------------------
# Extraction stage
# ---------------------------------------------------------------------------


class ExtractionFailure(FleetInvoiceError):
    """A single document-analysis strategy failed; the next one is tried."""

    def __init__(self, message: str, strategy: str = "") -> None:
        super().__init__(message)
        self.strategy = strategy


class AllStrategiesFailed(FleetInvoiceError):
    """Every document-analysis strategy failed."""


# ---------------------------------------------------------------------------
# Chat completion
# ---------------------------------------------------------------------------


class ChatOutcome(str, Enum):
    RATE_LIMITED = "RateLimited"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    QUOTA_EXCEEDED = "QuotaExceeded"
    AUTH_FAILED = "AuthFailed"
    GENERIC_FAILURE = "GenericFailure"


_STATUS_OUTCOMES: dict[int, ChatOutcome] = {
    429: ChatOutcome.RATE_LIMITED,
    413: ChatOutcome.PAYLOAD_TOO_LARGE,
    402: ChatOutcome.QUOTA_EXCEEDED,
    401: ChatOutcome.AUTH_FAILED,
}


def outcome_for_status(status_code: int | None) -> ChatOutcome:
    """Map an HTTP-style status code to a typed chat-completion outcome."""
    if status_code is None:
        return ChatOutcome.GENERIC_FAILURE
    return _STATUS_OUTCOMES.get(status_code, ChatOutcome.GENERIC_FAILURE)


class ChatCompletionError(FleetInvoiceError):
    """The chat-completion capability returned an error signal."""

    outcome = ChatOutcome.GENERIC_FAILURE

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitExceeded(ChatCompletionError):
    outcome = ChatOutcome.RATE_LIMITED


class PayloadTooLarge(ChatCompletionError):
    outcome = ChatOutcome.PAYLOAD_TOO_LARGE


class QuotaExceeded(ChatCompletionError):
    outcome = ChatOutcome.QUOTA_EXCEEDED


class AuthFailed(ChatCompletionError):
    outcome = ChatOutcome.AUTH_FAILED


_OUTCOME_ERRORS: dict[ChatOutcome, type[ChatCompletionError]] = {
    ChatOutcome.RATE_LIMITED: RateLimitExceeded,
    ChatOutcome.PAYLOAD_TOO_LARGE: PayloadTooLarge,
    ChatOutcome.QUOTA_EXCEEDED: QuotaExceeded,
    ChatOutcome.AUTH_FAILED: AuthFailed,
    ChatOutcome.GENERIC_FAILURE: ChatCompletionError,
}

_OUTCOME_MESSAGES: dict[ChatOutcome, str] = {
    ChatOutcome.RATE_LIMITED: "Rate limit exceeded: the chat-completion service is throttling requests.",
    ChatOutcome.PAYLOAD_TOO_LARGE: "Request payload too large: the invoice text exceeds the model's request limit.",
    ChatOutcome.QUOTA_EXCEEDED: "Chat-completion quota exceeded: usage limit reached.",
    ChatOutcome.AUTH_FAILED: "Authentication failed: invalid API key or insufficient permissions.",
}


def error_for_status(status_code: int | None, detail: str = "") -> ChatCompletionError:
    """Build the typed exception for a chat-completion status code.

    Examples: 429 → RateLimitExceeded, 401 → AuthFailed,
    500 → ChatCompletionError("AI API Error: 500. <detail>").
    """
    outcome = outcome_for_status(status_code)
    message = _OUTCOME_MESSAGES.get(outcome) or f"AI API Error: {status_code}. {detail}".strip()
    return _OUTCOME_ERRORS[outcome](message, status_code=status_code)


# ---------------------------------------------------------------------------
# AI processing
# ---------------------------------------------------------------------------


class AIProcessingFailure(FleetInvoiceError):
    """The AI reprocessing path failed; recoverable via the fallback."""


class JsonParseFailure(AIProcessingFailure):
    """The AI response could not be parsed as JSON."""

    def __init__(self, message: str, raw_response: str = "", cleaned_response: str = "") -> None:
        super().__init__(message)
        self.raw_response = raw_response
        self.cleaned_response = cleaned_response
