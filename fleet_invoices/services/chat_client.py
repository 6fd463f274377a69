"""Chat-completion client used by the AI reprocessing path.

Wraps the synchronous Anthropic client in ``run_in_executor`` and converts
API status errors into the typed ``ChatCompletionError`` family so callers
can tell rate limiting apart from other failures.
"""
from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Protocol

import anthropic

from fleet_invoices.config import (
    ANTHROPIC_API_KEY,
    LLM_MAX_TOKENS,
    LLM_MODEL_TEXT,
    LLM_TEMPERATURE,
    LLM_TOKEN_WARNING_THRESHOLD,
)
from fleet_invoices.errors import ChatCompletionError, error_for_status

logger = logging.getLogger(__name__)


class ChatCompletionClient(Protocol):
    async def complete(self, system_prompt: str, user_text: str) -> str: ...


def estimate_tokens(text: str) -> int:
    """Rough token count (4 characters per token)."""
    return len(text) // 4


class AnthropicChatClient:
    def __init__(
        self,
        api_key: str = ANTHROPIC_API_KEY,
        model: str = LLM_MODEL_TEXT,
        max_tokens: int = LLM_MAX_TOKENS,
        temperature: float = LLM_TEMPERATURE,
        client: anthropic.Anthropic | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or anthropic.Anthropic(api_key=api_key)

    def _complete_sync(self, system_prompt: str, user_text: str) -> str:
        response = self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_text}],
        )
        return "".join(block.text for block in response.content if getattr(block, "type", "") == "text")

    async def complete(self, system_prompt: str, user_text: str) -> str:
        tokens = estimate_tokens(system_prompt) + estimate_tokens(user_text)
        logger.info("Chat completion request: ~%d tokens (%d chars)", tokens, len(system_prompt) + len(user_text))
        if tokens > LLM_TOKEN_WARNING_THRESHOLD:
            logger.warning(
                "Chat completion request is large (~%d tokens, threshold %d)",
                tokens, LLM_TOKEN_WARNING_THRESHOLD,
            )

        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, partial(self._complete_sync, system_prompt, user_text))
        except anthropic.APIStatusError as e:
            logger.warning("Chat completion failed with status %d", e.status_code)
            raise error_for_status(e.status_code, str(e)) from e
        except anthropic.APIError as e:
            logger.warning("Chat completion failed: %s", e)
            raise ChatCompletionError(f"AI API Error: {e}") from e

        logger.info("Chat completion response: %d chars from %s", len(text), self.model)
        return text
