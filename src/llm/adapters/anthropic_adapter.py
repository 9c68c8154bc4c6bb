# src/llm/adapters/anthropic_adapter.py — v1
"""Anthropic Claude adapter implementing BaseExtractionClient.

Uses the official anthropic SDK with a forced tool call so the reply is
JSON matching ExtractionPayload. The reply is still treated as untrusted
by the extractor; schema conformance here is a convenience, not a check.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from regtruth.llm.base_client import BaseExtractionClient
from regtruth.llm.models import ExtractionPayload, ExtractionRequest, ExtractionResponse

logger = logging.getLogger(__name__)

_TOOL_NAME = "report_assertions"

_SYSTEM_PROMPT = """You extract factual regulatory assertions from a source document.
For each assertion return the exact quote copied verbatim from the document,
its start_offset and end_offset in UTF-16 code units (end exclusive),
the value_type, the normalised value, your confidence in [0, 1],
the topic_key it belongs to, and topic_keys of any other topics it cites.
Only report assertions for the topics listed. Never paraphrase quotes."""


class AnthropicAdapter(BaseExtractionClient):
    """Adapter for Anthropic Claude models."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key: str | None = None,
        max_tokens: int = 4096,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens
        self.__client = None  # Lazy initialization

    @property
    def _client(self):
        """Lazy-init Anthropic client (only on first API call)."""
        if self.__client is None:
            import anthropic

            self.__client = anthropic.AsyncAnthropic(api_key=self._api_key or None)
        return self.__client

    @property
    def provider_name(self) -> str:
        return "anthropic"

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        """Single Messages API call with a forced structured-output tool."""
        kwargs = self._build_kwargs(request)

        start = time.monotonic()
        response = await self._client.messages.create(**kwargs)
        latency_ms = int((time.monotonic() - start) * 1000)

        return ExtractionResponse(
            content=self._extract_content(response),
            provider="anthropic",
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            latency_ms=latency_ms,
            raw_response=response,
        )

    # --- Internal helpers ---

    def _build_kwargs(self, request: ExtractionRequest) -> dict[str, Any]:
        topics = "\n".join(
            f"- {t.topic_key}: {t.description} (value types: {', '.join(t.value_types) or 'any'})"
            for t in request.topics
        )
        user = (
            f"Topics:\n{topics}\n\n"
            f"Offsets are {request.index_system} code units.\n\n"
            f"<document>\n{request.text}\n</document>"
        )
        return {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": 0.0,
            "system": _SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": user}],
            "tools": [
                {
                    "name": _TOOL_NAME,
                    "description": "Report extracted assertions",
                    "input_schema": ExtractionPayload.model_json_schema(),
                }
            ],
            "tool_choice": {"type": "tool", "name": _TOOL_NAME},
        }

    @staticmethod
    def _extract_content(response: Any) -> str:
        """Return the tool input as JSON, falling back to any text block."""
        for block in response.content:
            if getattr(block, "type", None) == "tool_use":
                return json.dumps(block.input)
        for block in response.content:
            if getattr(block, "type", None) == "text":
                return block.text
        return ""
