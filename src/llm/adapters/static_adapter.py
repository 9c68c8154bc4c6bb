# src/llm/adapters/static_adapter.py — v1
"""Deterministic extraction client that replays recorded replies.

Replies are looked up by evidence id, then by source URL. A reply may be a
payload dict, a raw string (returned verbatim, so malformed output can be
replayed) or an exception instance (raised). A list of replies is consumed
one per call and the last one repeats.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from regtruth.llm.base_client import BaseExtractionClient
from regtruth.llm.models import ExtractionRequest, ExtractionResponse

logger = logging.getLogger(__name__)


class StaticExtractionClient(BaseExtractionClient):
    """Replay client for tests, fixtures and offline runs."""

    def __init__(self, replies: dict[str, Any] | None = None) -> None:
        self._replies: dict[str, list[Any]] = {}
        for key, reply in (replies or {}).items():
            self.set_reply(key, reply)
        self.calls: list[ExtractionRequest] = []

    @classmethod
    def from_file(cls, path: Path | str) -> StaticExtractionClient:
        """Load replies from a JSON object keyed by evidence id or URL."""
        with open(Path(path).expanduser(), encoding="utf-8") as f:
            return cls(json.load(f))

    def set_reply(self, key: str, reply: Any) -> None:
        self._replies[key] = list(reply) if isinstance(reply, list) else [reply]

    @property
    def provider_name(self) -> str:
        return "static"

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        self.calls.append(request)
        queue = self._replies.get(request.evidence_id) or self._replies.get(request.source_url)
        if not queue:
            content = json.dumps({"candidates": []})
        else:
            reply = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(reply, BaseException):
                raise reply
            content = reply if isinstance(reply, str) else json.dumps(reply)
        return ExtractionResponse(content=content, provider="static", model="replay")
