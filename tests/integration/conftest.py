# tests/integration/conftest.py — v1
"""Shared fixtures for integration tests.

Every integration test runs the full pipeline through RegTruthFacade on
the in-memory store, with the extraction service replayed by
StaticExtractionClient (replies keyed by source URL).
"""

from __future__ import annotations

from typing import Any

import pytest

from regtruth.api.facade import RegTruthFacade
from regtruth.core.models import SourceMetadata
from regtruth.llm.adapters.static_adapter import StaticExtractionClient
from regtruth.storage.memory_store import MemoryStore


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def client() -> StaticExtractionClient:
    return StaticExtractionClient()


@pytest.fixture
def facade(settings, client) -> RegTruthFacade:
    return RegTruthFacade.create(settings, store=MemoryStore(), client=client)


@pytest.fixture
def ingest(facade, client):
    """Register the replayed extraction for a document, then ingest it.

    Usage: await ingest(url, text, candidates, document_kind="statute")
    """

    async def _ingest(
        url: str,
        text: str,
        candidates: list[dict[str, Any]] | Any,
        document_kind: str | None = None,
        publisher: str | None = None,
    ):
        client.set_reply(url, {"candidates": candidates} if isinstance(candidates, list) else candidates)
        return await facade.ingest(
            url,
            text.encode("utf-8"),
            content_type_hint="text/plain",
            metadata=SourceMetadata(document_kind=document_kind, publisher=publisher),
        )

    return _ingest
