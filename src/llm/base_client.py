# src/llm/base_client.py — v1
"""Abstract extraction client interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from regtruth.llm.models import ExtractionRequest, ExtractionResponse


class BaseExtractionClient(ABC):
    """Unified interface for extraction-service providers."""

    @abstractmethod
    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        """Return the service's raw reply for one evidence text."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (anthropic, static)."""
