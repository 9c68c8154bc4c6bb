# src/llm/client_factory.py — v1
"""Build the extraction client named by ``EXTRACTION_PROVIDER``.

Adapters are referenced by dotted path and imported on first use, so the
anthropic SDK is only loaded when that provider is selected.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Callable

from regtruth.config.settings import Settings
from regtruth.llm.base_client import BaseExtractionClient

logger = logging.getLogger(__name__)

_PROVIDER_REGISTRY: dict[str, str] = {
    "anthropic": "regtruth.llm.adapters.anthropic_adapter.AnthropicAdapter",
    "static": "regtruth.llm.adapters.static_adapter.StaticExtractionClient",
}


def _anthropic_kwargs(settings: Settings) -> dict[str, Any]:
    return {
        "model": settings.extraction_model,
        "api_key": settings.anthropic_api_key,
        "max_tokens": settings.extraction_max_tokens,
    }


# Providers whose constructor takes values from Settings.
_SETTINGS_BINDERS: dict[str, Callable[[Settings], dict[str, Any]]] = {
    "anthropic": _anthropic_kwargs,
}


class UnsupportedProviderError(ValueError):
    """No adapter is registered under the requested provider name."""


def create_extraction_client(
    provider: str,
    settings: Settings | None = None,
    **kwargs: Any,
) -> BaseExtractionClient:
    """Instantiate the adapter registered as ``provider``.

    Explicit ``kwargs`` win over values bound from ``settings``.

    Raises:
        UnsupportedProviderError: ``provider`` is not registered.
    """
    try:
        class_path = _PROVIDER_REGISTRY[provider]
    except KeyError:
        raise UnsupportedProviderError(
            f"Unsupported extraction provider: {provider!r}. "
            f"Available: {', '.join(sorted(_PROVIDER_REGISTRY))}"
        ) from None

    module_name, _, class_name = class_path.rpartition(".")
    adapter_cls = getattr(importlib.import_module(module_name), class_name)

    binder = _SETTINGS_BINDERS.get(provider)
    init_kwargs = {**binder(settings), **kwargs} if settings is not None and binder else dict(kwargs)

    logger.debug("Creating extraction client", extra={"data": {"provider": provider}})
    return adapter_cls(**init_kwargs)


def register_provider(name: str, class_path: str) -> None:
    """Make ``class_path`` (a BaseExtractionClient subclass) selectable as ``name``."""
    _PROVIDER_REGISTRY[name] = class_path
    logger.info("Registered extraction provider %s -> %s", name, class_path)
