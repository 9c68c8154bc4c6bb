# src/llm/retry.py — v1
"""Bounded retry with exponential backoff and per-attempt timeouts.

Each attempt runs under asyncio.wait_for, so a stalled call is cancelled
and surfaces as ExternalServiceTimeout instead of pinning a worker.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from regtruth.core.errors import ExternalServiceTimeout, RetryExhausted

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration for a specific error type."""

    max_retries: int
    base_delay_s: float
    backoff_factor: float = 2.0
    max_delay_s: float = 30.0
    jitter: bool = True


DEFAULT_RETRY_CONFIGS: dict[str, RetryConfig] = {
    "rate_limit": RetryConfig(max_retries=3, base_delay_s=2.0),
    "timeout": RetryConfig(max_retries=2, base_delay_s=1.0),
    "server_error": RetryConfig(max_retries=3, base_delay_s=1.0),
    "parse_error": RetryConfig(max_retries=2, base_delay_s=1.0, backoff_factor=1.0),
}


def build_retry_configs(base_delay_s: float, max_delay_s: float) -> dict[str, RetryConfig]:
    """Default error-type table rescaled to configured delays."""
    return {
        name: RetryConfig(
            max_retries=cfg.max_retries,
            base_delay_s=base_delay_s,
            backoff_factor=cfg.backoff_factor,
            max_delay_s=max_delay_s,
            jitter=cfg.jitter,
        )
        for name, cfg in DEFAULT_RETRY_CONFIGS.items()
    }


def classify_error(error: BaseException) -> str:
    """Classify an exception into a retry error type."""
    if isinstance(error, (ExternalServiceTimeout, asyncio.TimeoutError)):
        return "timeout"
    explicit = getattr(error, "retry_category", None)
    if isinstance(explicit, str):
        return explicit

    msg = str(error).lower()
    name = type(error).__name__.lower()

    if "429" in msg or "ratelimit" in name or "rate limit" in msg:
        return "rate_limit"
    if "timeout" in name or "timed out" in msg:
        return "timeout"
    if "connection" in name or any(c in msg for c in ("500", "502", "503", "504", "overloaded")):
        return "server_error"
    if "json" in msg or "parse" in msg or "decode" in msg:
        return "parse_error"
    return "unknown"


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Compute delay for a given attempt (0-based), capped at max_delay_s."""
    delay = min(config.base_delay_s * (config.backoff_factor ** attempt), config.max_delay_s)
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


async def with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    operation: str = "unknown",
    retry_configs: dict[str, RetryConfig] | None = None,
    timeout_s: float | None = None,
    max_attempts: int | None = None,
    **kwargs: Any,
) -> Any:
    """Execute an async function with bounded retries.

    Args:
        fn: Coroutine function to call.
        operation: Name used in logs and errors.
        retry_configs: Per-error-type policy; unknown types are not retried.
        timeout_s: Per-attempt timeout.
        max_attempts: Hard cap on total attempts across all error types.

    Raises:
        RetryExhausted: If the error is not retryable or retries are exhausted.
    """
    configs = retry_configs or DEFAULT_RETRY_CONFIGS
    attempts = 0
    per_type: dict[str, int] = {}

    while True:
        attempts += 1
        try:
            if timeout_s is None:
                return await fn(*args, **kwargs)
            try:
                return await asyncio.wait_for(fn(*args, **kwargs), timeout=timeout_s)
            except asyncio.TimeoutError as e:
                raise ExternalServiceTimeout(operation, timeout_s) from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error_type = classify_error(e)
            per_type[error_type] = per_type.get(error_type, 0) + 1
            config = configs.get(error_type)

            if (
                config is None
                or per_type[error_type] > config.max_retries
                or (max_attempts is not None and attempts >= max_attempts)
            ):
                raise RetryExhausted(operation, attempts, e) from e

            delay = compute_delay(config, per_type[error_type] - 1)
            logger.warning(
                "'%s' %s (attempt %d), retrying in %.2fs: %s",
                operation, error_type, attempts, delay, e,
            )
            await asyncio.sleep(delay)
