# src/stages/retry.py — v1
"""Stage-call retry policy with exponential backoff.

Client errors short-circuit. Rate limits, timeouts, server errors and
network-level exceptions retry on the same schedule.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from factgraph.core.errors import StageRetryExhausted
from factgraph.stages.models import StageResponse

logger = logging.getLogger(__name__)

RETRYABLE_ERROR_TYPES = frozenset(
    {"rate_limit", "timeout", "server_error", "network_error"}
)

_CLIENT_ERROR_CODES = frozenset({400, 401, 402, 403, 404, 405, 409, 410, 422})


@dataclass(frozen=True)
class RetryConfig:
    """Backoff schedule shared by all stage calls."""

    max_retries: int = 5
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    jitter: bool = False


def classify_response(response: StageResponse) -> str | None:
    """Classify a stage response. Returns None for success."""
    code = response.status_code
    if 200 <= code < 300:
        return None if response.error is None else "application_error"
    if code == 429:
        return "rate_limit"
    if code == 408:
        return "timeout"
    if code >= 500:
        return "server_error"
    if code in _CLIENT_ERROR_CODES or 400 <= code < 500:
        return "client_error"
    return "unknown"


def classify_exception(error: BaseException) -> str | None:
    """Classify an exception raised by the transport.

    Returns None for exceptions that are not network-level; those are
    programming errors and propagate unchanged.
    """
    if isinstance(error, (httpx.TransportError, TimeoutError, ConnectionError)):
        return "network_error"
    return None


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    delay = config.base_delay_s * (config.backoff_factor ** attempt)
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


async def with_retry(
    call: Callable[[], Awaitable[StageResponse]],
    *,
    stage: str,
    config: RetryConfig | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> tuple[StageResponse, int]:
    """Run a stage call, retrying retryable failures.

    Returns:
        The final response (successful or not) and the number of attempts.

    Raises:
        StageRetryExhausted: If network-level errors exhaust all retries.
    """
    config = config or RetryConfig()
    attempts = 0

    while True:
        attempts += 1
        try:
            response = await call()
        except Exception as e:
            if classify_exception(e) is None:
                raise
            if attempts > config.max_retries:
                raise StageRetryExhausted(stage, attempts, e) from e
            delay = compute_delay(config, attempts - 1)
            logger.warning(
                "Stage '%s' network error (attempt %d/%d), retrying in %.1fs: %s",
                stage, attempts, config.max_retries + 1, delay, e,
            )
            await sleep(delay)
            continue

        error_type = classify_response(response)
        if error_type is None or error_type not in RETRYABLE_ERROR_TYPES:
            return response, attempts
        if attempts > config.max_retries:
            logger.error(
                "Stage '%s' gave up after %d attempts (%s)",
                stage, attempts, error_type,
            )
            return response, attempts

        delay = compute_delay(config, attempts - 1)
        logger.warning(
            "Stage '%s' %s (attempt %d/%d), retrying in %.1fs",
            stage, error_type, attempts, config.max_retries + 1, delay,
        )
        await sleep(delay)
