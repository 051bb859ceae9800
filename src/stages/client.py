# src/stages/client.py — v2
"""Generic retrying invoker for the named external stages.

Every stage takes the same envelope: ``{"input": ..., "environment": ...}``.
Retries are invisible to callers except as added latency and the
``attempts`` count on the result.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from factgraph.core.models import StageName
from factgraph.logging.context import set_stage_context
from factgraph.stages.models import StageResult
from factgraph.stages.retry import RetryConfig, classify_response, with_retry

if TYPE_CHECKING:
    from factgraph.config.settings import Settings
    from factgraph.stages.base_transport import BaseStageTransport

logger = logging.getLogger(__name__)


class StageClient:
    """Invokes stages through a transport with the shared retry policy.

    Args:
        transport: Transport that performs the actual call.
        endpoints: Endpoint path per stage name.
        retry_config: Backoff schedule. Defaults to 1s doubling, 5 retries.
        sleep: Awaitable sleep used between retries.
    """

    def __init__(
        self,
        transport: BaseStageTransport,
        endpoints: dict[str, str] | None = None,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._transport = transport
        self._endpoints = endpoints or {s.value: s.value for s in StageName}
        self._retry_config = retry_config or RetryConfig()
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: BaseStageTransport | None = None
    ) -> StageClient:
        if transport is None:
            from factgraph.stages.http_transport import HttpStageTransport

            transport = HttpStageTransport.from_settings(settings)
        return cls(
            transport=transport,
            endpoints=settings.stage_endpoints,
            retry_config=RetryConfig(
                max_retries=settings.retry_max_retries,
                base_delay_s=settings.retry_base_delay_s,
                backoff_factor=settings.retry_backoff_factor,
                jitter=settings.retry_jitter,
            ),
        )

    async def invoke(
        self,
        stage: StageName,
        payload: dict[str, Any],
        environment: str,
    ) -> StageResult:
        """Call one stage.

        Raises:
            StageRetryExhausted: If network errors exhaust all retries.
        """
        endpoint = self._endpoints[stage.value]
        body = {"input": payload, "environment": environment}
        set_stage_context(stage.value, endpoint=endpoint)

        start = time.monotonic()
        kwargs: dict[str, Any] = {"stage": stage.value, "config": self._retry_config}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        response, attempts = await with_retry(
            lambda: self._transport.post(endpoint, body), **kwargs
        )
        latency_ms = int((time.monotonic() - start) * 1000)

        error_type = classify_response(response)
        if error_type is not None:
            logger.error(
                "Stage '%s' failed (%s, HTTP %d) after %d attempt(s): %s",
                stage.value, error_type, response.status_code, attempts, response.error,
            )
        else:
            logger.info(
                "Stage '%s' succeeded in %dms (%d attempt(s))",
                stage.value, latency_ms, attempts,
            )

        return StageResult(
            stage=stage,
            ok=error_type is None,
            data=response.data,
            error=response.error or (
                f"HTTP {response.status_code}" if error_type else None
            ),
            error_type=error_type,
            status_code=response.status_code,
            attempts=attempts,
            latency_ms=latency_ms,
            request_body=body,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()
