# src/api/facade.py — v3
"""Public API facade — single entry point for pipeline runs.

Usage:
    from factgraph.api.facade import run_pipeline
    result = await run_pipeline({"documentText": ..., "documentId": ..., "environment": "dev"})

Pre-flight order: authentication, rate limit, request validation, document
lookup, single-flight guard. Only these raise to the caller; everything
that happens inside a run is reported through ``RunResult``, except an
uncaught failure, which marks the run failed and raises PipelineFatalError.
"""

from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING, Any

from factgraph.api.models import PipelineRequest, RunResult
from factgraph.api.rate_limit import SlidingWindowRateLimiter
from factgraph.config.settings import Settings
from factgraph.core.errors import (
    AuthenticationError,
    PipelineBusyError,
    PipelineFatalError,
    RequestValidationError,
    RunConflictError,
)
from factgraph.core.models import RunStatus
from factgraph.guard.single_flight import SingleFlightGuard
from factgraph.logging.context import clear_context
from factgraph.pipeline.orchestrator import COORDINATOR_STEP, PipelineOrchestrator
from factgraph.stages.client import StageClient
from factgraph.storage.ledger_factory import create_ledger

if TYPE_CHECKING:
    from factgraph.storage.base_ledger import BaseRunLedger

logger = logging.getLogger(__name__)


class PipelineService:
    """Long-lived holder of the collaborators a pipeline run needs.

    Keep one instance per process so the in-process single-flight check
    and the memory rate limiter see every request.
    """

    def __init__(
        self,
        settings: Settings,
        ledger: BaseRunLedger,
        stage_client: StageClient,
        guard: SingleFlightGuard | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        self._settings = settings
        self._ledger = ledger
        self._client = stage_client
        self._guard = guard or SingleFlightGuard(ledger, settings.guard_lease_ttl_s)
        self._limiter = rate_limiter
        if self._limiter is None and settings.rate_limit_enabled:
            self._limiter = SlidingWindowRateLimiter.from_settings(settings)
        self._orchestrator = PipelineOrchestrator(settings, ledger, stage_client)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PipelineService:
        settings = settings or Settings()
        return cls(
            settings=settings,
            ledger=create_ledger(settings),
            stage_client=StageClient.from_settings(settings),
        )

    @property
    def ledger(self) -> BaseRunLedger:
        return self._ledger

    async def run(
        self,
        payload: dict[str, Any],
        api_token: str | None = None,
        caller: str | None = None,
    ) -> RunResult:
        """Validate a request and execute one pipeline run.

        Raises:
            AuthenticationError: Token does not match the configured API key.
            RateLimitExceededError: Caller exceeded its quota.
            RequestValidationError: Malformed request or unknown document.
            PipelineBusyError: Another run is in flight.
            PipelineFatalError: Uncaught failure inside the run.
        """
        self._authenticate(api_token)
        if self._limiter is not None:
            self._limiter.check(caller or "anonymous")

        request = PipelineRequest.parse(
            payload,
            min_chars=self._settings.min_document_chars,
            max_chars=self._settings.max_document_chars,
        )
        document = await self._ledger.get_document(request.document_id)
        if document is None:
            raise RequestValidationError(f"Unknown document: {request.document_id}")

        try:
            async with self._guard.hold(self._settings.guard_lock_key):
                return await self._orchestrator.run_pipeline(
                    request.document_text,
                    request.document_id,
                    request.environment,
                    source_url=document.source_url,
                )
        except RunConflictError as e:
            raise PipelineBusyError("A pipeline run is already in progress") from e
        except PipelineBusyError:
            logger.info("Rejected run for %s: pipeline busy", request.document_id)
            raise
        except PipelineFatalError:
            raise
        except Exception as e:
            run_id = await self._mark_latest_failed(e)
            raise PipelineFatalError(str(e) or type(e).__name__, run_id=run_id) from e
        finally:
            clear_context()

    def _authenticate(self, api_token: str | None) -> None:
        expected = self._settings.api_key
        if not expected:
            return
        if api_token is None or not hmac.compare_digest(api_token, expected):
            raise AuthenticationError("Invalid or missing API token")

    async def _mark_latest_failed(self, error: Exception) -> str | None:
        """Best effort: move the most recent running run to ``failed``."""
        try:
            run = await self._ledger.latest_running_run()
            if run is None:
                return None
            metrics = dict(run.metrics)
            metrics.update(
                workflow_status=RunStatus.FAILED.value,
                errors=[{"step": COORDINATOR_STEP, "message": str(error)}],
                error_type=type(error).__name__,
            )
            await self._ledger.finalize_run(run.run_id, RunStatus.FAILED, metrics)
            logger.error("Marked run %s failed after fatal error", run.run_id)
            return run.run_id
        except Exception:
            logger.exception("Could not mark running run as failed")
            return None

    async def aclose(self) -> None:
        await self._client.aclose()
        await self._ledger.close()


async def run_pipeline(
    payload: dict[str, Any],
    settings: Settings | None = None,
    api_token: str | None = None,
    caller: str | None = None,
) -> RunResult:
    """One-shot entry point: build a service from settings, run, close."""
    service = PipelineService.from_settings(settings)
    try:
        return await service.run(payload, api_token=api_token, caller=caller)
    finally:
        await service.aclose()
