# src/stages/http_transport.py — v1
"""httpx-based stage transport.

One AsyncClient per process; stages are addressed relative to
``stage_base_url``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from factgraph.stages.base_transport import BaseStageTransport
from factgraph.stages.models import StageResponse

if TYPE_CHECKING:
    from factgraph.config.settings import Settings

logger = logging.getLogger(__name__)


class HttpStageTransport(BaseStageTransport):
    """POSTs stage requests with httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            headers=headers,
            timeout=httpx.Timeout(timeout_s, connect=10.0),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpStageTransport:
        return cls(
            base_url=settings.stage_base_url,
            api_key=settings.stage_api_key,
            timeout_s=settings.stage_timeout_s,
        )

    async def post(self, endpoint: str, body: dict[str, Any]) -> StageResponse:
        start = time.monotonic()
        response = await self._client.post(endpoint.lstrip("/"), json=body)
        latency_ms = int((time.monotonic() - start) * 1000)

        data: Any
        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_success:
            if not isinstance(data, dict):
                return StageResponse(
                    status_code=response.status_code,
                    error="Stage returned a non-object JSON body",
                    latency_ms=latency_ms,
                )
            error = data.get("error")
            return StageResponse(
                status_code=response.status_code,
                data=data,
                error=_error_text(error) if error else None,
                latency_ms=latency_ms,
            )

        if isinstance(data, dict) and data.get("error"):
            message = _error_text(data["error"])
        else:
            message = response.text[:500] or response.reason_phrase
        return StageResponse(
            status_code=response.status_code,
            data=data if isinstance(data, dict) else None,
            error=f"HTTP {response.status_code}: {message}",
            latency_ms=latency_ms,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)
