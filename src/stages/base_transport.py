# src/stages/base_transport.py — v1
"""Abstract transport used by the stage client."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from factgraph.stages.models import StageResponse


class BaseStageTransport(ABC):
    """Sends one request to a named stage endpoint."""

    @abstractmethod
    async def post(self, endpoint: str, body: dict[str, Any]) -> StageResponse:
        """POST a JSON body and return the raw response.

        Network-level failures raise; HTTP errors are returned as responses.
        """

    async def aclose(self) -> None:
        """Release underlying connections."""
