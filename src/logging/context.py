# src/logging/context.py — v2
"""Run-scoped logging context.

One immutable ``RunLogContext`` per task: the orchestrator binds the
document and run, the stage client narrows it to the stage and endpoint
being called. ``ContextFilter`` copies it onto every record.
"""

from __future__ import annotations

import contextvars
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class RunLogContext:
    document_id: str | None = None
    run_id: str | None = None
    stage: str | None = None
    endpoint: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {k: v for k, v in dataclasses.asdict(self).items() if v is not None}


_EMPTY = RunLogContext()
_current: contextvars.ContextVar[RunLogContext] = contextvars.ContextVar(
    "factgraph_log_context", default=_EMPTY
)


def get_context() -> RunLogContext:
    return _current.get()


def set_run_context(document_id: str, run_id: str | None) -> None:
    """Bind a new run; any stage binding from a previous run is dropped."""
    _current.set(RunLogContext(document_id=document_id, run_id=run_id))


def set_stage_context(stage: str | None, endpoint: str | None = None) -> None:
    _current.set(dataclasses.replace(_current.get(), stage=stage, endpoint=endpoint))


def clear_context() -> None:
    _current.set(_EMPTY)


class ContextFilter(logging.Filter):
    """Attach the current run context to the record as ``run_context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_context = get_context()
        return True
