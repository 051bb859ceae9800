# src/chunking/base_chunker.py — v1
"""Abstract chunker interface and span helpers.

Chunks and evidence spans share one coordinate system: half-open
character offsets into the stored document text.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from factgraph.core.models import DocumentChunk


class BaseChunker(ABC):
    """Unified interface for chunking strategies."""

    @property
    @abstractmethod
    def strategy_name(self) -> str:
        """Strategy identifier (e.g. 'word_window')."""

    @abstractmethod
    def chunk(self, text: str, document_id: str) -> list[DocumentChunk]:
        """Split document text into ordered chunks."""


def chunks_covering(
    chunks: list[DocumentChunk], start: int, end: int
) -> list[int]:
    """Return seq numbers of chunks overlapping the span ``[start, end)``."""
    if end <= start:
        return []
    return [c.seq for c in chunks if c.char_start < end and start < c.char_end]
