# src/chunking/word_window_chunker.py — v1
"""Overlapping fixed-size word windows.

Each window holds ``size_words`` words and starts ``size_words - overlap_words``
words after the previous one. The last window may be shorter. Chunk text is
the exact document slice from the first word's start to the last word's end,
so offsets stay valid for evidence lookup.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from factgraph.chunking.base_chunker import BaseChunker
from factgraph.core.models import DocumentChunk

if TYPE_CHECKING:
    from factgraph.config.settings import Settings
    from factgraph.storage.base_ledger import BaseRunLedger

logger = logging.getLogger(__name__)

_WORD = re.compile(r"\S+")


class WordWindowChunker(BaseChunker):
    """Chunk text into overlapping windows of whitespace-delimited words."""

    def __init__(self, size_words: int = 400, overlap_words: int = 50):
        if size_words <= 0:
            raise ValueError("size_words must be > 0")
        if not 0 <= overlap_words < size_words:
            raise ValueError("overlap_words must be >= 0 and < size_words")
        self._size = size_words
        self._overlap = overlap_words

    @classmethod
    def from_settings(cls, settings: Settings) -> WordWindowChunker:
        return cls(settings.chunk_size_words, settings.chunk_overlap_words)

    @property
    def strategy_name(self) -> str:
        return "word_window"

    def chunk(self, text: str, document_id: str) -> list[DocumentChunk]:
        words = [(m.start(), m.end()) for m in _WORD.finditer(text)]
        if not words:
            return []

        step = self._size - self._overlap
        chunks: list[DocumentChunk] = []
        for seq, first in enumerate(range(0, len(words), step)):
            window = words[first:first + self._size]
            char_start, char_end = window[0][0], window[-1][1]
            chunks.append(
                DocumentChunk(
                    document_id=document_id,
                    seq=seq,
                    chunk_text=text[char_start:char_end],
                    word_count=len(window),
                    char_start=char_start,
                    char_end=char_end,
                )
            )
            # Window reached the end; further starts would be pure overlap.
            if first + self._size >= len(words):
                break
        return chunks


async def index_document_chunks(
    ledger: BaseRunLedger,
    document_id: str,
    chunker: BaseChunker | None = None,
) -> list[DocumentChunk]:
    """Chunk an already-stored document and persist the chunk rows.

    Raises:
        KeyError: If the document does not exist.
    """
    document = await ledger.get_document(document_id)
    if document is None:
        raise KeyError(f"Unknown document: {document_id}")

    chunker = chunker or WordWindowChunker()
    chunks = chunker.chunk(document.text, document_id)
    await ledger.insert_chunks(document_id, chunks)
    logger.info(
        "Indexed %d chunks for document %s (%s)",
        len(chunks), document_id, chunker.strategy_name,
    )
    return chunks
