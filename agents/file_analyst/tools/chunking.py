"""
Text chunking and keyword scoring for document search.

Splits text into overlapping chunks, preferring to cut at paragraph,
then line, then word boundaries.
"""
from __future__ import annotations

from typing import NamedTuple, Sequence

from loguru import logger

DEFAULT_SEPARATORS = ("\n\n", "\n", " ")


class TextSplitter:
    """Character-based splitter with overlap that avoids cutting words."""

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separators: Sequence[str] = DEFAULT_SEPARATORS,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = tuple(separators)

    def _cut_point(self, text: str, start: int, end: int) -> int:
        """Latest separator position in (start, end], or `end` if none fits."""
        # A cut in the first half of the window would make tiny chunks
        floor = start + self.chunk_size // 2
        for sep in self.separators:
            pos = text.rfind(sep, floor, end)
            if pos != -1:
                return pos + len(sep)
        return end

    def split_text(self, text: str) -> list[str]:
        """Split text into overlapping chunks."""
        if not text:
            return []

        chunks = []
        start = 0
        length = len(text)

        while start < length:
            end = min(start + self.chunk_size, length)
            if end < length:
                end = self._cut_point(text, start, end)

            chunk = text[start:end].strip()
            if chunk:
                chunks.append(chunk)
            if end >= length:
                break

            next_start = max(end - self.chunk_overlap, start + 1)
            # Start the overlap on a word boundary when one is close
            space = text.find(" ", next_start, end)
            if space != -1:
                next_start = space + 1
            start = next_start

        return chunks


class ScoredChunk(NamedTuple):
    text: str
    score: int


def score_chunk(chunk: str, query_words: Sequence[str]) -> int:
    """Number of query words contained (as substrings) in the chunk."""
    content = chunk.lower()
    return sum(1 for word in query_words if word in content)


class ChunkingService:
    """
    Chunk documents and rank chunks against a keyword query.

    Usage:
        service = ChunkingService(chunk_size=1000, chunk_overlap=200)
        hits = service.search(text, "annual revenue", top_k=4)
    """

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200):
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = TextSplitter(chunk_size=chunk_size, chunk_overlap=chunk_overlap)

    def chunk(self, text: str) -> list[str]:
        if not text or not text.strip():
            return []

        logger.debug(f"Chunking text of length {len(text)}")
        chunks = self._splitter.split_text(text)
        logger.debug(f"Created {len(chunks)} chunks")
        return chunks

    def search(self, text: str, query: str, top_k: int = 4) -> list[ScoredChunk]:
        """
        Rank chunks by keyword overlap with the query.

        Only chunks with a positive score are kept; ties keep document order.
        """
        words = query.lower().split()
        if not words:
            return []
        scored = [ScoredChunk(c, score_chunk(c, words)) for c in self.chunk(text)]
        relevant = [c for c in scored if c.score > 0]
        relevant.sort(key=lambda c: c.score, reverse=True)
        return relevant[:top_k]
