"""Sentence-aligned chunking for long prompts.

Model calls on very long prompts lose recall; long inputs are split at
sentence or line boundaries and each chunk is labeled separately.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_BOUNDARY_RE = re.compile(r"(?<=[.!?;])\s+|\n+")


@dataclass
class Chunk:
    """A slice of the canonical text.

    Attributes:
        text: The chunk text content.
        index: The chunk index in the sequence.
        start_char: Offset of ``text`` inside the canonical text.
    """
    text: str
    index: int
    start_char: int = 0

    @property
    def end_char(self) -> int:
        return self.start_char + len(self.text)


def split_into_chunks(text: str, max_chars: int = 1200) -> list[Chunk]:
    """Split *text* into chunks of at most *max_chars* at sentence boundaries.

    A single sentence longer than *max_chars* becomes its own chunk.
    """
    if len(text) <= max_chars:
        return [Chunk(text=text, index=0, start_char=0)] if text else []

    pieces: list[tuple[int, int]] = []
    cursor = 0
    for m in _BOUNDARY_RE.finditer(text):
        pieces.append((cursor, m.start()))
        cursor = m.end()
    pieces.append((cursor, len(text)))

    chunks: list[Chunk] = []
    cur_start: int | None = None
    cur_end = 0
    for start, end in pieces:
        if start >= end:
            continue
        if cur_start is None:
            cur_start, cur_end = start, end
        elif end - cur_start <= max_chars:
            cur_end = end
        else:
            chunks.append(Chunk(text=text[cur_start:cur_end], index=len(chunks), start_char=cur_start))
            cur_start, cur_end = start, end
    if cur_start is not None:
        chunks.append(Chunk(text=text[cur_start:cur_end], index=len(chunks), start_char=cur_start))
    return chunks
