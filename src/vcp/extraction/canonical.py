"""Text canonicalization and offset mapping.

All span offsets in vcp are Python string indices into the canonical text
produced here. The canonical form is NFC with invisible formatting noise
removed; a grapheme table maps string offsets to user-perceived characters so
that consumers counting "characters" (UIs, editors) can translate offsets.
"""

from __future__ import annotations

import re
import unicodedata
from bisect import bisect_right
from dataclasses import dataclass

# Zero-width space, BOM, word joiner, soft hyphen. ZWJ/ZWNJ are kept: they
# are part of emoji sequences and some scripts.
_INVISIBLE = re.compile(r"[\u200b\ufeff\u2060\u00ad]")
# Control characters except tab, newline and carriage return.
_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_ZWJ = "\u200d"


def _is_extender(ch: str) -> bool:
    """True when *ch* never starts a new grapheme cluster."""
    cp = ord(ch)
    if ch == _ZWJ:
        return True
    if unicodedata.category(ch) in ("Mn", "Me", "Mc"):
        return True
    if 0xFE00 <= cp <= 0xFE0F or 0xE0100 <= cp <= 0xE01EF:  # variation selectors
        return True
    if 0x1F3FB <= cp <= 0x1F3FF:  # emoji skin-tone modifiers
        return True
    if 0xE0020 <= cp <= 0xE007F:  # emoji tag sequences
        return True
    return False


def _is_regional_indicator(ch: str) -> bool:
    return 0x1F1E6 <= ord(ch) <= 0x1F1FF


def grapheme_starts(text: str) -> list[int]:
    """Return the string offset at which each grapheme cluster starts."""
    starts: list[int] = []
    ri_run = 0
    prev = ""
    for i, ch in enumerate(text):
        if i == 0:
            starts.append(0)
        elif prev == "\r" and ch == "\n":
            pass
        elif _is_extender(ch):
            pass
        elif prev == _ZWJ:
            pass
        elif _is_regional_indicator(ch) and ri_run % 2 == 1:
            pass
        else:
            starts.append(i)
        ri_run = ri_run + 1 if _is_regional_indicator(ch) else 0
        prev = ch
    return starts


def normalize(text: str) -> str:
    """NFC-normalize *text* and drop invisible formatting characters."""
    if not text:
        return ""
    text = unicodedata.normalize("NFC", text)
    text = _INVISIBLE.sub("", text)
    text = _CONTROL.sub("", text)
    return text


@dataclass(frozen=True)
class CanonicalText:
    """Canonical text plus its offset <-> grapheme table."""

    text: str
    cluster_starts: tuple[int, ...]

    def __len__(self) -> int:
        return len(self.text)

    def __str__(self) -> str:
        return self.text

    @property
    def grapheme_count(self) -> int:
        return len(self.cluster_starts)

    def grapheme_at(self, offset: int) -> int:
        """Grapheme index of the cluster containing string *offset*."""
        if offset < 0 or offset > len(self.text):
            raise IndexError(f"offset {offset} outside text of length {len(self.text)}")
        if offset == len(self.text):
            return self.grapheme_count
        return bisect_right(self.cluster_starts, offset) - 1

    def offset_of(self, grapheme: int) -> int:
        """String offset where grapheme *grapheme* starts."""
        if grapheme == self.grapheme_count:
            return len(self.text)
        if grapheme < 0 or grapheme > self.grapheme_count:
            raise IndexError(f"grapheme {grapheme} outside 0..{self.grapheme_count}")
        return self.cluster_starts[grapheme]

    def is_boundary(self, offset: int) -> bool:
        if offset == len(self.text):
            return True
        idx = bisect_right(self.cluster_starts, offset) - 1
        return idx >= 0 and self.cluster_starts[idx] == offset

    def snap(self, start: int, end: int) -> tuple[int, int]:
        """Widen ``[start, end)`` so neither edge splits a grapheme cluster."""
        start = max(0, min(start, len(self.text)))
        end = max(start, min(end, len(self.text)))
        snapped_start = self.offset_of(self.grapheme_at(start)) if start < len(self.text) else start
        if end < len(self.text) and not self.is_boundary(end):
            end = self.offset_of(self.grapheme_at(end) + 1)
        return snapped_start, end

    def slice(self, start: int, end: int) -> str:
        return self.text[start:end]

    def find_all(
        self,
        needle: str,
        *,
        case_insensitive: bool = False,
        word_bounded: bool = False,
    ) -> list[tuple[int, int]]:
        """Every non-overlapping ``(start, end)`` occurrence of *needle*.

        Matching goes through ``re`` so case folding never shifts offsets.
        Matches that would split a grapheme cluster are skipped.
        """
        needle = normalize(needle)
        if not needle:
            return []
        pattern = re.escape(needle)
        if word_bounded:
            pattern = rf"(?<!\w){pattern}(?!\w)"
        flags = re.IGNORECASE if case_insensitive else 0
        hits = []
        for m in re.finditer(pattern, self.text, flags):
            if self.is_boundary(m.start()) and self.is_boundary(m.end()):
                hits.append((m.start(), m.end()))
        return hits


def canonicalize(text: str | None) -> CanonicalText:
    """Normalize *text* and build its grapheme table."""
    normalized = normalize(text or "")
    return CanonicalText(text=normalized, cluster_starts=tuple(grapheme_starts(normalized)))
