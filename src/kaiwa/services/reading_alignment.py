"""Align Japanese text against its hiragana reading for furigana display.

The aligner is a heuristic: it walks the script and the reading in lockstep,
passes through characters that appear identically in both (kana, punctuation)
and attaches the reading characters in between to the diverging spans
(usually kanji). It never raises; inputs that do not line up simply degrade
to coarser annotated spans.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass(frozen=True)
class ReadingSegment:
    """A run of literal text with the reading attached to it, if any."""

    literal: str
    reading: Optional[str] = None

    @property
    def annotated(self) -> bool:
        return bool(self.reading)


class ReadingAlignment:
    """Restartable iterable over the segments of one `(text, reading)` pair."""

    def __init__(self, text: str, reading: str | None) -> None:
        self.text = text or ""
        self.reading = reading or ""

    def __iter__(self) -> Iterator[ReadingSegment]:
        return _iter_segments(self.text, self.reading)

    def literal_text(self) -> str:
        return "".join(segment.literal for segment in self)


def _consumed_reading_length(
    text: str, reading: str, text_pos: int, reading_pos: int, lookahead: int
) -> tuple[int, bool]:
    """Count reading characters covered before `text[text_pos + lookahead]` resumes."""

    anchor_index = text_pos + lookahead
    anchor = text[anchor_index] if anchor_index < len(text) else None
    consumed = 0
    for index in range(reading_pos, len(reading)):
        consumed += 1
        if anchor is not None and index + 1 < len(reading) and reading[index + 1] == anchor:
            return consumed, True
    return consumed, False


def _iter_segments(text: str, reading: str) -> Iterator[ReadingSegment]:
    if not text:
        return
    if not reading:
        yield ReadingSegment(text)
        return

    text_pos = 0
    reading_pos = 0
    while text_pos < len(text) and reading_pos < len(reading):
        if text[text_pos] == reading[reading_pos]:
            yield ReadingSegment(text[text_pos])
            text_pos += 1
            reading_pos += 1
            continue

        lookahead = 1
        consumed = 0
        while text_pos + lookahead <= len(text):
            consumed, found = _consumed_reading_length(
                text, reading, text_pos, reading_pos, lookahead
            )
            if found or text_pos + lookahead == len(text):
                break
            lookahead += 1

        yield ReadingSegment(
            text[text_pos : text_pos + lookahead],
            reading[reading_pos : reading_pos + consumed],
        )
        text_pos += lookahead
        reading_pos += consumed

    # Reading ran out first: the tail has nothing left to annotate it with.
    for char in text[text_pos:]:
        yield ReadingSegment(char)


def align(text: str, reading: str | None) -> ReadingAlignment:
    """Return the aligned segments for `text` annotated with `reading`."""

    return ReadingAlignment(text, reading)


def render_ruby(text: str, reading: str | None) -> str:
    """Render the alignment as HTML `<ruby>` markup."""

    parts: list[str] = []
    for segment in align(text, reading):
        literal = html.escape(segment.literal)
        if segment.annotated:
            parts.append(
                f"<ruby>{literal}<rt>{html.escape(segment.reading or '')}</rt></ruby>"
            )
        else:
            parts.append(literal)
    return "".join(parts)


def render_inline(text: str, reading: str | None) -> str:
    """Render the alignment as `漢字(かんじ)` for plain-text terminals."""

    parts: list[str] = []
    for segment in align(text, reading):
        if segment.annotated:
            parts.append(f"{segment.literal}({segment.reading})")
        else:
            parts.append(segment.literal)
    return "".join(parts)


__all__ = [
    "ReadingAlignment",
    "ReadingSegment",
    "align",
    "render_inline",
    "render_ruby",
]
