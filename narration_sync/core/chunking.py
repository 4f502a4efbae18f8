"""Caption chunks: short, readable caption blocks per segment.

WHY: A rendering surface that does not do per-word highlighting still
needs captions split into blocks a viewer can read at a glance, with
broadcast-style line limits. The caption query endpoint returns these
chunks next to the raw word timings.

HOW: With word timings, words are grouped greedily into chunks of at most
WORDS_PER_CHUNK words and MAX_LINES lines of MAX_CHARS_PER_LINE characters,
closing a chunk early after sentence-ending punctuation; chunk times come
from the first and last word. Without word timings the text is split into
fixed word groups and the segment duration is shared out in proportion
to word count, each chunk clamped to the caption duration limits when
the segment is long enough for every chunk to get the minimum.

RULES:
- Chunk times are milliseconds relative to the segment start
- Without word timings, no chunk ends after the segment does
- Chunk ids are "{segment_id}_chunk_{n}", n from 0
- Words with invalid timing (start > end) are skipped
- Lines: at most 2, each at most 42 characters where a split allows it
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from narration_sync.core.models import Segment, WordTiming

MAX_CHARS_PER_LINE = 42
MAX_LINES = 2
WORDS_PER_CHUNK = 6
MIN_CAPTION_MS = 833  # 20 frames at 24fps
MAX_CAPTION_MS = 7000

_SENTENCE_END_RE = re.compile(r"[.!?]$")
_CLAUSE_END_RE = re.compile(r"[,;:]$")
_CONJUNCTIONS = frozenset({"and", "but", "or", "so"})


@dataclass
class CaptionChunk:
    id: str
    text: str
    start_ms: int
    end_ms: int
    lines: List[str] = field(default_factory=list)

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    @property
    def char_count(self) -> int:
        return len(self.text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
            "duration_ms": self.end_ms - self.start_ms,
            "word_count": self.word_count,
            "char_count": self.char_count,
            "lines": list(self.lines),
        }


def split_into_lines(text: str, max_chars_per_line: int = MAX_CHARS_PER_LINE) -> List[str]:
    """Split caption text into one or two balanced lines.

    Looks for a break within two words of the middle where both lines fit,
    preferring breaks after clause punctuation or before a conjunction.
    The upper line is kept the shorter one when that still fits.
    """
    if len(text) <= max_chars_per_line:
        return [text]

    words = text.split()
    if len(words) < 2:
        return [text]
    middle = len(words) // 2
    best_split = middle
    best_score = None

    for i in range(max(1, middle - 2), min(middle + 3, len(words) - 1)):
        line1 = " ".join(words[:i + 1])
        line2 = " ".join(words[i + 1:])
        if len(line1) > max_chars_per_line or len(line2) > max_chars_per_line:
            continue
        score = abs(len(line1) - len(line2))
        if _CLAUSE_END_RE.search(words[i]) or words[i + 1].lower() in _CONJUNCTIONS:
            score -= 5
        if best_score is None or score < best_score:
            best_split = i
            best_score = score

    line1 = " ".join(words[:best_split + 1])
    line2 = " ".join(words[best_split + 1:])
    if not line2:
        return [line1]

    if len(line1) > len(line2) and best_split > 0:
        alt1 = " ".join(words[:best_split])
        alt2 = " ".join(words[best_split:])
        if len(alt1) <= max_chars_per_line and len(alt2) <= max_chars_per_line:
            return [alt1, alt2]
    return [line1, line2]


def _fits(words: List[str]) -> bool:
    return len(" ".join(words)) <= MAX_CHARS_PER_LINE * MAX_LINES


def _chunks_from_timings(segment: Segment, timings: List[WordTiming]) -> List[CaptionChunk]:
    chunks: List[CaptionChunk] = []
    current: List[WordTiming] = []

    def flush() -> None:
        if not current:
            return
        text = " ".join(w.word for w in current)
        chunks.append(CaptionChunk(
            id="{}_chunk_{}".format(segment.id, len(chunks)),
            text=text,
            start_ms=current[0].start_ms,
            end_ms=max(w.end_ms for w in current),
            lines=split_into_lines(text),
        ))
        del current[:]

    for timing in timings:
        candidate = [w.word for w in current] + [timing.word]
        if current and (len(candidate) > WORDS_PER_CHUNK or not _fits(candidate)):
            flush()
        current.append(timing)
        if _SENTENCE_END_RE.search(timing.word):
            flush()
    flush()
    return chunks


def _chunks_from_text(segment: Segment) -> List[CaptionChunk]:
    words = segment.text.split()
    if not words:
        return []

    total_ms = segment.duration_ms
    groups = [words[i:i + WORDS_PER_CHUNK] for i in range(0, len(words), WORDS_PER_CHUNK)]
    durations = [int(len(group) / float(len(words)) * total_ms) for group in groups]
    if len(groups) * MIN_CAPTION_MS <= total_ms:
        durations = [max(MIN_CAPTION_MS, min(MAX_CAPTION_MS, d)) for d in durations]

    chunks: List[CaptionChunk] = []
    position_ms = 0
    for group, duration in zip(groups, durations):
        text = " ".join(group)
        end_ms = min(position_ms + duration, total_ms)
        chunks.append(CaptionChunk(
            id="{}_chunk_{}".format(segment.id, len(chunks)),
            text=text,
            start_ms=position_ms,
            end_ms=end_ms,
            lines=split_into_lines(text),
        ))
        position_ms = end_ms
    return chunks


def chunk_segment(segment: Segment) -> List[CaptionChunk]:
    """Split one segment's caption into readable chunks."""
    timings = [w for w in segment.voice.word_timings if w.is_valid()]
    if timings:
        return _chunks_from_timings(segment, timings)
    return _chunks_from_text(segment)
