"""Speech duration estimates from narration text.

WHY: A segment needs a playable duration before its voice exists, and an
edit preview needs the new total length without calling the provider.

HOW: Whitespace token count at a fixed speech rate, plus a breath buffer,
floored at the minimum playable segment length.

RULES:
- Pure and deterministic: no I/O, no randomness
- Empty or whitespace-only text estimates to the floor, never zero
"""

from __future__ import annotations

from typing import Iterable

from narration_sync.config import (
    DEFAULT_WORDS_PER_MINUTE,
    ESTIMATE_BUFFER_S,
    MIN_SEGMENT_DURATION_S,
)


def count_words(text: str) -> int:
    return len(text.split())


def estimate_duration(text: str, words_per_minute: int = DEFAULT_WORDS_PER_MINUTE) -> float:
    """Estimate spoken duration of ``text`` in seconds.

    ``max(3, words / wpm * 60 + 0.5)``. "Hello world." → 3.0.

    Raises:
        ValueError: if words_per_minute is not positive.
    """
    if words_per_minute <= 0:
        raise ValueError("words_per_minute must be positive, got {}".format(words_per_minute))
    spoken = count_words(text) / float(words_per_minute) * 60.0
    return max(MIN_SEGMENT_DURATION_S, spoken + ESTIMATE_BUFFER_S)


def estimate_timeline_duration(
    texts: Iterable[str],
    words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
) -> float:
    """Total estimated length of a sequence of segment texts, in seconds."""
    return sum(estimate_duration(text, words_per_minute) for text in texts)
