"""Per-frame caption resolution with word-level highlight state.

WHY: The player asks once per rendered frame "what caption is on screen
and which word is being spoken?". The answer must be cheap, must never
block, and must never crash playback because of bad timing data.

HOW: CaptionResolver finds the first segment (in playback order) whose
``[start_ms, end_ms)`` window contains the playhead, then classifies each
word against the playhead made relative to that segment's start. The
resolver remembers the index of the last active segment and tries it and
the next one before falling back to a full scan, since the playhead moves
forward in small steps during normal playback. A cached hit only stands
while no earlier segment still covers the playhead.

RULES:
- Segments are passed in playback order; on overlap the first match wins
- Outside every window the frame has no active segment
- Word state: active if start <= t < end, appeared if t >= end,
  upcoming if t < start, with t relative to the segment start
- Words with start > end are dropped from highlighting; the caption
  text is still the segment's full text
- A segment without usable word timings shows its full text as a single
  plain caption
- resolve() never raises and never does I/O
- seek() and segment edits on the owner must call invalidate(); a stale
  cache is also detected by segment id and falls back to a full scan
- Frame times are truncated, so a highlight never appears a frame early
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from narration_sync.core.models import (
    CaptionFrame,
    CaptionWord,
    Segment,
    WordState,
)

logger = logging.getLogger(__name__)


def frame_to_ms(frame_index: int, fps: float) -> int:
    """Convert a frame index to integer milliseconds, truncating.

    Raises:
        ValueError: if fps is not positive.
    """
    if fps <= 0:
        raise ValueError("fps must be positive, got {}".format(fps))
    if isinstance(fps, int):
        return frame_index * 1000 // fps
    return int(frame_index * 1000 / fps)


def _contains(segment: Segment, time_ms: int) -> bool:
    return segment.start_ms <= time_ms < segment.end_ms


def classify_words(segment: Segment, current_time_ms: int) -> List[CaptionWord]:
    """Tag each valid word of ``segment`` as upcoming, active or appeared."""
    t = current_time_ms - segment.start_ms
    words: List[CaptionWord] = []
    for timing in segment.voice.word_timings:
        if not timing.is_valid():
            logger.debug(
                "Dropping word %r with start %d > end %d in segment %s",
                timing.word, timing.start_ms, timing.end_ms, segment.id,
            )
            continue
        if t < timing.start_ms:
            state = WordState.UPCOMING
        elif t < timing.end_ms:
            state = WordState.ACTIVE
        else:
            state = WordState.APPEARED
        words.append(CaptionWord(
            word=timing.word,
            state=state,
            start_ms=timing.start_ms,
            end_ms=timing.end_ms,
        ))
    return words


def build_frame(segment: Segment, current_time_ms: int) -> CaptionFrame:
    words = classify_words(segment, current_time_ms)
    return CaptionFrame(
        active_segment_id=segment.id,
        text=segment.text,
        words=words,
        plain=not words,
        style=segment.caption_style,
    )


class CaptionResolver:
    """Stateful resolver that caches the last active segment index.

    One instance belongs to one timeline (one player). The cache is an
    optimisation only. The cached index is checked against the segment id
    it was taken from, and the owner calls invalidate() whenever segment
    timing changes, so a stale cache costs a full scan, never a wrong
    caption.
    """

    def __init__(self) -> None:
        self._last_index: Optional[int] = None
        self._last_id: Optional[str] = None
        # Latest end_ms among the segments before _last_index
        self._covered_until = 0

    def invalidate(self) -> None:
        self._last_index = None
        self._last_id = None
        self._covered_until = 0

    def resolve(self, current_time_ms: int, segments: Sequence[Segment]) -> CaptionFrame:
        """Resolve the caption frame for ``current_time_ms``.

        Args:
            current_time_ms: Absolute playhead position in milliseconds.
            segments: Segments in playback order.

        Returns:
            A CaptionFrame; empty (no active segment) between segments,
            before playback starts, or past the end.
        """
        t = int(current_time_ms)
        hit = self._from_cache(t, segments)
        if hit is None:
            hit = self._scan(t, segments)
        if hit is None:
            return CaptionFrame()

        index, covered = hit
        segment = segments[index]
        self._last_index = index
        self._last_id = segment.id
        self._covered_until = covered
        return build_frame(segment, t)

    def resolve_frame(self, frame_index: int, fps: float, segments: Sequence[Segment]) -> CaptionFrame:
        if fps <= 0:
            return CaptionFrame()
        return self.resolve(frame_to_ms(frame_index, fps), segments)

    def _from_cache(self, t: int, segments: Sequence[Segment]) -> Optional[Tuple[int, int]]:
        """Try the cached segment, then the next one; None means scan.

        A hit is only trusted when every segment before it ends at or
        before ``t``. Otherwise an earlier segment may overlap the hit and
        the scan decides, since the first match in order wins.
        """
        last = self._last_index
        if last is None or last >= len(segments) or segments[last].id != self._last_id:
            return None

        covered = self._covered_until
        for candidate in (last, last + 1):
            if candidate >= len(segments):
                break
            if _contains(segments[candidate], t):
                return (candidate, covered) if covered <= t else None
            covered = max(covered, segments[candidate].end_ms)
        return None

    def _scan(self, t: int, segments: Sequence[Segment]) -> Optional[Tuple[int, int]]:
        covered = 0
        for index, segment in enumerate(segments):
            if _contains(segment, t):
                return index, covered
            covered = max(covered, segment.end_ms)
        return None


def resolve(current_time_ms: int, segments: Sequence[Segment]) -> CaptionFrame:
    """Stateless resolve; equivalent to a fresh CaptionResolver."""
    return CaptionResolver().resolve(current_time_ms, segments)
