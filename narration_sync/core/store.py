"""Ordered segment collection — the single source of truth for a timeline.

WHY: Text edits, inserts, deletes, reorders and regeneration results all
change the same handful of segments, and every one of them has to keep
``order`` dense and the needing-voice cache honest. Funnelling every
mutation through one class keeps those invariants in one place.

HOW: Segments live in a list kept sorted by ``order`` plus an id index.
Structural mutations renumber orders and ripple absolute start times.
Voice-asset writes go through three dedicated methods used only by the
RegenerationOrchestrator. After every mutation the needing-voice cache is
recomputed from segment state.

RULES:
- order values are 0..n-1, unique, matching list position
- An invalid reorder raises OrderConflictError and changes nothing
- Text edits mark the voice asset pending but keep url/word timings
- Reordering never invalidates a voice asset
- segments_needing_voice is a cache; refresh() can always rebuild it
- Only begin/complete/fail_generation write voice assets
- A snapshot saved mid-generation loads with those assets failed, since
  no request survives a reload
- revision moves on every mutation that can change segment timing
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set

from narration_sync.config import DEFAULT_WORDS_PER_MINUTE
from narration_sync.core.errors import OrderConflictError, SegmentNotFoundError, SnapshotError
from narration_sync.core.estimator import estimate_duration
from narration_sync.core.models import (
    AssetStatus,
    CaptionStyle,
    Segment,
    WordTiming,
    new_segment_id,
)
from narration_sync.core.sync import SyncStatus, derive_sync_status, segments_needing_voice

logger = logging.getLogger(__name__)

INTERRUPTED_GENERATION = "generation interrupted before it completed"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TimelineState:
    """Playback position plus cached sync bookkeeping for a timeline.

    RULES:
    - current_time_ms only moves forward while playing; seek() resets it
    - segments_needing_voice mirrors SegmentStore state, never edited directly
    """

    current_time_ms: int = 0
    is_playing: bool = False
    segments_needing_voice: Set[str] = field(default_factory=set)
    last_segment_change: Optional[str] = None
    last_audio_generation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_time_ms": self.current_time_ms,
            "is_playing": self.is_playing,
            "segments_needing_voice": sorted(self.segments_needing_voice),
            "last_segment_change": self.last_segment_change,
            "last_audio_generation": self.last_audio_generation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TimelineState:
        if not isinstance(data, dict):
            raise SnapshotError("expected an object", "timeline")
        try:
            current = int(data.get("current_time_ms", 0))
        except (TypeError, ValueError):
            raise SnapshotError("current_time_ms must be a number", "timeline.current_time_ms")
        return cls(
            current_time_ms=max(0, current),
            is_playing=bool(data.get("is_playing", False)),
            last_segment_change=data.get("last_segment_change"),
            last_audio_generation=data.get("last_audio_generation"),
        )


class SegmentStore:
    """Owns the segments of one project and the timeline playback state."""

    def __init__(
        self,
        segments: Optional[Iterable[Segment]] = None,
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
        timeline: Optional[TimelineState] = None,
    ) -> None:
        self.words_per_minute = words_per_minute
        self.timeline = timeline or TimelineState()
        self._segments: List[Segment] = []
        self._by_id: Dict[str, Segment] = {}
        self.revision = 0

        loaded = sorted(segments or [], key=lambda s: s.order)
        for segment in loaded:
            if segment.id in self._by_id:
                raise SnapshotError("duplicate segment id {}".format(segment.id))
            self._by_id[segment.id] = segment
            self._segments.append(segment)
        self._check_orders(s.order for s in self._segments)
        self.refresh()

    @classmethod
    def from_texts(
        cls,
        texts: Iterable[str],
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
    ) -> SegmentStore:
        """Build a store from an already broken-down script, one text per segment."""
        store = cls(words_per_minute=words_per_minute)
        for text in texts:
            store.insert(text)
        return store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._segments)

    def __iter__(self) -> Iterator[Segment]:
        return iter(list(self._segments))

    def __contains__(self, segment_id: object) -> bool:
        return segment_id in self._by_id

    def segments(self) -> List[Segment]:
        """Segments in playback order (a new list, live Segment objects)."""
        return list(self._segments)

    def get(self, segment_id: str) -> Segment:
        try:
            return self._by_id[segment_id]
        except KeyError:
            raise SegmentNotFoundError(segment_id) from None

    def find(self, segment_id: str) -> Optional[Segment]:
        return self._by_id.get(segment_id)

    @property
    def segments_needing_voice(self) -> Set[str]:
        return set(self.timeline.segments_needing_voice)

    @property
    def sync_status(self) -> SyncStatus:
        return derive_sync_status(self._segments)

    @property
    def total_duration_s(self) -> float:
        return sum(s.duration_s for s in self._segments)

    # ------------------------------------------------------------------
    # Structural mutations
    # ------------------------------------------------------------------

    def insert(
        self,
        text: str = "",
        position: Optional[int] = None,
        image_prompt: str = "",
    ) -> Segment:
        """Insert a new pending segment at ``position`` (default: the end).

        Positions past the end append; negative positions are rejected.
        """
        if position is None or position > len(self._segments):
            position = len(self._segments)
        if position < 0:
            raise OrderConflictError("Insert position must not be negative: {}".format(position))

        segment = Segment(
            id=new_segment_id(),
            order=position,
            text=text,
            duration_s=estimate_duration(text, self.words_per_minute),
            image_prompt=image_prompt,
        )
        self._segments.insert(position, segment)
        self._by_id[segment.id] = segment
        self._renumber()
        self.ripple_start_times()
        self._touch()
        logger.info("Inserted segment %s at position %d", segment.id, position)
        return segment

    def delete(self, segment_id: str) -> Segment:
        segment = self.get(segment_id)
        self._segments.remove(segment)
        del self._by_id[segment_id]
        self._renumber()
        self.ripple_start_times()
        self._touch()
        logger.info("Deleted segment %s", segment_id)
        return segment

    def move(self, segment_id: str, position: int) -> None:
        """Move one segment to ``position``, shifting the others."""
        segment = self.get(segment_id)
        if position < 0 or position >= len(self._segments):
            raise OrderConflictError(
                "Position {} out of range for {} segments".format(position, len(self._segments))
            )
        ordered = [s.id for s in self._segments if s.id != segment_id]
        ordered.insert(position, segment.id)
        self.reorder(ordered)

    def reorder(self, ordered_ids: List[str]) -> None:
        """Apply a full new playback order given as a list of segment ids.

        Raises:
            OrderConflictError: ids missing, repeated, or unknown. The store
                is left unchanged.
        """
        if len(ordered_ids) != len(set(ordered_ids)):
            raise OrderConflictError("Reorder lists a segment more than once")
        if set(ordered_ids) != set(self._by_id):
            raise OrderConflictError("Reorder must list every segment exactly once")
        self.set_orders({segment_id: i for i, segment_id in enumerate(ordered_ids)})

    def set_orders(self, orders: Mapping[str, int]) -> None:
        """Assign explicit ``order`` values to segments.

        Segments not mentioned keep their current order. The resulting
        orders must be unique and dense, otherwise nothing changes.
        """
        for segment_id in orders:
            self.get(segment_id)
        proposed = {s.id: orders.get(s.id, s.order) for s in self._segments}
        self._check_orders(proposed.values())

        for segment in self._segments:
            segment.order = proposed[segment.id]
        self._segments.sort(key=lambda s: s.order)
        self.ripple_start_times()
        self._touch()
        logger.info("Reordered %d segments", len(self._segments))

    # ------------------------------------------------------------------
    # Content mutations
    # ------------------------------------------------------------------

    def edit_text(self, segment_id: str, text: str) -> Segment:
        """Replace a segment's narration text.

        An actual change marks the voice asset pending (a generating asset
        stays generating; its result will not match the new text) and
        re-estimates the duration. Old url/word timings are kept so
        playback can keep showing the stale captions.
        """
        segment = self.get(segment_id)
        if segment.text == text:
            return segment

        segment.text = text
        if segment.voice.status != AssetStatus.GENERATING:
            segment.voice.status = AssetStatus.PENDING
        segment.duration_s = estimate_duration(text, self.words_per_minute)
        self.ripple_start_times()
        self._touch()
        logger.info("Edited text of segment %s", segment_id)
        return segment

    def set_duration(self, segment_id: str, duration_s: float, ripple: bool = True) -> Segment:
        """Set a segment's duration; ``ripple=False`` leaves later starts stale."""
        if duration_s <= 0:
            raise ValueError("duration_s must be positive, got {}".format(duration_s))
        segment = self.get(segment_id)
        segment.duration_s = duration_s
        if ripple:
            self.ripple_start_times()
        self._touch()
        return segment

    def set_image_prompt(self, segment_id: str, prompt: str) -> Segment:
        segment = self.get(segment_id)
        segment.image_prompt = prompt
        self._touch()
        return segment

    def set_caption_style(self, segment_id: str, style: Optional[CaptionStyle]) -> Segment:
        segment = self.get(segment_id)
        segment.caption_style = style
        return segment

    def ripple_start_times(self) -> int:
        """Rewrite every start_ms from the accumulated durations.

        Returns the number of segments whose start time changed.
        """
        changed = 0
        position_ms = 0
        for segment in self._segments:
            if segment.start_ms != position_ms:
                segment.start_ms = position_ms
                changed += 1
            position_ms += segment.duration_ms
        if changed:
            self.revision += 1
        return changed

    # ------------------------------------------------------------------
    # Voice asset writes (RegenerationOrchestrator only)
    # ------------------------------------------------------------------

    def begin_generation(self, segment_id: str) -> Segment:
        segment = self.get(segment_id)
        segment.voice.status = AssetStatus.GENERATING
        segment.voice.error = None
        self.refresh()
        return segment

    def complete_generation(
        self,
        segment_id: str,
        url: str,
        word_timings: List[WordTiming],
        source_text_hash: str,
        duration_s: Optional[float] = None,
    ) -> Segment:
        """Store a successful generation result and mark the asset ready.

        ``source_text_hash`` is the hash of the text that was sent to the
        provider; if the text was edited meanwhile the segment keeps
        needing voice. A reported audio duration becomes authoritative and
        ripples later start times.
        """
        segment = self.get(segment_id)
        voice = segment.voice
        voice.status = AssetStatus.READY
        voice.url = url
        voice.word_timings = sorted(word_timings, key=lambda w: w.start_ms)
        voice.source_text_hash = source_text_hash
        voice.duration_s = duration_s
        voice.error = None
        if duration_s is not None and duration_s > 0 and source_text_hash == segment.text_hash:
            segment.duration_s = duration_s
            self.ripple_start_times()
        self.timeline.last_audio_generation = _now_iso()
        self.refresh()
        return segment

    def fail_generation(self, segment_id: str, message: str) -> Segment:
        """Mark the asset failed; prior url/word timings are not rolled back."""
        segment = self.get(segment_id)
        segment.voice.status = AssetStatus.FAILED
        segment.voice.error = message
        self.refresh()
        return segment

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def seek(self, time_ms: int) -> None:
        self.timeline.current_time_ms = max(0, int(time_ms))

    def play(self) -> None:
        self.timeline.is_playing = True

    def pause(self) -> None:
        self.timeline.is_playing = False

    def advance(self, elapsed_ms: int) -> int:
        """Move the playhead forward while playing; returns the new time."""
        if self.timeline.is_playing and elapsed_ms > 0:
            self.timeline.current_time_ms += int(elapsed_ms)
        return self.timeline.current_time_ms

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        timeline = self.timeline.to_dict()
        timeline["sync_status"] = self.sync_status.value
        return {
            "segments": [s.to_dict() for s in self._segments],
            "timeline": timeline,
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
    ) -> SegmentStore:
        if not isinstance(data, dict):
            raise SnapshotError("expected an object")
        raw_segments = data.get("segments") or []
        if not isinstance(raw_segments, list):
            raise SnapshotError("expected a list", "segments")
        segments = [
            Segment.from_dict(raw, "segments[{}]".format(i))
            for i, raw in enumerate(raw_segments)
        ]
        for segment in segments:
            if segment.voice.status == AssetStatus.GENERATING:
                segment.voice.status = AssetStatus.FAILED
                segment.voice.error = INTERRUPTED_GENERATION
                logger.warning("Segment %s was saved mid-generation; marked failed", segment.id)
        timeline = TimelineState.from_dict(data.get("timeline") or {})
        try:
            return cls(segments, words_per_minute=words_per_minute, timeline=timeline)
        except OrderConflictError as exc:
            raise SnapshotError(str(exc), "segments")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        """Rebuild the needing-voice cache from segment state and bump revision."""
        self.timeline.segments_needing_voice = segments_needing_voice(self._segments)
        self.revision += 1

    def _touch(self) -> None:
        self.timeline.last_segment_change = _now_iso()
        self.refresh()

    def _renumber(self) -> None:
        for i, segment in enumerate(self._segments):
            segment.order = i

    @staticmethod
    def _check_orders(orders: Iterable[int]) -> None:
        values = list(orders)
        if len(set(values)) != len(values):
            raise OrderConflictError("Two segments claim the same order")
        if sorted(values) != list(range(len(values))):
            raise OrderConflictError(
                "Segment orders must be contiguous from 0, got {}".format(sorted(values))
            )
