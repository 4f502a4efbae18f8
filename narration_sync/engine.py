"""TimelineEngine — one project's store, caption resolver and orchestrator.

WHY: The HTTP API, the CLI and a playback host all need the same bundle:
a SegmentStore, a CaptionResolver whose cache is tied to that store's
playhead, and a RegenerationOrchestrator writing into that store. The
engine wires them together and owns their lifetime, so no state is
process-wide.

HOW: Thin facade. Mutations are delegated to the store; ``seek`` and any
change to the store revision invalidate the resolver cache; ``snapshot()``
produces the serialisable ``{project_id, settings, segments, timeline}``
document and ``from_snapshot()`` validates and rehydrates one.

RULES:
- One engine per project id; engines share nothing
- seek() always invalidates the caption cache, never cancels regeneration
- Store edits and regeneration results reset the caption cache before
  the next resolve
- from_snapshot() validates with jsonschema before building models
- caption_projection() is a read-only view for rendering surfaces
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from narration_sync.config import Settings
from narration_sync.core.captions import CaptionResolver, frame_to_ms
from narration_sync.core.chunking import chunk_segment
from narration_sync.core.models import CaptionFrame, Segment
from narration_sync.core.orchestrator import (
    RegenerationOrchestrator,
    RegenerationResult,
    VoiceGenerator,
)
from narration_sync.core.store import SegmentStore
from narration_sync.core.sync import DriftReport, SyncStatus, detect_drift
from narration_sync.storage.documents import validate_snapshot

logger = logging.getLogger(__name__)


class _UnconfiguredGenerator:
    """Placeholder generator for engines created without a voice provider."""

    async def generate(self, text: str):  # noqa: ANN201
        raise RuntimeError("No voice generator configured for this project")


class TimelineEngine:
    """Timeline synchronization engine for a single project."""

    def __init__(
        self,
        project_id: str,
        generator: Optional[VoiceGenerator] = None,
        settings: Optional[Settings] = None,
        store: Optional[SegmentStore] = None,
    ) -> None:
        self.project_id = project_id
        self.settings = settings or Settings()
        self.store = store or SegmentStore(words_per_minute=self.settings.words_per_minute)
        self.resolver = CaptionResolver()
        self._resolver_revision = self.store.revision
        self.orchestrator = RegenerationOrchestrator(
            self.store,
            generator or _UnconfiguredGenerator(),
            max_concurrency=self.settings.max_concurrency,
        )

    @classmethod
    def from_texts(
        cls,
        project_id: str,
        texts: Iterable[str],
        generator: Optional[VoiceGenerator] = None,
        settings: Optional[Settings] = None,
    ) -> TimelineEngine:
        settings = settings or Settings()
        store = SegmentStore.from_texts(texts, words_per_minute=settings.words_per_minute)
        return cls(project_id, generator=generator, settings=settings, store=store)

    # ------------------------------------------------------------------
    # Sync state
    # ------------------------------------------------------------------

    @property
    def generator(self) -> VoiceGenerator:
        return self.orchestrator.generator

    @generator.setter
    def generator(self, generator: VoiceGenerator) -> None:
        self.orchestrator.generator = generator

    @property
    def sync_status(self) -> SyncStatus:
        return self.store.sync_status

    @property
    def segments_needing_voice(self) -> Set[str]:
        return self.store.segments_needing_voice

    def detect_drift(self) -> DriftReport:
        return detect_drift(self.store.segments(), self.settings.resync_threshold_ms)

    def resync(self) -> int:
        """Ripple start times from durations; returns segments moved."""
        changed = self.store.ripple_start_times()
        if changed:
            self.resolver.invalidate()
            logger.info("Resynced %d segment start time(s) in project %s", changed, self.project_id)
        return changed

    async def regenerate_timeline_sync(
        self,
        segment_ids: Optional[Iterable[str]] = None,
    ) -> RegenerationResult:
        return await self.orchestrator.regenerate_timeline_sync(segment_ids)

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def seek(self, time_ms: int) -> None:
        self.store.seek(time_ms)
        self.resolver.invalidate()

    def play(self) -> None:
        self.store.play()

    def pause(self) -> None:
        self.store.pause()

    def resolve(self, current_time_ms: Optional[int] = None) -> CaptionFrame:
        """Caption frame at ``current_time_ms`` (default: the playhead)."""
        if current_time_ms is None:
            current_time_ms = self.store.timeline.current_time_ms
        return self.resolver.resolve(current_time_ms, self._playback_segments())

    def resolve_frame(self, frame_index: int, fps: float) -> CaptionFrame:
        return self.resolver.resolve_frame(frame_index, fps, self._playback_segments())

    def tick(self, frame_index: int, fps: float) -> CaptionFrame:
        """Per-frame pull from the playback host: move the playhead and resolve."""
        if fps <= 0:
            return CaptionFrame()
        self.store.timeline.current_time_ms = frame_to_ms(frame_index, fps)
        return self.resolve()

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------

    def caption_projection(self) -> List[Dict[str, Any]]:
        """Caption chunks and word timings per segment, in playback order."""
        return [_project_segment(segment) for segment in self.store.segments()]

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        document = self.store.to_dict()
        document["project_id"] = self.project_id
        document["settings"] = self.settings.to_dict()
        return document

    @classmethod
    def from_snapshot(
        cls,
        document: Dict[str, Any],
        generator: Optional[VoiceGenerator] = None,
        project_id: Optional[str] = None,
    ) -> TimelineEngine:
        """Rehydrate an engine from a stored snapshot.

        Raises:
            SnapshotError: if the document fails schema or model validation.
        """
        validate_snapshot(document)
        settings = Settings.from_dict(document.get("settings") or {})
        store = SegmentStore.from_dict(document, words_per_minute=settings.words_per_minute)
        return cls(
            project_id or document.get("project_id") or "default",
            generator=generator,
            settings=settings,
            store=store,
        )

    def _playback_segments(self) -> List[Segment]:
        # Edits and regeneration results can move segments under the cache
        if self.store.revision != self._resolver_revision:
            self.resolver.invalidate()
            self._resolver_revision = self.store.revision
        return self.store.segments()


def _project_segment(segment: Segment) -> Dict[str, Any]:
    return {
        "segment_id": segment.id,
        "order": segment.order,
        "text": segment.text,
        "start_ms": segment.start_ms,
        "end_ms": segment.end_ms,
        "voice_status": segment.voice.status.value,
        "caption_chunks": [chunk.to_dict() for chunk in chunk_segment(segment)],
        "word_timings": [w.to_dict() for w in segment.voice.word_timings],
    }
