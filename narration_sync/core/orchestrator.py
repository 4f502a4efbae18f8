"""Regeneration of stale voice assets, one in-flight request per segment.

WHY: After edits, only the segments whose voice no longer matches their
text should be sent back to the voice provider. Requests are slow and may
complete out of order, so the engine must never have two requests for the
same segment in flight and must ignore late or duplicate completions.

HOW: The orchestrator owns a table ``segment_id -> asyncio.Task``. Asking
for a segment that already has a task returns that task; otherwise the
segment is marked generating (synchronously, before any await) and a new
task is started. Tasks share an asyncio.Semaphore that caps concurrent
provider calls. Each request carries a token; only the completion holding
the segment's current token is applied, after which the token is retired.

RULES:
- At most one in-flight request per segment id
- Provider errors never escape: they become segment status "failed"
- A failure keeps the prior url/word timings (no rollback)
- Results with no valid word timings count as failures
- Completions for deleted segments, stale tokens or repeated deliveries
  are ignored
- Text edited during a request: the result is stored but the segment
  keeps needing voice (its text hash no longer matches)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol

from narration_sync.config import DEFAULT_MAX_CONCURRENCY
from narration_sync.core.errors import GenerationFailedError, InvalidTimingError, SnapshotError
from narration_sync.core.models import AssetStatus, WordTiming, text_hash
from narration_sync.core.store import SegmentStore
from narration_sync.core.sync import SyncStatus

logger = logging.getLogger(__name__)


@dataclass
class GeneratedVoice:
    """A successful voice generation: audio URL plus word timings."""

    url: str
    word_timings: List[WordTiming] = field(default_factory=list)
    duration_s: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GeneratedVoice:
        if not isinstance(data, dict):
            raise SnapshotError("expected an object", "generation")
        url = data.get("url") or data.get("audio_url")
        if not isinstance(url, str) or not url:
            raise SnapshotError("missing audio url", "generation.url")
        raw_words = data.get("word_timings", data.get("words")) or []
        if not isinstance(raw_words, list):
            raise SnapshotError("expected a list", "generation.word_timings")
        duration = data.get("duration_s")
        return cls(
            url=url,
            word_timings=[
                WordTiming.from_dict(w, "generation.word_timings[{}]".format(i))
                for i, w in enumerate(raw_words)
            ],
            duration_s=None if duration is None else float(duration),
        )


class VoiceGenerator(Protocol):
    """The voice/caption generation collaborator.

    ``generate`` resolves with a GeneratedVoice or raises any exception on
    failure. Timeout and retry policy belong to the implementation.
    """

    async def generate(self, text: str) -> GeneratedVoice:
        ...


@dataclass
class RegenerationOutcome:
    segment_id: str
    succeeded: bool
    error: Optional[str] = None
    applied: bool = True


@dataclass
class RegenerationResult:
    """Summary of one regenerate_timeline_sync call.

    RULES:
    - succeeded: ids whose new voice was stored
    - failed: id → error message (segment is now "failed", retryable)
    - skipped: ids that were unknown or deleted before completion
    - sync_status: timeline status after all targets finished
    """

    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    sync_status: SyncStatus = SyncStatus.SYNCED

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "skipped": list(self.skipped),
            "sync_status": self.sync_status.value,
        }


class RegenerationOrchestrator:
    """Drives voice regeneration for out-of-sync segments of one store."""

    def __init__(
        self,
        store: SegmentStore,
        generator: VoiceGenerator,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.store = store
        self.generator = generator
        self.max_concurrency = max_concurrency
        self._in_flight: Dict[str, "asyncio.Task[RegenerationOutcome]"] = {}
        self._tokens: Dict[str, str] = {}
        self._source_hashes: Dict[str, str] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop: Optional[asyncio.AbstractEventLoop] = None

    def in_flight(self) -> List[str]:
        return [sid for sid, task in self._in_flight.items() if not task.done()]

    async def regenerate_timeline_sync(
        self,
        segment_ids: Optional[Iterable[str]] = None,
    ) -> RegenerationResult:
        """Regenerate voice for ``segment_ids`` (default: all needing voice).

        Segments already in flight are awaited, not re-requested.
        """
        targets = self._targets(segment_ids)
        result = RegenerationResult()
        result.skipped.extend(sid for sid in targets if sid not in self.store)
        tasks = list(self.schedule(targets).values())

        if tasks:
            logger.info("Regenerating voice for %d segment(s)", len(tasks))
            outcomes = await asyncio.gather(*tasks)
            for outcome in outcomes:
                if not outcome.applied:
                    result.skipped.append(outcome.segment_id)
                elif outcome.succeeded:
                    result.succeeded.append(outcome.segment_id)
                else:
                    result.failed[outcome.segment_id] = outcome.error or "generation failed"

        result.sync_status = self.store.sync_status
        return result

    def schedule(
        self,
        segment_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, "asyncio.Task[RegenerationOutcome]"]:
        """Start (or join) requests without waiting for them.

        Targets are marked generating before this returns. Unknown ids are
        left out of the returned mapping. Must be called with a running
        event loop.
        """
        return {
            segment_id: self._ensure_request(segment_id)
            for segment_id in self._targets(segment_ids)
            if segment_id in self.store
        }

    async def regenerate_segment(self, segment_id: str) -> RegenerationOutcome:
        """Regenerate (or retry) one segment; raises SegmentNotFoundError if unknown."""
        self.store.get(segment_id)
        return await self._ensure_request(segment_id)

    # ------------------------------------------------------------------
    # Completion handling
    # ------------------------------------------------------------------

    def complete(self, segment_id: str, token: str, generated: GeneratedVoice) -> RegenerationOutcome:
        """Apply a successful completion if ``token`` is still current.

        Returns an outcome with applied=False when the completion is
        ignored (unknown segment, stale or already-used token).
        """
        if not self._accepts(segment_id, token):
            return RegenerationOutcome(segment_id, succeeded=True, applied=False)

        timings: List[WordTiming] = []
        for timing in generated.word_timings:
            try:
                timings.append(timing.validate())
            except InvalidTimingError as exc:
                logger.warning("Dropping word for segment %s: %s", segment_id, exc)
        if not timings:
            return self.fail(segment_id, token, "generation returned no valid word timings")

        source_hash = self._source_hashes.pop(segment_id)
        del self._tokens[segment_id]
        self.store.complete_generation(
            segment_id,
            url=generated.url,
            word_timings=timings,
            source_text_hash=source_hash,
            duration_s=generated.duration_s,
        )
        logger.info("Voice ready for segment %s", segment_id)
        return RegenerationOutcome(segment_id, succeeded=True)

    def fail(self, segment_id: str, token: str, message: str) -> RegenerationOutcome:
        if not self._accepts(segment_id, token):
            return RegenerationOutcome(segment_id, succeeded=False, error=message, applied=False)
        del self._tokens[segment_id]
        self._source_hashes.pop(segment_id, None)
        self.store.fail_generation(segment_id, message)
        logger.warning("Voice generation failed for segment %s: %s", segment_id, message)
        return RegenerationOutcome(segment_id, succeeded=False, error=message)

    def _accepts(self, segment_id: str, token: str) -> bool:
        if segment_id not in self.store:
            logger.info("Ignoring completion for deleted segment %s", segment_id)
            self._tokens.pop(segment_id, None)
            self._source_hashes.pop(segment_id, None)
            return False
        if self._tokens.get(segment_id) != token:
            logger.info("Ignoring stale completion for segment %s", segment_id)
            return False
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _targets(self, segment_ids: Optional[Iterable[str]]) -> List[str]:
        if segment_ids is None:
            needing = self.store.segments_needing_voice
            return [s.id for s in self.store.segments() if s.id in needing]
        return list(dict.fromkeys(segment_ids))

    def _ensure_request(self, segment_id: str) -> "asyncio.Task[RegenerationOutcome]":
        existing = self._in_flight.get(segment_id)
        if existing is not None and not existing.done():
            return existing

        segment = self.store.get(segment_id)
        if segment.voice.status == AssetStatus.GENERATING:
            # Marked generating outside this orchestrator
            logger.warning("Segment %s was generating without a request; reissuing", segment_id)

        token = uuid.uuid4().hex
        self._tokens[segment_id] = token
        self._source_hashes[segment_id] = text_hash(segment.text)
        self.store.begin_generation(segment_id)

        task = asyncio.ensure_future(self._run(segment_id, token, segment.text))
        self._in_flight[segment_id] = task
        task.add_done_callback(lambda t, sid=segment_id: self._forget(sid, t))
        return task

    def _forget(self, segment_id: str, task: "asyncio.Task[RegenerationOutcome]") -> None:
        if self._in_flight.get(segment_id) is task:
            del self._in_flight[segment_id]

    async def _run(self, segment_id: str, token: str, text: str) -> RegenerationOutcome:
        try:
            async with self._get_semaphore():
                generated = await self.generator.generate(text)
        except asyncio.CancelledError:
            raise
        except GenerationFailedError as exc:
            return self.fail(segment_id, token, exc.message)
        except Exception as exc:
            logger.exception("Voice generator raised for segment %s", segment_id)
            return self.fail(segment_id, token, str(exc) or exc.__class__.__name__)
        return self.complete(segment_id, token, generated)

    def _get_semaphore(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
            self._semaphore_loop = loop
        return self._semaphore
