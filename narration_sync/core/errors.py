"""Exception taxonomy for the timeline synchronization engine.

WHY: Callers (HTTP layer, CLI, orchestrator) need to tell a bad reorder
apart from a missing segment or a provider failure. Typed exceptions make
each failure mode explicit and let the HTTP layer map them to status codes.

RULES:
- Every engine exception derives from SyncEngineError
- Generation failures are recorded on segments, never raised to playback
- The caption resolver never raises any of these
"""

from __future__ import annotations

from typing import Optional


class SyncEngineError(Exception):
    """Base class for all engine errors."""


class GenerationFailedError(SyncEngineError):
    """Voice generation for a segment failed (provider error or bad result).

    The orchestrator converts this into segment status ``failed``; the
    segment stays retryable.
    """

    def __init__(self, segment_id: str, message: str) -> None:
        self.segment_id = segment_id
        self.message = message
        super().__init__("Generation failed for segment {}: {}".format(segment_id, message))


class InvalidTimingError(SyncEngineError, ValueError):
    """A word timing violates start_ms <= end_ms."""

    def __init__(self, word: str, start_ms: int, end_ms: int) -> None:
        self.word = word
        self.start_ms = start_ms
        self.end_ms = end_ms
        super().__init__(
            "Invalid timing for word {!r}: start {}ms > end {}ms".format(word, start_ms, end_ms)
        )


class OrderConflictError(SyncEngineError):
    """A reorder would leave two segments sharing an order, or a gap.

    The store rejects the mutation and keeps its prior state.
    """


class SegmentNotFoundError(SyncEngineError, KeyError):
    def __init__(self, segment_id: str) -> None:
        self.segment_id = segment_id
        super().__init__(segment_id)

    def __str__(self) -> str:
        return "Segment not found: {}".format(self.segment_id)


class SnapshotError(SyncEngineError, ValueError):
    """A persisted or submitted payload could not be validated."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        if path:
            message = "{} (at {})".format(message, path)
        super().__init__(message)
