"""Whole-timeline sync status and drift detection.

WHY: The editor shows one indicator for "do all voice assets match the
current script?". That indicator is entirely derived from per-segment
asset status, so there is no separate state to keep consistent.

HOW: ``needs_voice`` decides per segment; ``derive_sync_status`` folds the
segments in priority order (regenerating > out_of_sync > synced).
``detect_drift`` walks segments in order, accumulating the expected start
from prior durations, and reports segments whose stored start time has
wandered beyond a threshold.

RULES:
- A segment needs voice when its asset is pending, generating or failed,
  or when the asset was generated from different text
- Any generating segment makes the timeline "regenerating"
- Functions here never mutate segments
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable, List, Set

from narration_sync.config import DEFAULT_RESYNC_THRESHOLD_MS
from narration_sync.core.models import AssetStatus, Segment


class SyncStatus(str, enum.Enum):
    SYNCED = "synced"
    OUT_OF_SYNC = "out_of_sync"
    REGENERATING = "regenerating"


def needs_voice(segment: Segment) -> bool:
    voice = segment.voice
    if voice.status != AssetStatus.READY:
        return True
    return voice.source_text_hash != segment.text_hash


def segments_needing_voice(segments: Iterable[Segment]) -> Set[str]:
    return {segment.id for segment in segments if needs_voice(segment)}


def derive_sync_status(segments: Iterable[Segment]) -> SyncStatus:
    """Fold per-segment asset state into the timeline status.

    RULES:
    - generating anywhere → REGENERATING
    - else any segment needing voice → OUT_OF_SYNC
    - else SYNCED (an empty timeline is synced)
    """
    out_of_sync = False
    for segment in segments:
        if segment.voice.status == AssetStatus.GENERATING:
            return SyncStatus.REGENERATING
        if needs_voice(segment):
            out_of_sync = True
    return SyncStatus.OUT_OF_SYNC if out_of_sync else SyncStatus.SYNCED


@dataclass
class DriftReport:
    """Result of a drift check over the stored segment start times."""

    drifted: bool = False
    drifted_segment_ids: List[str] = field(default_factory=list)
    max_drift_ms: int = 0
    threshold_ms: int = DEFAULT_RESYNC_THRESHOLD_MS

    def to_dict(self) -> dict:
        return {
            "drifted": self.drifted,
            "drifted_segment_ids": list(self.drifted_segment_ids),
            "max_drift_ms": self.max_drift_ms,
            "threshold_ms": self.threshold_ms,
        }


def detect_drift(
    segments: Iterable[Segment],
    threshold_ms: int = DEFAULT_RESYNC_THRESHOLD_MS,
) -> DriftReport:
    """Report segments whose stored start differs from the rippled position.

    WHY: A duration correction (e.g. from real generated audio length)
    applied to one segment without rippling leaves every later segment at
    a stale absolute offset.

    HOW: Walk in order; the expected start of each segment is the sum of
    the durations before it. A difference strictly greater than
    ``threshold_ms`` counts as drift.
    """
    report = DriftReport(threshold_ms=threshold_ms)
    expected_ms = 0
    for segment in sorted(segments, key=lambda s: s.order):
        drift = abs(segment.start_ms - expected_ms)
        if drift > threshold_ms:
            report.drifted = True
            report.drifted_segment_ids.append(segment.id)
        report.max_drift_ms = max(report.max_drift_ms, drift)
        expected_ms += segment.duration_ms
    return report
