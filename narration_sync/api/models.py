"""Voice generation API response dataclasses.

WHY: The voice provider returns flat JSON job objects. Typed dataclasses
make the fields explicit and give one place where the provider's payload
is turned into the engine's GeneratedVoice.

HOW: GenerationJob maps 1:1 to the job object returned by
``POST /voice/generations`` and ``GET /voice/generations/{id}``.

RULES:
- status is one of: "queued", "processing", "completed", "error"
- audio_url and words are only present when status is "completed"
- words carry integer millisecond offsets relative to the audio start
- error_message is only present when status is "error"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from narration_sync.core.orchestrator import GeneratedVoice

TERMINAL_STATUSES = frozenset({"completed", "error"})


@dataclass
class GenerationJob:
    """Status of one voice generation job at the provider."""

    id: str
    status: str
    audio_url: Optional[str] = None
    words: List[Dict[str, Any]] = field(default_factory=list)
    duration_s: Optional[float] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GenerationJob:
        """Parse a job object from a raw API response dict.

        RULES:
        - id and status are always required
        - everything else defaults to None / empty
        """
        return cls(
            id=data["id"],
            status=data["status"],
            audio_url=data.get("audio_url"),
            words=data.get("words") or [],
            duration_s=data.get("duration_s"),
            error_message=data.get("error_message"),
        )

    def to_generated_voice(self) -> GeneratedVoice:
        """Convert a completed job into the engine's GeneratedVoice.

        Raises:
            SnapshotError: if the audio URL or word timings are malformed.
        """
        return GeneratedVoice.from_dict({
            "url": self.audio_url,
            "word_timings": self.words,
            "duration_s": self.duration_s,
        })
