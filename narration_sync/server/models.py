"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation. Request
bodies are the validation boundary for editor input; responses are the
read projections rendering surfaces consume.

HOW: Each endpoint pair (request + response) has its own model. Response
models are built from engine snapshots and projections in app.py. All
models include Field descriptions for rich OpenAPI docs.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Status strings match the engine enums (AssetStatus, SyncStatus, WordState)
- Response models never expose orchestrator internals (tokens, tasks)
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CreateProjectRequest(BaseModel):
    """Body for POST /projects.

    RULES:
    - Exactly one of segments / script is required
    - script is split into one segment per sentence
    - Tunables default to the server configuration
    """

    segments: Optional[List[str]] = Field(
        default=None,
        description="Narration text per segment, in playback order.",
    )
    script: Optional[str] = Field(
        default=None,
        description="Full narration script; split into one segment per sentence.",
    )
    project_id: Optional[str] = Field(
        default=None,
        description="Project id ([A-Za-z0-9_-], max 128 chars). Generated when omitted.",
    )
    words_per_minute: Optional[int] = Field(
        default=None,
        gt=0,
        description="Speech rate used for duration estimates.",
    )
    resync_threshold_ms: Optional[int] = Field(
        default=None,
        ge=0,
        description="Drift (ms) above which a segment is reported as out of position.",
    )
    max_concurrency: Optional[int] = Field(
        default=None,
        ge=1,
        description="Maximum concurrent voice generation requests for this project.",
    )

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "segments": [
                    "Welcome to the tour.",
                    "First, we visit the harbour.",
                ],
                "words_per_minute": 150,
            }
        ]
    }}


class InsertSegmentRequest(BaseModel):
    text: str = Field(default="", description="Narration text of the new segment.")
    position: Optional[int] = Field(
        default=None,
        ge=0,
        description="Zero-based insert position. Defaults to the end of the timeline.",
    )
    image_prompt: str = Field(default="", description="Prompt for the segment's visual.")


class UpdateSegmentRequest(BaseModel):
    """Body for PATCH /projects/{id}/segments/{sid}.

    RULES:
    - Only provided fields are applied
    - A text change marks the voice asset pending and re-estimates duration
    - duration_s with ripple=False leaves later start times alone (drift)
    """

    text: Optional[str] = Field(default=None, description="New narration text.")
    duration_s: Optional[float] = Field(
        default=None,
        gt=0,
        description="Explicit segment duration in seconds.",
    )
    ripple: bool = Field(
        default=True,
        description="Shift later segments when duration_s changes.",
    )
    image_prompt: Optional[str] = Field(default=None, description="New visual prompt.")
    caption_style: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Caption style overrides (active_color, appeared_color, default_color, "
        "font_family, font_size).",
    )


class ReorderRequest(BaseModel):
    """Body for POST /projects/{id}/segments/reorder.

    RULES:
    - Either order (every segment id, new playback order) or
      segment_id + position (move one segment)
    """

    order: Optional[List[str]] = Field(
        default=None,
        description="Every segment id exactly once, in the new playback order.",
    )
    segment_id: Optional[str] = Field(default=None, description="Segment to move.")
    position: Optional[int] = Field(
        default=None,
        description="Zero-based target position for segment_id.",
    )


class RegenerateRequest(BaseModel):
    segment_ids: Optional[List[str]] = Field(
        default=None,
        description="Segments to regenerate. Defaults to every segment needing voice.",
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class WordTimingModel(BaseModel):
    word: str = Field(description="Spoken word.")
    start_ms: int = Field(description="Start offset in ms, relative to segment start.")
    end_ms: int = Field(description="End offset in ms, relative to segment start.")
    confidence: Optional[float] = Field(default=None, description="Provider confidence (0-1).")


class SegmentResponse(BaseModel):
    id: str = Field(description="Stable segment id.")
    order: int = Field(description="Zero-based playback position.")
    text: str = Field(description="Narration text.")
    duration_s: float = Field(description="Segment duration (estimated or from generated audio).")
    start_ms: int = Field(description="Absolute start on the timeline (ms).")
    end_ms: int = Field(description="Absolute end on the timeline (ms).")
    image_prompt: str = Field(description="Prompt for the segment's visual.")
    voice_status: str = Field(description="pending, generating, ready or failed.")
    voice_url: Optional[str] = Field(default=None, description="URL of the generated narration audio.")
    voice_error: Optional[str] = Field(
        default=None,
        description="Last generation error, only present when voice_status is 'failed'.",
    )
    needs_voice: bool = Field(description="True when the voice no longer matches the text.")


class ProjectResponse(BaseModel):
    project_id: str = Field(description="Project id.")
    sync_status: str = Field(description="synced, out_of_sync or regenerating.")
    total_duration_s: float = Field(description="Sum of all segment durations.")
    segments: List[SegmentResponse] = Field(description="Segments in playback order.")
    settings: Dict[str, Any] = Field(description="Project tunables.")
    timeline: Dict[str, Any] = Field(description="Playback state and change timestamps.")


class DriftResponse(BaseModel):
    drifted: bool = Field(description="True when any segment exceeds the threshold.")
    drifted_segment_ids: List[str] = Field(description="Segments out of position.")
    max_drift_ms: int = Field(description="Largest absolute drift found (ms).")
    threshold_ms: int = Field(description="Threshold used for this report (ms).")


class SyncResponse(BaseModel):
    project_id: str = Field(description="Project id.")
    sync_status: str = Field(description="synced, out_of_sync or regenerating.")
    segments_needing_voice: List[str] = Field(
        description="Segments whose voice is missing, stale, failed or being generated.",
    )
    in_flight: List[str] = Field(description="Segments with an outstanding generation request.")
    drift: DriftResponse = Field(description="Start-time drift report.")


class ResyncResponse(BaseModel):
    project_id: str = Field(description="Project id.")
    moved: int = Field(description="Number of segments whose start time changed.")
    drift: DriftResponse = Field(description="Drift report after the resync pass.")


class RegenerationAcceptedResponse(BaseModel):
    project_id: str = Field(description="Project id.")
    scheduled: List[str] = Field(description="Segments now generating (new or joined requests).")
    sync_status: str = Field(description="Timeline status right after scheduling.")


class CaptionChunkModel(BaseModel):
    id: str = Field(description="Chunk id ({segment_id}_chunk_{n}).")
    text: str = Field(description="Chunk text.")
    start_ms: int = Field(description="Start offset in ms, relative to segment start.")
    end_ms: int = Field(description="End offset in ms, relative to segment start.")
    duration_ms: int = Field(description="Chunk duration (ms).")
    word_count: int = Field(description="Words in the chunk.")
    char_count: int = Field(description="Characters in the chunk.")
    lines: List[str] = Field(description="Chunk text broken into display lines.")


class CaptionSegmentResponse(BaseModel):
    segment_id: str = Field(description="Segment id.")
    order: int = Field(description="Zero-based playback position.")
    text: str = Field(description="Narration text.")
    start_ms: int = Field(description="Absolute start on the timeline (ms).")
    end_ms: int = Field(description="Absolute end on the timeline (ms).")
    voice_status: str = Field(description="pending, generating, ready or failed.")
    caption_chunks: List[CaptionChunkModel] = Field(description="Caption chunks for display.")
    word_timings: List[WordTimingModel] = Field(description="Word timings from the voice asset.")


class CaptionWordModel(BaseModel):
    word: str = Field(description="Word text.")
    state: str = Field(description="upcoming, active or appeared.")
    start_ms: int = Field(description="Start offset in ms, relative to segment start.")
    end_ms: int = Field(description="End offset in ms, relative to segment start.")


class CaptionFrameResponse(BaseModel):
    """One resolved caption frame.

    RULES:
    - active_segment_id is None when nothing is shown at time_ms
    - plain is True when the full text is shown without word highlighting
    - window is the short lip-sync view around the active word
    """

    time_ms: int = Field(description="Timeline time the frame was resolved at (ms).")
    active_segment_id: Optional[str] = Field(default=None, description="Segment on screen.")
    text: str = Field(description="Full caption text of the active segment.")
    plain: bool = Field(description="True when no usable word timings exist.")
    words: List[CaptionWordModel] = Field(description="Every word with its highlight state.")
    window: List[CaptionWordModel] = Field(description="Words around the active word.")
    style: Optional[Dict[str, Any]] = Field(default=None, description="Caption style overrides.")


class ErrorResponse(BaseModel):
    """Standard error response body.

    RULES:
    - detail is always a human-readable error message
    """

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
    projects: int = Field(description="Number of known projects.")
