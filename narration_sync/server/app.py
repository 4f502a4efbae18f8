"""FastAPI application exposing narration timelines over HTTP.

WHY: The editor UI, the renderer and automation (n8n, curl) all need to
edit segments, check sync state, trigger voice regeneration and query
captions for a project. FastAPI provides automatic OpenAPI documentation,
request validation, and background task support.

HOW: A single FastAPI app backed by a module-level ProjectRegistry. Edits
are applied to the project's TimelineEngine and flushed to the document
store. POST /projects/{id}/regenerate marks the targets generating before
answering 202, then awaits the orchestrator in a background task and
flushes the result. A lifespan task flushes every live project
periodically.

RULES:
- All endpoints have OpenAPI descriptions on every parameter and response
- Error responses use a consistent ErrorResponse schema
- 404 unknown project or segment, 409 order conflict, 422 invalid input
- Every mutation is flushed to the document store before responding
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Iterator, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.responses import Response

from narration_sync import __version__
from narration_sync.api.client import ScopedVoiceGenerator
from narration_sync.config import PROJECT_STORE_DIR, Settings
from narration_sync.core.captions import frame_to_ms
from narration_sync.core.errors import OrderConflictError, SegmentNotFoundError, SnapshotError
from narration_sync.core.models import CaptionStyle, Segment
from narration_sync.engine import TimelineEngine
from narration_sync.server.models import (
    CaptionFrameResponse,
    CaptionSegmentResponse,
    CreateProjectRequest,
    DriftResponse,
    ErrorResponse,
    HealthResponse,
    InsertSegmentRequest,
    ProjectResponse,
    RegenerateRequest,
    RegenerationAcceptedResponse,
    ReorderRequest,
    ResyncResponse,
    SegmentResponse,
    SyncResponse,
    UpdateSegmentRequest,
)
from narration_sync.server.projects import ProjectRegistry, split_script
from narration_sync.storage.documents import (
    DocumentStore,
    InMemoryDocumentStore,
    JsonFileDocumentStore,
    check_project_id,
)

logger = logging.getLogger(__name__)

_FLUSH_INTERVAL_S = 60

# ---------------------------------------------------------------------------
# App and registry setup
# ---------------------------------------------------------------------------


def _default_documents() -> DocumentStore:
    if PROJECT_STORE_DIR:
        return JsonFileDocumentStore(PROJECT_STORE_DIR)
    return InMemoryDocumentStore()


registry = ProjectRegistry(
    documents=_default_documents(),
    generator_factory=lambda project_id: ScopedVoiceGenerator(),
)


async def _periodic_flush() -> None:
    """Write every live project to the document store once a minute."""
    while True:
        await asyncio.sleep(_FLUSH_INTERVAL_S)
        registry.flush_all()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start periodic flushing on startup; cancel it and flush on shutdown."""
    task = asyncio.create_task(_periodic_flush())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    registry.flush_all()


app = FastAPI(
    lifespan=lifespan,
    title="Narration Timeline Sync API",
    description=(
        "REST API for narrated video timelines: edit segments, track which "
        "segments need new voice-over, regenerate narration in the background "
        "and query word-level captions for playback."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Project or segment not found"}}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_engine(project_id: str) -> TimelineEngine:
    try:
        engine = registry.get(project_id)
    except SnapshotError as exc:
        logger.error("Stored project %s is unreadable: %s", project_id, exc)
        raise HTTPException(status_code=500, detail="Stored project is unreadable: {}".format(exc))
    except ValueError:
        # Not a valid project id, so it cannot exist
        engine = None
    if engine is None:
        raise HTTPException(status_code=404, detail="Project not found: {}".format(project_id))
    return engine


@contextmanager
def _engine_errors() -> Iterator[None]:
    """Translate engine exceptions into HTTP errors."""
    try:
        yield
    except SegmentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except OrderConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


def _segment_to_response(segment: Segment, needing: set) -> SegmentResponse:
    return SegmentResponse(
        id=segment.id,
        order=segment.order,
        text=segment.text,
        duration_s=segment.duration_s,
        start_ms=segment.start_ms,
        end_ms=segment.end_ms,
        image_prompt=segment.image_prompt,
        voice_status=segment.voice.status.value,
        voice_url=segment.voice.url,
        voice_error=segment.voice.error,
        needs_voice=segment.id in needing,
    )


def _project_to_response(engine: TimelineEngine) -> ProjectResponse:
    needing = engine.segments_needing_voice
    timeline = engine.store.timeline.to_dict()
    timeline["sync_status"] = engine.sync_status.value
    return ProjectResponse(
        project_id=engine.project_id,
        sync_status=engine.sync_status.value,
        total_duration_s=engine.store.total_duration_s,
        segments=[_segment_to_response(s, needing) for s in engine.store.segments()],
        settings=engine.settings.to_dict(),
        timeline=timeline,
    )


def _drift_response(engine: TimelineEngine) -> DriftResponse:
    return DriftResponse(**engine.detect_drift().to_dict())


async def _finish_regeneration(project_id: str, segment_ids: List[str]) -> None:
    """Await the scheduled requests and persist the outcome.

    WHY: The regenerate endpoint answers 202 as soon as the targets are
    marked generating. This background task waits for the orchestrator
    and writes the updated project to the document store.
    """
    engine = registry.get(project_id)
    if engine is None:
        return
    result = await engine.regenerate_timeline_sync(segment_ids)
    registry.flush(project_id)
    logger.info(
        "Regeneration finished for project %s: %d succeeded, %d failed, %d skipped",
        project_id,
        len(result.succeeded),
        len(result.failed),
        len(result.skipped),
    )


# ---------------------------------------------------------------------------
# Endpoints: Projects
# ---------------------------------------------------------------------------


@app.post(
    "/projects",
    response_model=ProjectResponse,
    status_code=201,
    tags=["projects"],
    summary="Create a project",
    description=(
        "Create a narration timeline from a list of segment texts or from a "
        "full script (split into one segment per sentence). Durations are "
        "estimated from the speech rate; every segment starts out needing voice."
    ),
    responses={
        409: {"model": ErrorResponse, "description": "Project id already exists"},
        422: {"model": ErrorResponse, "description": "Invalid body or settings"},
        429: {"model": ErrorResponse, "description": "Too many live projects"},
    },
)
async def create_project(body: CreateProjectRequest) -> ProjectResponse:
    if (body.segments is None) == (body.script is None):
        raise HTTPException(status_code=422, detail="Provide exactly one of 'segments' or 'script'")
    texts = body.segments if body.segments is not None else split_script(body.script or "")

    defaults = Settings()
    try:
        settings = Settings(
            words_per_minute=body.words_per_minute or defaults.words_per_minute,
            resync_threshold_ms=(
                body.resync_threshold_ms
                if body.resync_threshold_ms is not None
                else defaults.resync_threshold_ms
            ),
            max_concurrency=body.max_concurrency or defaults.max_concurrency,
        )
        if body.project_id is not None:
            check_project_id(body.project_id)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    if body.project_id is not None and registry.get(body.project_id) is not None:
        raise HTTPException(
            status_code=409,
            detail="Project already exists: {}".format(body.project_id),
        )

    try:
        engine = registry.create(texts, settings=settings, project_id=body.project_id)
    except ValueError as exc:
        raise HTTPException(status_code=429, detail=str(exc))
    return _project_to_response(engine)


@app.get(
    "/projects/{project_id}",
    response_model=ProjectResponse,
    tags=["projects"],
    summary="Get a project",
    description="Segments in playback order with their voice state, plus timeline sync status.",
    responses=_NOT_FOUND,
)
async def get_project(project_id: str) -> ProjectResponse:
    return _project_to_response(_get_engine(project_id))


@app.delete(
    "/projects/{project_id}",
    status_code=204,
    tags=["projects"],
    summary="Delete a project",
    description="Remove the project and its stored document.",
    responses=_NOT_FOUND,
)
async def delete_project(project_id: str) -> Response:
    try:
        deleted = registry.delete(project_id)
    except ValueError:
        deleted = False
    if not deleted:
        raise HTTPException(status_code=404, detail="Project not found: {}".format(project_id))
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Endpoints: Segments
# ---------------------------------------------------------------------------


@app.post(
    "/projects/{project_id}/segments",
    response_model=SegmentResponse,
    status_code=201,
    tags=["segments"],
    summary="Insert a segment",
    description=(
        "Insert a new segment at a position (default: the end). Later "
        "segments shift; the new segment needs voice."
    ),
    responses=_NOT_FOUND,
)
async def insert_segment(project_id: str, body: InsertSegmentRequest) -> SegmentResponse:
    engine = _get_engine(project_id)
    with _engine_errors():
        segment = engine.store.insert(body.text, position=body.position, image_prompt=body.image_prompt)
    registry.flush(project_id)
    return _segment_to_response(segment, engine.segments_needing_voice)


@app.patch(
    "/projects/{project_id}/segments/{segment_id}",
    response_model=SegmentResponse,
    tags=["segments"],
    summary="Edit a segment",
    description=(
        "Change a segment's text, duration, visual prompt or caption style. "
        "A text change marks the segment's voice as out of sync."
    ),
    responses={
        **_NOT_FOUND,
        422: {"model": ErrorResponse, "description": "Invalid value"},
    },
)
async def update_segment(
    project_id: str,
    segment_id: str,
    body: UpdateSegmentRequest,
) -> SegmentResponse:
    engine = _get_engine(project_id)
    with _engine_errors():
        segment = engine.store.get(segment_id)
        if body.text is not None:
            segment = engine.store.edit_text(segment_id, body.text)
        if body.duration_s is not None:
            segment = engine.store.set_duration(segment_id, body.duration_s, ripple=body.ripple)
        if body.image_prompt is not None:
            segment = engine.store.set_image_prompt(segment_id, body.image_prompt)
        if body.caption_style is not None:
            try:
                style = CaptionStyle.from_dict(body.caption_style)
            except SnapshotError as exc:
                raise HTTPException(status_code=422, detail=str(exc))
            segment = engine.store.set_caption_style(segment_id, style)
    registry.flush(project_id)
    return _segment_to_response(segment, engine.segments_needing_voice)


@app.delete(
    "/projects/{project_id}/segments/{segment_id}",
    status_code=204,
    tags=["segments"],
    summary="Delete a segment",
    description="Remove a segment; later segments shift up to close the gap.",
    responses=_NOT_FOUND,
)
async def delete_segment(project_id: str, segment_id: str) -> Response:
    engine = _get_engine(project_id)
    with _engine_errors():
        engine.store.delete(segment_id)
    registry.flush(project_id)
    return Response(status_code=204)


@app.post(
    "/projects/{project_id}/segments/reorder",
    response_model=ProjectResponse,
    tags=["segments"],
    summary="Reorder segments",
    description=(
        "Apply a full new playback order, or move one segment to a position. "
        "A conflicting order (duplicate, missing or unknown ids) is rejected "
        "and the project is left unchanged."
    ),
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Order conflict"},
        422: {"model": ErrorResponse, "description": "Neither order nor segment_id/position given"},
    },
)
async def reorder_segments(project_id: str, body: ReorderRequest) -> ProjectResponse:
    engine = _get_engine(project_id)
    with _engine_errors():
        if body.order is not None:
            engine.store.reorder(body.order)
        elif body.segment_id is not None and body.position is not None:
            engine.store.move(body.segment_id, body.position)
        else:
            raise HTTPException(
                status_code=422,
                detail="Provide 'order', or 'segment_id' together with 'position'",
            )
    registry.flush(project_id)
    return _project_to_response(engine)


# ---------------------------------------------------------------------------
# Endpoints: Sync
# ---------------------------------------------------------------------------


@app.get(
    "/projects/{project_id}/sync",
    response_model=SyncResponse,
    tags=["sync"],
    summary="Get sync status",
    description="Timeline sync status, segments needing voice, in-flight requests and drift.",
    responses=_NOT_FOUND,
)
async def get_sync(project_id: str) -> SyncResponse:
    engine = _get_engine(project_id)
    needing = engine.segments_needing_voice
    return SyncResponse(
        project_id=project_id,
        sync_status=engine.sync_status.value,
        segments_needing_voice=[s.id for s in engine.store.segments() if s.id in needing],
        in_flight=engine.orchestrator.in_flight(),
        drift=_drift_response(engine),
    )


@app.post(
    "/projects/{project_id}/resync",
    response_model=ResyncResponse,
    tags=["sync"],
    summary="Resync start times",
    description="Recompute every segment's start time from the durations before it.",
    responses=_NOT_FOUND,
)
async def resync_project(project_id: str) -> ResyncResponse:
    engine = _get_engine(project_id)
    moved = engine.resync()
    registry.flush(project_id)
    return ResyncResponse(project_id=project_id, moved=moved, drift=_drift_response(engine))


@app.post(
    "/projects/{project_id}/regenerate",
    response_model=RegenerationAcceptedResponse,
    status_code=202,
    tags=["sync"],
    summary="Regenerate voice",
    description=(
        "Regenerate narration for the given segments (default: every segment "
        "needing voice). Returns immediately; poll GET /projects/{id}/sync. "
        "Segments already generating are not requested twice."
    ),
    responses=_NOT_FOUND,
)
async def regenerate_project(
    project_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[RegenerateRequest] = None,
) -> RegenerationAcceptedResponse:
    engine = _get_engine(project_id)
    segment_ids = body.segment_ids if body is not None else None
    if segment_ids is not None:
        unknown = [sid for sid in segment_ids if sid not in engine.store]
        if unknown:
            raise HTTPException(
                status_code=404,
                detail="Segment not found: {}".format(", ".join(unknown)),
            )

    scheduled = list(engine.orchestrator.schedule(segment_ids))
    if scheduled:
        registry.flush(project_id)
        background_tasks.add_task(_finish_regeneration, project_id, scheduled)

    return RegenerationAcceptedResponse(
        project_id=project_id,
        scheduled=scheduled,
        sync_status=engine.sync_status.value,
    )


# ---------------------------------------------------------------------------
# Endpoints: Captions
# ---------------------------------------------------------------------------


@app.get(
    "/projects/{project_id}/captions",
    response_model=List[CaptionSegmentResponse],
    tags=["captions"],
    summary="Caption data per segment",
    description="Caption chunks and word timings for every segment, in playback order.",
    responses=_NOT_FOUND,
)
async def get_captions(project_id: str) -> List[CaptionSegmentResponse]:
    engine = _get_engine(project_id)
    return [CaptionSegmentResponse(**item) for item in engine.caption_projection()]


@app.get(
    "/projects/{project_id}/captions/frame",
    response_model=CaptionFrameResponse,
    tags=["captions"],
    summary="Resolve one caption frame",
    description=(
        "Resolve the caption shown at a timeline time, given either time_ms "
        "or a frame index plus fps."
    ),
    responses={
        **_NOT_FOUND,
        422: {"model": ErrorResponse, "description": "Neither time_ms nor frame/fps given"},
    },
)
async def get_caption_frame(
    project_id: str,
    time_ms: Optional[int] = Query(default=None, ge=0, description="Timeline time in ms."),
    frame: Optional[int] = Query(default=None, ge=0, description="Frame index."),
    fps: Optional[float] = Query(default=None, gt=0, description="Frames per second."),
) -> CaptionFrameResponse:
    engine = _get_engine(project_id)
    if time_ms is None:
        if frame is None or fps is None:
            raise HTTPException(status_code=422, detail="Provide 'time_ms', or 'frame' together with 'fps'")
        time_ms = frame_to_ms(frame, fps)

    caption = engine.resolve(time_ms)
    return CaptionFrameResponse(
        time_ms=time_ms,
        active_segment_id=caption.active_segment_id,
        text=caption.text,
        plain=caption.plain,
        words=[w.to_dict() for w in caption.words],
        window=[w.to_dict() for w in caption.visible_window()],
        style=caption.style.to_dict() if caption.style is not None else None,
    )


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness and readiness check for load balancers and orchestrators.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__, projects=len(registry.list_ids()))


def run_api(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Run the API with uvicorn (used by ``narration-sync serve``)."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)
