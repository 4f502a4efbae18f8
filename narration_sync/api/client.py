"""Async HTTP client for the voice generation API.

WHY: Regeneration needs narration audio plus word-level timings for a
segment's text. The provider runs this as an asynchronous job, so the
client has to submit, poll and parse. This module keeps that workflow
behind one class that also satisfies the orchestrator's VoiceGenerator
protocol.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. VoiceClient is an async
context manager — enter it to get an authenticated client, exit to close
the connection pool. ``generate(text)`` = create_generation →
poll_until_complete → GenerationJob.to_generated_voice().

RULES:
- Always use the async context manager (async with VoiceClient(...) as client:)
- Polling uses exponential backoff: 2s initial, 1.5x factor, 15s max, 10min timeout
- Non-2xx responses raise VoiceAPIError with status code and body
- A job that ends in "error" raises GenerationError
- Exceeding the polling timeout raises GenerationTimeoutError
- Status callback (on_status) is optional; when provided, called with status strings
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

import httpx

from narration_sync.api.models import GenerationJob
from narration_sync.config import (
    DEFAULT_VOICE_ID,
    DEFAULT_VOICE_SPEED,
    VOICE_API_BASE_URL,
    load_api_key,
)
from narration_sync.core.orchestrator import GeneratedVoice

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_POLL_INITIAL_INTERVAL_S = 2.0
_POLL_BACKOFF_FACTOR = 1.5
_POLL_MAX_INTERVAL_S = 15.0
_POLL_TIMEOUT_S = 10 * 60  # 10 minutes

_MAX_TEXT_CHARS = 5_000


class VoiceAPIError(Exception):
    """Raised when the voice API returns an error response.

    RULES:
    - Always include status_code and message
    - message is the response body text or a summary
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Voice API error {status_code}: {message}")


class GenerationError(Exception):
    """Raised when a generation job enters the "error" status."""


class GenerationTimeoutError(TimeoutError):
    """Raised when polling exceeds the maximum timeout."""


class VoiceClient:
    """Async client for the voice generation API.

    RULES:
    - Use as: async with VoiceClient() as client: ...
    - api_key defaults to load_api_key() from .env
    - base_url defaults to VOICE_API_BASE_URL from config
    - voice_id / speed default to DEFAULT_VOICE_ID / DEFAULT_VOICE_SPEED
    - transport is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        voice_id: str | None = None,
        speed: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        poll_interval_s: float = _POLL_INITIAL_INTERVAL_S,
        poll_timeout_s: float = _POLL_TIMEOUT_S,
    ) -> None:
        self._api_key = api_key or load_api_key()
        self._base_url = (base_url or VOICE_API_BASE_URL).rstrip("/")
        self._voice_id = voice_id or DEFAULT_VOICE_ID
        self._speed = speed or DEFAULT_VOICE_SPEED
        self._transport = transport
        self._poll_interval_s = poll_interval_s
        self._poll_timeout_s = poll_timeout_s
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> VoiceClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=httpx.Timeout(120.0, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "VoiceClient must be used as an async context manager: "
                "async with VoiceClient() as client: ..."
            )
        return self._client

    # ------------------------------------------------------------------
    # Step 1: Submit
    # ------------------------------------------------------------------

    async def create_generation(
        self,
        text: str,
        on_status: Callable[[str], None] | None = None,
    ) -> str:
        """Submit narration text and return the provider's job id.

        RULES:
        - Text must be non-empty and at most 5,000 characters
        - Word timestamps are always requested (captions depend on them)
        - Raises VoiceAPIError on non-2xx responses
        """
        if not text.strip():
            raise ValueError("Cannot generate voice for empty text")
        if len(text) > _MAX_TEXT_CHARS:
            raise ValueError(
                f"Text is {len(text):,} characters; the voice API accepts at most "
                f"{_MAX_TEXT_CHARS:,} per request."
            )

        client = self._ensure_client()
        if on_status:
            on_status("Submitting voice generation...")

        body = {
            "text": text,
            "voice_id": self._voice_id,
            "speed": self._speed,
            "word_timestamps": True,
        }
        resp = await client.post("/voice/generations", json=body)
        if resp.status_code not in (200, 201, 202):
            raise VoiceAPIError(resp.status_code, resp.text)
        return resp.json()["id"]

    # ------------------------------------------------------------------
    # Step 2: Poll
    # ------------------------------------------------------------------

    async def get_generation(self, generation_id: str) -> GenerationJob:
        client = self._ensure_client()
        resp = await client.get(f"/voice/generations/{generation_id}")
        if resp.status_code != 200:
            raise VoiceAPIError(resp.status_code, resp.text)
        return GenerationJob.from_dict(resp.json())

    async def poll_until_complete(
        self,
        generation_id: str,
        on_status: Callable[[str], None] | None = None,
    ) -> GenerationJob:
        """Poll a generation job until it completes or fails.

        HOW: Exponential backoff polling — starts at the initial interval,
        grows by 1.5x per poll, capped at 15s, until the timeout.

        RULES:
        - Returns the GenerationJob when status is "completed"
        - Raises GenerationError when status is "error"
        - Raises GenerationTimeoutError after the timeout
        """
        interval = self._poll_interval_s
        start_time = time.monotonic()

        while True:
            elapsed = time.monotonic() - start_time
            if elapsed > self._poll_timeout_s:
                raise GenerationTimeoutError(
                    f"Voice generation {generation_id} timed out after "
                    f"{elapsed:.0f}s (limit: {self._poll_timeout_s:.0f}s)"
                )

            job = await self.get_generation(generation_id)

            if on_status:
                if job.status == "queued":
                    on_status("Voice generation queued...")
                elif job.status == "processing":
                    on_status(f"Generating voice... (elapsed: {int(elapsed)}s)")
                elif job.status == "completed":
                    on_status("Voice generation complete.")
                elif job.status == "error":
                    on_status(f"Voice generation error: {job.error_message}")

            if job.status == "completed":
                return job
            if job.status == "error":
                raise GenerationError(f"Voice generation failed: {job.error_message}")

            await asyncio.sleep(interval)
            interval = min(interval * _POLL_BACKOFF_FACTOR, _POLL_MAX_INTERVAL_S)

    # ------------------------------------------------------------------
    # VoiceGenerator protocol
    # ------------------------------------------------------------------

    async def generate(
        self,
        text: str,
        on_status: Callable[[str], None] | None = None,
    ) -> GeneratedVoice:
        """Generate narration for ``text`` and return audio URL + word timings."""
        generation_id = await self.create_generation(text, on_status=on_status)
        logger.info("Submitted voice generation %s (%d chars)", generation_id, len(text))
        job = await self.poll_until_complete(generation_id, on_status=on_status)
        return job.to_generated_voice()


class ScopedVoiceGenerator:
    """VoiceGenerator that opens a short-lived VoiceClient per request.

    WHY: Long-running services hold engines for many projects; keeping one
    HTTP connection pool open per engine is wasteful. Configuration errors
    (e.g. a missing API key) surface as a failed segment, not at startup.
    """

    def __init__(self, **client_kwargs) -> None:  # noqa: ANN003
        self._client_kwargs = client_kwargs

    async def generate(self, text: str) -> GeneratedVoice:
        async with VoiceClient(**self._client_kwargs) as client:
            return await client.generate(text)
