"""Tests for the async voice API client.

WHY: The client is the only code that talks to the voice provider. Its
submit/poll/parse workflow and its error mapping decide whether a
segment ends up ready or failed.

HOW: httpx.MockTransport answers requests in-process; a small fake keeps
per-job state so polling can walk through queued → processing →
completed. Poll intervals are zero so tests do not sleep.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from narration_sync.api.client import (
    GenerationError,
    GenerationTimeoutError,
    ScopedVoiceGenerator,
    VoiceAPIError,
    VoiceClient,
)
from narration_sync.api.models import GenerationJob
from narration_sync.core.errors import SnapshotError
from narration_sync.core.orchestrator import GeneratedVoice

_WORDS = [
    {"word": "Hello", "start_ms": 0, "end_ms": 320},
    {"word": "harbour.", "start_ms": 360, "end_ms": 900},
]


class FakeVoiceAPI:
    """Scripted provider: each poll pops the next status from ``statuses``."""

    def __init__(self, statuses=("queued", "processing", "completed"), submit_status=201, error_message=None):
        self.statuses = list(statuses)
        self.submit_status = submit_status
        self.error_message = error_message
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            if self.submit_status >= 400:
                return httpx.Response(self.submit_status, text="quota exceeded")
            return httpx.Response(self.submit_status, json={"id": "gen-1", "status": "queued"})

        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        body = {"id": "gen-1", "status": status}
        if status == "completed":
            body.update({
                "audio_url": "https://cdn.example.com/gen-1.mp3",
                "words": _WORDS,
                "duration_s": 1.1,
            })
        if status == "error":
            body["error_message"] = self.error_message
        return httpx.Response(200, json=body)

    def client(self, **kwargs) -> VoiceClient:
        kwargs.setdefault("poll_interval_s", 0)
        return VoiceClient(
            api_key="test-key",
            base_url="https://voice.example.com/v1",
            transport=httpx.MockTransport(self.handler),
            **kwargs,
        )


async def _generate(api: FakeVoiceAPI, text: str = "Hello harbour.", **kwargs):
    async with api.client(**kwargs) as client:
        return await client.generate(text)


class TestGenerate:

    def test_returns_generated_voice(self):
        api = FakeVoiceAPI()
        voice = asyncio.run(_generate(api))

        assert isinstance(voice, GeneratedVoice)
        assert voice.url == "https://cdn.example.com/gen-1.mp3"
        assert [w.word for w in voice.word_timings] == ["Hello", "harbour."]
        assert voice.word_timings[1].end_ms == 900
        assert voice.duration_s == pytest.approx(1.1)

    def test_submit_request(self):
        api = FakeVoiceAPI()
        asyncio.run(_generate(api))

        submit = api.requests[0]
        assert submit.method == "POST"
        assert submit.url.path == "/v1/voice/generations"
        assert submit.headers["Authorization"] == "Bearer test-key"
        body = json.loads(submit.content)
        assert body["text"] == "Hello harbour."
        assert body["word_timestamps"] is True

    def test_polls_until_completed(self):
        api = FakeVoiceAPI()
        asyncio.run(_generate(api))
        polls = [r for r in api.requests if r.method == "GET"]
        assert len(polls) == 3
        assert polls[0].url.path == "/v1/voice/generations/gen-1"

    def test_status_callback(self):
        api = FakeVoiceAPI()
        messages = []

        async def _run():
            async with api.client() as client:
                return await client.generate("Hello harbour.", on_status=messages.append)

        asyncio.run(_run())
        assert messages[0] == "Submitting voice generation..."
        assert messages[-1] == "Voice generation complete."


class TestErrors:

    def test_error_status_raises_generation_error(self):
        api = FakeVoiceAPI(statuses=("error",), error_message="unsupported language")
        with pytest.raises(GenerationError, match="unsupported language"):
            asyncio.run(_generate(api))

    def test_non_2xx_raises_api_error(self):
        api = FakeVoiceAPI(submit_status=429)
        with pytest.raises(VoiceAPIError) as exc_info:
            asyncio.run(_generate(api))
        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "quota exceeded"

    def test_timeout(self):
        api = FakeVoiceAPI(statuses=("processing",))
        with pytest.raises(GenerationTimeoutError):
            asyncio.run(_generate(api, poll_timeout_s=-1))

    def test_empty_text_rejected_before_request(self):
        api = FakeVoiceAPI()
        with pytest.raises(ValueError):
            asyncio.run(_generate(api, text="   "))
        assert api.requests == []

    def test_text_too_long(self):
        api = FakeVoiceAPI()
        with pytest.raises(ValueError, match="at most"):
            asyncio.run(_generate(api, text="a" * 5001))

    def test_requires_context_manager(self):
        client = FakeVoiceAPI().client()
        with pytest.raises(RuntimeError, match="async context manager"):
            asyncio.run(client.generate("Hello."))

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("VOICE_API_KEY", raising=False)
        with pytest.raises(ValueError, match="VOICE_API_KEY"):
            VoiceClient()


class TestGenerationJob:

    def test_from_dict_defaults(self):
        job = GenerationJob.from_dict({"id": "g", "status": "queued"})
        assert job.audio_url is None
        assert job.words == []
        assert job.is_terminal is False

    def test_completed_without_url_is_malformed(self):
        job = GenerationJob.from_dict({"id": "g", "status": "completed", "words": _WORDS})
        with pytest.raises(SnapshotError):
            job.to_generated_voice()


class TestScopedVoiceGenerator:

    def test_generates_through_a_fresh_client(self):
        api = FakeVoiceAPI()
        generator = ScopedVoiceGenerator(
            api_key="test-key",
            base_url="https://voice.example.com/v1",
            transport=httpx.MockTransport(api.handler),
            poll_interval_s=0,
        )
        voice = asyncio.run(generator.generate("Hello harbour."))
        assert voice.url == "https://cdn.example.com/gen-1.mp3"

    def test_missing_key_surfaces_on_generate(self, monkeypatch):
        monkeypatch.delenv("VOICE_API_KEY", raising=False)
        generator = ScopedVoiceGenerator()
        with pytest.raises(ValueError):
            asyncio.run(generator.generate("Hello."))
