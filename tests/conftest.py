"""Shared test fixtures for the narration_sync test suite.

WHY: Most test modules need the same building blocks: segments with
known word timings, a store whose voice is already in sync, and a voice
generator that behaves like the provider without any network access.

HOW: Factory fixtures return callables so each test builds exactly the
data it needs. FakeVoiceGenerator produces deterministic word timings
(300 ms per word, 250 ms spoken) and records every request.

RULES:
- No test talks to a real voice API
- Word timings are deterministic so caption assertions are exact
- A gate (asyncio.Event) lets tests hold requests in flight
"""

from __future__ import annotations

import asyncio
from typing import Iterable, List, Optional

import pytest

from narration_sync.core.errors import GenerationFailedError
from narration_sync.core.models import AssetStatus, Segment, VoiceAsset, WordTiming, text_hash
from narration_sync.core.orchestrator import GeneratedVoice
from narration_sync.core.store import SegmentStore

SAMPLE_TEXTS = [
    "Welcome to the harbour tour.",
    "The old lighthouse was built in 1894.",
    "Fishing boats still leave before dawn.",
]


def timings_for(text: str, step_ms: int = 300, spoken_ms: int = 250) -> List[WordTiming]:
    return [
        WordTiming(word=word, start_ms=i * step_ms, end_ms=i * step_ms + spoken_ms)
        for i, word in enumerate(text.split())
    ]


class FakeVoiceGenerator:
    """In-memory VoiceGenerator double.

    RULES:
    - fail_on: texts that raise RuntimeError("provider unavailable")
    - reject_on: texts that raise GenerationFailedError
    - gate: when set, every request waits for it before answering
    - bad_timings: return words with start > end only
    """

    def __init__(
        self,
        fail_on: Iterable[str] = (),
        reject_on: Iterable[str] = (),
        duration_s: Optional[float] = None,
        bad_timings: bool = False,
        delay_s: float = 0.0,
    ) -> None:
        self.fail_on = set(fail_on)
        self.reject_on = set(reject_on)
        self.duration_s = duration_s
        self.bad_timings = bad_timings
        self.delay_s = delay_s
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def generate(self, text: str) -> GeneratedVoice:
        self.calls.append(text)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay_s)
            if self.gate is not None:
                await self.gate.wait()
            if text in self.fail_on:
                raise RuntimeError("provider unavailable")
            if text in self.reject_on:
                raise GenerationFailedError("?", "voice rejected the text")
            if self.bad_timings:
                words = [WordTiming(word=w, start_ms=500, end_ms=100) for w in text.split()]
            else:
                words = timings_for(text)
            return GeneratedVoice(
                url="https://cdn.example.com/voice/{}.mp3".format(len(self.calls)),
                word_timings=words,
                duration_s=self.duration_s,
            )
        finally:
            self.active -= 1


@pytest.fixture
def make_generator():
    """FakeVoiceGenerator class, called like the constructor."""
    return FakeVoiceGenerator


@pytest.fixture
def make_segment():
    """Build a Segment; ``words=None`` derives timings from the text, ``[]`` means none."""

    def _make(
        text: str = "Hello world.",
        order: int = 0,
        start_ms: int = 0,
        duration_s: float = 3.0,
        words: Optional[List[WordTiming]] = None,
        segment_id: Optional[str] = None,
        ready: bool = True,
    ) -> Segment:
        if words is None:
            words = timings_for(text)
        voice = VoiceAsset()
        if ready:
            voice = VoiceAsset(
                status=AssetStatus.READY,
                url="https://cdn.example.com/voice/{}.mp3".format(order),
                word_timings=list(words),
                source_text_hash=text_hash(text),
            )
        return Segment(
            id=segment_id or "seg{}".format(order),
            order=order,
            text=text,
            duration_s=duration_s,
            start_ms=start_ms,
            voice=voice,
        )

    return _make


@pytest.fixture
def store():
    """Three freshly inserted segments, all pending."""
    return SegmentStore.from_texts(SAMPLE_TEXTS)


@pytest.fixture
def synced_store():
    """Three segments whose voice matches their text."""
    segment_store = SegmentStore.from_texts(SAMPLE_TEXTS)
    for segment in segment_store.segments():
        segment_store.begin_generation(segment.id)
        segment_store.complete_generation(
            segment.id,
            url="https://cdn.example.com/voice/{}.mp3".format(segment.order),
            word_timings=timings_for(segment.text),
            source_text_hash=segment.text_hash,
        )
    return segment_store
