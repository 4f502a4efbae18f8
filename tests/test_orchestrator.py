"""Tests for RegenerationOrchestrator.

WHY: Regeneration is where concurrency bites: duplicate requests cost
money, late completions can overwrite newer state, and provider errors
must never reach playback. Each rule gets an explicit scenario here.

HOW: Async code is driven with asyncio.run() inside plain test
functions. FakeVoiceGenerator (conftest) stands in for the provider; its
gate holds requests in flight so tests can edit, delete or re-request
while a generation is outstanding.

RULES:
- No real network access
- Every test builds its own store and orchestrator
"""

from __future__ import annotations

import asyncio

import pytest

from narration_sync.core.errors import SegmentNotFoundError
from narration_sync.core.models import AssetStatus, WordTiming
from narration_sync.core.orchestrator import (
    GeneratedVoice,
    RegenerationOrchestrator,
    RegenerationResult,
)
from narration_sync.core.sync import SyncStatus


def _voice(url="https://cdn.example.com/manual.mp3"):
    return GeneratedVoice(url=url, word_timings=[WordTiming("manual", 0, 400)])


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestRegenerateTimeline:

    def test_regenerates_everything_needing_voice(self, store, make_generator):
        generator = make_generator()
        orchestrator = RegenerationOrchestrator(store, generator)

        result = asyncio.run(orchestrator.regenerate_timeline_sync())

        assert sorted(result.succeeded) == sorted(s.id for s in store.segments())
        assert result.failed == {}
        assert result.sync_status == SyncStatus.SYNCED
        assert store.segments_needing_voice == set()
        assert len(generator.calls) == 3
        for segment in store.segments():
            assert segment.voice.status == AssetStatus.READY
            assert segment.voice.word_timings
            assert segment.voice.source_text_hash == segment.text_hash

    def test_only_stale_segments_are_requested(self, synced_store, make_generator):
        generator = make_generator()
        edited = synced_store.segments()[2]
        synced_store.edit_text(edited.id, "Boats now leave at noon.")

        result = asyncio.run(RegenerationOrchestrator(synced_store, generator).regenerate_timeline_sync())

        assert generator.calls == ["Boats now leave at noon."]
        assert result.succeeded == [edited.id]
        assert synced_store.sync_status == SyncStatus.SYNCED

    def test_nothing_to_do(self, synced_store, make_generator):
        generator = make_generator()
        result = asyncio.run(RegenerationOrchestrator(synced_store, generator).regenerate_timeline_sync())
        assert generator.calls == []
        assert result.ok
        assert result.sync_status == SyncStatus.SYNCED

    def test_unknown_ids_are_skipped(self, store, make_generator):
        generator = make_generator()
        result = asyncio.run(RegenerationOrchestrator(store, generator).regenerate_timeline_sync(["nope"]))
        assert result.skipped == ["nope"]
        assert generator.calls == []

    def test_reported_duration_ripples(self, store, make_generator):
        generator = make_generator(duration_s=4.2)
        first = store.segments()[0]

        asyncio.run(RegenerationOrchestrator(store, generator).regenerate_timeline_sync([first.id]))

        assert first.duration_s == pytest.approx(4.2)
        assert store.segments()[1].start_ms == 4200

    def test_regenerate_segment(self, store, make_generator):
        generator = make_generator()
        segment = store.segments()[1]
        outcome = asyncio.run(RegenerationOrchestrator(store, generator).regenerate_segment(segment.id))
        assert outcome.succeeded is True
        assert segment.voice.status == AssetStatus.READY

    def test_regenerate_unknown_segment_raises(self, store, make_generator):
        orchestrator = RegenerationOrchestrator(store, make_generator())
        with pytest.raises(SegmentNotFoundError):
            asyncio.run(orchestrator.regenerate_segment("missing"))

    def test_rejects_zero_concurrency(self, store, make_generator):
        with pytest.raises(ValueError):
            RegenerationOrchestrator(store, make_generator(), max_concurrency=0)


# ---------------------------------------------------------------------------
# In-flight exclusivity
# ---------------------------------------------------------------------------


class TestInFlight:

    def test_two_quick_calls_issue_one_request(self, store, make_generator):
        generator = make_generator()
        orchestrator = RegenerationOrchestrator(store, generator)
        segment = store.segments()[0]

        async def _run():
            generator.gate = asyncio.Event()
            first = asyncio.ensure_future(orchestrator.regenerate_timeline_sync([segment.id]))
            second = asyncio.ensure_future(orchestrator.regenerate_timeline_sync([segment.id]))
            await asyncio.sleep(0.01)
            assert orchestrator.in_flight() == [segment.id]
            assert segment.voice.status == AssetStatus.GENERATING
            assert store.sync_status == SyncStatus.REGENERATING
            generator.gate.set()
            return await asyncio.gather(first, second)

        first, second = asyncio.run(_run())

        assert generator.calls == [segment.text]
        assert first.succeeded == [segment.id]
        assert second.succeeded == [segment.id]
        assert orchestrator.in_flight() == []

    def test_schedule_marks_generating_before_returning(self, store, make_generator):
        generator = make_generator()
        orchestrator = RegenerationOrchestrator(store, generator)

        async def _run():
            tasks = orchestrator.schedule()
            statuses = {s.voice.status for s in store.segments()}
            await asyncio.gather(*tasks.values())
            return tasks, statuses

        tasks, statuses = asyncio.run(_run())
        assert statuses == {AssetStatus.GENERATING}
        assert set(tasks) == {s.id for s in store.segments()}

    def test_generating_without_request_is_reissued(self, store, make_generator):
        # e.g. a project loaded from a snapshot saved mid-generation
        generator = make_generator()
        stuck = store.segments()[0]
        store.begin_generation(stuck.id)

        asyncio.run(RegenerationOrchestrator(store, generator).regenerate_timeline_sync())

        assert stuck.text in generator.calls
        assert stuck.voice.status == AssetStatus.READY

    def test_concurrency_cap(self, make_generator):
        from narration_sync.core.store import SegmentStore

        store = SegmentStore.from_texts(["Line {}.".format(i) for i in range(6)])
        generator = make_generator(delay_s=0.01)
        orchestrator = RegenerationOrchestrator(store, generator, max_concurrency=2)

        result = asyncio.run(orchestrator.regenerate_timeline_sync())

        assert len(result.succeeded) == 6
        assert generator.max_active == 2


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:

    def test_failure_marks_segment_failed(self, store, make_generator):
        segment = store.segments()[0]
        generator = make_generator(fail_on=[segment.text])

        result = asyncio.run(RegenerationOrchestrator(store, generator).regenerate_timeline_sync())

        assert result.failed == {segment.id: "provider unavailable"}
        assert not result.ok
        assert segment.voice.status == AssetStatus.FAILED
        assert segment.voice.error == "provider unavailable"
        assert segment.id in store.segments_needing_voice
        assert store.sync_status == SyncStatus.OUT_OF_SYNC
        assert result.sync_status == SyncStatus.OUT_OF_SYNC

    def test_other_segments_still_succeed(self, store, make_generator):
        segment = store.segments()[0]
        generator = make_generator(fail_on=[segment.text])
        result = asyncio.run(RegenerationOrchestrator(store, generator).regenerate_timeline_sync())
        assert len(result.succeeded) == 2

    def test_generation_failed_error_message(self, store, make_generator):
        segment = store.segments()[1]
        generator = make_generator(reject_on=[segment.text])
        result = asyncio.run(RegenerationOrchestrator(store, generator).regenerate_timeline_sync([segment.id]))
        assert result.failed[segment.id] == "voice rejected the text"

    def test_failure_keeps_previous_audio(self, synced_store, make_generator):
        segment = synced_store.segments()[0]
        url = segment.voice.url
        synced_store.edit_text(segment.id, "Welcome aboard everyone.")
        generator = make_generator(fail_on=["Welcome aboard everyone."])

        asyncio.run(RegenerationOrchestrator(synced_store, generator).regenerate_timeline_sync())

        assert segment.voice.status == AssetStatus.FAILED
        assert segment.voice.url == url

    def test_retry_after_failure(self, store, make_generator):
        segment = store.segments()[0]
        generator = make_generator(fail_on=[segment.text])
        orchestrator = RegenerationOrchestrator(store, generator)
        asyncio.run(orchestrator.regenerate_timeline_sync())

        generator.fail_on.clear()
        outcome = asyncio.run(orchestrator.regenerate_segment(segment.id))

        assert outcome.succeeded is True
        assert segment.voice.status == AssetStatus.READY
        assert segment.voice.error is None
        assert store.sync_status == SyncStatus.SYNCED

    def test_no_valid_timings_is_failure(self, store, make_generator):
        generator = make_generator(bad_timings=True)
        segment = store.segments()[0]
        result = asyncio.run(RegenerationOrchestrator(store, generator).regenerate_timeline_sync([segment.id]))
        assert segment.id in result.failed
        assert segment.voice.status == AssetStatus.FAILED

    def test_invalid_words_dropped_from_result(self, store):
        class PartlyBadGenerator:
            async def generate(self, text):
                return GeneratedVoice(
                    url="https://cdn.example.com/partly.mp3",
                    word_timings=[WordTiming("good", 0, 200), WordTiming("bad", 900, 100)],
                )

        segment = store.segments()[0]
        orchestrator = RegenerationOrchestrator(store, PartlyBadGenerator())
        result = asyncio.run(orchestrator.regenerate_timeline_sync([segment.id]))

        assert result.succeeded == [segment.id]
        assert [w.word for w in segment.voice.word_timings] == ["good"]

    def test_unconfigured_provider_becomes_failure(self, store):
        class NoKeyGenerator:
            async def generate(self, text):
                raise ValueError("Voice API key not configured.")

        result = asyncio.run(RegenerationOrchestrator(store, NoKeyGenerator()).regenerate_timeline_sync())
        assert len(result.failed) == 3
        assert store.sync_status == SyncStatus.OUT_OF_SYNC


# ---------------------------------------------------------------------------
# Late, stale and duplicate completions
# ---------------------------------------------------------------------------


class TestCompletions:

    def test_text_edited_during_generation(self, store, make_generator):
        generator = make_generator()
        orchestrator = RegenerationOrchestrator(store, generator)
        segment = store.segments()[0]

        async def _run():
            generator.gate = asyncio.Event()
            task = asyncio.ensure_future(orchestrator.regenerate_timeline_sync([segment.id]))
            await asyncio.sleep(0.01)
            store.edit_text(segment.id, "A brand new opening line.")
            generator.gate.set()
            return await task

        result = asyncio.run(_run())

        assert result.succeeded == [segment.id]
        assert segment.voice.status == AssetStatus.READY
        assert segment.id in store.segments_needing_voice
        assert result.sync_status == SyncStatus.OUT_OF_SYNC

    def test_deleted_during_generation(self, store, make_generator):
        generator = make_generator()
        orchestrator = RegenerationOrchestrator(store, generator)
        segment = store.segments()[0]

        async def _run():
            generator.gate = asyncio.Event()
            task = asyncio.ensure_future(orchestrator.regenerate_timeline_sync([segment.id]))
            await asyncio.sleep(0.01)
            store.delete(segment.id)
            generator.gate.set()
            return await task

        result = asyncio.run(_run())

        assert result.skipped == [segment.id]
        assert result.succeeded == []
        assert segment.id not in store
        assert len(store) == 2

    def test_stale_token_ignored(self, store, make_generator):
        orchestrator = RegenerationOrchestrator(store, make_generator())
        segment = store.segments()[0]

        outcome = orchestrator.complete(segment.id, "not-a-token", _voice())

        assert outcome.applied is False
        assert segment.voice.status == AssetStatus.PENDING
        assert segment.voice.url is None

    def test_duplicate_and_late_completions_ignored(self, store, make_generator):
        generator = make_generator()
        orchestrator = RegenerationOrchestrator(store, generator)
        segment = store.segments()[0]

        async def _run():
            generator.gate = asyncio.Event()
            tasks = orchestrator.schedule([segment.id])
            token = orchestrator._tokens[segment.id]
            first = orchestrator.complete(segment.id, token, _voice("https://cdn.example.com/first.mp3"))
            again = orchestrator.complete(segment.id, token, _voice("https://cdn.example.com/again.mp3"))
            generator.gate.set()
            late = await tasks[segment.id]
            return first, again, late

        first, again, late = asyncio.run(_run())

        assert first.applied is True
        assert again.applied is False
        assert late.applied is False
        assert segment.voice.url == "https://cdn.example.com/first.mp3"

    def test_failure_after_success_ignored(self, store, make_generator):
        generator = make_generator()
        orchestrator = RegenerationOrchestrator(store, generator)
        segment = store.segments()[0]

        async def _run():
            generator.gate = asyncio.Event()
            tasks = orchestrator.schedule([segment.id])
            token = orchestrator._tokens[segment.id]
            orchestrator.complete(segment.id, token, _voice())
            outcome = orchestrator.fail(segment.id, token, "late error")
            generator.gate.set()
            await tasks[segment.id]
            return outcome

        outcome = asyncio.run(_run())
        assert outcome.applied is False
        assert segment.voice.status == AssetStatus.READY
        assert segment.voice.error is None


class TestRegenerationResult:

    def test_to_dict(self):
        result = RegenerationResult(
            succeeded=["a"],
            failed={"b": "boom"},
            skipped=["c"],
            sync_status=SyncStatus.OUT_OF_SYNC,
        )
        assert result.to_dict() == {
            "succeeded": ["a"],
            "failed": {"b": "boom"},
            "skipped": ["c"],
            "sync_status": "out_of_sync",
        }
        assert result.ok is False
