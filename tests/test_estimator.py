"""Tests for speech-rate duration estimates."""

from __future__ import annotations

import pytest

from narration_sync.core.estimator import (
    count_words,
    estimate_duration,
    estimate_timeline_duration,
)


class TestEstimateDuration:

    def test_short_sentence_hits_minimum(self):
        assert estimate_duration("Hello world.") == 3.0

    def test_empty_text_is_minimum(self):
        assert estimate_duration("") == 3.0
        assert estimate_duration("   \n\t ") == 3.0

    def test_one_minute_of_words(self):
        text = " ".join(["word"] * 150)
        assert estimate_duration(text) == pytest.approx(60.5)

    def test_custom_speech_rate(self):
        text = " ".join(["word"] * 30)
        assert estimate_duration(text, words_per_minute=120) == pytest.approx(15.5)

    def test_just_above_minimum(self):
        # 7 words at 150 wpm = 2.8s + 0.5s buffer
        assert estimate_duration("The old lighthouse was built in 1894.") == pytest.approx(3.3)

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            estimate_duration("Hello", words_per_minute=0)
        with pytest.raises(ValueError):
            estimate_duration("Hello", words_per_minute=-10)

    def test_is_deterministic(self):
        text = "Fishing boats still leave before dawn every single morning of the year."
        assert estimate_duration(text) == estimate_duration(text)


class TestHelpers:

    def test_count_words_splits_on_any_whitespace(self):
        assert count_words("one  two\nthree\tfour") == 4
        assert count_words("") == 0

    def test_timeline_duration_sums_estimates(self):
        texts = ["Hello world.", " ".join(["word"] * 150)]
        assert estimate_timeline_duration(texts) == pytest.approx(63.5)

    def test_timeline_duration_of_nothing(self):
        assert estimate_timeline_duration([]) == 0
