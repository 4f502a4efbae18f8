"""Configuration constants, timing defaults, and .env loading.

WHY: The speech-rate used for duration estimates, the drift threshold
used to decide when a timeline needs a resync pass, and the concurrency
cap for voice regeneration are all tunables that differ per voice and per
project. Keeping them in one place (instead of buried in logic) makes them
easy to find and override.

HOW: python-dotenv loads the .env file on import. Defaults are module-level
constants read from environment variables. The Settings dataclass bundles
the per-project tunables so a TimelineEngine can carry its own copy.

RULES:
- Every default can be overridden via an environment variable
- Settings.from_env() never raises on a missing variable (defaults apply)
- The voice API key is loaded from .env, never hardcoded
- Invalid numeric overrides raise ValueError with the variable name
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any, Dict

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()

# ---------------------------------------------------------------------------
# Timing estimation
# ---------------------------------------------------------------------------

MIN_SEGMENT_DURATION_S = 3.0
"""Floor for estimated segment durations; compositing disallows instant cuts."""

ESTIMATE_BUFFER_S = 0.5
"""Breath/pause allowance added to every estimate."""


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(
            "Environment variable {} must be an integer, got {!r}".format(name, raw)
        )


DEFAULT_WORDS_PER_MINUTE = _int_env("NARRATION_WORDS_PER_MINUTE", 150)
DEFAULT_RESYNC_THRESHOLD_MS = _int_env("NARRATION_RESYNC_THRESHOLD_MS", 500)
DEFAULT_MAX_CONCURRENCY = _int_env("NARRATION_MAX_CONCURRENCY", 3)

# ---------------------------------------------------------------------------
# Voice generation API defaults
# ---------------------------------------------------------------------------

VOICE_API_BASE_URL = os.getenv("VOICE_API_BASE_URL", "http://localhost:8100/v1")
DEFAULT_VOICE_ID = os.getenv("DEFAULT_VOICE_ID", "alloy")
DEFAULT_VOICE_SPEED = os.getenv("DEFAULT_VOICE_SPEED", "normal")

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

PROJECT_STORE_DIR = os.getenv("PROJECT_STORE_DIR", "")
"""Directory for JSON project documents; empty means keep projects in memory."""


@dataclass
class Settings:
    """Per-project timing tunables.

    WHY: Speech rate depends on the voice and drift tolerance on the
    editing workflow, so both are a configuration surface rather than
    fixed constants.

    RULES:
    - words_per_minute > 0
    - resync_threshold_ms >= 0
    - max_concurrency >= 1
    """

    words_per_minute: int = DEFAULT_WORDS_PER_MINUTE
    resync_threshold_ms: int = DEFAULT_RESYNC_THRESHOLD_MS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY

    def __post_init__(self) -> None:
        if self.words_per_minute <= 0:
            raise ValueError("words_per_minute must be positive")
        if self.resync_threshold_ms < 0:
            raise ValueError("resync_threshold_ms must not be negative")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            words_per_minute=_int_env("NARRATION_WORDS_PER_MINUTE", 150),
            resync_threshold_ms=_int_env("NARRATION_RESYNC_THRESHOLD_MS", 500),
            max_concurrency=_int_env("NARRATION_MAX_CONCURRENCY", 3),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Settings:
        defaults = cls()
        return cls(
            words_per_minute=int(data.get("words_per_minute", defaults.words_per_minute)),
            resync_threshold_ms=int(data.get("resync_threshold_ms", defaults.resync_threshold_ms)),
            max_concurrency=int(data.get("max_concurrency", defaults.max_concurrency)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_api_key() -> str:
    """Load the voice generation API key from the environment.

    WHY: Every call to the voice provider is authenticated. Loading the key
    from the environment (via .env) keeps it out of source code.

    RULES:
    - Raises ValueError if the key is missing or empty
    - Never returns a default/placeholder value
    """
    key = os.getenv("VOICE_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "Voice API key not configured. "
            "Add VOICE_API_KEY to the .env file in the app folder."
        )
    return key
