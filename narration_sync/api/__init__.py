"""Voice generation API client package.

WHY: Regeneration needs narration audio and word timings from an external
voice provider. This package keeps all provider HTTP communication behind
one async client class.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. VoiceClient implements
the orchestrator's VoiceGenerator protocol. Provider payloads are parsed
into typed dataclasses in models.py.

RULES:
- All provider HTTP calls go through VoiceClient (no direct httpx usage elsewhere)
- Authentication is via Bearer token from config
"""

from narration_sync.api.client import ScopedVoiceGenerator, VoiceClient
from narration_sync.api.models import GenerationJob

__all__ = ["GenerationJob", "ScopedVoiceGenerator", "VoiceClient"]
