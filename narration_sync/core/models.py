"""Dataclasses for segments, voice assets, word timings, and caption frames.

WHY: Segment and caption payloads arrive untyped from several places
(persisted project documents, HTTP request bodies, the voice provider).
The engine only ever works with the tagged structures defined here, so
malformed data is rejected once, at the boundary, instead of leaking into
the caption resolver.

HOW: Plain dataclasses with ``to_dict()`` / ``from_dict()`` pairs. The
``from_dict`` factories coerce numeric fields and raise SnapshotError with
the offending field path when a payload cannot be interpreted.

RULES:
- Word timings are integer milliseconds relative to their segment start
- Segment.start_ms is the absolute stored position on the timeline
- Segment.duration_s is seconds (estimated or taken from generated audio)
- text_hash identifies the text a voice asset was generated from
- CaptionFrame is ephemeral and never persisted
"""

from __future__ import annotations

import enum
import hashlib
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from narration_sync.core.errors import InvalidTimingError, SnapshotError


def text_hash(text: str) -> str:
    """Stable short hash of a narration string (whitespace-normalised)."""
    normalised = " ".join(text.split())
    return hashlib.sha1(normalised.encode("utf-8")).hexdigest()[:16]


def new_segment_id() -> str:
    return uuid.uuid4().hex


def _require(data: Dict[str, Any], key: str, path: str) -> Any:
    if not isinstance(data, dict):
        raise SnapshotError("expected an object", path)
    if key not in data:
        raise SnapshotError("missing field '{}'".format(key), path)
    return data[key]


def _as_int(value: Any, path: str) -> int:
    if isinstance(value, bool):
        raise SnapshotError("expected a number, got a boolean", path)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise SnapshotError("expected a number, got {!r}".format(value), path)


def _as_float(value: Any, path: str) -> float:
    if isinstance(value, bool):
        raise SnapshotError("expected a number, got a boolean", path)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise SnapshotError("expected a number, got {!r}".format(value), path)


class AssetStatus(str, enum.Enum):
    """Lifecycle of a segment's voice asset.

    RULES:
    - pending: no asset for the current text yet (new or edited segment)
    - generating: exactly one regeneration request is in flight
    - ready: url and word timings match the text they were generated from
    - failed: last regeneration failed; retryable
    """

    PENDING = "pending"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


class WordState(str, enum.Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    APPEARED = "appeared"


@dataclass
class WordTiming:
    """One spoken word with its offsets inside the segment audio.

    Produced by speech-to-text alignment of the generated voice. Overlap
    with the next word is tolerated (alignment is imprecise); only
    ``start_ms <= end_ms`` is expected per word.
    """

    word: str
    start_ms: int
    end_ms: int
    confidence: Optional[float] = None

    def is_valid(self) -> bool:
        return self.start_ms <= self.end_ms

    def validate(self) -> WordTiming:
        """Return self, or raise InvalidTimingError if start > end."""
        if not self.is_valid():
            raise InvalidTimingError(self.word, self.start_ms, self.end_ms)
        return self

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "word": self.word,
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
        }
        if self.confidence is not None:
            data["confidence"] = self.confidence
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "word") -> WordTiming:
        """Parse a word timing dict.

        Accepts ``word`` or ``text`` for the token and ``start_ms``/``end_ms``
        or the short ``start``/``end`` keys (both in milliseconds).
        """
        if not isinstance(data, dict):
            raise SnapshotError("expected an object", path)
        word = data.get("word", data.get("text"))
        if not isinstance(word, str):
            raise SnapshotError("missing word text", path)
        start = data.get("start_ms", data.get("start"))
        end = data.get("end_ms", data.get("end"))
        if start is None or end is None:
            raise SnapshotError("missing start/end", path)
        confidence = data.get("confidence")
        return cls(
            word=word,
            start_ms=_as_int(start, path + ".start_ms"),
            end_ms=_as_int(end, path + ".end_ms"),
            confidence=None if confidence is None else _as_float(confidence, path + ".confidence"),
        )


@dataclass
class VoiceAsset:
    """Generated narration audio for one segment plus its word timings.

    RULES:
    - url/word_timings survive a text edit until a regeneration replaces them
    - source_text_hash is the hash of the text the timings were made from
    - error holds the last generation failure message, cleared on success
    """

    status: AssetStatus = AssetStatus.PENDING
    url: Optional[str] = None
    word_timings: List[WordTiming] = field(default_factory=list)
    source_text_hash: Optional[str] = None
    duration_s: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "url": self.url,
            "word_timings": [w.to_dict() for w in self.word_timings],
            "source_text_hash": self.source_text_hash,
            "duration_s": self.duration_s,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "voice") -> VoiceAsset:
        if not isinstance(data, dict):
            raise SnapshotError("expected an object", path)
        raw_status = data.get("status", AssetStatus.PENDING.value)
        # Older documents use "error" for failed assets
        if raw_status == "error":
            raw_status = AssetStatus.FAILED.value
        try:
            status = AssetStatus(raw_status)
        except ValueError:
            raise SnapshotError("unknown asset status {!r}".format(raw_status), path + ".status")
        raw_words = data.get("word_timings") or []
        if not isinstance(raw_words, list):
            raise SnapshotError("expected a list", path + ".word_timings")
        words = [
            WordTiming.from_dict(w, "{}.word_timings[{}]".format(path, i))
            for i, w in enumerate(raw_words)
        ]
        duration = data.get("duration_s")
        return cls(
            status=status,
            url=data.get("url"),
            word_timings=sorted(words, key=lambda w: w.start_ms),
            source_text_hash=data.get("source_text_hash"),
            duration_s=None if duration is None else _as_float(duration, path + ".duration_s"),
            error=data.get("error"),
        )


@dataclass
class CaptionStyle:
    """Per-segment caption colour/font overrides; None means inherit."""

    active_color: Optional[str] = None
    appeared_color: Optional[str] = None
    default_color: Optional[str] = None
    font_family: Optional[str] = None
    font_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in (
                ("active_color", self.active_color),
                ("appeared_color", self.appeared_color),
                ("default_color", self.default_color),
                ("font_family", self.font_family),
                ("font_size", self.font_size),
            )
            if value is not None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "caption_style") -> CaptionStyle:
        if not isinstance(data, dict):
            raise SnapshotError("expected an object", path)
        font_size = data.get("font_size")
        return cls(
            active_color=data.get("active_color"),
            appeared_color=data.get("appeared_color"),
            default_color=data.get("default_color"),
            font_family=data.get("font_family"),
            font_size=None if font_size is None else _as_int(font_size, path + ".font_size"),
        )


@dataclass
class Segment:
    """One narration unit (sentence/shot) of the script.

    WHY: The segment is the unit of editing and of regeneration. Its voice
    asset is relative to its own start, so reordering never invalidates it.

    RULES:
    - id: uuid4 hex, assigned at creation, never reused
    - order: dense, zero-based position; owned by the SegmentStore
    - start_ms: stored absolute start; may drift until a resync pass
    - end_ms = start_ms + duration in ms
    """

    id: str
    order: int
    text: str
    duration_s: float
    start_ms: int = 0
    voice: VoiceAsset = field(default_factory=VoiceAsset)
    caption_style: Optional[CaptionStyle] = None
    image_prompt: str = ""

    @property
    def text_hash(self) -> str:
        return text_hash(self.text)

    @property
    def duration_ms(self) -> int:
        return int(round(self.duration_s * 1000))

    @property
    def end_ms(self) -> int:
        return self.start_ms + self.duration_ms

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "order": self.order,
            "text": self.text,
            "duration_s": self.duration_s,
            "start_ms": self.start_ms,
            "voice": self.voice.to_dict(),
            "image_prompt": self.image_prompt,
        }
        if self.caption_style is not None:
            data["caption_style"] = self.caption_style.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: str = "segment") -> Segment:
        segment_id = _require(data, "id", path)
        if not isinstance(segment_id, str) or not segment_id:
            raise SnapshotError("segment id must be a non-empty string", path + ".id")
        text = _require(data, "text", path)
        if not isinstance(text, str):
            raise SnapshotError("segment text must be a string", path + ".text")
        style = data.get("caption_style")
        return cls(
            id=segment_id,
            order=_as_int(_require(data, "order", path), path + ".order"),
            text=text,
            duration_s=_as_float(_require(data, "duration_s", path), path + ".duration_s"),
            start_ms=_as_int(data.get("start_ms", 0), path + ".start_ms"),
            voice=VoiceAsset.from_dict(data.get("voice") or {}, path + ".voice"),
            caption_style=None if style is None else CaptionStyle.from_dict(style, path + ".caption_style"),
            image_prompt=data.get("image_prompt") or "",
        )


@dataclass
class CaptionWord:
    word: str
    state: WordState
    start_ms: int
    end_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word": self.word,
            "state": self.state.value,
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
        }


@dataclass
class CaptionFrame:
    """Caption state for one rendered frame.

    RULES:
    - active_segment_id is None when no caption is shown
    - plain is True when the segment has no usable word timings and its
      full text is shown unstyled
    - words keep segment order; dropped (invalid) timings are absent
    """

    active_segment_id: Optional[str] = None
    text: str = ""
    words: List[CaptionWord] = field(default_factory=list)
    plain: bool = False
    style: Optional[CaptionStyle] = None

    @property
    def visible(self) -> bool:
        return self.active_segment_id is not None

    def active_index(self) -> int:
        for i, word in enumerate(self.words):
            if word.state == WordState.ACTIVE:
                return i
        return -1

    def visible_window(self, before: int = 3, after: int = 3) -> List[CaptionWord]:
        """Words around the spoken word, for short lip-sync style captions.

        Shows ``before`` words ahead of the active word and ``after`` words
        behind it. Between words (nothing active) the window starts two
        words before the next upcoming word.
        """
        if not self.words:
            return []
        index = self.active_index()
        if index >= 0:
            return self.words[max(0, index - before):index + after + 1]
        for i, word in enumerate(self.words):
            if word.state == WordState.UPCOMING:
                return self.words[max(0, i - 2):i + before + 2]
        return self.words[-(before + after + 1):]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_segment_id": self.active_segment_id,
            "text": self.text,
            "words": [w.to_dict() for w in self.words],
            "plain": self.plain,
            "style": self.style.to_dict() if self.style is not None else None,
        }
