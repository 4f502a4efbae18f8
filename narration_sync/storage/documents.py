"""Document stores for project snapshots, keyed by project id.

WHY: The engine periodically flushes a project's timeline to a document
store and rehydrates it later. Stored documents come back as plain JSON,
so they are schema-checked before the engine trusts them.

HOW: DocumentStore is the small interface the engine needs (get, put,
delete, list_keys). InMemoryDocumentStore keeps documents in a locked
dict; JsonFileDocumentStore writes one ``{project_id}.json`` file per
project. validate_snapshot() checks a document against SNAPSHOT_SCHEMA
with jsonschema and raises SnapshotError on the first violation.

RULES:
- get() returns None for unknown project ids (no exceptions)
- put() stores a deep copy; later changes to the caller's dict are not seen
- Project ids are restricted to [A-Za-z0-9_-] so they are safe file names
- Writes to disk go through a temp file and rename
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from narration_sync.core.errors import SnapshotError

logger = logging.getLogger(__name__)

_PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

_WORD_TIMING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["word", "start_ms", "end_ms"],
    "properties": {
        "word": {"type": "string"},
        "start_ms": {"type": "integer"},
        "end_ms": {"type": "integer"},
        "confidence": {"type": ["number", "null"]},
    },
}

SNAPSHOT_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Narration timeline snapshot",
    "type": "object",
    "required": ["segments"],
    "properties": {
        "project_id": {"type": "string"},
        "settings": {"type": "object"},
        "segments": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "order", "text", "duration_s"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "order": {"type": "integer", "minimum": 0},
                    "text": {"type": "string"},
                    "duration_s": {"type": "number", "exclusiveMinimum": 0},
                    "start_ms": {"type": "integer", "minimum": 0},
                    "image_prompt": {"type": ["string", "null"]},
                    "voice": {
                        "type": "object",
                        "properties": {
                            "status": {"enum": ["pending", "generating", "ready", "failed", "error"]},
                            "url": {"type": ["string", "null"]},
                            "word_timings": {"type": "array", "items": _WORD_TIMING_SCHEMA},
                            "source_text_hash": {"type": ["string", "null"]},
                            "duration_s": {"type": ["number", "null"]},
                            "error": {"type": ["string", "null"]},
                        },
                    },
                    "caption_style": {"type": ["object", "null"]},
                },
            },
        },
        "timeline": {
            "type": "object",
            "properties": {
                "current_time_ms": {"type": "integer", "minimum": 0},
                "is_playing": {"type": "boolean"},
            },
        },
    },
}


def validate_snapshot(document: Dict[str, Any]) -> None:
    """Raise SnapshotError if ``document`` does not match SNAPSHOT_SCHEMA."""
    try:
        jsonschema.validate(instance=document, schema=SNAPSHOT_SCHEMA)
    except jsonschema.ValidationError as exc:
        path = "/".join(str(p) for p in exc.absolute_path) or None
        raise SnapshotError(exc.message, path)


def check_project_id(project_id: str) -> str:
    if not isinstance(project_id, str) or not _PROJECT_ID_RE.match(project_id):
        raise ValueError("Invalid project id: {!r}".format(project_id))
    return project_id


class DocumentStore(ABC):
    """Key-value document store keyed by project id."""

    @abstractmethod
    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored document, or None if there is none."""

    @abstractmethod
    def put(self, project_id: str, document: Dict[str, Any]) -> None:
        """Store (replace) the document for ``project_id``."""

    @abstractmethod
    def delete(self, project_id: str) -> bool:
        """Remove the document; True if one existed."""

    @abstractmethod
    def list_keys(self) -> List[str]:
        """Project ids with a stored document, sorted."""


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._documents.get(project_id)
            return copy.deepcopy(document) if document is not None else None

    def put(self, project_id: str, document: Dict[str, Any]) -> None:
        check_project_id(project_id)
        with self._lock:
            self._documents[project_id] = copy.deepcopy(document)

    def delete(self, project_id: str) -> bool:
        with self._lock:
            return self._documents.pop(project_id, None) is not None

    def list_keys(self) -> List[str]:
        with self._lock:
            return sorted(self._documents)


class JsonFileDocumentStore(DocumentStore):
    """One pretty-printed JSON file per project under ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, project_id: str) -> Path:
        return self.root / "{}.json".format(check_project_id(project_id))

    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(project_id)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as exc:
            raise SnapshotError("corrupt project document: {}".format(exc), str(path))

    def put(self, project_id: str, document: Dict[str, Any]) -> None:
        path = self._path(project_id)
        with self._lock:
            fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=".tmp_", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        logger.debug("Wrote project document %s", path)

    def delete(self, project_id: str) -> bool:
        path = self._path(project_id)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        return True

    def list_keys(self) -> List[str]:
        return sorted(p.stem for p in self.root.glob("*.json") if not p.name.startswith(".tmp_"))
