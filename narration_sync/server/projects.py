"""Project registry: live engines keyed by project id, backed by a document store.

WHY: The HTTP API serves many projects at once. Each project needs its own
TimelineEngine (store, caption cache, in-flight table), and projects must
survive a restart, so engines are flushed to a DocumentStore and loaded
back on first access.

HOW: ProjectRegistry keeps a dict of live engines under a threading.Lock.
get() returns the live engine or rehydrates one from the document store
with TimelineEngine.from_snapshot(). flush() writes an engine's snapshot;
the app's lifespan task calls flush_all() periodically.

RULES:
- All registry mutations are protected by threading.Lock
- get() returns None for unknown project ids (no exceptions)
- create() raises ValueError when the live-project limit is reached or the
  id is already taken
- delete() removes both the live engine and the stored document
- Each engine gets its generator from generator_factory(project_id)
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from typing import Callable, Dict, Iterable, List, Optional

from narration_sync.config import Settings
from narration_sync.core.orchestrator import VoiceGenerator
from narration_sync.engine import TimelineEngine
from narration_sync.storage.documents import DocumentStore, check_project_id

logger = logging.getLogger(__name__)

DEFAULT_MAX_PROJECTS = 100

_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")


def split_script(script: str) -> List[str]:
    """Break a narration script into one text per sentence.

    Blank lines always end a segment; inside a paragraph, sentences are
    split after ``.``, ``!`` or ``?`` followed by whitespace.
    """
    texts: List[str] = []
    for paragraph in re.split(r"\n\s*\n", script):
        paragraph = " ".join(paragraph.split())
        if not paragraph:
            continue
        texts.extend(s for s in _SENTENCE_END_RE.split(paragraph) if s)
    return texts


class ProjectRegistry:
    """Thread-safe registry of TimelineEngines.

    RULES:
    - get() prefers the live engine; a stored document is rehydrated once
    - flush() is a no-op for unknown ids and returns False
    - flush_all() returns the number of projects written
    """

    def __init__(
        self,
        documents: DocumentStore,
        generator_factory: Callable[[str], VoiceGenerator],
        max_projects: int = DEFAULT_MAX_PROJECTS,
    ) -> None:
        self.documents = documents
        self.generator_factory = generator_factory
        self.max_projects = max_projects
        self._engines: Dict[str, TimelineEngine] = {}
        self._lock = threading.Lock()

    def create(
        self,
        texts: Iterable[str],
        settings: Optional[Settings] = None,
        project_id: Optional[str] = None,
    ) -> TimelineEngine:
        """Create a project from segment texts and store its first snapshot."""
        project_id = check_project_id(project_id or uuid.uuid4().hex)

        with self._lock:
            if len(self._engines) >= self.max_projects:
                raise ValueError(
                    "Maximum number of live projects ({}) reached".format(self.max_projects)
                )
            if project_id in self._engines or self.documents.get(project_id) is not None:
                raise ValueError("Project already exists: {}".format(project_id))

            engine = TimelineEngine.from_texts(
                project_id,
                texts,
                generator=self.generator_factory(project_id),
                settings=settings,
            )
            self._engines[project_id] = engine

        self.documents.put(project_id, engine.snapshot())
        logger.info("Created project %s with %d segment(s)", project_id, len(engine.store))
        return engine

    def get(self, project_id: str) -> Optional[TimelineEngine]:
        """Return the live engine, loading it from the document store if needed.

        Raises:
            SnapshotError: the stored document is malformed.
        """
        with self._lock:
            engine = self._engines.get(project_id)
            if engine is not None:
                return engine

            document = self.documents.get(project_id)
            if document is None:
                return None
            engine = TimelineEngine.from_snapshot(
                document,
                generator=self.generator_factory(project_id),
                project_id=project_id,
            )
            self._engines[project_id] = engine

        logger.info("Loaded project %s from document store", project_id)
        return engine

    def list_ids(self) -> List[str]:
        with self._lock:
            live = set(self._engines)
        return sorted(live | set(self.documents.list_keys()))

    def delete(self, project_id: str) -> bool:
        with self._lock:
            engine = self._engines.pop(project_id, None)
        stored = self.documents.delete(project_id)
        if engine is None and not stored:
            return False
        logger.info("Deleted project %s", project_id)
        return True

    def flush(self, project_id: str) -> bool:
        with self._lock:
            engine = self._engines.get(project_id)
        if engine is None:
            return False
        self.documents.put(project_id, engine.snapshot())
        return True

    def flush_all(self) -> int:
        with self._lock:
            engines = list(self._engines.items())
        for project_id, engine in engines:
            self.documents.put(project_id, engine.snapshot())
        if engines:
            logger.debug("Flushed %d project(s)", len(engines))
        return len(engines)
