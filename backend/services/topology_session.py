"""Editing sessions over clab documents in the workdir, plus own-write suppression."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from collections.abc import AsyncIterator, Callable
from pathlib import Path

from ruamel.yaml.comments import CommentedMap

from config import SELF_WRITE_GRACE_SECONDS, TOPOLOGY_SUFFIX, TOPOLOGY_WORKDIR
from services.yaml_document import dump_document, parse_document

log = logging.getLogger(__name__)

_TOPOLOGY_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

InternalUpdateCallback = Callable[[bool], None]


class WriteGuard:
    """Tracks documents this process is writing.

    The flag for a path goes up before the write and stays up for
    ``grace_seconds`` after it lands, so a file watcher that checks
    :meth:`should_reload` ignores the change events caused by our own save.
    """

    def __init__(self, grace_seconds: float = SELF_WRITE_GRACE_SECONDS):
        self.grace_seconds = grace_seconds
        self._active: dict[Path, int] = {}

    @staticmethod
    def _key(path: Path) -> Path:
        return Path(path).resolve()

    def is_writing(self, path: Path) -> bool:
        return self._active.get(self._key(path), 0) > 0

    def should_reload(self, path: Path) -> bool:
        return not self.is_writing(path)

    @contextlib.asynccontextmanager
    async def writing(
        self,
        path: Path,
        set_internal_update: InternalUpdateCallback | None = None,
    ) -> AsyncIterator[None]:
        key = self._key(path)
        self._active[key] = self._active.get(key, 0) + 1
        if set_internal_update:
            set_internal_update(True)
        try:
            yield
            await asyncio.sleep(self.grace_seconds)
        finally:
            remaining = self._active[key] - 1
            if remaining:
                self._active[key] = remaining
            else:
                del self._active[key]
                if set_internal_update:
                    set_internal_update(False)


class TopologySession:
    """One in-memory document per editing session, mutated in place."""

    def __init__(self, path: Path, guard: WriteGuard):
        self.path = path
        self.guard = guard
        self._document: CommentedMap | None = None
        # graph node id -> document key, kept across saves until the next reload
        self.node_keys: dict[str, str] = {}

    @property
    def document(self) -> CommentedMap:
        if self._document is None:
            self._document = parse_document(self.path.read_text())
        return self._document

    def reload(self) -> bool:
        """Re-read the file unless the change came from our own write."""
        if not self.guard.should_reload(self.path):
            log.debug("Ignoring change to %s during own write", self.path)
            return False
        self._document = parse_document(self.path.read_text())
        self.node_keys.clear()
        log.info("Reloaded %s from disk", self.path)
        return True

    async def write(self, set_internal_update: InternalUpdateCallback | None = None) -> str:
        """Serialize the document and write it under the write guard."""
        yaml_str = dump_document(self.document)
        async with self.guard.writing(self.path, set_internal_update):
            self.path.write_text(yaml_str)
        log.info("Saved topology %s (%d bytes)", self.path, len(yaml_str))
        return yaml_str


class SessionRegistry:
    """Hands out one :class:`TopologySession` per topology id."""

    def __init__(self, workdir: Path = TOPOLOGY_WORKDIR, guard: WriteGuard | None = None):
        self.workdir = workdir
        self.guard = guard or WriteGuard()
        self._sessions: dict[str, TopologySession] = {}

    def path_for(self, topology_id: str) -> Path:
        if not _TOPOLOGY_ID_RE.match(topology_id) or ".." in topology_id:
            raise FileNotFoundError(f"Invalid topology id {topology_id!r}")
        return self.workdir / f"{topology_id}{TOPOLOGY_SUFFIX}"

    def get(self, topology_id: str) -> TopologySession:
        session = self._sessions.get(topology_id)
        if session is not None:
            return session
        path = self.path_for(topology_id)
        if not path.exists():
            raise FileNotFoundError(f"Topology {topology_id} not found")
        session = TopologySession(path, self.guard)
        self._sessions[topology_id] = session
        return session

    def on_file_changed(self, topology_id: str) -> bool:
        """Hook for a file watcher: reload an open session if the change is external."""
        session = self._sessions.get(topology_id)
        if session is None:
            return False
        return session.reload()


registry = SessionRegistry()
