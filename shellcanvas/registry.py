"""Pane registry: maps session ids to the tmux panes hosting them.

Registry layout:
  {runtime_dir}/canvas-panes.json       {"panes": {id: {id, paneId, kind, createdAt}}, "defaultPane": ...}
  {runtime_dir}/canvas-panes.json.lock  advisory lock serializing read-modify-write
  {runtime_dir}/canvas-pane-id          legacy single pane id (read as last fallback)

Liveness is checked on access only: lookup() and list() ask tmux whether a
pane still exists and evict records whose pane is gone. Verification never
raises; a dead pane is simply "not found".
"""

from __future__ import annotations

import fcntl
import json
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, TypeVar

from .config import legacy_pane_file, panes_file
from .logging_config import get_logger
from .panes import Multiplexer, TmuxMultiplexer
from .types import TERMINAL_KIND, PaneRecord, PaneRegistryData

logger = get_logger(__name__)

T = TypeVar("T")


class RegistryStore(Protocol):
    """Durable storage for PaneRegistryData."""

    def load(self) -> PaneRegistryData: ...

    def update(self, fn: Callable[[PaneRegistryData], T]) -> T:
        """Apply fn to the current data and persist the result atomically."""
        ...

    def read_legacy(self) -> str | None: ...

    def write_legacy(self, pane: str) -> None: ...


class FileRegistryStore:
    """JSON file store. Every update runs under an exclusive flock and is
    written to a temp file, then renamed over the registry."""

    def __init__(self, path: Path | None = None, legacy_path: Path | None = None):
        self.path = path or panes_file()
        self.legacy_path = legacy_path or legacy_pane_file()
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a", encoding="utf-8") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _read(self) -> PaneRegistryData:
        try:
            return PaneRegistryData.load(self.path)
        except (json.JSONDecodeError, OSError, AttributeError, TypeError) as e:
            logger.warning(f"Unreadable pane registry {self.path}, starting empty: {e}")
            return PaneRegistryData()

    def _write(self, data: PaneRegistryData) -> None:
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        tmp.write_text(data.to_json() + "\n")
        os.replace(tmp, self.path)

    def load(self) -> PaneRegistryData:
        with self._locked():
            return self._read()

    def update(self, fn: Callable[[PaneRegistryData], T]) -> T:
        with self._locked():
            data = self._read()
            before = data.to_json()
            result = fn(data)
            if data.to_json() != before:
                self._write(data)
            return result

    def read_legacy(self) -> str | None:
        try:
            pane = self.legacy_path.read_text().strip()
        except OSError:
            return None
        return pane or None

    def write_legacy(self, pane: str) -> None:
        self.legacy_path.parent.mkdir(parents=True, exist_ok=True)
        self.legacy_path.write_text(pane)


class MemoryRegistryStore:
    """In-process store for tests and embedding."""

    def __init__(self, data: PaneRegistryData | None = None, legacy: str | None = None):
        self.data = data or PaneRegistryData()
        self.legacy = legacy

    def load(self) -> PaneRegistryData:
        return PaneRegistryData.from_json(self.data.to_json())

    def update(self, fn: Callable[[PaneRegistryData], T]) -> T:
        return fn(self.data)

    def read_legacy(self) -> str | None:
        return self.legacy

    def write_legacy(self, pane: str) -> None:
        self.legacy = pane


class PaneRegistry:
    """Session id -> pane bookkeeping with verify-on-access liveness."""

    def __init__(self, store: RegistryStore | None = None, multiplexer: Multiplexer | None = None):
        self.store = store if store is not None else FileRegistryStore()
        self.mux = multiplexer if multiplexer is not None else TmuxMultiplexer()

    def save(self, session_id: str, pane: str, kind: str) -> PaneRecord:
        """Upsert a record. Non-terminal panes also become the default pane."""
        record = PaneRecord(session_id=session_id, pane_handle=pane, kind=kind)

        def _save(data: PaneRegistryData) -> None:
            data.panes[session_id] = record
            if kind != TERMINAL_KIND:
                data.default_pane = pane
                self.store.write_legacy(pane)

        self.store.update(_save)
        logger.info(f"Registered {kind} session {session_id} in pane {pane}")
        return record

    def lookup(self, session_id: str | None = None) -> str | None:
        """Live pane for a session, or the default pane when no id is given.

        Dead panes are evicted and reported as not found.
        """
        if session_id is not None:

            def _by_id(data: PaneRegistryData) -> str | None:
                record = data.panes.get(session_id)
                if record is None:
                    return None
                if self.mux.verify(record.pane_handle):
                    return record.pane_handle
                logger.info(f"Evicting session {session_id}: pane {record.pane_handle} is gone")
                del data.panes[session_id]
                return None

            return self.store.update(_by_id)

        def _default(data: PaneRegistryData) -> str | None:
            if data.default_pane:
                if self.mux.verify(data.default_pane):
                    return data.default_pane
                logger.info(f"Clearing default pane {data.default_pane}: pane is gone")
                data.default_pane = None
            return None

        pane = self.store.update(_default)
        if pane:
            return pane

        legacy = self.store.read_legacy()
        if legacy and self.mux.verify(legacy):
            return legacy
        return None

    def list(self) -> list[PaneRecord]:
        """All records whose pane is still alive. Dead ones are evicted."""

        def _live(data: PaneRegistryData) -> list[PaneRecord]:
            live = []
            for session_id, record in list(data.panes.items()):
                if self.mux.verify(record.pane_handle):
                    live.append(record)
                else:
                    logger.info(f"Evicting session {session_id}: pane {record.pane_handle} is gone")
                    del data.panes[session_id]
            return live

        return self.store.update(_live)

    def remove(self, session_id: str) -> bool:
        """Kill a session's pane and forget it. Returns whether tmux killed the pane.

        The record is deleted even if the kill fails.
        """

        def _remove(data: PaneRegistryData) -> PaneRecord | None:
            record = data.panes.pop(session_id, None)
            if record is not None and data.default_pane == record.pane_handle:
                data.default_pane = None
            return record

        record = self.store.load().panes.get(session_id)
        if record is None:
            return False

        killed = self.mux.kill(record.pane_handle)
        if not killed:
            logger.warning(f"tmux could not kill pane {record.pane_handle} for {session_id}")
        self.store.update(_remove)
        return killed
