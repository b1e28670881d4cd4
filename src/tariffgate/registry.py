"""Versioned, lock-protected registries for rules, thresholds and restrictions."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, Optional, Protocol, TypeVar
from uuid import uuid4

from tariffgate.errors import DuplicateEntryError


class ReadWriteLock:
    """Many concurrent readers or a single writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class _Identified(Protocol):
    id: str


EntryT = TypeVar("EntryT", bound=_Identified)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VersionedRegistry(Generic[EntryT]):
    """Ordered registry of dataclass entries keyed by ``id``.

    Every successful mutation bumps :attr:`version` and runs the
    ``on_mutation`` hooks while the write lock is still held, so readers
    never observe a new entry set alongside derived state from the old one.
    """

    id_prefix = "entry"

    def __init__(
        self,
        entries: Iterable[EntryT] = (),
        *,
        validate: Optional[Callable[[EntryT], None]] = None,
    ) -> None:
        self._lock = ReadWriteLock()
        self._validate = validate
        self._entries: Dict[str, EntryT] = {}
        self._version = 0
        self._hooks: List[Callable[[int], None]] = []
        for entry in entries:
            if self._validate is not None:
                self._validate(entry)
            self._entries[entry.id] = entry

    @property
    def version(self) -> int:
        with self._lock.read():
            return self._version

    def on_mutation(self, hook: Callable[[int], None]) -> None:
        """Register a callback invoked with the new version inside the write lock."""

        with self._lock.write():
            self._hooks.append(hook)

    @contextmanager
    def reading(self) -> Iterator[tuple[int, List[EntryT]]]:
        """Hold the read lock for an evaluation pass, yielding (version, entries)."""

        with self._lock.read():
            yield self._version, list(self._entries.values())

    def snapshot(self) -> tuple[int, List[EntryT]]:
        with self._lock.read():
            return self._version, list(self._entries.values())

    def list(self) -> List[EntryT]:
        return self.snapshot()[1]

    def get(self, entry_id: str) -> Optional[EntryT]:
        with self._lock.read():
            return self._entries.get(entry_id)

    def _new_id(self) -> str:
        return f"{self.id_prefix}-{uuid4().hex[:12]}"

    def _bump(self) -> None:
        self._version += 1
        for hook in self._hooks:
            hook(self._version)

    def add(self, entry: EntryT) -> str:
        """Insert ``entry``; a blank id is replaced by a generated one."""

        if not getattr(entry, "id", ""):
            entry = replace(entry, id=self._new_id())
        if hasattr(entry, "created_at"):
            now = _utcnow()
            entry = replace(entry, created_at=now, updated_at=now)
        if self._validate is not None:
            self._validate(entry)
        with self._lock.write():
            if entry.id in self._entries:
                raise DuplicateEntryError(f"Duplicate id {entry.id!r}")
            self._entries[entry.id] = entry
            self._bump()
        return entry.id

    def update(self, entry_id: str, **changes: Any) -> bool:
        """Apply field ``changes`` to an entry; returns False for unknown ids."""

        changes.pop("id", None)
        with self._lock.write():
            current = self._entries.get(entry_id)
            if current is None:
                return False
            if hasattr(current, "updated_at"):
                changes["updated_at"] = _utcnow()
            updated = replace(current, **changes)
            if self._validate is not None:
                self._validate(updated)
            self._entries[entry_id] = updated
            self._bump()
        return True

    def delete(self, entry_id: str) -> bool:
        with self._lock.write():
            if self._entries.pop(entry_id, None) is None:
                return False
            self._bump()
        return True


def by_priority(entries: Iterable[Any]) -> List[Any]:
    """Enabled entries sorted by ascending priority (insertion order on ties)."""

    return sorted((entry for entry in entries if entry.enabled), key=lambda entry: entry.priority)
