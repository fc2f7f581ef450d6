from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .models import ENTITY_FIELDS, EntityKind
from .settings import Settings
from .utils import to_naive

Entity = Dict[str, Any]
Tables = Dict[EntityKind, Dict[str, Entity]]


class StoreError(Exception):
    """Base exception for store operations."""


class NotFoundError(StoreError):
    """Entity not found in the store."""


class DuplicateError(StoreError):
    """Attempted to insert an entity whose id already exists."""


class StoreUnavailableError(StoreError):
    """The underlying storage could not be opened, read or written."""


@dataclass(frozen=True)
class Criteria:
    """
    Filter and ordering for fetch/count.

    - equals: field -> value; all must match. Enum values compare by their value.
    - between: optional (field, start, end) half-open range [start, end); either
      bound may be None. Entities whose field is None never match a range.
    - sort: comma-separated field names, '-' prefix for descending
      (e.g. "-is_fixed,created_date").
    """

    equals: Mapping[str, Any] = field(default_factory=dict)
    between: Optional[Tuple[str, Optional[datetime], Optional[datetime]]] = None
    sort: Optional[str] = None


def plain(value: Any) -> Any:
    """Unwrap enums to their stored value; offset-aware datetimes become naive local time."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_naive(value)
    return value


def sort_keys(kind: EntityKind, sort: Optional[str]) -> List[Tuple[str, bool]]:
    """Parse a sort expression into (field, descending) pairs, validating field names."""
    if not sort:
        return []
    fields = ENTITY_FIELDS[kind]
    keys: List[Tuple[str, bool]] = []
    for part in sort.split(","):
        token = part.strip()
        if not token:
            continue
        descending = token.startswith("-")
        name = token[1:] if descending else token
        if name not in fields:
            raise ValueError(f"Unknown sort field for {kind.value}: {name}")
        keys.append((name, descending))
    return keys


def check_criteria(kind: EntityKind, criteria: Criteria) -> None:
    """Reject filters on fields the entity kind does not have."""
    fields = ENTITY_FIELDS[kind]
    for name in criteria.equals:
        if name not in fields:
            raise ValueError(f"Unknown filter field for {kind.value}: {name}")
    if criteria.between is not None and criteria.between[0] not in fields:
        raise ValueError(f"Unknown range field for {kind.value}: {criteria.between[0]}")


# PUBLIC_INTERFACE
class Store(ABC):
    """
    Transactional record store consumed by the recurrence engine, the ledger and
    the service layer.

    Writes are staged until commit(); reads always see staged writes. rollback()
    discards everything staged since the last successful commit.
    """

    @abstractmethod
    def insert(self, kind: EntityKind, entity: Entity) -> Entity:
        """Stage a new entity. Raises DuplicateError if its id exists."""

    @abstractmethod
    def get(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        """Return a copy of an entity by id, or None if not found."""

    @abstractmethod
    def fetch(self, kind: EntityKind, criteria: Optional[Criteria] = None) -> List[Entity]:
        """Return copies of all entities matching criteria, in the requested order."""

    @abstractmethod
    def count(self, kind: EntityKind, criteria: Optional[Criteria] = None) -> int:
        """Return the number of entities matching criteria."""

    @abstractmethod
    def update(self, kind: EntityKind, entity: Entity) -> None:
        """Replace the stored entity with the same id. Raises NotFoundError if absent."""

    @abstractmethod
    def delete(self, kind: EntityKind, entity_id: str) -> bool:
        """Delete an entity by id. Return True if deleted, False if not found."""

    @abstractmethod
    def commit(self) -> None:
        """Persist staged changes atomically. Raises StoreError on failure."""

    @abstractmethod
    def rollback(self) -> None:
        """Discard staged changes."""

    @property
    @abstractmethod
    def has_changes(self) -> bool:
        """True when there are staged, uncommitted changes."""

    def close(self) -> None:
        """Release backend resources. Staged changes are discarded."""


def _matches(entity: Entity, criteria: Criteria) -> bool:
    for name, expected in criteria.equals.items():
        if entity.get(name) != plain(expected):
            return False
    if criteria.between is not None:
        name, start, end = criteria.between
        value = entity.get(name)
        if value is None:
            return False
        if start is not None and value < plain(start):
            return False
        if end is not None and value >= plain(end):
            return False
    return True


def _snapshot(tables: Tables) -> Tables:
    return {kind: {i: e.copy() for i, e in rows.items()} for kind, rows in tables.items()}


class InMemoryStore(Store):
    """
    Thread-safe in-memory store suitable for testing and default runtime.

    Keeps a committed snapshot and a working copy; commit promotes the working
    copy, rollback restores it from the snapshot.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._committed: Tables = {kind: {} for kind in EntityKind}
        self._working: Tables = _snapshot(self._committed)
        self._dirty = False

    def _normalize(self, kind: EntityKind, entity: Entity) -> Entity:
        fields = ENTITY_FIELDS[kind]
        unknown = set(entity) - set(fields)
        if unknown:
            raise ValueError(f"Unknown fields for {kind.value}: {sorted(unknown)}")
        return {name: plain(entity.get(name)) for name in fields}

    def insert(self, kind: EntityKind, entity: Entity) -> Entity:
        row = self._normalize(kind, entity)
        with self._lock:
            if row["id"] in self._working[kind]:
                raise DuplicateError(f"{kind.value} {row['id']} already exists")
            self._working[kind][row["id"]] = row
            self._dirty = True
            return row.copy()

    def get(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        with self._lock:
            item = self._working[kind].get(entity_id)
            return None if item is None else item.copy()

    def fetch(self, kind: EntityKind, criteria: Optional[Criteria] = None) -> List[Entity]:
        c = criteria or Criteria()
        check_criteria(kind, c)
        keys = sort_keys(kind, c.sort)
        with self._lock:
            items = [e for e in self._working[kind].values() if _matches(e, c)]
            # Stable multi-key sort: apply the least significant key first
            for name, descending in reversed(keys):
                items.sort(
                    key=lambda e, n=name: (e.get(n) is None, e.get(n) if e.get(n) is not None else 0),
                    reverse=descending,
                )
            return [e.copy() for e in items]

    def count(self, kind: EntityKind, criteria: Optional[Criteria] = None) -> int:
        c = criteria or Criteria()
        check_criteria(kind, c)
        with self._lock:
            return sum(1 for e in self._working[kind].values() if _matches(e, c))

    def update(self, kind: EntityKind, entity: Entity) -> None:
        row = self._normalize(kind, entity)
        with self._lock:
            if row["id"] not in self._working[kind]:
                raise NotFoundError(f"{kind.value} {row['id']} not found")
            self._working[kind][row["id"]] = row
            self._dirty = True

    def delete(self, kind: EntityKind, entity_id: str) -> bool:
        with self._lock:
            removed = self._working[kind].pop(entity_id, None) is not None
            if removed:
                self._dirty = True
            return removed

    def commit(self) -> None:
        with self._lock:
            self._committed = _snapshot(self._working)
            self._dirty = False

    def rollback(self) -> None:
        with self._lock:
            self._working = _snapshot(self._committed)
            self._dirty = False

    @property
    def has_changes(self) -> bool:
        return self._dirty


# PUBLIC_INTERFACE
def get_store(settings: Settings) -> Store:
    """
    Factory to return the configured store based on settings.
    - memory: InMemoryStore
    - sqlite: SQLiteStore backed by settings.sqlite_db_path
    """
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteStore

        return SQLiteStore(
            settings.sqlite_db_path,
            recreate_incompatible=settings.recreate_incompatible_store,
        )
    return InMemoryStore()
