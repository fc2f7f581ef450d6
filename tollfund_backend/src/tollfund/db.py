from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from threading import RLock
from typing import Any, Generator, List, Optional, Tuple

import structlog

from .models import ENTITY_FIELDS, EntityKind
from .store import (
    Criteria,
    DuplicateError,
    Entity,
    NotFoundError,
    Store,
    StoreUnavailableError,
    check_criteria,
    plain,
    sort_keys,
)

logger = structlog.get_logger(__name__)

# Ordered schema migrations; index + 1 is the resulting PRAGMA user_version.
_MIGRATIONS: List[List[str]] = [
    [
        """
        CREATE TABLE IF NOT EXISTS daily_tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            task_type TEXT NOT NULL,
            reward_amount REAL NOT NULL DEFAULT 0,
            original_reward_amount REAL NOT NULL DEFAULT 0,
            is_completed INTEGER NOT NULL DEFAULT 0,
            completed_date TEXT NULL,
            is_fixed INTEGER NOT NULL DEFAULT 0,
            task_date TEXT NOT NULL,
            created_date TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS task_templates (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            task_type TEXT NOT NULL,
            reward_amount REAL NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS big_tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT NULL,
            reward_amount REAL NOT NULL DEFAULT 0,
            progress REAL NOT NULL DEFAULT 0,
            status TEXT NOT NULL,
            created_date TEXT NOT NULL,
            target_date TEXT NULL,
            completed_date TEXT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS expenses (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            amount REAL NOT NULL,
            category TEXT NOT NULL,
            date TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_daily_tasks_task_date ON daily_tasks(task_date, is_fixed)",
        "CREATE INDEX IF NOT EXISTS idx_daily_tasks_completed ON daily_tasks(is_completed, completed_date)",
        "CREATE INDEX IF NOT EXISTS idx_big_tasks_status ON big_tasks(status, completed_date)",
        "CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(date)",
    ],
    [
        "ALTER TABLE daily_tasks ADD COLUMN template_id TEXT NULL",
    ],
]

SCHEMA_VERSION = len(_MIGRATIONS)


def _to_db(kind_type: type, value: Any) -> Any:
    value = plain(value)
    if value is None:
        return None
    if kind_type is datetime:
        return value.isoformat()
    if kind_type is bool:
        return 1 if value else 0
    if kind_type is float:
        return float(value)
    return value


def _from_db(kind_type: type, value: Any) -> Any:
    if value is None:
        return None
    if kind_type is datetime:
        return datetime.fromisoformat(value)
    if kind_type is bool:
        return bool(value)
    if kind_type is float:
        return float(value)
    return str(value)


class SQLiteStore(Store):
    """
    SQLite store implementing the Store interface.

    One connection is shared by all callers (guarded by a lock); writes stay in
    the connection's open transaction until commit(). Datetimes are stored as
    ISO8601 text so range filters compare lexicographically.
    """

    def __init__(self, db_path: str, recreate_incompatible: bool = True) -> None:
        self._db_path = db_path
        self._lock = RLock()
        self._dirty = False
        self._closed = False
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        try:
            self._conn = self._open()
        except StoreUnavailableError as exc:
            if not recreate_incompatible or db_path == ":memory:":
                raise
            logger.error("store_recreated", path=db_path, reason=str(exc))
            self._destroy_files()
            self._conn = self._open()

    @property
    def schema_version(self) -> int:
        with self._lock, self._guard():
            return int(self._conn.execute("PRAGMA user_version").fetchone()[0])

    def _open(self) -> sqlite3.Connection:
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = sqlite3.connect(self._db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            version = int(conn.execute("PRAGMA user_version").fetchone()[0])
            if version > SCHEMA_VERSION:
                raise StoreUnavailableError(
                    f"database schema version {version} is newer than supported version {SCHEMA_VERSION}"
                )
            for index in range(version, SCHEMA_VERSION):
                for statement in _MIGRATIONS[index]:
                    conn.execute(statement)
                conn.execute(f"PRAGMA user_version = {index + 1}")
                conn.commit()
                logger.info("store_migrated", path=self._db_path, version=index + 1)
            return conn
        except StoreUnavailableError:
            if conn is not None:
                conn.close()
            raise
        except sqlite3.Error as exc:
            if conn is not None:
                conn.close()
            raise StoreUnavailableError(f"cannot open database {self._db_path}: {exc}") from exc

    def _destroy_files(self) -> None:
        for suffix in ("", "-journal", "-wal", "-shm"):
            path = self._db_path + suffix
            if os.path.exists(path):
                os.remove(path)

    @contextmanager
    def _guard(self) -> Generator[None, None, None]:
        try:
            yield
        except sqlite3.IntegrityError as exc:
            raise DuplicateError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise StoreUnavailableError(str(exc)) from exc

    def _row_to_entity(self, kind: EntityKind, row: sqlite3.Row) -> Entity:
        return {name: _from_db(t, row[name]) for name, t in ENTITY_FIELDS[kind].items()}

    def _where(self, kind: EntityKind, criteria: Criteria) -> Tuple[str, List[Any]]:
        fields = ENTITY_FIELDS[kind]
        clauses: List[str] = []
        params: List[Any] = []
        for name, value in criteria.equals.items():
            if value is None:
                clauses.append(f"{name} IS NULL")
            else:
                clauses.append(f"{name} = ?")
                params.append(_to_db(fields[name], value))
        if criteria.between is not None:
            name, start, end = criteria.between
            clauses.append(f"{name} IS NOT NULL")
            if start is not None:
                clauses.append(f"{name} >= ?")
                params.append(_to_db(fields[name], start))
            if end is not None:
                clauses.append(f"{name} < ?")
                params.append(_to_db(fields[name], end))
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where_sql, params

    def insert(self, kind: EntityKind, entity: Entity) -> Entity:
        fields = ENTITY_FIELDS[kind]
        unknown = set(entity) - set(fields)
        if unknown:
            raise ValueError(f"Unknown fields for {kind.value}: {sorted(unknown)}")
        names = list(fields)
        placeholders = ", ".join("?" for _ in names)
        values = [_to_db(fields[n], entity.get(n)) for n in names]
        with self._lock, self._guard():
            self._conn.execute(
                f"INSERT INTO {kind.value} ({', '.join(names)}) VALUES ({placeholders})",
                values,
            )
            self._dirty = True
        # Echo back what a read would return: storage types, enums unwrapped
        return {name: _from_db(fields[name], value) for name, value in zip(names, values)}

    def get(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        with self._lock, self._guard():
            row = self._conn.execute(f"SELECT * FROM {kind.value} WHERE id = ?", (entity_id,)).fetchone()
            return self._row_to_entity(kind, row) if row else None

    def fetch(self, kind: EntityKind, criteria: Optional[Criteria] = None) -> List[Entity]:
        c = criteria or Criteria()
        check_criteria(kind, c)
        where_sql, params = self._where(kind, c)
        order_parts = []
        for name, descending in sort_keys(kind, c.sort):
            direction = "DESC" if descending else "ASC"
            order_parts.append(f"({name} IS NULL) {direction}, {name} {direction}")
        order_sql = f"ORDER BY {', '.join(order_parts)}" if order_parts else ""
        with self._lock, self._guard():
            rows = self._conn.execute(
                f"SELECT * FROM {kind.value} {where_sql} {order_sql}", params
            ).fetchall()
            return [self._row_to_entity(kind, r) for r in rows]

    def count(self, kind: EntityKind, criteria: Optional[Criteria] = None) -> int:
        c = criteria or Criteria()
        check_criteria(kind, c)
        where_sql, params = self._where(kind, c)
        with self._lock, self._guard():
            count_row = self._conn.execute(
                f"SELECT COUNT(*) as cnt FROM {kind.value} {where_sql}", params
            ).fetchone()
            return int(count_row["cnt"]) if count_row else 0

    def update(self, kind: EntityKind, entity: Entity) -> None:
        fields = ENTITY_FIELDS[kind]
        unknown = set(entity) - set(fields)
        if unknown:
            raise ValueError(f"Unknown fields for {kind.value}: {sorted(unknown)}")
        names = [n for n in fields if n != "id"]
        assignments = ", ".join(f"{n} = ?" for n in names)
        values = [_to_db(fields[n], entity.get(n)) for n in names]
        with self._lock, self._guard():
            cur = self._conn.execute(
                f"UPDATE {kind.value} SET {assignments} WHERE id = ?",
                [*values, entity["id"]],
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"{kind.value} {entity['id']} not found")
            self._dirty = True

    def delete(self, kind: EntityKind, entity_id: str) -> bool:
        with self._lock, self._guard():
            cur = self._conn.execute(f"DELETE FROM {kind.value} WHERE id = ?", (entity_id,))
            if cur.rowcount > 0:
                self._dirty = True
                return True
            return False

    def commit(self) -> None:
        with self._lock, self._guard():
            self._conn.commit()
            self._dirty = False

    def rollback(self) -> None:
        with self._lock, self._guard():
            self._conn.rollback()
            self._dirty = False

    @property
    def has_changes(self) -> bool:
        return self._dirty

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._conn.rollback()
            finally:
                self._conn.close()
