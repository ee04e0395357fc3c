"""Shared fixtures: an in-memory transactional store.

``FakeDatabase`` implements the ``TransactionalAdapter`` protocol and hands
out ``FakeSession`` objects implementing ``DatabaseClient``.  It answers the
column and foreign-key metadata queries the engine issues, enforces unique and
foreign-key constraints, and restores its state when a transaction or
savepoint block raises, so rollback behaviour can be asserted by re-reading
tables afterwards.  Locked reads (``for_update``) are held per transaction:
another transaction asking for the same rows waits until the holder ends.
"""

import asyncio
import copy
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import pytest

from records_engine.adapters.base import Like, validate_identifier
from records_engine.errors import SchemaUnavailable, WriteRejected


@dataclass
class FakeTable:
    name: str
    columns: list[str]
    auto_column: str | None = None
    unique: list[str] = field(default_factory=list)
    rows: list[dict] = field(default_factory=list)
    next_auto: int = 1


@dataclass(frozen=True)
class FakeForeignKey:
    referencing_table: str
    referencing_column: str
    referenced_table: str
    referenced_column: str
    name: str = ""


def _like(pattern: str, value: Any) -> bool:
    if not isinstance(value, str):
        return False
    regex = "".join(
        ".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in pattern
    )
    return re.fullmatch(regex, value, re.DOTALL) is not None


def _matches(row: dict, filters: dict[str, Any] | None) -> bool:
    for column, expected in (filters or {}).items():
        actual = row.get(column)
        if expected is None:
            if actual is not None:
                return False
        elif isinstance(expected, Like):
            if not _like(expected.pattern, actual):
                return False
        elif actual != expected:
            return False
    return True


class FakeDatabase:
    """In-memory stand-in for ``AsyncPostgresAdapter``."""

    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = {}
        self.foreign_keys: list[FakeForeignKey] = []
        self.fail_delete_on: set[str] = set()
        self.fail_delete_matching: list[tuple[str, dict]] = []
        self.metadata_unavailable = False
        self.locks: list[str] = []
        self.row_locks: list[tuple[str, dict]] = []
        self._row_lock_owners: dict[tuple, "FakeSession"] = {}
        self.transactions = 0
        self.rollbacks = 0
        self.closed = False

    # Schema setup ------------------------------------------------------

    def create_table(
        self,
        name: str,
        columns: list[str],
        auto_column: str | None = None,
        unique: list[str] | None = None,
    ) -> FakeTable:
        unique_columns = list(unique or [])
        if auto_column and auto_column not in unique_columns:
            unique_columns.append(auto_column)
        table = FakeTable(name, list(columns), auto_column, unique_columns)
        self.tables[name] = table
        return table

    def add_foreign_key(
        self,
        referencing_table: str,
        referencing_column: str,
        referenced_table: str,
        referenced_column: str,
        name: str | None = None,
    ) -> None:
        self.foreign_keys.append(
            FakeForeignKey(
                referencing_table,
                referencing_column,
                referenced_table,
                referenced_column,
                name or f"{referencing_table}_{referencing_column}_fkey",
            )
        )

    def seed(self, table: str, **values: Any) -> dict:
        """Insert a row outside any transaction and return it."""
        return FakeSession(self)._insert_row(table, values)

    def rows(self, table: str, **filters: Any) -> list[dict]:
        return [dict(r) for r in self.tables[table].rows if _matches(r, filters)]

    # State snapshots -----------------------------------------------------

    def _snapshot(self) -> dict[str, tuple[list[dict], int]]:
        return {
            name: (copy.deepcopy(t.rows), t.next_auto) for name, t in self.tables.items()
        }

    def _restore(self, snapshot: dict[str, tuple[list[dict], int]]) -> None:
        for name, (rows, next_auto) in snapshot.items():
            self.tables[name].rows = rows
            self.tables[name].next_auto = next_auto

    # TransactionalAdapter -----------------------------------------------

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        snapshot = self._snapshot()
        session = FakeSession(self)
        try:
            yield session
        except BaseException:
            self.rollbacks += 1
            self._restore(snapshot)
            raise
        finally:
            self._release_row_locks(session)

    # Row locks -----------------------------------------------------------

    async def _acquire_row_lock(self, session: "FakeSession", key: tuple) -> None:
        while self._row_lock_owners.get(key, session) is not session:
            await asyncio.sleep(0)
        self._row_lock_owners[key] = session

    def _release_row_locks(self, session: "FakeSession") -> None:
        for key in [k for k, owner in self._row_lock_owners.items() if owner is session]:
            del self._row_lock_owners[key]

    async def close(self) -> None:
        self.closed = True


class FakeSession:
    """``DatabaseClient`` over a ``FakeDatabase``."""

    def __init__(self, db: FakeDatabase) -> None:
        self._db = db

    def _table(self, name: str) -> FakeTable:
        validate_identifier(name)
        if name not in self._db.tables:
            raise SchemaUnavailable(f'relation "{name}" does not exist', table=name)
        return self._db.tables[name]

    def _check_columns(self, table: FakeTable, columns) -> None:
        for column in columns:
            validate_identifier(column)
            if column not in table.columns:
                raise SchemaUnavailable(
                    f'column "{column}" of relation "{table.name}" does not exist',
                    table=table.name,
                )

    def _insert_row(self, name: str, data: dict[str, Any]) -> dict:
        table = self._table(name)
        self._check_columns(table, data)
        row = {column: None for column in table.columns}
        row.update(data)
        if table.auto_column and row.get(table.auto_column) is None:
            row[table.auto_column] = table.next_auto
            table.next_auto += 1
        for column in table.unique:
            value = row.get(column)
            if value is not None and any(r.get(column) == value for r in table.rows):
                raise WriteRejected(
                    f'duplicate key value violates unique constraint "{name}_{column}_key"'
                )
        table.rows.append(row)
        return row

    async def select(
        self,
        table: str,
        columns=None,
        filters=None,
        order_by=None,
        descending=False,
        limit=None,
        for_update=False,
        length_first=False,
    ) -> list[dict]:
        await asyncio.sleep(0)
        if for_update:
            key = (table, tuple(sorted((filters or {}).items(), key=lambda kv: kv[0])))
            await self._db._acquire_row_lock(self, key)
        fake = self._table(table)
        self._check_columns(fake, list(columns or []) + list(filters or {}))
        rows = [r for r in fake.rows if _matches(r, filters)]
        if order_by:
            self._check_columns(fake, [order_by])
            if length_first:
                rows.sort(
                    key=lambda r: (
                        r.get(order_by) is not None,
                        len(str(r.get(order_by) or "")),
                        r.get(order_by),
                    ),
                    reverse=descending,
                )
            else:
                rows.sort(
                    key=lambda r: (r.get(order_by) is not None, r.get(order_by)),
                    reverse=descending,
                )
        if limit is not None:
            rows = rows[:limit]
        if for_update:
            self._db.row_locks.append((table, dict(filters or {})))
        if columns:
            return [{c: r.get(c) for c in columns} for r in rows]
        return [dict(r) for r in rows]

    async def insert(self, table: str, data: dict[str, Any], returning=None) -> Any:
        await asyncio.sleep(0)
        row = self._insert_row(table, data)
        return row.get(returning) if returning else None

    async def update(self, table: str, data: dict[str, Any], filters: dict[str, Any]) -> int:
        fake = self._table(table)
        self._check_columns(fake, list(data) + list(filters))
        matched = [r for r in fake.rows if _matches(r, filters)]
        for row in matched:
            row.update(data)
        return len(matched)

    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        await asyncio.sleep(0)
        fake = self._table(table)
        self._check_columns(fake, filters)
        if table in self._db.fail_delete_on:
            raise WriteRejected(f"delete on '{table}' rejected")
        if (table, dict(filters)) in self._db.fail_delete_matching:
            raise WriteRejected(f"delete on '{table}' rejected for {filters}")

        doomed = [r for r in fake.rows if _matches(r, filters)]
        for fk in self._db.foreign_keys:
            if fk.referenced_table != table:
                continue
            values = {r.get(fk.referenced_column) for r in doomed} - {None}
            referencing = self._db.tables[fk.referencing_table].rows
            for row in referencing:
                if row in doomed:
                    continue
                if row.get(fk.referencing_column) in values:
                    raise WriteRejected(
                        f'update or delete on table "{table}" violates foreign key '
                        f'constraint on table "{fk.referencing_table}"'
                    )

        fake.rows = [r for r in fake.rows if not _matches(r, filters)]
        return len(doomed)

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        params = params or {}
        if self._db.metadata_unavailable:
            raise SchemaUnavailable("permission denied for information_schema")
        if "information_schema.columns" in sql:
            table = self._db.tables.get(params["table"])
            if table is None:
                return []
            return [{"column_name": c} for c in table.columns]
        if "pg_constraint" in sql:
            # pg_constraint keys each constraint by its table oids, not its name
            edges = [
                fk for fk in self._db.foreign_keys if fk.referenced_table == params["table"]
            ]
            edges.sort(key=lambda fk: (fk.referencing_table, fk.referencing_column))
            return [
                {
                    "referencing_table": fk.referencing_table,
                    "referencing_column": fk.referencing_column,
                    "referenced_column": fk.referenced_column,
                }
                for fk in edges
            ]
        raise AssertionError(f"Unexpected statement: {sql}")

    @asynccontextmanager
    async def savepoint(self):
        snapshot = self._db._snapshot()
        try:
            yield
        except BaseException:
            self._db._restore(snapshot)
            raise

    async def advisory_lock(self, key: str) -> None:
        self._db.locks.append(key)


# ============================================================================
# Fixtures
# ============================================================================


USERS_COLUMNS = [
    "user_id",
    "first_name",
    "middle_name",
    "last_name",
    "suffix",
    "name",
    "email",
    "username",
    "role",
    "status",
    "password",
    "contact_number",
    "principal_id",
    "user_code",
    "created_at",
    "updated_at",
]

ARCHIVE_COLUMNS = [
    "archive_id",
    "user_id",
    "user_code",
    "principal_id",
    "username",
    "first_name",
    "middle_name",
    "last_name",
    "suffix",
    "email",
    "phone_number",
    "role",
    "name",
    "reason",
    "archived_at",
    "snapshot_json",
    "created_at",
    "updated_at",
]


def build_school_db() -> FakeDatabase:
    """A deployment with a principal profile table and two dependent tables."""
    db = FakeDatabase()
    db.create_table("users", USERS_COLUMNS, auto_column="user_id", unique=["email"])
    db.create_table(
        "principal",
        ["id", "user_id", "principal_id", "first_name", "last_name", "email", "created_at"],
        auto_column="id",
    )
    db.create_table("archive_users", ARCHIVE_COLUMNS, auto_column="archive_id")
    db.create_table("account_logs", ["log_id", "user_id", "action"], auto_column="log_id")
    db.create_table("sessions", ["session_id", "user_id", "token"], auto_column="session_id")
    db.create_table(
        "principal_notes", ["note_id", "principal_ref", "body"], auto_column="note_id"
    )

    db.add_foreign_key("principal", "user_id", "users", "user_id")
    db.add_foreign_key("account_logs", "user_id", "users", "user_id")
    db.add_foreign_key("sessions", "user_id", "users", "user_id")
    db.add_foreign_key("principal_notes", "principal_ref", "principal", "id")
    return db


@pytest.fixture
def school_db() -> FakeDatabase:
    return build_school_db()


@pytest.fixture
def minimal_db() -> FakeDatabase:
    """A deployment with only bare users and archive tables."""
    db = FakeDatabase()
    db.create_table("users", ["user_id", "email", "first_name", "last_name"], auto_column="user_id")
    db.create_table("archive_users", ["archive_id", "user_id", "email"], auto_column="archive_id")
    return db
