"""Generic record store used by the referral and wave handlers.

Rows are plain dicts keyed by column name. Filters are mappings of column to
value: a plain value means equality, ``None`` means IS NULL, and the
``Between``/``AtLeast``/``Outside`` markers express ranges.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from sqlalchemy import ColumnElement, Table, delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from waitlist import models  # noqa: F401
from waitlist.db.connection import Base
from waitlist.errors import StoreConflictError, StoreError

logger = logging.getLogger(__name__)

Row = dict[str, Any]
T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Between:
    low: Any
    high: Any


@dataclass(frozen=True, slots=True)
class AtLeast:
    value: Any


@dataclass(frozen=True, slots=True)
class Outside:
    """Matches values below ``low``, above ``high``, or NULL."""

    low: Any
    high: Any


class RecordStore(Protocol):
    async def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

    async def find_one(self, table: str, filters: Mapping[str, Any]) -> Row | None: ...

    async def find_many(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Row]: ...

    async def update_where(
        self, table: str, filters: Mapping[str, Any], patch: Mapping[str, Any]
    ) -> list[Row]: ...

    async def delete_where(self, table: str, filters: Mapping[str, Any]) -> int: ...

    async def count(self, table: str, filters: Mapping[str, Any] | None = None) -> int: ...

    async def update_if_status(
        self,
        table: str,
        row_id: Any,
        from_status: str,
        to_status: str,
        patch: Mapping[str, Any] | None = None,
    ) -> Row | None:
        """Set ``status`` to ``to_status`` only if it currently equals ``from_status``.

        Must be a single conditional write. Returns the updated row, or None
        when the row is missing or another writer already moved it.
        """
        ...

    async def increment(
        self,
        table: str,
        filters: Mapping[str, Any],
        column: str,
        amount: int = 1,
        patch: Mapping[str, Any] | None = None,
    ) -> list[Row]: ...

    def transaction(self) -> AbstractAsyncContextManager[None]: ...


def _split_order(order_by: Sequence[str]) -> list[tuple[str, bool]]:
    return [(item[1:], True) if item.startswith("-") else (item, False) for item in order_by]


async def guarded(awaitable: Awaitable[T], *, timeout: float, op: str) -> T:
    """Await a store call under a timeout, surfacing every failure as StoreError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except StoreError:
        raise
    except TimeoutError as exc:
        raise StoreError(f"{op} timed out after {timeout:.1f}s") from exc


async def read_with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    retries: int,
    op: str,
) -> T:
    """Run an idempotent read, retrying StoreError up to ``retries`` extra times."""
    attempt = 0
    while True:
        try:
            return await guarded(call(), timeout=timeout, op=op)
        except StoreError:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning("Retrying store read %s (attempt %d/%d)", op, attempt, retries)


class SqlRecordStore:
    """RecordStore over the ORM tables using SQLAlchemy Core statements."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._active: ContextVar[AsyncSession | None] = ContextVar("record_store_session", default=None)

    @staticmethod
    def _table(name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError as exc:
            raise StoreError(f"unknown table {name!r}") from exc

    @staticmethod
    def _where(table: Table, filters: Mapping[str, Any] | None) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        for key, value in (filters or {}).items():
            column = table.c[key]
            if value is None:
                clauses.append(column.is_(None))
            elif isinstance(value, Between):
                clauses.append(column.between(value.low, value.high))
            elif isinstance(value, AtLeast):
                clauses.append(column >= value.value)
            elif isinstance(value, Outside):
                clauses.append(or_(column < value.low, column > value.high, column.is_(None)))
            else:
                clauses.append(column == value)
        return clauses

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        active = self._active.get()
        if active is not None:
            yield active
            return
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except IntegrityError as exc:
            raise StoreConflictError(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        active = self._active.get()
        if active is not None:
            async with active.begin_nested():
                yield
            return
        try:
            async with self._session_factory() as session:
                token = self._active.set(session)
                try:
                    async with session.begin():
                        yield
                finally:
                    self._active.reset(token)
        except IntegrityError as exc:
            raise StoreConflictError(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        tbl = self._table(table)
        async with self._session() as session:
            result = await session.execute(insert(tbl).values(**row).returning(*tbl.c))
            return dict(result.mappings().one())

    async def find_one(self, table: str, filters: Mapping[str, Any]) -> Row | None:
        rows = await self.find_many(table, filters, limit=1)
        return rows[0] if rows else None

    async def find_many(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Row]:
        tbl = self._table(table)
        stmt = select(tbl).where(*self._where(tbl, filters))
        for column, descending in _split_order(order_by):
            stmt = stmt.order_by(tbl.c[column].desc() if descending else tbl.c[column].asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [dict(item) for item in result.mappings().all()]

    async def update_where(
        self, table: str, filters: Mapping[str, Any], patch: Mapping[str, Any]
    ) -> list[Row]:
        tbl = self._table(table)
        stmt = update(tbl).where(*self._where(tbl, filters)).values(**patch).returning(*tbl.c)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [dict(item) for item in result.mappings().all()]

    async def delete_where(self, table: str, filters: Mapping[str, Any]) -> int:
        tbl = self._table(table)
        async with self._session() as session:
            result = await session.execute(delete(tbl).where(*self._where(tbl, filters)))
            return int(result.rowcount or 0)

    async def count(self, table: str, filters: Mapping[str, Any] | None = None) -> int:
        tbl = self._table(table)
        stmt = select(func.count()).select_from(tbl).where(*self._where(tbl, filters))
        async with self._session() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def update_if_status(
        self,
        table: str,
        row_id: Any,
        from_status: str,
        to_status: str,
        patch: Mapping[str, Any] | None = None,
    ) -> Row | None:
        tbl = self._table(table)
        stmt = (
            update(tbl)
            .where(tbl.c.id == row_id, tbl.c.status == from_status)
            .values(status=to_status, **(patch or {}))
            .returning(*tbl.c)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.mappings().one_or_none()
            return dict(row) if row is not None else None

    async def increment(
        self,
        table: str,
        filters: Mapping[str, Any],
        column: str,
        amount: int = 1,
        patch: Mapping[str, Any] | None = None,
    ) -> list[Row]:
        tbl = self._table(table)
        values: dict[str, Any] = {column: tbl.c[column] + amount, **(patch or {})}
        stmt = update(tbl).where(*self._where(tbl, filters)).values(values).returning(*tbl.c)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [dict(item) for item in result.mappings().all()]


def _matches(value: Any, condition: Any) -> bool:
    if condition is None:
        return value is None
    if isinstance(condition, Between):
        return value is not None and condition.low <= value <= condition.high
    if isinstance(condition, AtLeast):
        return value is not None and value >= condition.value
    if isinstance(condition, Outside):
        return value is None or value < condition.low or value > condition.high
    return value == condition


# (columns, predicate) pairs mirroring the unique indexes of the SQL schema.
_UNIQUE_KEYS: dict[str, list[tuple[tuple[str, ...], Callable[[Row], bool] | None]]] = {
    "users": [(("id",), None), (("email",), None), (("referral_code",), None)],
    "referrals": [
        (("id",), None),
        (("referrer_id", "referred_email"), lambda row: row.get("status") != "cancelled"),
    ],
    "waves": [(("id",), None)],
    "fraud_records": [(("id",), None)],
}


class InMemoryRecordStore:
    """Process-local RecordStore for tests and local development.

    Column defaults come from the ORM table definitions. Transactions are
    serialized by a lock and roll back by restoring a snapshot.
    """

    def __init__(self) -> None:
        self._tables: dict[str, list[Row]] = defaultdict(list)
        self._lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar("in_memory_transaction", default=False)
        self.write_count = 0

    def rows(self, table: str) -> list[Row]:
        return [dict(row) for row in self._tables[table]]

    @staticmethod
    def _columns(table: str) -> Table:
        try:
            return Base.metadata.tables[table]
        except KeyError as exc:
            raise StoreError(f"unknown table {table!r}") from exc

    def _with_defaults(self, table: str, row: Mapping[str, Any]) -> Row:
        tbl = self._columns(table)
        unknown = set(row) - set(tbl.c.keys())
        if unknown:
            raise StoreError(f"unknown columns for {table}: {sorted(unknown)}")
        full: Row = {}
        for column in tbl.c:
            if column.key in row:
                full[column.key] = row[column.key]
            elif column.default is not None and column.default.is_callable:
                full[column.key] = column.default.arg(None)  # type: ignore[attr-defined]
            elif column.default is not None and column.default.is_scalar:
                full[column.key] = column.default.arg  # type: ignore[attr-defined]
            else:
                full[column.key] = None
        return full

    def _check_unique(self, table: str, candidate: Row, ignore: Row | None = None) -> None:
        for columns, predicate in _UNIQUE_KEYS.get(table, []):
            if predicate is not None and not predicate(candidate):
                continue
            key = tuple(candidate.get(column) for column in columns)
            for existing in self._tables[table]:
                if existing is ignore:
                    continue
                if predicate is not None and not predicate(existing):
                    continue
                if tuple(existing.get(column) for column in columns) == key:
                    raise StoreConflictError(f"duplicate key for {table}{columns}")

    def _select(self, table: str, filters: Mapping[str, Any] | None) -> list[Row]:
        self._columns(table)
        conditions = filters or {}
        return [
            row
            for row in self._tables[table]
            if all(_matches(row.get(key), condition) for key, condition in conditions.items())
        ]

    def _apply(self, table: str, targets: Iterable[Row], patch: Mapping[str, Any]) -> list[Row]:
        updated: list[Row] = []
        for row in targets:
            candidate = {**row, **patch}
            self._check_unique(table, candidate, ignore=row)
            row.update(patch)
            updated.append(dict(row))
        self.write_count += len(updated)
        return updated

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._in_transaction.get():
            yield
            return
        async with self._lock:
            snapshot = copy.deepcopy(self._tables)
            token = self._in_transaction.set(True)
            try:
                yield
            except BaseException:
                self._tables = snapshot
                raise
            finally:
                self._in_transaction.reset(token)

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        full = self._with_defaults(table, row)
        self._check_unique(table, full)
        self._tables[table].append(full)
        self.write_count += 1
        return dict(full)

    async def find_one(self, table: str, filters: Mapping[str, Any]) -> Row | None:
        rows = await self.find_many(table, filters, limit=1)
        return rows[0] if rows else None

    async def find_many(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: Sequence[str] = (),
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Row]:
        rows = [dict(row) for row in self._select(table, filters)]
        for column, descending in reversed(_split_order(order_by)):
            present = [row for row in rows if row.get(column) is not None]
            missing = [row for row in rows if row.get(column) is None]
            present.sort(key=lambda row: row[column], reverse=descending)
            rows = present + missing
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def update_where(
        self, table: str, filters: Mapping[str, Any], patch: Mapping[str, Any]
    ) -> list[Row]:
        return self._apply(table, self._select(table, filters), patch)

    async def delete_where(self, table: str, filters: Mapping[str, Any]) -> int:
        doomed = self._select(table, filters)
        doomed_ids = {id(row) for row in doomed}
        self._tables[table] = [row for row in self._tables[table] if id(row) not in doomed_ids]
        self.write_count += len(doomed)
        return len(doomed)

    async def count(self, table: str, filters: Mapping[str, Any] | None = None) -> int:
        return len(self._select(table, filters))

    async def update_if_status(
        self,
        table: str,
        row_id: Any,
        from_status: str,
        to_status: str,
        patch: Mapping[str, Any] | None = None,
    ) -> Row | None:
        targets = self._select(table, {"id": row_id, "status": from_status})
        if not targets:
            return None
        return self._apply(table, targets[:1], {"status": to_status, **(patch or {})})[0]

    async def increment(
        self,
        table: str,
        filters: Mapping[str, Any],
        column: str,
        amount: int = 1,
        patch: Mapping[str, Any] | None = None,
    ) -> list[Row]:
        updated: list[Row] = []
        for row in self._select(table, filters):
            updated.extend(
                self._apply(table, [row], {column: (row.get(column) or 0) + amount, **(patch or {})})
            )
        return updated
