"""
Resource store adapters: a SQLAlchemy-backed implementation and an in-memory
one for development and tests.

A store is bound to one named collection ("table") and knows nothing about
the records it holds beyond ``id`` and ``created_at``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol

from sqlalchemy import Table, create_engine, delete, func, insert, select, update
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from starlette.concurrency import run_in_threadpool

from backoffice.tables import Base, scalar_defaults

_TRUE = {"true", "t", "1", "yes"}
_FALSE = {"false", "f", "0", "no"}


class StoreFailure(Exception):
    """Error reported by a store adapter, with its native diagnostics."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        hint: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.hint = hint
        self.details = details


class ResourceStore(Protocol):
    """Interface for one named collection of records."""

    name: str

    async def count(self, filters: Mapping[str, Any]) -> int:
        ...

    async def fetch(
        self, filters: Mapping[str, Any], *, offset: int, limit: int
    ) -> list[dict]:
        """Return matching records, newest ``created_at`` first."""
        ...

    async def get(self, record_id: int) -> Optional[dict]:
        ...

    async def exists(self, record_id: int) -> bool:
        ...

    async def insert(self, values: Mapping[str, Any]) -> dict:
        ...

    async def update(self, record_id: int, values: Mapping[str, Any]) -> Optional[dict]:
        ...

    async def delete(self, record_id: int) -> bool:
        ...

    async def find_one(
        self, field: str, value: Any, *, case_insensitive: bool = False
    ) -> Optional[dict]:
        ...


def values_match(stored: Any, wanted: Any) -> bool:
    """
    Equality used for filters. Query-string values arrive as text, so a string
    filter is compared against the stored value's natural type.
    """
    if not isinstance(wanted, str) or isinstance(stored, str):
        return stored == wanted
    if isinstance(stored, bool):
        return stored is (wanted.strip().lower() in _TRUE)
    if isinstance(stored, (int, float)):
        try:
            return float(wanted) == stored
        except ValueError:
            return False
    if stored is None:
        return False
    return str(stored) == wanted


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryResourceStore:
    """
    Simple in-memory store for development and tests.

    Records get the same constant column defaults the SQL table declares
    unless ``defaults`` is given explicitly.
    """

    def __init__(
        self,
        name: str,
        records: Iterable[Mapping[str, Any]] = (),
        defaults: Optional[Mapping[str, Any]] = None,
    ):
        self.name = name
        self.defaults = dict(scalar_defaults(name) if defaults is None else defaults)
        self.records: Dict[int, dict] = {}
        self._next_id = 1
        for record in records:
            self._insert(record)

    def _insert(self, values: Mapping[str, Any]) -> dict:
        record = dict(values)
        record_id = record.get("id") or self._next_id
        self._next_id = max(self._next_id, record_id) + 1
        now = _now_iso()
        record["id"] = record_id
        for key, value in self.defaults.items():
            record.setdefault(key, value)
        record.setdefault("created_at", now)
        record.setdefault("updated_at", now)
        self.records[record_id] = record
        return dict(record)

    def _matching(self, filters: Mapping[str, Any]) -> list[dict]:
        return [
            record
            for record in self.records.values()
            if all(values_match(record.get(key), value) for key, value in filters.items())
        ]

    async def count(self, filters: Mapping[str, Any]) -> int:
        return len(self._matching(filters))

    async def fetch(
        self, filters: Mapping[str, Any], *, offset: int, limit: int
    ) -> list[dict]:
        rows = sorted(
            self._matching(filters),
            key=lambda r: (r.get("created_at") or "", r["id"]),
            reverse=True,
        )
        return [dict(r) for r in rows[offset : offset + limit]]

    async def get(self, record_id: int) -> Optional[dict]:
        record = self.records.get(record_id)
        return dict(record) if record else None

    async def exists(self, record_id: int) -> bool:
        return record_id in self.records

    async def insert(self, values: Mapping[str, Any]) -> dict:
        return self._insert(values)

    async def update(self, record_id: int, values: Mapping[str, Any]) -> Optional[dict]:
        record = self.records.get(record_id)
        if record is None:
            return None
        record.update(values)
        record["id"] = record_id
        record["updated_at"] = _now_iso()
        return dict(record)

    async def delete(self, record_id: int) -> bool:
        return self.records.pop(record_id, None) is not None

    async def find_one(
        self, field: str, value: Any, *, case_insensitive: bool = False
    ) -> Optional[dict]:
        for record in self.records.values():
            stored = record.get(field)
            if case_insensitive and isinstance(stored, str) and isinstance(value, str):
                if stored.lower() == value.lower():
                    return dict(record)
            elif stored == value:
                return dict(record)
        return None


def create_store_engine(database_url: str) -> Engine:
    """
    Build an engine for any SQLAlchemy URL (Postgres in production, SQLite for
    tests) and make sure the resource tables exist.
    """
    if not database_url:
        raise ValueError("DATABASE_URL is required for SqlResourceStore")
    url = make_url(database_url)
    kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if url.get_backend_name() == "sqlite":
        # Requests run on threadpool workers.
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_recycle"] = 1800
    engine = create_engine(url, **kwargs)
    Base.metadata.create_all(engine)
    return engine


class SqlResourceStore:
    """
    SQLAlchemy-backed store over a single table. The engine is synchronous, so
    every call is pushed onto the threadpool to keep the event loop free.
    """

    def __init__(self, engine: Engine, table: Table):
        self.engine = engine
        self.table = table
        self.name = table.name

    def _column(self, name: str):
        column = self.table.c.get(name)
        if column is None:
            raise StoreFailure(
                f"Could not find the '{name}' column of '{self.name}'",
                code="42703",
            )
        return column

    def _coerce(self, column, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return value
        try:
            if python_type is bool:
                lowered = value.strip().lower()
                if lowered in _TRUE:
                    return True
                if lowered in _FALSE:
                    return False
                raise ValueError(value)
            if python_type is datetime:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            if python_type in (int, float):
                return python_type(value)
        except ValueError as exc:
            raise StoreFailure(
                f'invalid input syntax for column {column.name}: "{value}"',
                code="22P02",
            ) from exc
        return value

    def _values(self, values: Mapping[str, Any]) -> dict:
        return {
            key: self._coerce(self._column(key), value) for key, value in values.items()
        }

    def _where(self, filters: Mapping[str, Any]) -> list:
        clauses = []
        for key, value in filters.items():
            column = self._column(key)
            clauses.append(column == self._coerce(column, value))
        return clauses

    def _to_record(self, row) -> dict:
        record = {}
        for key, value in row._mapping.items():
            if isinstance(value, datetime):
                if value.tzinfo is None:
                    value = value.replace(tzinfo=timezone.utc)
                value = value.isoformat()
            record[key] = value
        return record

    def _by_id(self, record_id: int):
        return select(self.table).where(self.table.c.id == record_id)

    async def _run(self, fn, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except SQLAlchemyError as exc:
            orig = getattr(exc, "orig", None)
            raise StoreFailure(
                str(orig or exc).strip(),
                code=getattr(orig, "pgcode", None) or type(exc).__name__,
                details=str(exc),
            ) from exc

    def _count_sync(self, filters: Mapping[str, Any]) -> int:
        stmt = select(func.count()).select_from(self.table).where(*self._where(filters))
        with self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def _fetch_sync(self, filters: Mapping[str, Any], offset: int, limit: int) -> list[dict]:
        stmt = (
            select(self.table)
            .where(*self._where(filters))
            .order_by(self.table.c.created_at.desc(), self.table.c.id.desc())
            .offset(offset)
            .limit(limit)
        )
        with self.engine.connect() as conn:
            return [self._to_record(row) for row in conn.execute(stmt)]

    def _get_sync(self, record_id: int) -> Optional[dict]:
        with self.engine.connect() as conn:
            row = conn.execute(self._by_id(record_id)).one_or_none()
            return self._to_record(row) if row else None

    def _exists_sync(self, record_id: int) -> bool:
        stmt = select(self.table.c.id).where(self.table.c.id == record_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).first() is not None

    def _insert_sync(self, values: Mapping[str, Any]) -> dict:
        values = self._values(values)
        with self.engine.begin() as conn:
            result = conn.execute(insert(self.table).values(**values))
            record_id = result.inserted_primary_key[0]
            row = conn.execute(self._by_id(record_id)).one()
            return self._to_record(row)

    def _update_sync(self, record_id: int, values: Mapping[str, Any]) -> Optional[dict]:
        values = self._values(values)
        with self.engine.begin() as conn:
            result = conn.execute(
                update(self.table).where(self.table.c.id == record_id).values(**values)
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(self._by_id(record_id)).one()
            return self._to_record(row)

    def _delete_sync(self, record_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(delete(self.table).where(self.table.c.id == record_id))
            return result.rowcount > 0

    def _find_one_sync(self, field: str, value: Any, case_insensitive: bool) -> Optional[dict]:
        column = self._column(field)
        if case_insensitive and isinstance(value, str):
            clause = func.lower(column) == value.lower()
        else:
            clause = column == self._coerce(column, value)
        stmt = select(self.table).where(clause).limit(1)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
            return self._to_record(row) if row else None

    async def count(self, filters: Mapping[str, Any]) -> int:
        return await self._run(self._count_sync, filters)

    async def fetch(
        self, filters: Mapping[str, Any], *, offset: int, limit: int
    ) -> list[dict]:
        return await self._run(self._fetch_sync, filters, offset, limit)

    async def get(self, record_id: int) -> Optional[dict]:
        return await self._run(self._get_sync, record_id)

    async def exists(self, record_id: int) -> bool:
        return await self._run(self._exists_sync, record_id)

    async def insert(self, values: Mapping[str, Any]) -> dict:
        return await self._run(self._insert_sync, values)

    async def update(self, record_id: int, values: Mapping[str, Any]) -> Optional[dict]:
        return await self._run(self._update_sync, record_id, values)

    async def delete(self, record_id: int) -> bool:
        return await self._run(self._delete_sync, record_id)

    async def find_one(
        self, field: str, value: Any, *, case_insensitive: bool = False
    ) -> Optional[dict]:
        return await self._run(self._find_one_sync, field, value, case_insensitive)
