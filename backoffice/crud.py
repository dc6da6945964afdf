"""
Table-agnostic CRUD engine.

One engine is bound to one :class:`~backoffice.resources.ResourceDescriptor`.
Every operation either returns its result or raises a
:class:`~backoffice.errors.BackofficeError` subclass; adapter failures and
unanticipated exceptions are converted at this boundary so routes only ever
see the typed taxonomy.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Generic, Mapping, Optional, Type, TypeVar

from pydantic import ValidationError as PydanticValidationError

from backoffice.db import StoreFailure
from backoffice.errors import (
    BackofficeError,
    NotFoundError,
    StoreError,
    UnexpectedError,
    ValidationError,
    describe_validation_errors,
)
from backoffice.resources import CreateT, ResourceDescriptor, UpdateT
from backoffice.schemas import PaginatedResult, Pagination, QuerySpec, ResourcePayload

logger = logging.getLogger(__name__)

T = TypeVar("T")
PayloadT = TypeVar("PayloadT", bound=ResourcePayload)

# Signed 64-bit ceiling of the id column; ids outside 1..MAX_RECORD_ID are never found.
MAX_RECORD_ID = 2**63 - 1


def parse_id(raw: Any) -> int:
    """Parse a record id; anything but an integer is a caller mistake."""
    if isinstance(raw, bool):
        raise ValidationError("ID must be a valid number")
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError("ID must be a valid number") from None


class CrudEngine(Generic[CreateT, UpdateT]):
    def __init__(self, descriptor: ResourceDescriptor[CreateT, UpdateT]):
        self.descriptor = descriptor
        self.store = descriptor.store
        self.table = descriptor.table

    @asynccontextmanager
    async def _boundary(self, context: str):
        try:
            yield
        except BackofficeError:
            raise
        except Exception as exc:
            logger.exception("%s", context)
            raise UnexpectedError(context) from exc

    async def _call(self, awaitable: Awaitable[T], context: str) -> T:
        try:
            return await awaitable
        except StoreFailure as exc:
            logger.error(
                "%s: message=%s code=%s hint=%s details=%s",
                context,
                exc.message,
                exc.code,
                exc.hint,
                exc.details,
            )
            raise StoreError(context, details=exc.message) from exc

    def _validate(self, schema: Type[PayloadT], body: Any) -> PayloadT:
        if not isinstance(body, Mapping):
            raise ValidationError("Request body must be a valid JSON object")
        try:
            payload = schema.model_validate(body)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid {self.table} payload",
                details=describe_validation_errors(exc.errors()),
            ) from exc
        if payload.extra_fields:
            logger.info(
                "Passing unrecognised fields %s through to %s",
                sorted(payload.extra_fields),
                self.table,
            )
        return payload

    async def list(self, query: QuerySpec) -> PaginatedResult:
        if query.search:
            logger.debug("search=%r is accepted but not applied to %s", query.search, self.table)
        async with self._boundary(f"Error fetching {self.table}"):
            total = await self._call(
                self.store.count(query.filters), "Failed to fetch total count"
            )
            data = await self._call(
                self.store.fetch(query.filters, offset=query.offset, limit=query.limit),
                f"Failed to fetch {self.table}",
            )
        logger.info(
            "Listed %d of %d %s (page=%d limit=%d filters=%s)",
            len(data),
            total,
            self.table,
            query.page,
            query.limit,
            dict(query.filters),
        )
        return PaginatedResult(
            data=data, pagination=Pagination.build(query.page, query.limit, total)
        )

    def _record_id(self, raw_id: Any) -> int:
        record_id = parse_id(raw_id)
        if not 1 <= record_id <= MAX_RECORD_ID:
            logger.info("%s id %s is out of range", self.table, record_id)
            raise NotFoundError()
        return record_id

    async def get(self, raw_id: Any) -> dict:
        record_id = self._record_id(raw_id)
        async with self._boundary(f"Error fetching {self.table}"):
            record = await self._call(
                self.store.get(record_id), f"Failed to fetch {self.table}"
            )
        if record is None:
            raise NotFoundError()
        return record

    async def create(self, body: Any, *, schema: Optional[Type[ResourcePayload]] = None) -> dict:
        """Insert a record; ``schema`` overrides the descriptor's create schema."""
        payload = self._validate(schema or self.descriptor.create_schema, body)
        async with self._boundary(f"Error creating {self.table}"):
            record = await self._call(
                self.store.insert(payload.values()), f"Failed to create {self.table}"
            )
        logger.info("Created %s id=%s", self.table, record.get("id"))
        return record

    async def _ensure_exists(self, record_id: int) -> None:
        exists = await self._call(
            self.store.exists(record_id), f"Failed to check {self.table} existence"
        )
        if not exists:
            raise NotFoundError()

    async def update(self, raw_id: Any, body: Any) -> dict:
        record_id = self._record_id(raw_id)
        payload = self._validate(self.descriptor.update_schema, body)
        async with self._boundary(f"Error updating {self.table}"):
            await self._ensure_exists(record_id)
            values = payload.values()
            if self.descriptor.prepare_update:
                values = self.descriptor.prepare_update(record_id, values)
            record = await self._call(
                self.store.update(record_id, values), f"Failed to update {self.table}"
            )
        if record is None:
            # Deleted between the existence check and the write.
            raise NotFoundError()
        logger.info("Updated %s id=%s", self.table, record_id)
        return record

    async def delete(self, raw_id: Any) -> dict:
        record_id = self._record_id(raw_id)
        async with self._boundary(f"Error deleting {self.table}"):
            await self._ensure_exists(record_id)
            deleted = await self._call(
                self.store.delete(record_id), f"Failed to delete {self.table}"
            )
        if not deleted:
            raise NotFoundError()
        logger.info("Deleted %s id=%s", self.table, record_id)
        return {"message": f"{self.table} deleted successfully"}
