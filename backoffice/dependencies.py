"""
Dependency wiring for the FastAPI app.

Collaborators are built once by :func:`backoffice.app.create_app` and kept on
``app.state``; route dependencies read them from there so tests can hand the
factory their own stores, verifier or transport.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import Header, Request

from backoffice.auth import (
    AuthorizationDecision,
    AuthorizationResolver,
    IdentityVerifier,
    InMemoryIdentityVerifier,
    JwtIdentityVerifier,
)
from backoffice.config import Settings
from backoffice.db import (
    InMemoryResourceStore,
    ResourceStore,
    SqlResourceStore,
    create_store_engine,
)
from backoffice.errors import AuthError
from backoffice.realtime import InvalidationBus
from backoffice.tables import TABLES

logger = logging.getLogger(__name__)


def build_store_factory(settings: Settings) -> Callable[[str], ResourceStore]:
    """
    Return a table name -> store factory. In-memory stores are used when asked
    for or when no database is configured.
    """
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory resource stores")
        stores: dict[str, InMemoryResourceStore] = {}

        def in_memory(table: str) -> ResourceStore:
            if table not in stores:
                stores[table] = InMemoryResourceStore(table)
            return stores[table]

        return in_memory

    engine = create_store_engine(settings.database_url)
    logger.info("Using SQL resource stores on %s", engine.url.render_as_string(hide_password=True))

    def sql(table: str) -> ResourceStore:
        return SqlResourceStore(engine, TABLES[table])

    return sql


def build_verifier(settings: Settings) -> IdentityVerifier:
    if settings.jwt_secret:
        return JwtIdentityVerifier(
            settings.jwt_secret,
            algorithms=settings.jwt_algorithms,
            audience=settings.jwt_audience,
        )
    logger.warning("No JWT secret configured; every bearer token will be rejected")
    return InMemoryIdentityVerifier()


def get_bus(request: Request) -> InvalidationBus:
    return request.app.state.bus


def get_resolver(request: Request) -> AuthorizationResolver:
    return request.app.state.resolver


async def require_admin(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> AuthorizationDecision:
    """Route dependency: resolve the caller or fail with an envelope."""
    decision = await get_resolver(request).resolve(authorization)
    if not decision.allowed:
        raise AuthError(decision.message, status_code=decision.status_hint)
    return decision
