"""
FastAPI application entry point for the backoffice API.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backoffice.auth import AuthorizationResolver, IdentityVerifier, StoreUserDirectory
from backoffice.config import Settings, get_settings
from backoffice.correlation import REQUEST_ID_HEADER, install_correlation_middleware
from backoffice.db import ResourceStore
from backoffice.dependencies import build_store_factory, build_verifier
from backoffice.errors import install_error_handlers
from backoffice.logging_setup import configure_logging
from backoffice.realtime import InvalidationBus, Transport, WebSocketTransport
from backoffice.resources import USERS_TABLE, build_registry
from backoffice.routes import CLIENT_ID_HEADER, build_api_router, router


def create_app(
    settings: Optional[Settings] = None,
    *,
    store_for: Optional[Callable[[str], ResourceStore]] = None,
    verifier: Optional[IdentityVerifier] = None,
    transport: Optional[Transport] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)

    app = FastAPI(title="Backoffice API", version="0.1.0")

    store_for = store_for or build_store_factory(settings)
    registry = build_registry(store_for)
    resolver = AuthorizationResolver(
        verifier or build_verifier(settings),
        StoreUserDirectory(store_for(USERS_TABLE)),
        development_bypass=not settings.is_production,
    )
    transport = transport or WebSocketTransport()
    bus = InvalidationBus()
    bus.bind(transport)

    app.state.settings = settings
    app.state.registry = registry
    app.state.resolver = resolver
    app.state.transport = transport
    app.state.bus = bus

    install_error_handlers(app)
    install_correlation_middleware(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", CLIENT_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )

    app.include_router(router)
    app.include_router(build_api_router(registry), prefix=settings.api_prefix)
    return app


app = create_app()
