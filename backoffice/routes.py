"""
HTTP and websocket routes for the backoffice API.

Every administered resource gets the same five admin routes from
:func:`build_admin_router`; public reads and the contact/quote intake reuse the
same CRUD engines.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, Request, WebSocket, WebSocketDisconnect

from backoffice.auth import AuthorizationDecision
from backoffice.crud import CrudEngine
from backoffice.db import values_match
from backoffice.dependencies import get_bus, require_admin
from backoffice.errors import NotFoundError, success_envelope
from backoffice.realtime import InvalidationBus
from backoffice.resources import TOPICS, ResourceDescriptor
from backoffice.schemas import QuerySpec

logger = logging.getLogger(__name__)

CLIENT_ID_HEADER = "X-Client-Id"

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.websocket("/ws")
async def realtime_channel(websocket: WebSocket):
    """
    Clients subscribe by connecting. A client may also send a known topic
    (plain text or ``{"topic": ...}``) to have it relayed to everyone else.
    """
    transport = websocket.app.state.transport
    bus: InvalidationBus = websocket.app.state.bus
    listener = await transport.connect(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                logger.warning("Ignoring non-text frame from %s", listener.id)
                continue
            topic = _topic_from_message(raw)
            if topic not in TOPICS:
                logger.warning("Ignoring unknown topic %r from %s", topic, listener.id)
                continue
            logger.info("Broadcasting %s from %s", topic, listener.id)
            await bus.publish(topic, exclude=listener.id)
    except WebSocketDisconnect:
        pass
    finally:
        transport.disconnect(listener)


def _topic_from_message(raw: str) -> Optional[str]:
    try:
        message = json.loads(raw)
    except ValueError:
        return raw.strip()
    if isinstance(message, dict):
        topic = message.get("topic")
        return topic if isinstance(topic, str) else None
    return message if isinstance(message, str) else None


async def _notify(bus: InvalidationBus, descriptor: ResourceDescriptor, client_id: Optional[str]):
    if descriptor.topic:
        await bus.publish(descriptor.topic, exclude=client_id)


def _pagination_envelope(result) -> dict:
    return success_envelope(result.data, result.pagination.model_dump())


def build_admin_router(descriptor: ResourceDescriptor) -> APIRouter:
    """Admin-only list/get/create/update/delete routes for one resource."""
    engine = CrudEngine(descriptor)
    admin = APIRouter(
        prefix=f"/admin/{descriptor.name}",
        tags=[f"admin:{descriptor.name}"],
        dependencies=[Depends(require_admin)],
    )

    @admin.get("")
    async def list_items(request: Request):
        query = QuerySpec.from_params(request.query_params, descriptor.filter_aliases)
        return _pagination_envelope(await engine.list(query))

    @admin.get("/{item_id}")
    async def get_item(item_id: str):
        return success_envelope(await engine.get(item_id))

    if descriptor.admin_create:

        @admin.post("", status_code=201)
        async def create_item(
            body: Any = Body(...),
            client_id: Optional[str] = Header(default=None, alias=CLIENT_ID_HEADER),
            bus: InvalidationBus = Depends(get_bus),
        ):
            record = await engine.create(body)
            await _notify(bus, descriptor, client_id)
            return success_envelope(record)

    @admin.put("/{item_id}")
    async def update_item(
        item_id: str,
        body: Any = Body(...),
        client_id: Optional[str] = Header(default=None, alias=CLIENT_ID_HEADER),
        bus: InvalidationBus = Depends(get_bus),
    ):
        record = await engine.update(item_id, body)
        await _notify(bus, descriptor, client_id)
        return success_envelope(record)

    @admin.delete("/{item_id}")
    async def delete_item(
        item_id: str,
        client_id: Optional[str] = Header(default=None, alias=CLIENT_ID_HEADER),
        bus: InvalidationBus = Depends(get_bus),
    ):
        confirmation = await engine.delete(item_id)
        await _notify(bus, descriptor, client_id)
        return success_envelope(confirmation)

    return admin


def build_public_router(descriptor: ResourceDescriptor) -> APIRouter:
    """Unauthenticated reads restricted by the resource's public filters."""
    engine = CrudEngine(descriptor)
    public_filters = dict(descriptor.public_filters or {})
    public = APIRouter(prefix=f"/{descriptor.name}", tags=[descriptor.name])

    @public.get("")
    async def list_public(request: Request):
        query = QuerySpec.from_params(request.query_params, descriptor.filter_aliases)
        query = QuerySpec(
            search=query.search,
            page=query.page,
            limit=query.limit,
            filters={**query.filters, **public_filters},
        )
        return _pagination_envelope(await engine.list(query))

    @public.get("/{item_id}")
    async def get_public(item_id: str):
        record = await engine.get(item_id)
        if not all(values_match(record.get(k), v) for k, v in public_filters.items()):
            raise NotFoundError()
        return success_envelope(record)

    return public


def build_intake_route(router: APIRouter, path: str, descriptor: ResourceDescriptor) -> None:
    """Public create endpoint (contact form, quote request)."""
    engine = CrudEngine(descriptor)

    @router.post(path, status_code=201, tags=["intake"])
    async def submit(body: Any = Body(...), bus: InvalidationBus = Depends(get_bus)):
        record = await engine.create(body, schema=descriptor.intake_schema)
        await _notify(bus, descriptor, None)
        return success_envelope(record)


def build_api_router(registry: dict[str, ResourceDescriptor]) -> APIRouter:
    api = APIRouter()

    @api.get("/admin/auth", tags=["admin"])
    async def admin_auth(decision: AuthorizationDecision = Depends(require_admin)):
        subject = decision.subject
        return success_envelope(
            {
                "allowed": decision.allowed,
                "source": decision.source,
                "subject": {"id": subject.id, "email": subject.email} if subject else None,
            }
        )

    for descriptor in registry.values():
        api.include_router(build_admin_router(descriptor))
        if descriptor.public_filters is not None:
            api.include_router(build_public_router(descriptor))

    build_intake_route(api, "/contact", registry["contacts"])
    build_intake_route(api, "/quotes", registry["quotes"])
    return api
