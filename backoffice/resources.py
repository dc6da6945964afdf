"""
Resource descriptors: one immutable binding per administered resource kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Mapping, Optional, Type, TypeVar

from backoffice import schemas
from backoffice.db import ResourceStore

logger = logging.getLogger(__name__)

CreateT = TypeVar("CreateT", bound=schemas.ResourcePayload)
UpdateT = TypeVar("UpdateT", bound=schemas.UpdatePayload)

UpdateHook = Callable[[int, dict], dict]

PRODUCTS_TOPIC = "products:update"
SERVICES_TOPIC = "services:update"
TESTIMONIALS_TOPIC = "testimonials:update"
BLOG_TOPIC = "blog:update"
CONTACTS_TOPIC = "contacts:update"
QUOTES_TOPIC = "quotes:update"

TOPICS = frozenset(
    {
        PRODUCTS_TOPIC,
        SERVICES_TOPIC,
        TESTIMONIALS_TOPIC,
        BLOG_TOPIC,
        CONTACTS_TOPIC,
        QUOTES_TOPIC,
    }
)

USERS_TABLE = "users"


@dataclass(frozen=True)
class ResourceDescriptor(Generic[CreateT, UpdateT]):
    """
    Binds a resource kind to its store and payload types.

    ``filter_aliases`` renames list query parameters onto columns,
    ``public_filters`` are forced onto public reads, ``intake_schema`` is the
    narrower payload accepted from anonymous callers, and ``prepare_update``
    may add derived fields to an update before it is written.
    """

    name: str
    table: str
    store: ResourceStore
    create_schema: Type[CreateT]
    update_schema: Type[UpdateT]
    topic: Optional[str] = None
    filter_aliases: Mapping[str, str] = field(default_factory=dict)
    public_filters: Optional[Mapping[str, Any]] = None
    prepare_update: Optional[UpdateHook] = None
    admin_create: bool = True
    intake_schema: Optional[Type[schemas.ResourcePayload]] = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def stamp_approved_at(record_id: int, values: dict) -> dict:
    if values.get("status") == "approved":
        values.setdefault("approved_at", _now_iso())
    return values


def stamp_replied_at(record_id: int, values: dict) -> dict:
    if values.get("status") == "replied":
        values.setdefault("replied_at", _now_iso())
    return values


def log_quote_status(record_id: int, values: dict) -> dict:
    if values.get("status"):
        logger.info("Quote %s status updated to %s", record_id, values["status"])
    return values


def build_registry(
    store_for: Callable[[str], ResourceStore],
) -> dict[str, ResourceDescriptor]:
    """Create the descriptor of every resource kind, keyed by URL name."""
    descriptors = [
        ResourceDescriptor(
            name="products",
            table="products",
            store=store_for("products"),
            create_schema=schemas.ProductCreate,
            update_schema=schemas.ProductUpdate,
            topic=PRODUCTS_TOPIC,
            filter_aliases={"inStock": "in_stock"},
            public_filters={"is_active": True},
        ),
        ResourceDescriptor(
            name="services",
            table="services",
            store=store_for("services"),
            create_schema=schemas.ServiceCreate,
            update_schema=schemas.ServiceUpdate,
            topic=SERVICES_TOPIC,
            public_filters={"is_active": True},
        ),
        ResourceDescriptor(
            name="testimonials",
            table="testimonials",
            store=store_for("testimonials"),
            create_schema=schemas.TestimonialCreate,
            update_schema=schemas.TestimonialUpdate,
            topic=TESTIMONIALS_TOPIC,
            filter_aliases={"featured": "is_featured"},
            public_filters={"is_active": True},
            prepare_update=stamp_approved_at,
        ),
        ResourceDescriptor(
            name="blog",
            table="blog_posts",
            store=store_for("blog_posts"),
            create_schema=schemas.BlogPostCreate,
            update_schema=schemas.BlogPostUpdate,
            topic=BLOG_TOPIC,
            filter_aliases={"category": "category_id", "authorId": "author_id"},
            public_filters={"status": "published"},
        ),
        ResourceDescriptor(
            name="contacts",
            table="contact_messages",
            store=store_for("contact_messages"),
            create_schema=schemas.ContactMessageCreate,
            update_schema=schemas.ContactMessageUpdate,
            intake_schema=schemas.ContactMessageIntake,
            topic=CONTACTS_TOPIC,
            prepare_update=stamp_replied_at,
            admin_create=False,
        ),
        ResourceDescriptor(
            name="quotes",
            table="quotes",
            store=store_for("quotes"),
            create_schema=schemas.QuoteCreate,
            update_schema=schemas.QuoteUpdate,
            intake_schema=schemas.QuoteIntake,
            topic=QUOTES_TOPIC,
            filter_aliases={"serviceId": "service_id"},
            prepare_update=log_quote_status,
        ),
    ]
    return {descriptor.name: descriptor for descriptor in descriptors}
