"""
Pydantic schemas for the backoffice API: list query parsing, pagination and
the typed create/update payloads of each resource.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

# Query parameters the list operation consumes itself.
RESERVED_QUERY_PARAMS = frozenset({"search", "page", "limit"})

# Columns owned by the store; payloads may not set them.
STORE_MANAGED_FIELDS = frozenset({"id", "created_at", "updated_at"})


def _parse_int(raw: Any, default: int) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default


def clamp_page(raw: Any) -> int:
    return max(1, _parse_int(raw, DEFAULT_PAGE))


def clamp_limit(raw: Any) -> int:
    return max(1, min(MAX_LIMIT, _parse_int(raw, DEFAULT_LIMIT)))


@dataclass(frozen=True)
class QuerySpec:
    """Parsed list request. ``page`` and ``limit`` are always in range."""

    search: Optional[str] = None
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    filters: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "page", clamp_page(self.page))
        object.__setattr__(self, "limit", clamp_limit(self.limit))
        object.__setattr__(self, "filters", dict(self.filters))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_params(
        cls,
        params: Mapping[str, Any],
        aliases: Optional[Mapping[str, str]] = None,
    ) -> "QuerySpec":
        """
        Build a query from raw request parameters. Every non-reserved parameter
        becomes an equality filter, renamed through ``aliases`` when listed.
        """
        aliases = aliases or {}
        filters: dict[str, Any] = {}
        for key, value in params.items():
            if key in RESERVED_QUERY_PARAMS or value is None or value == "":
                continue
            filters[aliases.get(key, key)] = value
        return cls(
            search=params.get("search") or None,
            page=params.get("page", DEFAULT_PAGE),
            limit=params.get("limit", DEFAULT_LIMIT),
            filters=filters,
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit))


@dataclass
class PaginatedResult:
    data: list[dict]
    pagination: Pagination


class ResourcePayload(BaseModel):
    """
    Known fields are validated; anything else lands in ``extra_fields`` and is
    passed through for the store to accept or reject.
    """

    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _reject_store_managed(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            managed = sorted(STORE_MANAGED_FIELDS.intersection(data))
            if managed:
                raise ValueError(f"Fields managed by the store cannot be set: {', '.join(managed)}")
        return data

    @property
    def extra_fields(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def values(self) -> dict[str, Any]:
        values = self.model_dump(exclude_unset=True)
        values.update(self.extra_fields)
        return values


class UpdatePayload(ResourcePayload):
    @model_validator(mode="after")
    def _require_a_field(self):
        if not self.values():
            raise ValueError("Update payload must contain at least one field")
        return self


class ProductCreate(ResourcePayload):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    images: Optional[list[str]] = None
    specifications: Optional[str] = None
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    in_stock: Optional[bool] = None
    is_active: Optional[bool] = None


class ProductUpdate(UpdatePayload):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    images: Optional[list[str]] = None
    specifications: Optional[str] = None
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    in_stock: Optional[bool] = None
    is_active: Optional[bool] = None


class ServiceCreate(ResourcePayload):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    short_description: Optional[str] = None
    price_range: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    features: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class ServiceUpdate(UpdatePayload):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    short_description: Optional[str] = None
    price_range: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    features: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


TestimonialStatus = Literal["pending", "approved", "rejected"]


class TestimonialCreate(ResourcePayload):
    user_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=255)
    company: Optional[str] = None
    position: Optional[str] = None
    content: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    status: Optional[TestimonialStatus] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None


class TestimonialUpdate(UpdatePayload):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    company: Optional[str] = None
    position: Optional[str] = None
    content: Optional[str] = Field(default=None, min_length=1)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    status: Optional[TestimonialStatus] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None


BlogStatus = Literal["draft", "published", "archived"]


class BlogPostCreate(ResourcePayload):
    title: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = None
    content: str = Field(..., min_length=1)
    excerpt: Optional[str] = None
    featured_image: Optional[str] = None
    category_id: Optional[int] = None
    tags: Optional[list[str]] = None
    author_id: Optional[int] = None
    status: Optional[BlogStatus] = None
    is_published: Optional[bool] = None
    is_featured: Optional[bool] = None
    published_at: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None


class BlogPostUpdate(UpdatePayload):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    slug: Optional[str] = None
    content: Optional[str] = Field(default=None, min_length=1)
    excerpt: Optional[str] = None
    featured_image: Optional[str] = None
    category_id: Optional[int] = None
    tags: Optional[list[str]] = None
    author_id: Optional[int] = None
    status: Optional[BlogStatus] = None
    is_published: Optional[bool] = None
    is_featured: Optional[bool] = None
    published_at: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None


ContactStatus = Literal["unread", "read", "replied"]


class ContactMessageCreate(ResourcePayload):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: Optional[str] = None
    subject: Optional[str] = None
    message: str = Field(..., min_length=1, max_length=5000)


class ContactMessageIntake(ResourcePayload):
    """Public contact form. Unlisted fields are dropped."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: Optional[str] = None
    subject: Optional[str] = None
    message: str = Field(..., min_length=1, max_length=5000)


class ContactMessageUpdate(UpdatePayload):
    status: Optional[ContactStatus] = None
    subject: Optional[str] = None


QuoteStatus = Literal["pending", "reviewed", "approved", "rejected"]


class QuoteCreate(ResourcePayload):
    user_id: Optional[int] = None
    service_id: Optional[int] = None
    project_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    requirements: Optional[str] = None
    budget_range: Optional[str] = None
    timeline: Optional[str] = None
    status: Optional[QuoteStatus] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class QuoteIntake(ResourcePayload):
    """Public quote request. Status, costing and notes stay admin-only."""

    model_config = ConfigDict(extra="ignore")

    service_id: Optional[int] = None
    project_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    requirements: Optional[str] = None
    budget_range: Optional[str] = None
    timeline: Optional[str] = None


class QuoteUpdate(UpdatePayload):
    service_id: Optional[int] = None
    project_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    requirements: Optional[str] = None
    budget_range: Optional[str] = None
    timeline: Optional[str] = None
    status: Optional[QuoteStatus] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
