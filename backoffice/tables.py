"""
SQLAlchemy table declarations for the administered resources.

Rows are handled through ``Model.__table__`` by the generic SQL store; the
declarative classes only pin down each table's columns.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Timestamps:
    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class ProductRow(_Timestamps, Base):
    __tablename__ = "products"

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=True)
    category = Column(String, nullable=True, index=True)
    image_url = Column(String, nullable=True)
    images = Column(JSON, nullable=True)
    specifications = Column(Text, nullable=True)
    stock_quantity = Column(Integer, nullable=False, default=0)
    in_stock = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)


class ServiceRow(_Timestamps, Base):
    __tablename__ = "services"

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    short_description = Column(String, nullable=True)
    price_range = Column(String, nullable=True)
    category = Column(String, nullable=True, index=True)
    image_url = Column(String, nullable=True)
    features = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)


class TestimonialRow(_Timestamps, Base):
    __tablename__ = "testimonials"

    user_id = Column(Integer, nullable=True)
    name = Column(String, nullable=False)
    company = Column(String, nullable=True)
    position = Column(String, nullable=True)
    content = Column(Text, nullable=False)
    rating = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="pending")
    approved_at = Column(DateTime(timezone=True), nullable=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)


class BlogPostRow(_Timestamps, Base):
    __tablename__ = "blog_posts"

    title = Column(String, nullable=False)
    slug = Column(String, nullable=True, unique=True)
    content = Column(Text, nullable=False)
    excerpt = Column(Text, nullable=True)
    featured_image = Column(String, nullable=True)
    category_id = Column(Integer, nullable=True, index=True)
    tags = Column(JSON, nullable=True)
    author_id = Column(Integer, nullable=True, index=True)
    status = Column(String, nullable=False, default="draft")
    is_published = Column(Boolean, nullable=False, default=False)
    is_featured = Column(Boolean, nullable=False, default=False)
    published_at = Column(DateTime(timezone=True), nullable=True)
    views = Column(Integer, nullable=False, default=0)
    meta_title = Column(String, nullable=True)
    meta_description = Column(String, nullable=True)


class ContactMessageRow(_Timestamps, Base):
    __tablename__ = "contact_messages"

    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    subject = Column(String, nullable=True)
    message = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="unread")
    replied_at = Column(DateTime(timezone=True), nullable=True)


class QuoteRow(_Timestamps, Base):
    __tablename__ = "quotes"

    user_id = Column(Integer, nullable=True)
    service_id = Column(Integer, nullable=True, index=True)
    project_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    requirements = Column(Text, nullable=True)
    budget_range = Column(String, nullable=True)
    timeline = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    estimated_cost = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)


class UserRow(_Timestamps, Base):
    __tablename__ = "users"

    email = Column(String, nullable=False, unique=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, default="user")
    is_active = Column(Boolean, nullable=False, default=True)


TABLES = {model.__tablename__: model.__table__ for model in (
    ProductRow,
    ServiceRow,
    TestimonialRow,
    BlogPostRow,
    ContactMessageRow,
    QuoteRow,
    UserRow,
)}


def scalar_defaults(table_name: str) -> dict:
    """Constant column defaults of a table, keyed by column name."""
    table = Base.metadata.tables.get(table_name)
    if table is None:
        return {}
    return {
        column.name: column.default.arg
        for column in table.columns
        if column.default is not None and column.default.is_scalar
    }
