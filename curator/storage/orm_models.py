"""
SQLAlchemy ORM models for the record store.

These models are internal to the storage layer. The public interface
uses the dataclass records from models/entities.py.
"""

import json
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from ..models.entities import Item, Match, Source
from ..utils import ensure_utc


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def to_db_time(value: datetime | None) -> datetime | None:
    """Store datetimes as naive UTC."""
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


class JSONEncodedList(TypeDecorator):
    """Represents a list as a JSON-encoded string."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: list | None, dialect) -> str | None:
        if value is None or value == []:
            return None
        return json.dumps(value)

    def process_result_value(self, value: str | None, dialect) -> list:
        if value is None:
            return []
        return json.loads(value)


class Base(DeclarativeBase):
    pass


class SiteORM(Base):
    """SQLAlchemy model for sites table."""

    __tablename__ = "sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")


class SourceORM(Base):
    """SQLAlchemy model for sources table."""

    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    quality_weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    __table_args__ = (
        Index("idx_sources_site", "site_id"),
    )


class TaxonomyORM(Base):
    """SQLAlchemy model for taxonomies table."""

    __tablename__ = "taxonomies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id"), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("taxonomies.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("site_id", "slug", name="uq_taxonomies_site_slug"),
    )


class TaggingRuleORM(Base):
    """SQLAlchemy model for tagging_rules table."""

    __tablename__ = "tagging_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id"), nullable=False)
    taxonomy_id: Mapped[int] = mapped_column(ForeignKey("taxonomies.id"), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    pattern: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    content_type: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_rules_site_enabled", "site_id", "enabled"),
        Index("idx_rules_site_priority", "site_id", "priority"),
    )


class ItemORM(Base):
    """SQLAlchemy model for items table."""

    __tablename__ = "items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id"), nullable=False)
    source_id: Mapped[int | None] = mapped_column(ForeignKey("sources.id"), nullable=True)
    url_raw: Mapped[str] = mapped_column(Text, nullable=False)
    url_canonical: Mapped[str] = mapped_column(String(2048), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    domain: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    content_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    topic_tags: Mapped[list[str]] = mapped_column(JSONEncodedList, nullable=True)
    tagging_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    tagging_explanation: Mapped[list[dict[str, Any]]] = mapped_column(JSONEncodedList, nullable=True)

    upvotes_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comments_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("site_id", "url_canonical", name="uq_items_site_canonical"),
        Index("idx_items_site_published", "site_id", "published_at"),
        Index("idx_items_site_content_type", "site_id", "content_type"),
    )


class ItemTagORM(Base):
    """Inverted index from (site, taxonomy slug) to items."""

    __tablename__ = "item_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id"), nullable=False)
    site_id: Mapped[int] = mapped_column(Integer, nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("item_id", "slug", name="uq_item_tags_item_slug"),
        Index("idx_item_tags_site_slug", "site_id", "slug"),
    )


# Conversion functions between ORM models and dataclasses


def item_orm_to_dataclass(orm: ItemORM, quality_weight: float | None = None) -> Item:
    """Convert an ItemORM instance to an Item dataclass."""
    return Item(
        id=orm.id,
        site_id=orm.site_id,
        source_id=orm.source_id,
        url_raw=orm.url_raw,
        url_canonical=orm.url_canonical,
        title=orm.title or "",
        description=orm.description or "",
        domain=orm.domain or "",
        published_at=ensure_utc(orm.published_at) if orm.published_at else None,
        content_type=orm.content_type,
        topic_tags=list(orm.topic_tags or []),
        tagging_confidence=orm.tagging_confidence,
        tagging_explanation=[Match.from_dict(m) for m in orm.tagging_explanation or []],
        upvotes_count=orm.upvotes_count or 0,
        comments_count=orm.comments_count or 0,
        quality_weight=1.0 if quality_weight is None else quality_weight,
    )


def item_dataclass_to_orm(item: Item) -> ItemORM:
    """Convert an Item dataclass to a new ItemORM instance."""
    return ItemORM(
        site_id=item.site_id,
        source_id=item.source_id,
        url_raw=item.url_raw,
        url_canonical=item.url_canonical,
        title=item.title or "",
        description=item.description or "",
        domain=item.domain or "",
        published_at=to_db_time(item.published_at),
        content_type=item.content_type,
        topic_tags=list(item.topic_tags) or None,
        tagging_confidence=item.tagging_confidence,
        tagging_explanation=[m.to_dict() for m in item.tagging_explanation] or None,
        upvotes_count=item.upvotes_count,
        comments_count=item.comments_count,
    )


def source_orm_to_dataclass(orm: SourceORM) -> Source:
    """Convert a SourceORM instance to a Source dataclass."""
    return Source(
        id=orm.id,
        site_id=orm.site_id,
        name=orm.name,
        quality_weight=orm.quality_weight,
    )
