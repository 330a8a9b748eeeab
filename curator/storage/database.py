"""
Record store for sites, rules and items.

Uses SQLAlchemy ORM for database access. The public API uses the dataclass
records from models/entities.py, with conversion to/from ORM models handled
internally. The unique constraint on (site_id, url_canonical) is the only
deduplication mechanism: inserts are attempted optimistically and a
violation is retried as an update of the existing row.
"""

from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import Engine, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..logging import get_logger
from ..models.entities import Classification, Item, Rule, RuleKind, Site, Source, Taxonomy
from ..processing.classify import build_rule
from .db_engine import get_engine
from .orm_models import (
    Base,
    ItemORM,
    ItemTagORM,
    SiteORM,
    SourceORM,
    TaggingRuleORM,
    TaxonomyORM,
    item_dataclass_to_orm,
    item_orm_to_dataclass,
    source_orm_to_dataclass,
    to_db_time,
    utcnow,
)

logger = get_logger(__name__)


class CurationStore:
    """SQLAlchemy-backed store consumed by the ingestion pipeline and the ranker."""

    def __init__(self, engine: Engine | None = None):
        self.engine = engine or get_engine()
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Session context manager; commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_schema(self) -> None:
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    # ── Sites, sources, taxonomies ─────────────────────────────────────────

    def add_site(self, site: Site) -> Site:
        with self.session() as session:
            session.add(SiteORM(id=site.id, tenant_id=site.tenant_id, name=site.name))
        return site

    def add_source(self, source: Source) -> Source:
        """Insert a source and return it with its id."""
        with self.session() as session:
            orm = SourceORM(
                site_id=source.site_id,
                name=source.name,
                quality_weight=source.quality_weight,
            )
            session.add(orm)
            session.flush()
            return source_orm_to_dataclass(orm)

    def set_source_quality(self, source_id: int, quality_weight: float) -> None:
        with self.session() as session:
            session.execute(
                update(SourceORM)
                .where(SourceORM.id == source_id)
                .values(quality_weight=quality_weight)
            )

    def add_taxonomy(self, taxonomy: Taxonomy) -> Taxonomy:
        """Insert a taxonomy; ``parent_slug`` must already exist on the same site."""
        with self.session() as session:
            parent_id = None
            if taxonomy.parent_slug:
                parent_id = self._taxonomy_id(session, taxonomy.site_id, taxonomy.parent_slug)
            orm = TaxonomyORM(
                site_id=taxonomy.site_id,
                slug=taxonomy.slug,
                name=taxonomy.name or taxonomy.slug,
                parent_id=parent_id,
            )
            session.add(orm)
            session.flush()
            return Taxonomy(
                id=orm.id,
                site_id=orm.site_id,
                slug=orm.slug,
                name=orm.name,
                parent_slug=taxonomy.parent_slug,
            )

    @staticmethod
    def _taxonomy_id(session: Session, site_id: int, slug: str) -> int:
        taxonomy_id = session.execute(
            select(TaxonomyORM.id).where(TaxonomyORM.site_id == site_id, TaxonomyORM.slug == slug)
        ).scalar_one_or_none()
        if taxonomy_id is None:
            raise LookupError(f"Unknown taxonomy '{slug}' for site {site_id}")
        return taxonomy_id

    # ── Rules ──────────────────────────────────────────────────────────────

    def add_rule(
        self,
        site_id: int,
        taxonomy_slug: str,
        kind: RuleKind | str,
        pattern: str,
        priority: int = 100,
        enabled: bool = True,
        confidence: float | None = None,
        content_type: str | None = None,
    ) -> Rule:
        """Insert a tagging rule and return it parsed."""
        kind_value = kind.value if isinstance(kind, RuleKind) else str(kind)
        with self.session() as session:
            orm = TaggingRuleORM(
                site_id=site_id,
                taxonomy_id=self._taxonomy_id(session, site_id, taxonomy_slug),
                kind=kind_value,
                pattern=pattern,
                priority=priority,
                enabled=enabled,
                confidence=confidence,
                content_type=content_type,
            )
            session.add(orm)
            session.flush()
            rule_id = orm.id

        return build_rule(
            rule_id=rule_id,
            site_id=site_id,
            taxonomy_slug=taxonomy_slug,
            kind=kind_value,
            pattern=pattern,
            priority=priority,
            enabled=enabled,
            confidence=confidence,
            content_type=content_type,
        )

    def set_rule_enabled(self, rule_id: int, enabled: bool) -> None:
        with self.session() as session:
            session.execute(
                update(TaggingRuleORM)
                .where(TaggingRuleORM.id == rule_id)
                .values(enabled=enabled)
            )

    def enabled_rules(self, site_id: int) -> list[Rule]:
        """Snapshot of a site's enabled rules, priority ascending then creation order."""
        with self.session() as session:
            rows = session.execute(
                select(TaggingRuleORM, TaxonomyORM.slug)
                .join(TaxonomyORM, TaxonomyORM.id == TaggingRuleORM.taxonomy_id)
                .where(TaggingRuleORM.site_id == site_id, TaggingRuleORM.enabled.is_(True))
                .order_by(TaggingRuleORM.priority.asc(), TaggingRuleORM.id.asc())
            ).all()

        return [
            build_rule(
                rule_id=orm.id,
                site_id=orm.site_id,
                taxonomy_slug=slug,
                kind=orm.kind,
                pattern=orm.pattern,
                priority=orm.priority,
                enabled=orm.enabled,
                confidence=orm.confidence,
                content_type=orm.content_type,
            )
            for orm, slug in rows
        ]

    # ── Items ──────────────────────────────────────────────────────────────

    @staticmethod
    def _quality_weight(session: Session, source_id: int | None) -> float:
        if source_id is None:
            return 1.0
        weight = session.execute(
            select(SourceORM.quality_weight).where(SourceORM.id == source_id)
        ).scalar_one_or_none()
        return 1.0 if weight is None else weight

    @staticmethod
    def _write_tag_index(session: Session, item_id: int, site_id: int, slugs: list[str]) -> None:
        """Replace the item's rows in the (site, slug) tag index."""
        session.execute(delete(ItemTagORM).where(ItemTagORM.item_id == item_id))
        for slug in dict.fromkeys(slugs):
            session.add(ItemTagORM(item_id=item_id, site_id=site_id, slug=slug))

    def upsert_item(self, item: Item) -> tuple[Item, bool]:
        """Insert an item or update the row already holding its canonical key.

        Returns:
            The stored item and True if a new row was created
        """
        try:
            with self.session() as session:
                orm = item_dataclass_to_orm(item)
                session.add(orm)
                session.flush()
                self._write_tag_index(session, orm.id, orm.site_id, orm.topic_tags or [])
                return item_orm_to_dataclass(orm, self._quality_weight(session, orm.source_id)), True
        except IntegrityError as e:
            conflict = e
            logger.debug(
                "item_insert_conflict",
                site_id=item.site_id,
                url_canonical=item.url_canonical,
            )

        with self.session() as session:
            orm = session.execute(
                select(ItemORM).where(
                    ItemORM.site_id == item.site_id,
                    ItemORM.url_canonical == item.url_canonical,
                )
            ).scalar_one_or_none()
            if orm is None:
                raise conflict

            orm.url_raw = item.url_raw
            orm.title = item.title or ""
            orm.description = item.description or ""
            orm.domain = item.domain or orm.domain
            if item.source_id is not None:
                orm.source_id = item.source_id
            if item.published_at is not None:
                orm.published_at = to_db_time(item.published_at)
            orm.updated_at = utcnow()
            session.flush()
            return item_orm_to_dataclass(orm, self._quality_weight(session, orm.source_id)), False

    def get_item(self, site_id: int, url_canonical: str) -> Item | None:
        with self.session() as session:
            orm = session.execute(
                select(ItemORM).where(
                    ItemORM.site_id == site_id,
                    ItemORM.url_canonical == url_canonical,
                )
            ).scalar_one_or_none()
            if orm is None:
                return None
            return item_orm_to_dataclass(orm, self._quality_weight(session, orm.source_id))

    def count_items(self, site_id: int, url_canonical: str | None = None) -> int:
        with self.session() as session:
            stmt = select(func.count(ItemORM.id)).where(ItemORM.site_id == site_id)
            if url_canonical is not None:
                stmt = stmt.where(ItemORM.url_canonical == url_canonical)
            return session.execute(stmt).scalar_one()

    def list_items(self, site_id: int) -> list[Item]:
        """All items of a site in insertion order."""
        with self.session() as session:
            rows = session.execute(
                select(ItemORM, SourceORM.quality_weight)
                .outerjoin(SourceORM, SourceORM.id == ItemORM.source_id)
                .where(ItemORM.site_id == site_id)
                .order_by(ItemORM.id.asc())
            ).all()
            return [item_orm_to_dataclass(orm, weight) for orm, weight in rows]

    def save_classification(self, item_id: int, result: Classification) -> None:
        """Write classifier output back and refresh the tag index."""
        with self.session() as session:
            orm = session.get(ItemORM, item_id)
            if orm is None:
                raise LookupError(f"Unknown item {item_id}")

            orm.topic_tags = list(result.topic_tags) or None
            orm.content_type = result.content_type
            orm.tagging_confidence = result.confidence
            orm.tagging_explanation = [m.to_dict() for m in result.explanation] or None
            orm.updated_at = utcnow()

            self._write_tag_index(session, item_id, orm.site_id, list(result.topic_tags))

    def record_engagement(self, item_id: int, upvotes: int = 0, comments: int = 0) -> None:
        """Adjust engagement counters atomically."""
        with self.session() as session:
            session.execute(
                update(ItemORM)
                .where(ItemORM.id == item_id)
                .values(
                    upvotes_count=ItemORM.upvotes_count + upvotes,
                    comments_count=ItemORM.comments_count + comments,
                )
            )

    # ── Feed queries ───────────────────────────────────────────────────────

    @staticmethod
    def _feed_query(site_id: int, tag: str | None, content_type: str | None):
        stmt = (
            select(ItemORM, SourceORM.quality_weight)
            .outerjoin(SourceORM, SourceORM.id == ItemORM.source_id)
            .where(ItemORM.site_id == site_id, ItemORM.published_at.is_not(None))
        )
        if tag is not None:
            stmt = stmt.where(
                ItemORM.id.in_(
                    select(ItemTagORM.item_id).where(
                        ItemTagORM.site_id == site_id,
                        ItemTagORM.slug == tag,
                    )
                )
            )
        if content_type is not None:
            stmt = stmt.where(ItemORM.content_type == content_type)
        return stmt

    def latest_page(self, site_id: int, tag: str | None, content_type: str | None,
                    limit: int, offset: int) -> list[Item]:
        """One page of the reverse-chronological feed, ordered in SQL."""
        stmt = (
            self._feed_query(site_id, tag, content_type)
            .order_by(ItemORM.published_at.desc(), ItemORM.id.desc())
            .limit(limit)
            .offset(offset)
        )
        with self.session() as session:
            return [item_orm_to_dataclass(orm, weight) for orm, weight in session.execute(stmt).all()]

    def feed_candidates(self, site_id: int, tag: str | None, content_type: str | None,
                        published_since: datetime | None = None) -> list[Item]:
        """Every published item matching the filters, for in-process scoring."""
        stmt = self._feed_query(site_id, tag, content_type)
        if published_since is not None:
            stmt = stmt.where(ItemORM.published_at >= to_db_time(published_since))
        with self.session() as session:
            return [item_orm_to_dataclass(orm, weight) for orm, weight in session.execute(stmt).all()]
