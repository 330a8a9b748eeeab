"""
Feed ordering for a single site.

Sort modes:
- latest: reverse-chronological by published_at, id descending on ties
- ranked: weighted sum of freshness, source quality and engagement
- top_week: most engaged items of the recent window

The ranked score is built so that, all else equal, a newer item, a more
trusted source, more upvotes or more comments never lowers an item's score:
freshness decays hyperbolically with age, quality is linear in the source's
weight and engagement grows logarithmically (diminishing returns).
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol

from ..config import Settings, get_settings
from ..logging import get_logger
from ..models.entities import Item, Site
from ..utils import ensure_utc

logger = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class SortMode(str, Enum):
    """Feed sort modes."""
    LATEST = "latest"
    RANKED = "ranked"
    TOP_WEEK = "top_week"


@dataclass
class FeedFilters:
    """Normalized feed request filters.

    ``unsatisfiable`` marks filters that cannot match anything (for example a
    non-string tag); such requests return an empty page instead of failing.
    """
    tag: str | None = None
    content_type: str | None = None
    sort: SortMode = SortMode.LATEST
    unsatisfiable: bool = False

    @staticmethod
    def _text_filter(value: Any) -> tuple[str | None, bool]:
        if value is None:
            return None, True
        if not isinstance(value, str):
            return None, False
        value = value.strip()
        return (value or None), True

    @classmethod
    def from_mapping(cls, filters: Mapping[str, Any] | None) -> "FeedFilters":
        """Build filters from a loose mapping such as request parameters."""
        filters = filters or {}

        tag, tag_ok = cls._text_filter(filters.get("tag"))
        content_type, ct_ok = cls._text_filter(filters.get("content_type"))

        raw_sort = filters.get("sort")
        sort = SortMode.LATEST
        if isinstance(raw_sort, SortMode):
            sort = raw_sort
        elif raw_sort not in (None, ""):
            try:
                sort = SortMode(str(raw_sort).strip().lower())
            except ValueError:
                logger.warning("unknown_sort_mode", sort=str(raw_sort), fallback=sort.value)

        return cls(
            tag=tag,
            content_type=content_type,
            sort=sort,
            unsatisfiable=not (tag_ok and ct_ok),
        )


@dataclass
class RankingWeights:
    """Configurable weights and shape parameters for the ranked sort."""
    freshness: float = 0.4
    source_quality: float = 0.3
    engagement: float = 0.3
    half_life_hours: float = 24.0
    comment_weight: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "RankingWeights":
        return cls(
            freshness=settings.rank_w_freshness,
            source_quality=settings.rank_w_quality,
            engagement=settings.rank_w_engagement,
            half_life_hours=settings.freshness_half_life_hours,
            comment_weight=settings.comment_weight,
        )


@dataclass
class ItemScore:
    """Complete scoring breakdown for an item."""
    total: float
    freshness: float
    quality: float
    engagement: float

    @property
    def reasoning(self) -> str:
        return " | ".join([
            f"Freshness: {self.freshness:.3f}",
            f"Quality: {self.quality:.3f}",
            f"Engagement: {self.engagement:.3f}",
        ])


class FeedStore(Protocol):
    """Read side of the record store used by the ranker."""

    def latest_page(self, site_id: int, tag: str | None, content_type: str | None,
                    limit: int, offset: int) -> list[Item]: ...

    def feed_candidates(self, site_id: int, tag: str | None, content_type: str | None,
                        published_since: datetime | None = None) -> list[Item]: ...


class FeedRanker:
    """Orders one site's items for feed display."""

    def __init__(self, settings: Settings | None = None, weights: RankingWeights | None = None):
        self.settings = settings or get_settings()
        self.weights = weights or RankingWeights.from_settings(self.settings)
        self.top_window = timedelta(days=self.settings.top_window_days)
        self.max_page_size = self.settings.max_page_size

    # ── Scoring ────────────────────────────────────────────────────────────

    def freshness_score(self, published_at: datetime | None, now: datetime) -> float:
        """1.0 for brand new, 0.5 after one half-life, approaching 0 with age."""
        if published_at is None:
            return 0.0
        age_hours = (ensure_utc(now) - ensure_utc(published_at)).total_seconds() / 3600.0
        age_hours = max(0.0, age_hours)
        return 1.0 / (1.0 + age_hours / self.weights.half_life_hours)

    def engagement_value(self, item: Item) -> float:
        """Raw engagement: upvotes plus weighted comments."""
        return (
            max(0, item.upvotes_count)
            + self.weights.comment_weight * max(0, item.comments_count)
        )

    def score_item(self, item: Item, now: datetime | None = None) -> ItemScore:
        """Calculate the ranked score for an item."""
        now = now or datetime.now(UTC)

        freshness = self.freshness_score(item.published_at, now)
        quality = max(0.0, float(item.quality_weight))
        engagement = math.log1p(self.engagement_value(item))

        total = (
            self.weights.freshness * freshness
            + self.weights.source_quality * quality
            + self.weights.engagement * engagement
        )
        return ItemScore(total=total, freshness=freshness, quality=quality, engagement=engagement)

    # ── Ordering ───────────────────────────────────────────────────────────

    @staticmethod
    def _timestamp(item: Item) -> float:
        if item.published_at is None:
            return _EPOCH.timestamp()
        return ensure_utc(item.published_at).timestamp()

    @staticmethod
    def _item_id(item: Item) -> int:
        return item.id if item.id is not None else -1

    def order_items(self, items: Iterable[Item], sort: SortMode,
                    now: datetime | None = None) -> list[Item]:
        """Order items for a sort mode; ties always resolve deterministically."""
        now = now or datetime.now(UTC)
        items = list(items)

        if sort is SortMode.RANKED:
            scores = {id(item): self.score_item(item, now).total for item in items}
            return sorted(
                items,
                key=lambda i: (-scores[id(i)], -self._timestamp(i), -self._item_id(i)),
            )

        if sort is SortMode.TOP_WEEK:
            since = ensure_utc(now) - self.top_window
            recent = [
                i for i in items
                if i.published_at is not None and ensure_utc(i.published_at) >= since
            ]
            return sorted(
                recent,
                key=lambda i: (-self.engagement_value(i), -self._timestamp(i), -self._item_id(i)),
            )

        return sorted(items, key=lambda i: (-self._timestamp(i), -self._item_id(i)))

    def _page_bounds(self, limit: int, offset: int) -> tuple[int, int]:
        limit = max(0, min(int(limit), self.max_page_size))
        offset = max(0, int(offset))
        return limit, offset

    @staticmethod
    def _coerce_filters(filters: FeedFilters | Mapping[str, Any] | None) -> FeedFilters:
        if isinstance(filters, FeedFilters):
            return filters
        return FeedFilters.from_mapping(filters)

    def filter_items(self, items: Iterable[Item], site: Site, filters: FeedFilters) -> list[Item]:
        """Apply site scoping and feed filters to an in-memory sequence."""
        if filters.unsatisfiable:
            return []
        return [
            i for i in items
            if i.site_id == site.id
            and i.published_at is not None
            and (filters.tag is None or filters.tag in i.topic_tags)
            and (filters.content_type is None or i.content_type == filters.content_type)
        ]

    def rank_items(
        self,
        items: Sequence[Item],
        site: Site | None,
        filters: FeedFilters | Mapping[str, Any] | None,
        limit: int,
        offset: int,
        now: datetime | None = None,
    ) -> list[Item]:
        """Rank an already-loaded sequence of items."""
        if site is None:
            return []
        feed_filters = self._coerce_filters(filters)
        limit, offset = self._page_bounds(limit, offset)
        if limit == 0:
            return []

        candidates = self.filter_items(items, site, feed_filters)
        ordered = self.order_items(candidates, feed_filters.sort, now)
        return ordered[offset:offset + limit]

    def rank(
        self,
        store: FeedStore,
        site: Site | None,
        filters: FeedFilters | Mapping[str, Any] | None,
        limit: int,
        offset: int,
        now: datetime | None = None,
    ) -> list[Item]:
        """Produce one page of a site's feed from the record store."""
        if site is None:
            return []

        feed_filters = self._coerce_filters(filters)
        if feed_filters.unsatisfiable:
            logger.info("feed_filters_unsatisfiable", site_id=site.id)
            return []

        limit, offset = self._page_bounds(limit, offset)
        if limit == 0:
            return []

        now = now or datetime.now(UTC)

        if feed_filters.sort is SortMode.LATEST:
            page = store.latest_page(
                site.id, feed_filters.tag, feed_filters.content_type, limit, offset
            )
        else:
            since = ensure_utc(now) - self.top_window if feed_filters.sort is SortMode.TOP_WEEK else None
            candidates = store.feed_candidates(
                site.id, feed_filters.tag, feed_filters.content_type, published_since=since
            )
            page = self.order_items(candidates, feed_filters.sort, now)[offset:offset + limit]

        page = [item for item in page if item.site_id == site.id]

        logger.info(
            "feed_ranked",
            site_id=site.id,
            sort=feed_filters.sort.value,
            tag=feed_filters.tag,
            content_type=feed_filters.content_type,
            limit=limit,
            offset=offset,
            returned=len(page),
        )
        return page


def rank_feed(
    store: FeedStore,
    site: Site | None,
    filters: FeedFilters | Mapping[str, Any] | None,
    limit: int,
    offset: int,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> list[Item]:
    """Convenience function for ranking a feed page."""
    return FeedRanker(settings).rank(store, site, filters, limit, offset, now)
