"""Tests for feed ranking."""

from datetime import timedelta

import pytest

from curator.config import Settings
from curator.models import Classification, Item, Site
from curator.processing.ranking import (
    FeedFilters,
    FeedRanker,
    RankingWeights,
    SortMode,
    rank_feed,
)

SITE = Site(id=1, tenant_id=1)
OTHER = Site(id=2, tenant_id=2)


@pytest.fixture
def ranker():
    return FeedRanker(Settings())


def make_item(item_id, published_at, **overrides) -> Item:
    data = {
        "id": item_id,
        "site_id": 1,
        "url_raw": f"https://example.com/{item_id}",
        "url_canonical": f"https://example.com/{item_id}",
        "title": f"Item {item_id}",
        "published_at": published_at,
    }
    data.update(overrides)
    return Item(**data)


class TestScoring:
    """Test the ranked score and its monotonicity."""

    def test_newer_never_scores_lower(self, ranker, now):
        ages = [0, 1, 6, 24, 72, 24 * 30]
        scores = [
            ranker.score_item(make_item(1, now - timedelta(hours=h)), now).total
            for h in ages
        ]
        assert scores == sorted(scores, reverse=True)
        assert scores[0] > scores[-1]

    def test_quality_weight_monotonic(self, ranker, now):
        scores = [
            ranker.score_item(make_item(1, now, quality_weight=q), now).total
            for q in [0.0, 0.5, 1.0, 2.0]
        ]
        assert scores == sorted(scores)
        assert scores[0] < scores[-1]

    def test_upvotes_monotonic_with_diminishing_returns(self, ranker, now):
        scores = [
            ranker.score_item(make_item(1, now, upvotes_count=u), now).total
            for u in [0, 1, 10, 100, 1000]
        ]
        assert scores == sorted(scores)
        gain_small = scores[2] - scores[1]
        gain_large = (scores[4] - scores[3]) / 100
        assert gain_large < gain_small

    def test_comments_monotonic(self, ranker, now):
        scores = [
            ranker.score_item(make_item(1, now, comments_count=c), now).total
            for c in [0, 1, 5, 50]
        ]
        assert scores == sorted(scores)
        assert scores[0] < scores[-1]

    def test_freshness_half_life(self, ranker, now):
        assert ranker.freshness_score(now, now) == 1.0
        assert ranker.freshness_score(now - timedelta(hours=24), now) == pytest.approx(0.5)
        assert ranker.freshness_score(now + timedelta(hours=5), now) == 1.0
        assert ranker.freshness_score(None, now) == 0.0

    def test_score_breakdown(self, now):
        ranker = FeedRanker(Settings(), RankingWeights(freshness=0.5, source_quality=0.25, engagement=0.25))
        score = ranker.score_item(make_item(1, now, quality_weight=2.0), now)
        assert score.freshness == 1.0
        assert score.quality == 2.0
        assert score.engagement == 0.0
        assert score.total == pytest.approx(1.0)
        assert "Freshness: 1.000" in score.reasoning

    def test_naive_datetimes_treated_as_utc(self, ranker, now):
        naive = (now - timedelta(hours=24)).replace(tzinfo=None)
        assert ranker.freshness_score(naive, now) == pytest.approx(0.5)


class TestOrdering:
    """Test in-memory ordering, filtering and paging."""

    def test_latest_reverse_chronological_ties_by_id(self, ranker, now):
        items = [
            make_item(1, now - timedelta(hours=2)),
            make_item(2, now),
            make_item(3, now),
            make_item(4, now - timedelta(hours=1)),
        ]
        page = ranker.rank_items(items, SITE, {}, limit=10, offset=0, now=now)
        assert [i.id for i in page] == [3, 2, 4, 1]

    def test_ranked_uses_score(self, ranker, now):
        items = [
            make_item(1, now, quality_weight=0.1),
            make_item(2, now - timedelta(hours=1), quality_weight=2.0, upvotes_count=50),
        ]
        page = ranker.rank_items(items, SITE, {"sort": "ranked"}, limit=10, offset=0, now=now)
        assert [i.id for i in page] == [2, 1]

    def test_ranked_ties_break_by_recency_then_id(self, ranker, now):
        items = [make_item(1, now), make_item(2, now), make_item(3, now)]
        page = ranker.rank_items(items, SITE, {"sort": SortMode.RANKED}, limit=10, offset=0, now=now)
        assert [i.id for i in page] == [3, 2, 1]

    def test_top_week_window_and_engagement(self, ranker, now):
        items = [
            make_item(1, now - timedelta(days=1), upvotes_count=5),
            make_item(2, now - timedelta(days=2), upvotes_count=1, comments_count=20),
            make_item(3, now - timedelta(days=10), upvotes_count=500),
        ]
        page = ranker.rank_items(items, SITE, {"sort": "top_week"}, limit=10, offset=0, now=now)
        assert [i.id for i in page] == [2, 1]

    def test_tag_and_content_type_filters_conjunctive(self, ranker, now):
        items = [
            make_item(1, now, topic_tags=["ai", "ml"], content_type="paper"),
            make_item(2, now, topic_tags=["ai"], content_type="news"),
            make_item(3, now, topic_tags=["ml"], content_type="paper"),
        ]
        assert [i.id for i in ranker.rank_items(items, SITE, {"tag": "ml"}, 10, 0, now)] == [3, 1]
        assert [i.id for i in ranker.rank_items(items, SITE, {"content_type": "paper"}, 10, 0, now)] == [3, 1]
        both = ranker.rank_items(items, SITE, {"tag": "ai", "content_type": "paper"}, 10, 0, now)
        assert [i.id for i in both] == [1]

    def test_unpublished_items_excluded(self, ranker, now):
        items = [make_item(1, None), make_item(2, now)]
        assert [i.id for i in ranker.rank_items(items, SITE, None, 10, 0, now)] == [2]

    def test_site_isolation(self, ranker, now):
        items = [make_item(1, now), make_item(2, now, site_id=2)]
        assert [i.id for i in ranker.rank_items(items, SITE, {}, 10, 0, now)] == [1]
        assert [i.id for i in ranker.rank_items(items, OTHER, {}, 10, 0, now)] == [2]
        assert ranker.rank_items(items, None, {}, 10, 0, now) == []

    @pytest.mark.parametrize("sort", ["latest", "ranked", "top_week"])
    def test_adjacent_pages_never_skip_or_repeat(self, ranker, now, sort):
        items = [
            make_item(i, now - timedelta(hours=i % 4), upvotes_count=i % 3, comments_count=i % 2)
            for i in range(1, 24)
        ]
        full = ranker.rank_items(items, SITE, {"sort": sort}, limit=100, offset=0, now=now)
        paged = []
        for offset in range(0, 30, 5):
            page = ranker.rank_items(items, SITE, {"sort": sort}, limit=5, offset=offset, now=now)
            assert len(page) <= 5
            paged.extend(page)
        assert [i.id for i in paged] == [i.id for i in full]
        assert len(full) == 23

    def test_page_bounds(self, ranker, now):
        items = [make_item(i, now) for i in range(1, 6)]
        assert ranker.rank_items(items, SITE, {}, limit=0, offset=0, now=now) == []
        assert ranker.rank_items(items, SITE, {}, limit=-3, offset=0, now=now) == []
        assert len(ranker.rank_items(items, SITE, {}, limit=2, offset=-4, now=now)) == 2
        assert ranker.rank_items(items, SITE, {}, limit=2, offset=50, now=now) == []

    def test_limit_capped_at_max_page_size(self, now):
        ranker = FeedRanker(Settings(max_page_size=3))
        items = [make_item(i, now) for i in range(1, 10)]
        assert len(ranker.rank_items(items, SITE, {}, limit=50, offset=0, now=now)) == 3


class TestFeedFilters:
    """Test loose filter normalization."""

    def test_defaults_to_latest(self):
        assert FeedFilters.from_mapping(None).sort is SortMode.LATEST
        assert FeedFilters.from_mapping({"sort": ""}).sort is SortMode.LATEST

    def test_unknown_sort_falls_back_to_latest(self):
        filters = FeedFilters.from_mapping({"sort": "hottest"})
        assert filters.sort is SortMode.LATEST
        assert not filters.unsatisfiable

    def test_sort_parsing_is_lenient(self):
        assert FeedFilters.from_mapping({"sort": " Ranked "}).sort is SortMode.RANKED

    def test_blank_filters_mean_no_filter(self):
        filters = FeedFilters.from_mapping({"tag": "  ", "content_type": ""})
        assert filters.tag is None
        assert filters.content_type is None
        assert not filters.unsatisfiable

    @pytest.mark.parametrize("filters", [{"tag": 5}, {"tag": ["ai"]}, {"content_type": {"x": 1}}])
    def test_malformed_filters_are_unsatisfiable(self, ranker, now, filters):
        assert FeedFilters.from_mapping(filters).unsatisfiable
        items = [make_item(1, now, topic_tags=["ai"])]
        assert ranker.rank_items(items, SITE, filters, 10, 0, now) == []


class TestStoreBackedRanking:
    """Test ranking over the record store."""

    @pytest.fixture
    def populated(self, store, site, other_site, source, now):
        from curator.models import Source

        weak = store.add_source(Source(site_id=site.id, name="Weak", quality_weight=0.2))
        specs = [
            ("a", now - timedelta(hours=30), source, ["ai"], "news"),
            ("b", now - timedelta(hours=1), weak, ["ml"], "paper"),
            ("c", now - timedelta(hours=5), source, ["ai", "ml"], "paper"),
            ("d", now - timedelta(days=9), source, ["ai"], None),
            ("e", None, source, ["ai"], None),
        ]
        ids = {}
        for key, published_at, src, tags, content_type in specs:
            item, _ = store.upsert_item(Item(
                site_id=site.id,
                source_id=src.id,
                url_raw=f"https://example.com/{key}",
                url_canonical=f"https://example.com/{key}",
                title=key,
                published_at=published_at,
            ))
            store.save_classification(item.id, Classification(topic_tags=tags, content_type=content_type))
            ids[key] = item.id

        foreign, _ = store.upsert_item(Item(
            site_id=other_site.id,
            url_raw="https://example.com/a",
            url_canonical="https://example.com/a",
            title="foreign",
            published_at=now,
        ))
        store.save_classification(foreign.id, Classification(topic_tags=["ai"]))
        ids["foreign"] = foreign.id

        store.record_engagement(ids["a"], upvotes=40, comments=10)
        store.record_engagement(ids["d"], upvotes=900)
        return ids

    def test_latest_from_store(self, store, site, populated, now):
        page = rank_feed(store, site, {}, limit=10, offset=0, now=now)
        assert [i.id for i in page] == [populated[k] for k in ["b", "c", "a", "d"]]

    def test_latest_paging_from_store(self, store, site, populated, now):
        first = rank_feed(store, site, {}, limit=2, offset=0, now=now)
        second = rank_feed(store, site, {}, limit=2, offset=2, now=now)
        assert [i.id for i in first + second] == [populated[k] for k in ["b", "c", "a", "d"]]

    def test_tag_filter_uses_index(self, store, site, populated, now):
        page = rank_feed(store, site, {"tag": "ml"}, limit=10, offset=0, now=now)
        assert [i.id for i in page] == [populated["b"], populated["c"]]

    def test_content_type_filter(self, store, site, populated, now):
        page = rank_feed(store, site, {"content_type": "paper", "tag": "ai"}, limit=10, offset=0, now=now)
        assert [i.id for i in page] == [populated["c"]]

    def test_ranked_from_store_uses_source_quality(self, store, site, populated, now):
        page = rank_feed(store, site, {"sort": "ranked"}, limit=10, offset=0, now=now)
        assert {i.id for i in page} == {populated[k] for k in ["a", "b", "c", "d"]}
        scores = [FeedRanker().score_item(i, now).total for i in page]
        assert scores == sorted(scores, reverse=True)
        weak_item = next(i for i in page if i.id == populated["b"])
        assert weak_item.quality_weight == pytest.approx(0.2)

    def test_top_week_from_store(self, store, site, populated, now):
        page = rank_feed(store, site, {"sort": "top_week"}, limit=10, offset=0, now=now)
        assert [i.id for i in page] == [populated[k] for k in ["a", "b", "c"]]

    def test_sites_never_leak(self, store, site, other_site, populated, now):
        for sort in ["latest", "ranked", "top_week"]:
            mine = rank_feed(store, site, {"sort": sort, "tag": "ai"}, 10, 0, now=now)
            theirs = rank_feed(store, other_site, {"sort": sort, "tag": "ai"}, 10, 0, now=now)
            assert all(i.site_id == site.id for i in mine)
            assert [i.id for i in theirs] == [populated["foreign"]]

    def test_unsatisfiable_filters_return_empty(self, store, site, populated, now):
        assert rank_feed(store, site, {"tag": 3}, 10, 0, now=now) == []

    def test_missing_site_returns_empty(self, store, populated, now):
        assert rank_feed(store, None, {}, 10, 0, now=now) == []
