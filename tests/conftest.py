"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Generator

import pytest

# Set test environment
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["JSON_LOGGING"] = "false"
os.environ["DATABASE_URL"] = "sqlite://"

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for ranking tests."""
    return NOW


@pytest.fixture
def store():
    """Fresh in-memory record store."""
    from curator.storage import CurationStore, build_engine

    engine = build_engine("sqlite://")
    curation_store = CurationStore(engine)
    curation_store.init_schema()
    yield curation_store
    engine.dispose()


@pytest.fixture
def site(store):
    """Site with the ai/ml taxonomies registered."""
    from curator.models import Site, Taxonomy

    site = store.add_site(Site(id=1, tenant_id=1, name="AI Digest"))
    store.add_taxonomy(Taxonomy(site_id=site.id, slug="ai", name="Artificial Intelligence"))
    store.add_taxonomy(Taxonomy(site_id=site.id, slug="ml", name="Machine Learning", parent_slug="ai"))
    store.add_taxonomy(Taxonomy(site_id=site.id, slug="research", name="Research"))
    return site


@pytest.fixture
def other_site(store):
    """Second tenant's site sharing the same taxonomy slugs."""
    from curator.models import Site, Taxonomy

    site = store.add_site(Site(id=2, tenant_id=2, name="Other"))
    store.add_taxonomy(Taxonomy(site_id=site.id, slug="ai", name="AI"))
    store.add_taxonomy(Taxonomy(site_id=site.id, slug="ml", name="ML"))
    return site


@pytest.fixture
def source(store, site):
    """Default source of the main site."""
    from curator.models import Source

    return store.add_source(Source(site_id=site.id, name="Example Feed", quality_weight=1.0))


@pytest.fixture
def sample_rules(store, site):
    """The ml/ai keyword rules from the classification scenario."""
    ai_rule = store.add_rule(site.id, "ai", "keyword", "AI", priority=10)
    ml_rule = store.add_rule(site.id, "ml", "keyword", "machine learning", priority=5, confidence=0.8)
    return [ai_rule, ml_rule]


@pytest.fixture
def sample_item():
    """Unsaved item matching both scenario rules."""
    from curator.models import Item

    return Item(
        site_id=1,
        url_raw="https://example.com/ai-revolution",
        url_canonical="https://example.com/ai-revolution",
        title="AI Revolution",
        description="How machine learning is changing everything",
        domain="example.com",
        published_at=NOW,
    )


@pytest.fixture
def site_yaml(temp_dir) -> Path:
    """Small site document on disk."""
    path = temp_dir / "site.yaml"
    path.write_text(
        """
id: 7
name: Test Site
taxonomies:
  - slug: ai
  - slug: ml
    parent: ai
rules:
  - taxonomy: ml
    kind: keyword
    pattern: machine learning
    priority: 5
    confidence: 0.8
  - taxonomy: ai
    kind: keyword
    pattern: AI
    priority: 10
sources:
  - name: Blog
    quality_weight: 1.2
    entries:
      - url: https://Example.com/ml-post/?utm_source=rss
        title: Machine learning basics
        published_at: "2024-05-30T10:00:00Z"
        upvotes: 3
      - url: https://example.com/ai-news
        title: AI news roundup
        published_at: "2024-05-31T10:00:00Z"
      - url: ftp://example.com/file
        title: Not an item
""",
        encoding="utf-8",
    )
    return path
