"""Configuration management for the curation core."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.entities import Rule, RuleKind, Site, Source, Taxonomy


class Settings(BaseSettings):
    """Main application settings."""

    # ── Storage ────────────────────────────────────────────────────────────
    database_url: str = Field("sqlite:///curator.db", description="SQLAlchemy database URL")
    sites_file: Path | None = Field(None, description="Optional YAML site document")

    # ── Ranking Weights ────────────────────────────────────────────────────
    rank_w_freshness: float = Field(0.4, description="Freshness weight")
    rank_w_quality: float = Field(0.3, description="Source quality weight")
    rank_w_engagement: float = Field(0.3, description="Engagement weight")

    # ── Ranking Policy ─────────────────────────────────────────────────────
    freshness_half_life_hours: float = Field(24.0, description="Hours until freshness halves")
    comment_weight: float = Field(0.5, description="Weight of one comment relative to one upvote")
    top_window_days: int = Field(7, description="Window for the top_week sort")
    max_page_size: int = Field(100, description="Upper bound applied to feed limits")

    # ── Logging ────────────────────────────────────────────────────────────
    log_level: str = Field("INFO", description="Log level")
    json_logging: bool = Field(True, description="Enable JSON logging")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("rank_w_freshness", "rank_w_quality", "rank_w_engagement")
    @classmethod
    def validate_weights(cls, v: float) -> float:
        """Validate weight values are between 0 and 1."""
        if not 0 <= v <= 1:
            raise ValueError("Weight must be between 0 and 1")
        return v

    @field_validator("freshness_half_life_hours")
    @classmethod
    def validate_half_life(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Half-life must be positive")
        return v

    @field_validator("comment_weight")
    @classmethod
    def validate_comment_weight(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Comment weight cannot be negative")
        return v

    @field_validator("max_page_size", "top_window_days")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v


# ── YAML site documents ────────────────────────────────────────────────────


class TaxonomyDocument(BaseModel):
    """Taxonomy entry in a site document."""
    slug: str = Field(pattern=r"^[a-z0-9-]+$")
    name: str = ""
    parent: str | None = None


class RuleDocument(BaseModel):
    """Tagging rule entry, still loosely typed."""
    taxonomy: str
    kind: RuleKind
    pattern: str
    priority: int = 100
    enabled: bool = True
    confidence: float | None = Field(None, ge=0.0, le=1.0)
    content_type: str | None = None


class EntryDocument(BaseModel):
    """Raw ingested entry as handed over by a fetcher."""
    url: str
    title: str = ""
    description: str = ""
    html: str | None = None
    published_at: str | None = None
    upvotes: int = Field(0, ge=0)
    comments: int = Field(0, ge=0)


class SourceDocument(BaseModel):
    """Content source with its trust multiplier."""
    name: str
    quality_weight: float = Field(1.0, ge=0.0)
    entries: list[EntryDocument] = Field(default_factory=list)


class SiteDocument(BaseModel):
    """A whole site: identity, taxonomy tree, rules and sources."""
    id: int
    tenant_id: int = 1
    name: str = ""
    taxonomies: list[TaxonomyDocument] = Field(default_factory=list)
    rules: list[RuleDocument] = Field(default_factory=list)
    sources: list[SourceDocument] = Field(default_factory=list)

    @field_validator("rules")
    @classmethod
    def validate_rule_taxonomies(cls, v: list[RuleDocument], info) -> list[RuleDocument]:
        """Ensure every rule points at a declared taxonomy."""
        declared = {t.slug for t in info.data.get("taxonomies", [])}
        unknown = sorted({r.taxonomy for r in v} - declared)
        if unknown:
            raise ValueError(f"Rules reference unknown taxonomies: {', '.join(unknown)}")
        return v

    def to_site(self) -> Site:
        return Site(id=self.id, tenant_id=self.tenant_id, name=self.name)

    def to_taxonomies(self) -> list[Taxonomy]:
        return [
            Taxonomy(site_id=self.id, slug=t.slug, name=t.name or t.slug, parent_slug=t.parent)
            for t in self.taxonomies
        ]

    def to_sources(self) -> list[Source]:
        return [
            Source(site_id=self.id, name=s.name, quality_weight=s.quality_weight)
            for s in self.sources
        ]

    def to_rules(self) -> list[Rule]:
        """Parse rule documents into typed rules, numbered in document order."""
        from .processing.classify import build_rule

        return [
            build_rule(
                rule_id=index,
                site_id=self.id,
                taxonomy_slug=doc.taxonomy,
                kind=doc.kind,
                pattern=doc.pattern,
                priority=doc.priority,
                enabled=doc.enabled,
                confidence=doc.confidence,
                content_type=doc.content_type,
            )
            for index, doc in enumerate(self.rules, start=1)
        ]


def load_site_document(path: str | Path) -> SiteDocument:
    """Load and validate a YAML site document."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Site document not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    return SiteDocument(**data)


# Global instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings


def validate_config(settings: Settings) -> bool:
    """Validate configuration completeness."""
    from .logging import get_logger

    logger = get_logger(__name__)
    try:
        weight_sum = (
            settings.rank_w_freshness
            + settings.rank_w_quality
            + settings.rank_w_engagement
        )
        if abs(weight_sum - 1.0) > 0.01:
            raise ValueError(f"Ranking weights sum to {weight_sum}, should be 1.0")

        if settings.sites_file is not None:
            document = load_site_document(settings.sites_file)
            inert = [r.id for r in document.to_rules() if r.body is None]
            if inert:
                logger.warning("site_rules_never_match", site_id=document.id, rule_positions=inert)

        return True

    except Exception as e:
        logger.error("config_validation_failed", error=str(e))
        return False
