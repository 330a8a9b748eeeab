"""Core domain records shared by the canonicalizer, classifier and ranker."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class RuleKind(str, Enum):
    """How a tagging rule's pattern is interpreted."""
    KEYWORD = "keyword"
    DOMAIN = "domain"
    URL_PATTERN = "url_pattern"


@dataclass(frozen=True)
class Site:
    """Tenant-scoped content container."""
    id: int
    tenant_id: int
    name: str = ""


@dataclass
class Source:
    """Origin of items; its trust multiplier feeds the ranker only."""
    site_id: int
    name: str
    quality_weight: float = 1.0
    id: int | None = None


@dataclass(frozen=True)
class Taxonomy:
    """A topic label rules point items toward."""
    site_id: int
    slug: str
    name: str = ""
    parent_slug: str | None = None
    id: int | None = None


# ── Rule bodies ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class KeywordBody:
    """Comma-separated keyword list, already split and trimmed."""
    words: tuple[str, ...]
    confidence: float | None = None


@dataclass(frozen=True)
class DomainBody:
    """Host pattern; ``include_subdomains`` comes from a leading ``*.``."""
    host: str
    include_subdomains: bool = False
    confidence: float | None = None


@dataclass(frozen=True)
class UrlPatternBody:
    """Case-insensitive regular expression searched in the item URL."""
    regex: re.Pattern
    confidence: float | None = None


RuleBody = KeywordBody | DomainBody | UrlPatternBody


@dataclass(frozen=True)
class Rule:
    """Site-owned, priority-ordered predicate assigning one taxonomy.

    ``body`` is None when the stored pattern could not be parsed; such a
    rule is still evaluated but never matches. A kind this module does not
    know is kept as its raw text.
    """
    id: int
    site_id: int
    taxonomy_slug: str
    kind: RuleKind | str
    pattern: str
    body: RuleBody | None
    priority: int = 100
    enabled: bool = True
    content_type: str | None = None

    @property
    def confidence(self) -> float | None:
        return self.body.confidence if self.body is not None else None


# ── Items and classification output ───────────────────────────────────────


@dataclass(frozen=True)
class Match:
    """One line of the audit trail: which rule produced which tag."""
    rule_id: int
    taxonomy_slug: str
    matched_pattern: str
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "taxonomy_slug": self.taxonomy_slug,
            "matched_pattern": self.matched_pattern,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Match":
        return cls(
            rule_id=data["rule_id"],
            taxonomy_slug=data["taxonomy_slug"],
            matched_pattern=data["matched_pattern"],
            reason=data.get("reason", ""),
        )


@dataclass
class Classification:
    """Classifier output for one item."""
    topic_tags: list[str] = field(default_factory=list)
    confidence: float | None = None
    content_type: str | None = None
    explanation: list[Match] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "Classification":
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic_tags": list(self.topic_tags),
            "confidence": self.confidence,
            "content_type": self.content_type,
            "explanation": [m.to_dict() for m in self.explanation],
        }


@dataclass
class Item:
    """Ingestible content unit, unique per ``(site_id, url_canonical)``."""
    site_id: int
    url_raw: str
    url_canonical: str
    title: str = ""
    description: str = ""
    domain: str = ""
    published_at: datetime | None = None
    source_id: int | None = None
    id: int | None = None

    # Classifier output
    topic_tags: list[str] = field(default_factory=list)
    content_type: str | None = None
    tagging_confidence: float | None = None
    tagging_explanation: list[Match] = field(default_factory=list)

    # Ranking inputs
    upvotes_count: int = 0
    comments_count: int = 0
    quality_weight: float = 1.0

    @property
    def url(self) -> str:
        return self.url_canonical or self.url_raw

    def apply_classification(self, result: Classification) -> None:
        """Copy classifier output onto the item's tag fields."""
        self.topic_tags = list(result.topic_tags)
        self.content_type = result.content_type
        self.tagging_confidence = result.confidence
        self.tagging_explanation = list(result.explanation)
