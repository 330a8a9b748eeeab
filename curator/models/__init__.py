"""Domain records."""

from .entities import (
    Classification,
    DomainBody,
    Item,
    KeywordBody,
    Match,
    Rule,
    RuleBody,
    RuleKind,
    Site,
    Source,
    Taxonomy,
    UrlPatternBody,
)

__all__ = [
    'Classification',
    'DomainBody',
    'Item',
    'KeywordBody',
    'Match',
    'Rule',
    'RuleBody',
    'RuleKind',
    'Site',
    'Source',
    'Taxonomy',
    'UrlPatternBody',
]
