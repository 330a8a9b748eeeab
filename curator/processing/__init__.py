"""Content processing module."""

from .canonicalize import InvalidUrl, canonicalize, extract_canonical_href
from .classify import RuleClassifier, build_rule, classify, parse_rule_body
from .ranking import FeedFilters, FeedRanker, ItemScore, RankingWeights, SortMode, rank_feed

__all__ = [
    'canonicalize',
    'extract_canonical_href',
    'InvalidUrl',
    'classify',
    'build_rule',
    'parse_rule_body',
    'RuleClassifier',
    'rank_feed',
    'FeedRanker',
    'FeedFilters',
    'ItemScore',
    'RankingWeights',
    'SortMode',
]
