"""
Rule-based topic classification for ingested items.

Each site owns an ordered set of tagging rules. Every enabled rule is
evaluated against an item, lowest priority value first, and every match
contributes its taxonomy slug to the item's topic tags and one entry to the
explanation trail. Nothing here is probabilistic: the same item and rule set
always produce the same tags, confidence and explanation order.
"""

import re
from collections.abc import Iterable

from ..logging import get_logger
from ..models.entities import (
    Classification,
    DomainBody,
    Item,
    KeywordBody,
    Match,
    Rule,
    RuleBody,
    RuleKind,
    Site,
    UrlPatternBody,
)
from ..utils import extract_domain

logger = get_logger(__name__)


def _clamp_confidence(confidence: float | None) -> float | None:
    if confidence is None:
        return None
    return max(0.0, min(1.0, float(confidence)))


def parse_rule_body(kind: RuleKind | str, pattern: str,
                    confidence: float | None = None) -> RuleBody | None:
    """Parse a stored rule pattern into its typed body.

    Returns None for patterns that can never match: empty keyword lists,
    domain globs with a wildcard anywhere but the leading ``*.``, and
    regular expressions that do not compile.
    """
    confidence = _clamp_confidence(confidence)
    pattern = pattern or ""

    try:
        kind = RuleKind(kind)
    except ValueError:
        logger.warning("unknown_rule_kind", kind=str(kind))
        return None

    if kind is RuleKind.KEYWORD:
        words = tuple(w.strip() for w in pattern.split(",") if w.strip())
        if not words:
            logger.warning("empty_keyword_rule", pattern=pattern)
            return None
        return KeywordBody(words=words, confidence=confidence)

    if kind is RuleKind.DOMAIN:
        host = pattern.strip().lower().rstrip(".")
        include_subdomains = host.startswith("*.")
        if include_subdomains:
            host = host[2:]
        if not host or "*" in host or "/" in host or any(c.isspace() for c in host):
            logger.warning("malformed_domain_rule", pattern=pattern)
            return None
        return DomainBody(host=host, include_subdomains=include_subdomains,
                          confidence=confidence)

    if not pattern.strip():
        logger.warning("empty_url_rule")
        return None
    try:
        regex = re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning("malformed_url_rule", pattern=pattern, error=str(e))
        return None
    return UrlPatternBody(regex=regex, confidence=confidence)


def build_rule(
    rule_id: int,
    site_id: int,
    taxonomy_slug: str,
    kind: RuleKind | str,
    pattern: str,
    priority: int = 100,
    enabled: bool = True,
    confidence: float | None = None,
    content_type: str | None = None,
) -> Rule:
    """Create a rule, parsing its pattern once."""
    rule_kind: RuleKind | str
    try:
        rule_kind = RuleKind(kind)
    except ValueError:
        rule_kind = str(kind)
        body = None
        logger.warning("unknown_rule_kind", rule_id=rule_id, kind=str(kind))
    else:
        body = parse_rule_body(rule_kind, pattern, confidence)

    return Rule(
        id=rule_id,
        site_id=site_id,
        taxonomy_slug=taxonomy_slug,
        kind=rule_kind,
        pattern=pattern,
        body=body,
        priority=priority,
        enabled=enabled,
        content_type=content_type or None,
    )


class RuleClassifier:
    """Evaluates one site's rule snapshot against items."""

    def __init__(self, site: Site | None, rules: Iterable[Rule]):
        """Take a snapshot of the site's enabled rules in evaluation order.

        Rules belonging to other sites are dropped. Rule ids are assigned in
        creation order, so they break priority ties.
        """
        self.site = site
        if site is None:
            self.rules: list[Rule] = []
        else:
            self.rules = sorted(
                (r for r in rules if r.enabled and r.site_id == site.id),
                key=lambda r: (r.priority, r.id),
            )

    @staticmethod
    def _item_text(item: Item) -> str:
        return f"{item.title or ''} {item.description or ''}".lower()

    @staticmethod
    def _item_host(item: Item) -> str:
        host = item.domain or extract_domain(item.url or "")
        return host.strip().lower().rstrip(".")

    def evaluate(self, rule: Rule, item: Item) -> Match | None:
        """Evaluate a single rule, returning its explanation entry on a match."""
        body = rule.body

        if isinstance(body, KeywordBody):
            text = self._item_text(item)
            matched = [w for w in body.words if w.lower() in text]
            if matched:
                return Match(
                    rule_id=rule.id,
                    taxonomy_slug=rule.taxonomy_slug,
                    matched_pattern=matched[0],
                    reason=f"Keywords matched: {', '.join(matched)}",
                )

        elif isinstance(body, DomainBody):
            host = self._item_host(item)
            if host and (
                host == body.host
                or (body.include_subdomains and host.endswith("." + body.host))
            ):
                return Match(
                    rule_id=rule.id,
                    taxonomy_slug=rule.taxonomy_slug,
                    matched_pattern=rule.pattern,
                    reason=f"Domain '{host}' matched pattern '{rule.pattern}'",
                )

        elif isinstance(body, UrlPatternBody):
            url = item.url or ""
            if url and body.regex.search(url):
                return Match(
                    rule_id=rule.id,
                    taxonomy_slug=rule.taxonomy_slug,
                    matched_pattern=rule.pattern,
                    reason=f"URL matched pattern '{rule.pattern}'",
                )

        return None

    def classify(self, item: Item | None) -> Classification:
        """Classify an item against the whole rule snapshot.

        Every rule is checked; there is no short-circuit on the first match.
        """
        if item is None or self.site is None or item.site_id != self.site.id:
            return Classification.empty()
        if not self.rules:
            return Classification.empty()

        topic_tags: list[str] = []
        explanation: list[Match] = []
        confidences: list[float] = []
        content_type: str | None = None

        for rule in self.rules:
            match = self.evaluate(rule, item)
            if match is None:
                continue

            explanation.append(match)
            if rule.taxonomy_slug not in topic_tags:
                topic_tags.append(rule.taxonomy_slug)
            if rule.confidence is not None:
                confidences.append(rule.confidence)
            if content_type is None and rule.content_type:
                content_type = rule.content_type

        result = Classification(
            topic_tags=topic_tags,
            confidence=max(confidences) if confidences else None,
            content_type=content_type,
            explanation=explanation,
        )

        logger.debug(
            "item_classified",
            site_id=self.site.id,
            url=item.url,
            rules_evaluated=len(self.rules),
            topic_tags=topic_tags,
        )
        return result


def classify(site: Site | None, item: Item | None, rules: Iterable[Rule]) -> Classification:
    """Convenience function for classifying one item."""
    return RuleClassifier(site, rules).classify(item)
