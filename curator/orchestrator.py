"""Ingestion orchestration: canonicalize, upsert, classify, rank."""

import json
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click
from rich import box
from rich.console import Console
from rich.table import Table

from .config import EntryDocument, Settings, SiteDocument, get_settings, load_site_document, validate_config
from .logging import PerformanceLogger, get_logger, log_error, log_processing_stage, setup_logging, site_context
from .models.entities import Item, Site, Source
from .processing.canonicalize import InvalidUrl, canonicalize
from .processing.classify import RuleClassifier
from .processing.ranking import FeedFilters, FeedRanker, SortMode
from .storage.database import CurationStore
from .storage.db_engine import build_engine
from .utils import extract_domain, format_datetime_iso, parse_date_string

logger = get_logger(__name__)
console = Console()


@dataclass
class RawEntry:
    """Raw content handed over by a fetcher."""
    url: str
    title: str = ""
    description: str = ""
    html: str | None = None
    published_at: datetime | str | None = None


@dataclass
class IngestResult:
    """Outcome of ingesting one entry."""
    item: Item | None
    created: bool = False
    skipped_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.item is None


@dataclass
class IngestReport:
    """Counts for one ingestion batch."""
    created: int = 0
    updated: int = 0
    skipped: int = 0
    results: list[IngestResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped

    def add(self, result: IngestResult) -> None:
        self.results.append(result)
        if result.skipped:
            self.skipped += 1
        elif result.created:
            self.created += 1
        else:
            self.updated += 1


class IngestionPipeline:
    """Runs raw entries through the canonicalizer, the store and the classifier."""

    def __init__(self, store: CurationStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()
        self.ranker = FeedRanker(self.settings)

    def classifier_for(self, site: Site) -> RuleClassifier:
        """Snapshot the site's enabled rules for a classification run."""
        return RuleClassifier(site, self.store.enabled_rules(site.id))

    @staticmethod
    def _published_at(value: datetime | str | None) -> datetime | None:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            return parse_date_string(value)
        return None

    def ingest(
        self,
        site: Site,
        source: Source | None,
        entry: RawEntry,
        classifier: RuleClassifier | None = None,
    ) -> IngestResult:
        """Ingest one entry; invalid URLs are skipped, never raised."""
        if source is not None and source.site_id != site.id:
            reason = f"Source {source.id} does not belong to site {site.id}"
            logger.warning("entry_skipped", site_id=site.id, url=entry.url, reason=reason)
            return IngestResult(item=None, skipped_reason=reason)

        try:
            url_canonical = canonicalize(entry.url, entry.html)
        except InvalidUrl as e:
            logger.warning("entry_skipped", site_id=site.id, url=entry.url, reason=str(e))
            return IngestResult(item=None, skipped_reason=str(e))

        item = Item(
            site_id=site.id,
            source_id=source.id if source is not None else None,
            url_raw=entry.url.strip(),
            url_canonical=url_canonical,
            title=entry.title or "",
            description=entry.description or "",
            domain=extract_domain(url_canonical),
            published_at=self._published_at(entry.published_at),
        )
        stored, created = self.store.upsert_item(item)

        classifier = classifier or self.classifier_for(site)
        result = classifier.classify(stored)
        self.store.save_classification(stored.id, result)
        stored.apply_classification(result)

        logger.debug(
            "entry_ingested",
            site_id=site.id,
            item_id=stored.id,
            url_canonical=url_canonical,
            created=created,
            topic_tags=result.topic_tags,
        )
        return IngestResult(item=stored, created=created)

    def ingest_batch(self, site: Site, source: Source | None, entries: list[RawEntry]) -> IngestReport:
        """Ingest a batch; one rule snapshot is shared by the whole batch."""
        report = IngestReport()
        with site_context(site.id, site.tenant_id):
            with PerformanceLogger("ingest_batch", logger) as perf:
                classifier = self.classifier_for(site)
                for entry in entries:
                    report.add(self.ingest(site, source, entry, classifier))

            logger.info(
                "processing_stage",
                **log_processing_stage(
                    "ingest",
                    input_count=len(entries),
                    output_count=report.created + report.updated,
                    duration=perf.duration,
                    created=report.created,
                    updated=report.updated,
                    skipped=report.skipped,
                )
            )
        return report

    def reclassify(self, site: Site) -> int:
        """Re-run classification for every item of a site; returns the item count."""
        with site_context(site.id, site.tenant_id):
            classifier = self.classifier_for(site)
            items = self.store.list_items(site.id)
            for item in items:
                self.store.save_classification(item.id, classifier.classify(item))
            logger.info("site_reclassified", items=len(items))
        return len(items)

    def feed(
        self,
        site: Site | None,
        filters: FeedFilters | dict[str, Any] | None = None,
        limit: int = 20,
        offset: int = 0,
        now: datetime | None = None,
    ) -> list[Item]:
        """One page of the site's feed."""
        if site is None:
            return []
        with site_context(site.id, site.tenant_id):
            return self.ranker.rank(self.store, site, filters, limit, offset, now)


def seed_site(store: CurationStore, document: SiteDocument) -> tuple[Site, list[tuple[Source, list[EntryDocument]]]]:
    """Load a site document's site, taxonomies, rules and sources into a store.

    Taxonomies are inserted in document order, so parents must precede children.
    """
    site = store.add_site(document.to_site())
    for taxonomy in document.to_taxonomies():
        store.add_taxonomy(taxonomy)
    for rule in document.rules:
        store.add_rule(
            site_id=site.id,
            taxonomy_slug=rule.taxonomy,
            kind=rule.kind,
            pattern=rule.pattern,
            priority=rule.priority,
            enabled=rule.enabled,
            confidence=rule.confidence,
            content_type=rule.content_type,
        )

    sources = [
        (store.add_source(source), doc.entries)
        for source, doc in zip(document.to_sources(), document.sources)
    ]
    return site, sources


def run_site_document(
    document: SiteDocument,
    settings: Settings,
    store: CurationStore | None = None,
) -> tuple[IngestionPipeline, Site, list[IngestReport]]:
    """Ingest every entry of a site document into a (default in-memory) store."""
    if store is None:
        store = CurationStore(build_engine("sqlite://"))
        store.init_schema()

    pipeline = IngestionPipeline(store, settings)
    site, sources = seed_site(store, document)

    reports = []
    for source, entry_docs in sources:
        entries = [
            RawEntry(
                url=doc.url,
                title=doc.title,
                description=doc.description,
                html=doc.html,
                published_at=doc.published_at,
            )
            for doc in entry_docs
        ]
        report = pipeline.ingest_batch(site, source, entries)
        for result, doc in zip(report.results, entry_docs):
            if result.item is not None and (doc.upvotes or doc.comments):
                store.record_engagement(result.item.id, doc.upvotes, doc.comments)
        reports.append(report)

    return pipeline, site, reports


def item_to_dict(item: Item, rank: int, score: float | None = None) -> dict[str, Any]:
    """JSON-friendly view of a feed item."""
    data = {
        "rank": rank,
        "id": item.id,
        "title": item.title,
        "url": item.url_canonical,
        "domain": item.domain,
        "published_at": format_datetime_iso(item.published_at),
        "topic_tags": item.topic_tags,
        "content_type": item.content_type,
        "tagging_confidence": item.tagging_confidence,
        "explanation": [m.to_dict() for m in item.tagging_explanation],
        "upvotes": item.upvotes_count,
        "comments": item.comments_count,
    }
    if score is not None:
        data["score"] = round(score, 6)
    return data


def display_feed(rows: list[dict[str, Any]], title: str) -> None:
    """Render a feed page as a table."""
    table = Table(title=title, box=box.ROUNDED, show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Domain")
    table.add_column("Tags", style="cyan")
    table.add_column("Published")
    table.add_column("Score", justify="right")

    for row in rows:
        table.add_row(
            str(row["rank"]),
            row["title"] or row["url"],
            row["domain"],
            ", ".join(row["topic_tags"]) or "-",
            row["published_at"] or "-",
            f"{row['score']:.3f}" if "score" in row else "-",
        )

    console.print(table)


@click.group()
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Log level (defaults to LOG_LEVEL); logs go to stderr")
def cli(log_level: str | None) -> None:
    """Content curation core - canonicalize, classify and rank feed items."""
    setup_logging(log_level=log_level, json_logging=False)


@cli.command("validate")
def validate_command() -> None:
    """Validate settings and the configured site document."""
    if validate_config(get_settings()):
        click.echo("Configuration is valid")
    else:
        click.echo("Error: configuration validation failed", err=True)
        sys.exit(1)


@cli.command("canonicalize")
@click.argument("url")
@click.option("--html-file", type=click.File("r", encoding="utf-8"), help="Fetched page to search for a canonical link")
def canonicalize_command(url: str, html_file) -> None:
    """Print the canonical dedup key for URL."""
    try:
        click.echo(canonicalize(url, html_file.read() if html_file else None))
    except InvalidUrl as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command("feed")
@click.argument("site_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sort", type=click.Choice([m.value for m in SortMode]), default=SortMode.LATEST.value,
              show_default=True, help="Feed sort mode")
@click.option("--tag", help="Only items tagged with this taxonomy slug")
@click.option("--content-type", help="Only items of this content type")
@click.option("--limit", type=int, default=20, show_default=True, help="Page size")
@click.option("--offset", type=int, default=0, show_default=True, help="Page offset")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def feed_command(site_file: Path, sort: str, tag: str | None, content_type: str | None,
                 limit: int, offset: int, output_json: bool) -> None:
    """Ingest the entries of SITE_FILE and print one page of its feed."""
    try:
        settings = get_settings()
        if not validate_config(settings):
            click.echo("Error: configuration validation failed. Run `curator validate` for details.", err=True)
            sys.exit(1)

        document = load_site_document(site_file)
        pipeline, site, reports = run_site_document(document, settings)

        now = datetime.now(UTC)
        filters = FeedFilters.from_mapping({"tag": tag, "content_type": content_type, "sort": sort})
        items = pipeline.feed(site, filters, limit, offset, now)

        ranked = filters.sort is SortMode.RANKED
        rows = [
            item_to_dict(
                item,
                rank=offset + index,
                score=pipeline.ranker.score_item(item, now).total if ranked else None,
            )
            for index, item in enumerate(items, start=1)
        ]

        if output_json:
            click.echo(json.dumps(rows, indent=2, default=str))
        else:
            skipped = sum(r.skipped for r in reports)
            display_feed(rows, f"{document.name or f'Site {site.id}'} ({sort}, {skipped} skipped)")

    except Exception as e:
        logger.error("cli_failed", **log_error(e, context="feed"))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
