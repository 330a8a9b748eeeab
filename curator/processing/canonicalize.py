"""
URL canonicalization for item deduplication.

The canonical key of an item is derived from its raw URL by:
1. Validating it is an absolute HTTP(S) URL with a host
2. Preferring the page's own <link rel="canonical"> when HTML is available
3. Lowercasing scheme and host (path, query and fragment keep their case)
4. Removing tracking query parameters
5. Removing trailing slashes from the path (the root path keeps its slash)

Two raw URLs that canonicalize to the same key are the same item within a site.
"""

from urllib.parse import SplitResult, urljoin, urlsplit, urlunsplit

from selectolax.lexbor import LexborHTMLParser

from ..logging import get_logger

logger = get_logger(__name__)

ALLOWED_SCHEMES = ("http", "https")

TRACKING_PARAMS = frozenset({
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "ref",
    "source",
    "fbclid",
    "gclid",
    "mc_cid",
    "mc_eid",
})

# Characters browsers refuse in a host name
FORBIDDEN_HOST_CHARS = frozenset('<>"{}|\\^`')


class InvalidUrl(ValueError):
    """Raised for empty, unparseable, non-HTTP(S) or hostless URLs.

    URLs containing whitespace or control characters, and hosts containing
    characters no host name may carry, are rejected too.
    """


def _parse(url: str) -> SplitResult:
    """Split ``url`` and reject anything that cannot be an item URL."""
    if any(ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7F for ch in url):
        raise InvalidUrl(f"URL contains whitespace or control characters: {url!r}")

    try:
        parts = urlsplit(url)
        parts.port  # raises ValueError on a malformed port
    except ValueError as e:
        raise InvalidUrl(f"Invalid URL {url!r}: {e}") from e

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidUrl(f"Must be a valid HTTP or HTTPS URL: {url!r}")

    if not parts.hostname or FORBIDDEN_HOST_CHARS.intersection(parts.hostname):
        raise InvalidUrl(f"Must include a valid hostname: {url!r}")

    return parts


def _normalize_netloc(netloc: str) -> str:
    """Lowercase host and port, leaving userinfo untouched."""
    userinfo, sep, hostport = netloc.rpartition("@")
    return f"{userinfo}{sep}{hostport.lower()}"


def extract_canonical_href(html_content: str) -> str | None:
    """Return the href of the first ``<link rel="canonical">`` in a page.

    Tag and attribute names are matched case-insensitively, attributes may
    appear in any order and ``rel`` may hold several tokens.
    """
    parser = LexborHTMLParser(html_content)
    for link in parser.css("link[href]"):
        rel = (link.attributes.get("rel") or "").lower().split()
        if "canonical" in rel:
            href = (link.attributes.get("href") or "").strip()
            if href:
                return href
    return None


def strip_tracking_params(query: str) -> str:
    """Drop tracking parameters, keeping every other segment verbatim and in order."""
    if not query:
        return ""
    kept = [
        segment for segment in query.split("&")
        if segment and segment.split("=", 1)[0] not in TRACKING_PARAMS
    ]
    return "&".join(kept)


def normalize_path(path: str) -> str:
    """Remove trailing slashes; ``/`` and the empty path are left alone."""
    if not path or path == "/":
        return path
    return path.rstrip("/") or "/"


def canonicalize(raw_url: str, html_content: str | None = None) -> str:
    """Compute the canonical dedup key for a raw URL.

    Args:
        raw_url: URL as handed over by ingestion
        html_content: Optional fetched page, searched for a canonical link

    Returns:
        Canonical URL string

    Raises:
        InvalidUrl: If the URL (or the canonical link it points to) is empty,
            unparseable, not HTTP(S), or has no host
    """
    url = (raw_url or "").strip()
    if not url:
        raise InvalidUrl("URL is empty")

    parts = _parse(url)

    if html_content:
        href = extract_canonical_href(html_content)
        if href:
            resolved = urljoin(url, href)
            logger.debug("canonical_link_found", url=url, canonical=resolved)
            parts = _parse(resolved)

    return urlunsplit((
        parts.scheme.lower(),
        _normalize_netloc(parts.netloc),
        normalize_path(parts.path),
        strip_tracking_params(parts.query),
        parts.fragment,
    ))
