"""
URL canonicalization for comparing citation, registry and metadata URLs.

Normalizations: lowercase scheme and host, drop default ports, drop the
fragment, strip a trailing slash (except the root path), percent-decode the
path and sort query parameters.
"""

from typing import Optional
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit

# Markers written by hand-authored "sources" in place of a URL
INVALID_URL_MARKERS = ("multiple_sources_synthesis", "synthesis:")

DEFAULT_PORTS = {"http": 80, "https": 443}


def _is_marker(url: str) -> bool:
    return url == INVALID_URL_MARKERS[0] or url.startswith(INVALID_URL_MARKERS[1])


def normalize_url(url: Optional[str]) -> Optional[str]:
    """
    Normalize a URL for equality comparison.

    Returns the input unchanged when it can't be parsed as a URL.
    """
    if not url or not isinstance(url, str):
        return url
    url = url.strip()
    if _is_marker(url):
        return url

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return url

    if not parts.scheme or not parts.hostname:
        return url

    scheme = parts.scheme.lower()
    netloc = parts.hostname.lower()
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = unquote(parts.path) or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"
    if not path.startswith("/"):
        path = "/" + path

    normalized = f"{scheme}://{netloc}{path}"

    query = sorted(parse_qsl(parts.query, keep_blank_values=True))
    if query:
        normalized += "?" + urlencode(query)

    return normalized


def urls_equal(url1: Optional[str], url2: Optional[str]) -> bool:
    return normalize_url(url1) == normalize_url(url2)


def is_valid_url(url: Optional[str]) -> bool:
    """True for http(s) URLs with a host; False for synthesis markers."""
    if not url or not isinstance(url, str) or _is_marker(url):
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in ("http", "https") and bool(parts.hostname)


def is_homepage(url: Optional[str]) -> bool:
    """True when the URL points at a site root rather than a specific page."""
    if not is_valid_url(url):
        return False
    parts = urlsplit(url.strip())
    return parts.path in ("", "/") and not parts.query
