"""URL helper utilities."""

from __future__ import annotations

from typing import Iterable, List
from urllib.parse import urlparse


def is_absolute_url(value: str) -> bool:
    """Return True when ``value`` parses as a well-formed absolute URL."""

    if not value or not value.strip():
        return False
    try:
        parsed = urlparse(value.strip())
        # .port raises on malformed ports such as "host:abc"
        parsed.port
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc) and bool(parsed.hostname)


def filter_valid_urls(urls: Iterable[str]) -> List[str]:
    """Keep well-formed absolute URLs, stripped, in their original order."""

    return [url.strip() for url in urls if isinstance(url, str) and is_absolute_url(url)]


__all__ = ["is_absolute_url", "filter_valid_urls"]
