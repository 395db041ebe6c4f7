"""Utility helper functions."""

from __future__ import annotations

import itertools
import re
import time
from typing import Optional
from urllib.parse import urlparse

_sequence = itertools.count()


def new_session_id() -> str:
    """Time-derived session id; the trailing counter keeps ids unique within a millisecond."""
    return f"{int(time.time() * 1000)}{next(_sequence) % 1000:03d}"


def url_matches(url: str, pattern: Optional[str]) -> bool:
    """Regex search of ``pattern`` against ``url``; an empty pattern never matches."""
    if not url or not pattern:
        return False
    return re.search(pattern, url) is not None


def same_site(url: str, base_url: str) -> bool:
    """True if ``url`` is on the host of ``base_url`` (``www.`` ignored)."""
    host = (urlparse(url).hostname or "").lower()
    base = (urlparse(base_url).hostname or "").lower()
    if not host or not base:
        return False
    return host.removeprefix("www.") == base.removeprefix("www.")


def match_pattern_for(base_url: str) -> str:
    """Chrome tab-query match pattern covering every page of a site."""
    parsed = urlparse(base_url)
    return f"{parsed.scheme}://{parsed.netloc}/*"


def normalize_key(value: Optional[str]) -> str:
    return (value or "").strip().lower()
