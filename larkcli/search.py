"""Searching the local envelope cache."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from .mailcache import SearchOptions, SearchResult, open_cache
from .mailconfig import PathLike

_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def _parse_date(text: str) -> datetime:
    """Parse a YYYY-MM-DD date as midnight UTC."""
    if not _DATE_RE.fullmatch(text):
        raise ValueError(f"cannot parse {text!r} as a date (expected YYYY-MM-DD)")
    year, month, day = (int(part) for part in text.split("-"))
    return datetime(year, month, day, tzinfo=timezone.utc)


def search(mailbox: str, opts: SearchOptions | None, config_dir: PathLike) -> SearchResult:
    """Search the cache in *config_dir* for envelopes of *mailbox* matching *opts*."""
    with open_cache(config_dir) as cache:
        return cache.search(mailbox, opts)


def parse_search_options(
    sender: str = "",
    subject: str = "",
    since: str = "",
    before: str = "",
    limit: int = 0,
) -> SearchOptions:
    """Build search options from command-line style values.

    *since* and *before* are YYYY-MM-DD dates (UTC); empty strings mean no bound.
    """
    return SearchOptions(
        sender=sender,
        subject=subject,
        since=_parse_date(since) if since else None,
        before=_parse_date(before) if before else None,
        limit=limit,
    )