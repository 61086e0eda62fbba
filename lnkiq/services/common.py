from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import urlparse

from dateutil import parser as dt_parser


def is_valid_url(url: str) -> bool:
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return bool(parsed.scheme) and bool(parsed.netloc)


def clean_tags(values) -> list[str]:
    if not isinstance(values, (list, tuple, set)):
        return []
    seen: set[str] = set()
    tags: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        name = value.strip()
        if not name or name in seen:
            continue
        seen.add(name)
        tags.append(name)
    return tags


def merge_tags(first, second) -> list[str]:
    return clean_tags(list(first or []) + list(second or []))


def parse_tags(raw: str) -> list[str]:
    if not raw:
        return []
    return clean_tags(raw.replace(";", ",").split(","))


def parse_client_time(value: str | None) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = dt_parser.isoparse(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
