from __future__ import annotations

import calendar
import re
from datetime import datetime, timezone
from typing import Any

import feedparser
import requests

from content_engine.models.errors import ExternalServiceError, ParseError
from content_engine.models.schemas import FeedEntry


FEED_HEADERS = {
    "User-Agent": "ContentEngine/1.0",
    "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml",
}

_IMG_RE = re.compile(r"<img[^>]+src=[\"']([^\"']+)[\"']", re.IGNORECASE)
_IMAGE_EXT_RE = re.compile(r"\.(jpe?g|png|gif|webp|avif|svg)", re.IGNORECASE)


def fetch_feed(url: str, timeout: int = 15) -> bytes:
    try:
        r = requests.get(url, headers=FEED_HEADERS, timeout=timeout)
        r.raise_for_status()
    except requests.RequestException as e:
        raise ExternalServiceError(f"Feed fetch failed for {url}: {e}") from e
    return r.content


def _struct_to_dt(st) -> datetime | None:
    if not st:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(st), tz=timezone.utc)
    except (OverflowError, TypeError, ValueError):
        return None


def extract_image_url(entry: Any) -> str | None:
    # 1. image enclosures, or enclosures that look like images
    for enc in entry.get("enclosures", []) or []:
        href = enc.get("href") or enc.get("url")
        if not href:
            continue
        if (enc.get("type") or "").startswith("image/") or _IMAGE_EXT_RE.search(href):
            return href

    # 2. <media:content>, 3. <media:thumbnail>
    for key in ("media_content", "media_thumbnail"):
        for m in entry.get(key, []) or []:
            if m.get("url"):
                return m["url"]

    # 4. first <img> in the body
    html = _entry_content(entry) or ""
    m = _IMG_RE.search(html)
    if m:
        return m.group(1)
    return None


def _entry_content(entry: Any) -> str | None:
    content = entry.get("content") or []
    if content and content[0].get("value"):
        return content[0]["value"]
    return entry.get("summary") or None


def normalize_entry(entry: Any) -> FeedEntry:
    link = entry.get("link") or None
    title = entry.get("title") or ""
    guid = entry.get("id") or link or title
    return FeedEntry(
        guid=guid,
        title=title,
        link=link,
        content=_entry_content(entry),
        published_at=_struct_to_dt(entry.get("published_parsed") or entry.get("updated_parsed")),
        image_url=extract_image_url(entry),
    )


def parse_feed(body: bytes | str) -> list[FeedEntry]:
    parsed = feedparser.parse(body)
    if parsed.bozo and not parsed.entries:
        raise ParseError(f"Feed could not be parsed: {parsed.get('bozo_exception')}")
    entries = [normalize_entry(e) for e in parsed.entries]
    # entries without any identity cannot be deduplicated
    return [e for e in entries if e.guid]


def fetch_and_parse(url: str, timeout: int = 15) -> list[FeedEntry]:
    return parse_feed(fetch_feed(url, timeout=timeout))
