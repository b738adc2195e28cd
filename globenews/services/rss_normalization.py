from __future__ import annotations

import calendar
import re
from datetime import datetime, timezone
from html import unescape
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from globenews.models.news_items import RawItem

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")

SUMMARY_MAX_LENGTH = 500


class RSSNormalizationError(Exception):
    """
    Recoverable normalization failure for a single RSS/Atom entry.
    Logged and counted by the caller; never aborts the feed.
    """

    def __init__(self, message: str, entry_raw: Dict[str, Any] | None = None):
        super().__init__(message)
        self.entry_raw = entry_raw or {}


def detect_feed_type(parsed_feed: Any) -> str:
    """
    Detect the source feed format.
    Returns:
        'rss', 'atom' or 'unknown'
    """
    if isinstance(parsed_feed, dict):
        version = str(parsed_feed.get("version") or "").lower()
    else:
        version = str(getattr(parsed_feed, "version", "") or "").lower()

    if version.startswith("rss"):
        return "rss"
    if version.startswith("atom"):
        return "atom"
    return "unknown"


def _struct_time_to_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def strip_html(value: str) -> str:
    text = _HTML_TAG_RE.sub(" ", value or "")
    text = unescape(text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip()


def trim_summary(value: str, max_length: int = SUMMARY_MAX_LENGTH) -> str:
    value = value.strip()
    if len(value) <= max_length:
        return value
    return value[: max_length - 1].rstrip() + "…"


def _first_content_value(entry: Dict[str, Any]) -> str:
    content = entry.get("content")
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict):
                val = block.get("value")
                if isinstance(val, str) and val.strip():
                    return val
    return ""


def _extract_url(entry: Dict[str, Any]) -> str:
    link = entry.get("link")
    if isinstance(link, str) and link.strip():
        return link.strip()
    for link_entry in entry.get("links") or []:
        if not isinstance(link_entry, dict):
            continue
        rel = str(link_entry.get("rel") or "alternate").lower()
        href = link_entry.get("href")
        if rel == "alternate" and isinstance(href, str) and href.strip():
            return href.strip()
    entry_id = entry.get("id")
    if isinstance(entry_id, str) and entry_id.startswith(("http://", "https://")):
        return entry_id.strip()
    return ""


def _extract_summary(entry: Dict[str, Any]) -> Optional[str]:
    summary = entry.get("summary") or entry.get("description")
    if not (isinstance(summary, str) and summary.strip()):
        summary = _first_content_value(entry)
    text = strip_html(summary or "")
    return trim_summary(text) if text else None


def _extract_image(entry: Dict[str, Any]) -> Optional[str]:
    # media:content, then media:thumbnail, then an image enclosure
    for key in ("media_content", "media_thumbnail"):
        for media in entry.get(key) or []:
            if isinstance(media, dict) and media.get("url"):
                return str(media["url"])
    for enclosure in entry.get("enclosures") or []:
        if not isinstance(enclosure, dict):
            continue
        href = enclosure.get("href") or enclosure.get("url")
        kind = str(enclosure.get("type") or "image/")
        if href and kind.startswith("image/"):
            return str(href)
    return None


def _extract_categories(entry: Dict[str, Any]) -> List[str]:
    terms: List[str] = []
    for tag in entry.get("tags") or []:
        term = tag.get("term") if isinstance(tag, dict) else None
        if isinstance(term, str) and term.strip():
            terms.append(term.strip())
    return terms


def _extract_published_at(entry: Dict[str, Any]) -> datetime:
    return (
        _struct_time_to_datetime(entry.get("published_parsed"))
        or _struct_time_to_datetime(entry.get("updated_parsed"))
        or datetime.now(timezone.utc)
    )


def normalize_entry(feed_name: str, entry: Dict[str, Any]) -> RawItem:
    title = strip_html(str(entry.get("title") or ""))
    url = _extract_url(entry)
    if not title or not url:
        raise RSSNormalizationError("missing_title_or_url", entry_raw=entry)
    try:
        return RawItem(
            title=title,
            summary=_extract_summary(entry),
            url=url,
            timestamp=_extract_published_at(entry),
            source_name=feed_name,
            image_url=_extract_image(entry),
            theme_hints=_extract_categories(entry),
        )
    except ValidationError as exc:
        raise RSSNormalizationError(str(exc), entry_raw=entry) from exc


def normalize_feed_entries(
    parsed_feed: Any,
    feed_name: str,
) -> Tuple[List[RawItem], List[RSSNormalizationError]]:
    """
    Map every entry of a feedparser result to a RawItem.

    Returns (items, errors); a bad entry lands in `errors` and the rest of
    the feed is still normalized.
    """
    items: List[RawItem] = []
    errors: List[RSSNormalizationError] = []
    if isinstance(parsed_feed, dict):
        entries = parsed_feed.get("entries") or []
    else:
        entries = getattr(parsed_feed, "entries", []) or []
    for entry in entries:
        try:
            items.append(normalize_entry(feed_name, entry))
        except RSSNormalizationError as err:
            errors.append(err)
    return items, errors
