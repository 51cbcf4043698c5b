"""Tolerant RSS 2.0 / Atom extraction into canonical feed items."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Iterator, Protocol
from zoneinfo import ZoneInfo

import structlog
from selectolax.parser import HTMLParser

from ..errors import EntryParseError
from ..models import FeedItem

ENTITIES = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
    "&nbsp;": " ",
}

_FLAGS = re.IGNORECASE | re.DOTALL
_ENTITY_RE = re.compile(r"&[a-z0-9#]+;", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_ATOM_FEED_RE = re.compile(r"<feed\b[^>]*\bxmlns=[\"']http://www\.w3\.org/2005/Atom[\"']", re.IGNORECASE)
_RSS_ITEM_RE = re.compile(r"<item\b[^>]*>.*?</item>", _FLAGS)
_ATOM_ENTRY_RE = re.compile(r"<entry\b[^>]*>.*?</entry>", _FLAGS)
_HTML_TYPE = r"[^>]*\btype=[\"']?(?:x?html)[\"']?[^>]*"


def _tag(name: str, attrs: str = r"[^>]*") -> tuple[re.Pattern[str], re.Pattern[str]]:
    """CDATA and plain-text patterns for ``<name ...>value</name>``."""

    cdata = re.compile(rf"<{name}\b{attrs}>\s*<!\[CDATA\[(.*?)\]\]>\s*</{name}>", _FLAGS)
    plain = re.compile(rf"<{name}\b{attrs}>(.*?)</{name}>", _FLAGS)
    return cdata, plain


_RSS_TITLE = _tag("title")
_RSS_LINK = _tag("link")
_RSS_DESCRIPTION = _tag("description")
_RSS_CONTENT_ENCODED = _tag("content:encoded")
_RSS_GUID = _tag("guid")
_RSS_PUBDATE = _tag("pubDate")

_ATOM_TITLE_HTML = _tag("title", _HTML_TYPE)
_ATOM_TITLE = _tag("title")
_ATOM_CONTENT_HTML = _tag("content", _HTML_TYPE)
_ATOM_CONTENT = _tag("content")
_ATOM_SUMMARY_HTML = _tag("summary", _HTML_TYPE)
_ATOM_SUMMARY = _tag("summary")
_ATOM_ID = _tag("id")
_ATOM_PUBLISHED = _tag("published")
_ATOM_UPDATED = _tag("updated")
_ATOM_LINK_RE = re.compile(r"<link\b[^>]*?\bhref=[\"'](.*?)[\"'][^>]*>", _FLAGS)
_ATOM_ALTERNATE_RE = re.compile(
    r"<link\b(?=[^>]*\brel=[\"']alternate[\"'])[^>]*?\bhref=[\"'](.*?)[\"'][^>]*>", _FLAGS
)


def decode_entities(text: str) -> str:
    """Decode the small fixed entity set feeds commonly double-escape."""

    return _ENTITY_RE.sub(lambda match: ENTITIES.get(match.group(0).lower(), match.group(0)), text)


def strip_markup(text: str) -> str:
    """Plain text of an HTML fragment; entities are always decoded by the parser."""

    if not text.strip():
        return ""
    tree = HTMLParser(text)
    body = tree.body if tree.body is not None else tree.root
    plain = body.text(separator=" ") if body is not None else ""
    return _WHITESPACE_RE.sub(" ", plain).strip()


def _first(fragment: str, *patterns: tuple[re.Pattern[str], re.Pattern[str]]) -> str | None:
    """Return the first matching value, trying CDATA before plain text per tag."""

    for cdata, plain in patterns:
        for pattern in (cdata, plain):
            match = pattern.search(fragment)
            if match:
                return match.group(1)
    return None


class Normalizer(Protocol):
    """Turns a raw feed payload into at most ``max_items`` feed items."""

    def normalize(self, payload: str, feed_url: str = "") -> list[FeedItem]:
        ...


class FeedNormalizer:
    """Pattern-based extractor for RSS 2.0 and Atom 1.0 payloads.

    Malformed entries are dropped one by one; a payload that is not a feed at all
    simply yields no items.
    """

    def __init__(
        self,
        max_items: int = 10,
        description_limit: int = 200,
        display_timezone: str = "UTC",
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.max_items = max_items
        self.description_limit = description_limit
        self.timezone = ZoneInfo(display_timezone)
        self.logger = logger or structlog.get_logger("feed_relay.normalizer").bind(component="normalizer")

    # ------------------------------------------------------------------
    def normalize(self, payload: str, feed_url: str = "") -> list[FeedItem]:
        items: list[FeedItem] = []
        for fragment, parse in self._entries(payload):
            try:
                items.append(parse(fragment, feed_url))
            except EntryParseError as exc:
                self.logger.debug("entry_dropped", feed_url=feed_url, reason=str(exc))
                continue
            if len(items) >= self.max_items:
                break
        return items

    @staticmethod
    def is_atom(payload: str) -> bool:
        return _ATOM_FEED_RE.search(payload) is not None

    def _entries(self, payload: str) -> Iterator[tuple[str, Callable[[str, str], FeedItem]]]:
        if self.is_atom(payload):
            for match in _ATOM_ENTRY_RE.finditer(payload):
                yield match.group(0), self._parse_atom_entry
        else:
            for match in _RSS_ITEM_RE.finditer(payload):
                yield match.group(0), self._parse_rss_item

    # ------------------------------------------------------------------
    def _parse_rss_item(self, fragment: str, feed_url: str) -> FeedItem:
        title = decode_entities((_first(fragment, _RSS_TITLE) or "").strip())
        link = decode_entities((_first(fragment, _RSS_LINK) or "").strip())
        description = _first(fragment, _RSS_DESCRIPTION, _RSS_CONTENT_ENCODED)
        guid = (_first(fragment, _RSS_GUID) or "").strip()
        published = _first(fragment, _RSS_PUBDATE)
        return self._build_item(feed_url, title, link, guid, description, published)

    def _parse_atom_entry(self, fragment: str, feed_url: str) -> FeedItem:
        title = decode_entities((_first(fragment, _ATOM_TITLE_HTML, _ATOM_TITLE) or "").strip())
        link_match = _ATOM_ALTERNATE_RE.search(fragment) or _ATOM_LINK_RE.search(fragment)
        link = decode_entities(link_match.group(1).strip()) if link_match else ""
        description = _first(
            fragment,
            _ATOM_CONTENT_HTML,
            _ATOM_CONTENT,
            _ATOM_SUMMARY_HTML,
            _ATOM_SUMMARY,
        )
        guid = (_first(fragment, _ATOM_ID) or "").strip()
        published = _first(fragment, _ATOM_PUBLISHED, _ATOM_UPDATED)
        return self._build_item(feed_url, title, link, guid, description, published)

    def _build_item(
        self,
        feed_url: str,
        title: str,
        link: str,
        guid: str,
        description: str | None,
        published: str | None,
    ) -> FeedItem:
        guid = guid or link or title
        if not title:
            raise EntryParseError("entry has no title")
        if not guid:
            raise EntryParseError("entry has no identifier")
        summary = ""
        if description:
            summary = strip_markup(decode_entities(description))[: self.description_limit]
        return FeedItem(
            feed_url=feed_url,
            guid=guid,
            title=title,
            link=link,
            published_at=self.render_date(published) if published else "",
            description=summary,
        )

    # ------------------------------------------------------------------
    def render_date(self, raw: str) -> str:
        """Render a feed timestamp for display; unparseable input is returned as-is."""

        text = raw.strip()
        parsed = _parse_timestamp(text)
        if parsed is None:
            return text
        local = parsed.astimezone(self.timezone)
        return f"{local.year}/{local.month}/{local.day} {local:%H:%M:%S}"


def _parse_timestamp(text: str) -> datetime | None:
    if not text:
        return None
    iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        candidate = datetime.fromisoformat(iso)
    except ValueError:
        try:
            candidate = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return None
    if candidate.tzinfo is None:
        candidate = candidate.replace(tzinfo=timezone.utc)
    return candidate


__all__ = ["ENTITIES", "FeedNormalizer", "Normalizer", "decode_entities", "strip_markup"]
