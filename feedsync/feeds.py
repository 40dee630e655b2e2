"""
Feed Parser - Fetch and parse RSS/Atom feeds.

Handles:
- RSS 2.0 and Atom 1.0 formats
- Timeout-bounded fetches with per-domain rate limiting
- Parsing off the event loop
- Content fingerprints used for deduplication
"""

import asyncio
import hashlib
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import urljoin, urlparse

import aiohttp
import feedparser
from bs4 import BeautifulSoup

from .exceptions import FeedParseError, FeedTransportError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass
class ParsedItem:
    """Represents a single item/entry from a feed."""
    external_id: str | None
    title: str
    body: str
    published_at: datetime | None = None
    author: str | None = None
    image_url: str | None = None


@dataclass
class ParsedFeed:
    """Represents a parsed feed."""
    url: str
    title: str | None
    items: list[ParsedItem] = field(default_factory=list)


def content_fingerprint(body: str | None, external_id: str | None = None, title: str | None = None) -> str:
    """
    SHA-256 of the trimmed, whitespace-collapsed body.

    Body-less items are fingerprinted from their external id and title so
    they do not all collapse onto the hash of the empty string.
    """
    normalized = _WHITESPACE.sub(" ", (body or "").strip())
    if not normalized:
        normalized = f"{external_id or ''}\n{(title or '').strip()}"
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def _entry_datetime(entry) -> datetime | None:
    """Publish date of an entry as an aware UTC datetime."""
    for attr in ("published_parsed", "updated_parsed"):
        parsed = entry.get(attr)
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                continue
    return None


def _entry_image(entry, body: str, base_url: str) -> str | None:
    """First image: media thumbnail/content, enclosure, then an <img> in the body."""
    for key in ("media_thumbnail", "media_content"):
        media = entry.get(key)
        if media and media[0].get("url"):
            return media[0]["url"]

    for enclosure in entry.get("enclosures", []):
        if enclosure.get("type", "").startswith("image/") and enclosure.get("href"):
            return enclosure["href"]

    if body and "<img" in body:
        soup = BeautifulSoup(body, "html.parser")
        img = soup.find("img", src=True)
        if img:
            return urljoin(base_url, img["src"])
    return None


def parse_feed_document(url: str, content: str | bytes) -> ParsedFeed:
    """Parse feed content using feedparser. Raises FeedParseError."""
    parsed = feedparser.parse(content)

    # Check for parse errors
    if parsed.bozo and not parsed.entries and not parsed.feed.get("title"):
        raise FeedParseError(f"Failed to parse feed: {parsed.bozo_exception}")

    items = []
    for entry in parsed.entries:
        # Extract content (prefer content over summary)
        body = ""
        if entry.get("content"):
            body = entry.content[0].get("value", "")
        elif entry.get("summary"):
            body = entry.summary
        elif entry.get("description"):
            body = entry.description

        link = entry.get("link")
        if not link:
            for candidate in entry.get("links", []):
                if candidate.get("rel") == "alternate" or candidate.get("type") == "text/html":
                    link = candidate.get("href")
                    break

        items.append(ParsedItem(
            external_id=entry.get("id") or link or None,
            title=(entry.get("title") or "Untitled").strip(),
            body=body,
            published_at=_entry_datetime(entry),
            author=entry.get("author"),
            image_url=_entry_image(entry, body, link or url),
        ))

    return ParsedFeed(
        url=url,
        title=parsed.feed.get("title"),
        items=items,
    )


class FeedParser:
    """Fetches and parses RSS/Atom feeds with rate limiting."""

    def __init__(self, timeout: int = 30, user_agent: str | None = None):
        self.timeout = timeout
        self.user_agent = user_agent or "feedsync/1.0"
        self._domain_last_fetch: dict[str, float] = {}
        self._min_interval = 1.0  # Minimum seconds between requests to same domain

    async def fetch(self, url: str) -> ParsedFeed:
        """
        Fetch and parse a feed URL.

        Raises FeedTransportError for timeouts, network failures and HTTP
        errors, FeedParseError for documents that are not feeds.
        """
        domain = urlparse(url).netloc
        await self._rate_limit(domain)

        headers = {"User-Agent": self.user_agent}

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as resp:
                    resp.raise_for_status()
                    content = await resp.read()
        except asyncio.TimeoutError as e:
            raise FeedTransportError(f"Timed out after {self.timeout}s fetching {url}") from e
        except aiohttp.ClientResponseError as e:
            raise FeedTransportError(f"HTTP {e.status} fetching {url}") from e
        except aiohttp.ClientError as e:
            raise FeedTransportError(f"Network error fetching {url}: {e}") from e

        # feedparser is synchronous and can be slow on large documents
        return await asyncio.to_thread(parse_feed_document, url, content)

    async def _rate_limit(self, domain: str):
        """Ensure minimum interval between requests to same domain."""
        now = time.time()
        if domain in self._domain_last_fetch:
            elapsed = now - self._domain_last_fetch[domain]
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
        self._domain_last_fetch[domain] = time.time()
