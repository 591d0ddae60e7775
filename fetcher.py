#!/usr/bin/env python3
"""
RSS feed fetcher and entry normalizer.

This module retrieves every configured feed once per cycle, parses it with
feedparser and normalizes entries into Article records. Each feed is isolated:
a network error, timeout, bad status or unparseable document is logged and the
feed contributes no articles, but the overall fetch never fails.
"""

from asyncio import get_running_loop, Semaphore, gather, TimeoutError
from calendar import timegm
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import partial
from typing import Any, List, Optional, Sequence, Tuple

from aiohttp import ClientSession, ClientError, ClientTimeout
import feedparser
from feedparser.datetimes import _parse_date as _parse_feed_date

from config import config, get_logger
from errors import FeedFetchError
from models import Article
from telemetry import init_telemetry, trace_span
from utils import html_to_text

# Module-specific logger
logger = get_logger("fetcher")
init_telemetry("news-briefing-fetcher")

# HTTP status codes
HTTP_OK = 200

# Max concurrent feed downloads
FETCH_CONCURRENCY = 5

EPOCH = 0.0


def _parse_with_feedparser(value: str) -> Optional[datetime]:
    # feedparser understands the RFC 822 and W3C-DTF variants feeds emit in practice
    try:
        parsed = _parse_feed_date(value)
        if parsed:
            return datetime.fromtimestamp(timegm(parsed), tz=timezone.utc)
    except (ValueError, TypeError, OverflowError, OSError):
        return None
    return None


def _parse_with_email_utils(value: str) -> Optional[datetime]:
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None


def _parse_with_isoformat(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


DATE_PARSERS = (_parse_with_feedparser, _parse_with_email_utils, _parse_with_isoformat)


def parse_article_date(date_str: Optional[str]) -> float:
    """Parse an article date string into a Unix timestamp.

    Accepts RFC 822 dates (RSS pubDate) and ISO-8601 / W3C-DTF dates (Atom).
    Naive values are taken as UTC. Empty or unparseable values map to the epoch.
    """
    if not date_str:
        return EPOCH
    value = date_str.strip()
    if not value:
        return EPOCH

    for parser in DATE_PARSERS:
        dt = parser(value)
        if dt is not None:
            break
    else:
        logger.debug(f"Unparseable article date '{date_str}', using epoch")
        return EPOCH

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.timestamp()
    except (OverflowError, OSError, ValueError):
        return EPOCH


def sort_articles(articles: Sequence[Article]) -> List[Article]:
    """Return articles sorted newest first; undated articles keep their relative order at the end."""
    return sorted(articles, key=lambda article: parse_article_date(article.date), reverse=True)


class FeedFetcher:
    def __init__(self, user_agent: Optional[str] = None, timeout: Optional[int] = None) -> None:
        self.executor = ThreadPoolExecutor()
        self.user_agent = user_agent or config.USER_AGENT
        self.timeout = timeout or config.HTTP_TIMEOUT

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in a thread pool executor."""
        loop = get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    async def fetch_all(self, urls: Sequence[str]) -> List[Article]:
        """Fetch every feed and return their articles concatenated in URL order (unsorted)."""
        articles, _ = await self.fetch_all_with_stats(urls)
        return articles

    @trace_span(
        "fetch_all_feeds",
        tracer_name="fetcher",
        attr_from_args=lambda self, urls: {"feed.count": len(urls)},
    )
    async def fetch_all_with_stats(self, urls: Sequence[str]) -> Tuple[List[Article], int]:
        """Fetch feeds concurrently and report how many succeeded.

        Returns:
            (articles, succeeded) where articles are concatenated in URL order.
        """
        logger.info(f"Starting feed fetching for {len(urls)} feeds")
        semaphore = Semaphore(FETCH_CONCURRENCY)

        async with ClientSession(timeout=ClientTimeout(total=self.timeout)) as session:

            async def fetch_with_semaphore(url: str) -> Optional[List[Article]]:
                async with semaphore:
                    try:
                        return await self.fetch_feed(url, session)
                    except FeedFetchError as e:
                        logger.warning(f"Failed to fetch or parse feed: {e}")
                        return None

            results = await gather(*(fetch_with_semaphore(url) for url in urls))

        articles: List[Article] = []
        succeeded = 0
        for items in results:
            if items is None:
                continue
            succeeded += 1
            articles.extend(items)

        logger.info(f"Fetched {len(articles)} articles from {succeeded}/{len(urls)} feeds")
        return articles, succeeded

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, url, session: {"feed.url": url},
    )
    async def fetch_feed(self, url: str, session: ClientSession) -> List[Article]:
        """Fetch and normalize a single feed.

        Raises:
            FeedFetchError: On any retrieval or parsing failure.
        """
        content = await self._download(url, session)
        return await self.run_in_executor(self.parse_feed, content, url)

    async def _download(self, url: str, session: ClientSession) -> bytes:
        try:
            async with session.get(
                url,
                headers={'User-Agent': self.user_agent},
                max_redirects=config.MAX_REDIRECTS,
            ) as response:
                if response.status != HTTP_OK:
                    raise FeedFetchError(url, f"HTTP {response.status}")
                return await response.read()
        except TimeoutError as e:
            # aiohttp surfaces timeouts as asyncio.TimeoutError
            raise FeedFetchError(url, f"Timed out after {self.timeout}s") from e
        except ClientError as e:
            raise FeedFetchError(url, f"Network error: {type(e).__name__}: {e}") from e
        except (OSError, ValueError) as e:
            raise FeedFetchError(url, f"Unexpected error: {e}") from e

    def parse_feed(self, content: bytes, url: str = "") -> List[Article]:
        """Parse a feed document into articles (runs in executor).

        Raises:
            FeedFetchError: If the document is not a usable feed.
        """
        feed = feedparser.parse(content, sanitize_html=True, resolve_relative_uris=True)
        feed_meta = feed.get('feed', {}) or {}
        entries = feed.get('entries', []) or []

        if feed.get('bozo') and not entries and not feed_meta.get('title'):
            reason = feed.get('bozo_exception', 'unrecognized document')
            raise FeedFetchError(url, f"Malformed feed: {reason}")
        if feed.get('bozo'):
            logger.debug(f"Feed parsing warning for {url}: {feed.get('bozo_exception')}")

        source = feed_meta.get('title') or ''
        logger.info(f"Feed {url} parsed as {feed.get('version') or 'unknown'} with {len(entries)} entries")
        return [self.normalize_entry(entry, source) for entry in entries]

    def normalize_entry(self, entry, source: str = "") -> Article:
        """Map a feedparser entry to an Article; every missing field becomes an empty string."""
        return Article(
            headline=self._text(entry.get('title')),
            summary=self.extract_snippet(entry),
            date=self._text(entry.get('published') or entry.get('updated')),
            link=self._text(entry.get('link')),
            source=source or '',
        )

    def extract_snippet(self, entry) -> str:
        """Plain-text snippet of the entry content, falling back to the summary field."""
        content = entry.get('content')
        if content and isinstance(content, list):
            for part in content:
                value = part.get('value') if hasattr(part, 'get') else None
                snippet = html_to_text(value)
                if snippet:
                    return snippet

        summary = entry.get('summary') or entry.get('description')
        snippet = html_to_text(summary)
        if snippet:
            return snippet
        return self._text(summary)

    def _text(self, value: Any) -> str:
        if value is None:
            return ''
        return str(value).strip()

    async def close(self) -> None:
        """Release the parsing thread pool."""
        self.executor.shutdown(wait=False)
