#!/usr/bin/env python3
"""
Data records and the in-memory article cache.

The cache holds the most recently merged article list together with the
instant of the last write and the reference-zone date of the last successful
fetch. Every mutation swaps in a complete snapshot in a single assignment, so
readers never observe a partially updated cache.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from config import get_logger

# Module-specific logger
logger = get_logger("models")


@dataclass(frozen=True)
class Article:
    """A single normalized feed entry."""

    headline: str = ""
    summary: str = ""
    date: str = ""
    link: str = ""
    source: str = ""

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class CacheSnapshot:
    """Immutable view of the cache at one point in time.

    Attributes:
        articles: Articles sorted newest first.
        timestamp: Unix time (seconds) of the last write, 0 when never written.
        last_fetch_date: Reference-zone calendar date (YYYY-MM-DD) of the last
            successful fetch, or None.
    """

    articles: Tuple[Article, ...] = field(default_factory=tuple)
    timestamp: float = 0
    last_fetch_date: Optional[str] = None

    @property
    def fetched_at(self) -> Optional[str]:
        """ISO-8601 UTC instant of the last write."""
        if not self.timestamp:
            return None
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "articles": [article.to_dict() for article in self.articles],
            "lastFetch": self.last_fetch_date,
            "fetchedAt": self.fetched_at,
        }


class ArticleCache:
    """Process-wide article cache owned by the fetch coordinator."""

    def __init__(self) -> None:
        self._snapshot = CacheSnapshot()

    def snapshot(self) -> CacheSnapshot:
        """Return the current snapshot."""
        return self._snapshot

    @property
    def is_empty(self) -> bool:
        return not self._snapshot.articles

    def replace(self, articles: List[Article], now: datetime, today: str) -> CacheSnapshot:
        """Replace the whole cache with a new article list.

        Args:
            articles: Articles already sorted newest first.
            now: Instant of the write (any timezone).
            today: Reference-zone calendar date string of the fetch.
        """
        snapshot = CacheSnapshot(
            articles=tuple(articles),
            timestamp=now.timestamp(),
            last_fetch_date=today,
        )
        self._snapshot = snapshot
        logger.debug(f"Cache replaced with {len(snapshot.articles)} articles (date {today})")
        return snapshot

    def clear(self) -> None:
        """Reset the cache to its initial empty state."""
        self._snapshot = CacheSnapshot()
        logger.info("🧹 Article cache cleared")
