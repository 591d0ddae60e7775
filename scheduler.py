#!/usr/bin/env python3
"""
Daily Feed Fetch Scheduler

This module owns the article cache and decides when it is refreshed:

- A background task sleeps until the next daily fetch hour in the reference
  timezone, runs a fetch cycle, then computes the following deadline
- An on-request catch-up check (`should_fetch_today`) covers a missed or late
  timer during the fetch hour
- Concurrent triggers share the fetch cycle already in flight
- A failing iteration is logged and the loop keeps running

Wall-clock fields are always re-derived in the reference timezone, so the
schedule stays at the configured hour across daylight-saving transitions.
"""

import asyncio
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import config, get_logger
from fetcher import FeedFetcher, sort_articles
from models import ArticleCache, CacheSnapshot
from telemetry import init_telemetry, trace_span
from utils import format_duration

# Module-specific logger
logger = get_logger("scheduler")

init_telemetry("news-briefing-scheduler")

# Extra delay after the computed deadline so the timer never fires early
WAKE_BUFFER_SECONDS = 1
# Pause before the next loop iteration after an unexpected failure
ERROR_BACKOFF_SECONDS = 60


class ReferenceClock:
    """Current time as seen in the reference timezone."""

    def __init__(self, timezone_name: Optional[str] = None, now_func: Optional[Callable[[], datetime]] = None):
        """Initialize the clock.

        Args:
            timezone_name: IANA zone name (default: config.SCHEDULER_TIMEZONE)
            now_func: Returns the current instant; naive values are taken as UTC.
        """
        self.timezone_name = timezone_name or config.SCHEDULER_TIMEZONE
        try:
            self.timezone: tzinfo = ZoneInfo(self.timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Invalid timezone '{self.timezone_name}', falling back to UTC")
            self.timezone_name = "UTC"
            self.timezone = timezone.utc
        self._now_func = now_func

    def now(self) -> datetime:
        current = self._now_func() if self._now_func else datetime.now(timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current.astimezone(self.timezone)

    def today(self, now: Optional[datetime] = None) -> str:
        """Reference-zone calendar date as YYYY-MM-DD."""
        current = now if now is not None else self.now()
        return current.astimezone(self.timezone).date().isoformat()


def next_fetch_time(now: datetime, hour: int, tz: tzinfo) -> datetime:
    """Next occurrence of `hour`:00:00.000 in `tz` strictly after the current hour.

    If the reference-zone hour is already at or past `hour`, the target is
    tomorrow; otherwise it is today. The result is an aware datetime in `tz`.
    """
    local = now.astimezone(tz)
    target_day = local.date()
    if local.hour >= hour:
        target_day = target_day + timedelta(days=1)
    return datetime.combine(target_day, time(hour=hour), tzinfo=tz)


def seconds_until(now: datetime, target: datetime) -> float:
    """Elapsed real seconds between two aware datetimes."""
    return (target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()


class FetchCoordinator:
    """Owns the article cache and every path that refreshes it."""

    def __init__(
        self,
        fetcher: Optional[FeedFetcher] = None,
        cache: Optional[ArticleCache] = None,
        clock: Optional[ReferenceClock] = None,
        feed_urls: Optional[Sequence[str]] = None,
        fetch_hour: Optional[int] = None,
        fetch_on_startup: Optional[bool] = None,
        sleep_func: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.fetcher = fetcher or FeedFetcher()
        self.cache = cache or ArticleCache()
        self.clock = clock or ReferenceClock()
        self.feed_urls: List[str] = list(feed_urls) if feed_urls is not None else config.FEED_URLS
        self.fetch_hour = fetch_hour if fetch_hour is not None else config.FETCH_HOUR
        self.fetch_on_startup = config.FETCH_ON_STARTUP if fetch_on_startup is None else fetch_on_startup
        self._sleep = sleep_func or asyncio.sleep
        self._inflight: Optional[asyncio.Task] = None
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Cache access
    # ------------------------------------------------------------------
    def snapshot(self) -> CacheSnapshot:
        return self.cache.snapshot()

    def clear_cache(self) -> None:
        self.cache.clear()

    @property
    def state(self) -> str:
        if self._inflight is not None and not self._inflight.done():
            return "firing"
        if self._task is not None and not self._task.done():
            return "idle"
        return "stopped"

    # ------------------------------------------------------------------
    # Fetch decisions
    # ------------------------------------------------------------------
    def should_fetch_today(self) -> bool:
        """True during the fetch hour when no fetch has completed yet today."""
        now = self.clock.now()
        return now.hour == self.fetch_hour and self.cache.snapshot().last_fetch_date != self.clock.today(now)

    def get_next_run_time(self, from_time: Optional[datetime] = None) -> datetime:
        now = from_time if from_time is not None else self.clock.now()
        return next_fetch_time(now, self.fetch_hour, self.clock.timezone)

    def seconds_until_next_run(self, from_time: Optional[datetime] = None) -> float:
        now = from_time if from_time is not None else self.clock.now()
        return seconds_until(now, self.get_next_run_time(now))

    # ------------------------------------------------------------------
    # Fetch cycle
    # ------------------------------------------------------------------
    async def run_fetch_cycle(self) -> CacheSnapshot:
        """Run a fetch cycle, or wait for the one already running.

        Never raises for fetch failures; returns the cache snapshot afterwards.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._fetch_cycle())
        else:
            logger.info("Fetch cycle already in progress; waiting for it to finish")
        # Shielded so one cancelled caller does not abort a cycle others are waiting on
        return await asyncio.shield(self._inflight)

    @trace_span("fetch_cycle", tracer_name="scheduler")
    async def _fetch_cycle(self) -> CacheSnapshot:
        started = self.clock.now()
        logger.info(f"🔄 Starting RSS fetch at {started.isoformat()}")
        try:
            articles, succeeded = await self.fetcher.fetch_all_with_stats(self.feed_urls)
            if succeeded == 0:
                logger.warning("⚠️ No feed could be fetched; keeping the current cache")
                return self.cache.snapshot()

            ordered = sort_articles(articles)
            logger.debug(f"📅 Fetched article dates: {[article.date for article in ordered]}")
            now = self.clock.now()
            snapshot = self.cache.replace(ordered, now, self.clock.today(now))
            elapsed = seconds_until(started, now)
            logger.info(f"✅ RSS fetch completed in {format_duration(elapsed)}. Cached {len(ordered)} articles.")
            return snapshot
        except Exception as e:
            # A failed cycle leaves the cache untouched; the schedule carries on
            logger.error(f"❌ Failed to fetch RSS feeds: {e}", exc_info=True)
            return self.cache.snapshot()

    # ------------------------------------------------------------------
    # Background task
    # ------------------------------------------------------------------
    def start(self) -> asyncio.Task:
        """Start the daily background task (idempotent)."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="daily-feed-fetch")
            logger.info("🚀 Initializing RSS fetch scheduler")
        return self._task

    async def stop(self) -> None:
        """Cancel the background task and any running fetch cycle, and wait for both."""
        task, self._task = self._task, None
        inflight, self._inflight = self._inflight, None
        pending = [t for t in (task, inflight) if t is not None and not t.done()]
        if not pending:
            return
        for t in pending:
            t.cancel()
        for t in pending:
            try:
                await t
            except asyncio.CancelledError:
                pass
        logger.info("📴 Fetch scheduler stopped")

    async def _run(self) -> None:
        if self.fetch_on_startup and self.cache.is_empty:
            logger.info("📥 No cached data found, performing initial fetch...")
            await self.run_fetch_cycle()
        await self.run_forever()

    @trace_span("scheduler.main_loop", tracer_name="scheduler")
    async def run_forever(self) -> None:
        """Sleep until each daily deadline and run a fetch cycle, forever."""
        while True:
            try:
                now = self.clock.now()
                next_time = self.get_next_run_time(now)
                wait_seconds = max(WAKE_BUFFER_SECONDS, seconds_until(now, next_time) + WAKE_BUFFER_SECONDS)
                logger.info(f"⏰ Next RSS fetch scheduled for: {next_time.isoformat()} ({self.clock.timezone_name})")
                logger.info(f"⏱️  Time until next fetch: {int(wait_seconds // 60)} minutes")

                await self._sleep_until(next_time, wait_seconds)

                logger.info("⏰ Starting scheduled RSS fetch")
                await self.run_fetch_cycle()
            except asyncio.CancelledError:
                logger.info("📶 Scheduler cancelled - shutting down")
                raise
            except Exception as e:
                logger.error(f"💥 Error in scheduled fetch loop: {e}", exc_info=True)
                await self._sleep(ERROR_BACKOFF_SECONDS)

    @trace_span(
        "scheduler.sleep",
        tracer_name="scheduler",
        attr_from_args=lambda self, next_time, wait_seconds: {
            "sleep.seconds": float(wait_seconds),
            "scheduled.at": next_time.isoformat(),
        },
    )
    async def _sleep_until(self, next_time: datetime, wait_seconds: float) -> None:
        await self._sleep(wait_seconds)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def get_schedule_status(self) -> Dict[str, Any]:
        """Get current schedule status information."""
        now = self.clock.now()
        next_run = self.get_next_run_time(now)
        seconds = seconds_until(now, next_run)
        snapshot = self.cache.snapshot()
        return {
            'current_time': now.isoformat(),
            'timezone': self.clock.timezone_name,
            'fetch_hour': self.fetch_hour,
            'next_run_time': next_run.isoformat(),
            'seconds_until_next_run': seconds,
            'minutes_until_next_run': round(seconds / 60, 1),
            'state': self.state,
            'feed_count': len(self.feed_urls),
            'last_fetch_date': snapshot.last_fetch_date,
            'articles_cached': len(snapshot.articles),
        }

    def print_schedule_status(self) -> None:
        """Print formatted schedule status."""
        status = self.get_schedule_status()
        print("\n🕐 Scheduler Status")
        print(f"⏰ Current time: {status['current_time']}")
        print(f"🌍 Timezone: {status['timezone']}")
        print(f"🎯 Daily fetch hour: {status['fetch_hour']:02d}:00")
        print(f"📡 Feeds: {status['feed_count']}")
        print(f"⏭️ Next run: {status['next_run_time']}")
        print(f"⏳ Time until next run: {status['minutes_until_next_run']:.1f} minutes")


def create_coordinator(**kwargs) -> FetchCoordinator:
    """Create a FetchCoordinator from the global configuration."""
    return FetchCoordinator(**kwargs)
