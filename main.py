#!/usr/bin/env python3
"""
News Briefing entry point.

Modes:
    serve            run the HTTP API together with the daily fetch scheduler
    fetch            run a single fetch cycle and report what was cached
    schedule-status  print when the next scheduled fetch will happen
"""

import argparse
import asyncio
import sys

from aiohttp import web

from config import config, get_logger
from scheduler import create_coordinator
from server import create_app
from telemetry import init_telemetry

# Module-specific logger
logger = get_logger("main")
init_telemetry("news-briefing")


async def run_single_fetch() -> bool:
    """Run one fetch cycle outside the server."""
    coordinator = create_coordinator(fetch_on_startup=False)
    try:
        snapshot = await coordinator.run_fetch_cycle()
    finally:
        await coordinator.fetcher.close()
    print(f"📰 Cached {len(snapshot.articles)} articles from {len(coordinator.feed_urls)} feeds")
    print(f"📅 Last fetch: {snapshot.last_fetch_date or 'never'}")
    return snapshot.last_fetch_date is not None


def main():
    """Main entry point."""

    parser = argparse.ArgumentParser(description='News Briefing service')
    parser.add_argument('mode', nargs='?', default='serve', choices=['serve', 'fetch', 'schedule-status'],
                        help='Operation mode')
    parser.add_argument('--host', type=str, default=None,
                        help='Interface to bind (default: HOST or 0.0.0.0)')
    parser.add_argument('--port', type=int, default=None,
                        help='Port to listen on (default: PORT or 4000)')

    args = parser.parse_args()

    try:
        if args.mode == 'serve':
            host = args.host or config.HOST
            port = args.port or config.PORT
            logger.info(f"🚀 Starting News Briefing server on {host}:{port}")
            logger.debug(f"Configuration: {config.get_config_summary()}")
            web.run_app(create_app(), host=host, port=port, print=None)

        elif args.mode == 'fetch':
            success = asyncio.run(run_single_fetch())
            sys.exit(0 if success else 1)

        elif args.mode == 'schedule-status':
            create_coordinator(fetch_on_startup=False).print_schedule_status()

    except KeyboardInterrupt:
        logger.info("👋 News Briefing shutting down")
    except Exception as e:
        logger.error(f"💥 Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
