#!/usr/bin/env python3
"""
HTTP surface for the News Briefing service.

Routes:
    GET  /api/news         cached articles, fetching first when the cache is
                           empty or today's scheduled fetch has not happened
    POST /api/summarize    {text} -> {summary}
    POST /api/tts          {text} -> audio/mpeg
    POST /api/clear-cache  reset the article cache
    POST /api/fetch-now    run a fetch cycle immediately
    GET  /api/schedule     scheduler status

The fetch coordinator, summarizer and TTS service are created once per
application and handed to the handlers through the app mapping.
"""

from typing import Any, Dict, Optional

from aiohttp import web
import aiohttp_cors

from config import config, get_logger
from errors import InvalidInput, UpstreamError
from scheduler import FetchCoordinator, create_coordinator
from summarizer import Summarizer
from telemetry import init_telemetry
from tts import AUDIO_HEADERS, TTSService

# Module-specific logger
logger = get_logger("server")
init_telemetry("news-briefing-server")

COORDINATOR_KEY = web.AppKey("coordinator", FetchCoordinator)
SUMMARIZER_KEY = web.AppKey("summarizer", Summarizer)
TTS_KEY = web.AppKey("tts", TTSService)
START_SCHEDULER_KEY = web.AppKey("start_scheduler", bool)

CACHE_STATUS_CACHED = "serving cached data"
CACHE_STATUS_INITIAL = "initial fetch"

CORS_ALLOW_METHODS = ("GET", "POST")
CORS_ALLOW_HEADERS = ("Content-Type",)


def setup_cors(app: web.Application) -> aiohttp_cors.CorsConfig:
    """Enable CORS on every registered route for the configured origins."""
    options = aiohttp_cors.ResourceOptions(
        allow_credentials=False,
        allow_headers=CORS_ALLOW_HEADERS,
        allow_methods=CORS_ALLOW_METHODS,
    )
    cors = aiohttp_cors.setup(app, defaults={origin: options for origin in config.CORS_ALLOWED_ORIGINS})
    for route in list(app.router.routes()):
        cors.add(route)
    return cors


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Turn unexpected handler failures into a generic JSON 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.error(f"💥 Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return web.json_response({"error": "Internal server error"}, status=500)


async def read_json_body(request: web.Request) -> Dict[str, Any]:
    """Parse the request body as a JSON object; anything else reads as {}."""
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


async def get_news(request: web.Request) -> web.Response:
    coordinator = request.app[COORDINATOR_KEY]

    if coordinator.should_fetch_today():
        logger.info("🕐 Scheduled fetch hour reached without a fetch today, fetching now")
        await coordinator.run_fetch_cycle()

    snapshot = coordinator.snapshot()
    if snapshot.articles:
        cache_status = CACHE_STATUS_CACHED
    else:
        logger.info("📥 No cached data found, fetching once...")
        snapshot = await coordinator.run_fetch_cycle()
        cache_status = CACHE_STATUS_INITIAL

    payload = snapshot.to_dict()
    payload["cacheStatus"] = cache_status
    return web.json_response(payload)


async def post_summarize(request: web.Request) -> web.Response:
    body = await read_json_body(request)
    try:
        summary = await request.app[SUMMARIZER_KEY].summarize(body.get("text"))
    except InvalidInput as e:
        return web.json_response({"error": e.message}, status=400)
    except UpstreamError as e:
        logger.error(f"❌ Summarization failed: {e} ({e.details})")
        return web.json_response({"error": "Failed to summarize", "details": e.details}, status=500)
    return web.json_response({"summary": summary})


async def post_tts(request: web.Request) -> web.StreamResponse:
    body = await read_json_body(request)
    try:
        result = await request.app[TTS_KEY].synthesize(body.get("text"))
    except InvalidInput as e:
        return web.json_response({"error": e.message}, status=400)
    except UpstreamError as e:
        logger.error(f"❌ TTS failed: {e} ({e.details})")
        if e.status:
            return web.json_response({"error": "TTS failed", "details": e.details}, status=e.status)
        return web.json_response({"error": "Failed to generate speech", "details": e.details}, status=500)
    except OSError as e:
        logger.error(f"❌ TTS cache unavailable: {e}")
        return web.json_response({"error": "Failed to generate speech", "details": str(e)}, status=500)

    if result.path:
        # FileResponse streams the file and sets Content-Length itself
        return web.FileResponse(result.path, headers=AUDIO_HEADERS)
    return web.Response(body=result.audio, headers=result.headers)


async def post_clear_cache(request: web.Request) -> web.Response:
    request.app[COORDINATOR_KEY].clear_cache()
    return web.json_response({"message": "Cache cleared"})


async def post_fetch_now(request: web.Request) -> web.Response:
    logger.info("🔄 Manual fetch requested")
    snapshot = await request.app[COORDINATOR_KEY].run_fetch_cycle()
    return web.json_response({
        "message": "Manual fetch completed",
        "articlesCount": len(snapshot.articles),
        "lastFetch": snapshot.last_fetch_date,
    })


async def get_schedule(request: web.Request) -> web.Response:
    return web.json_response(request.app[COORDINATOR_KEY].get_schedule_status())


async def _on_startup(app: web.Application) -> None:
    tts_service = app[TTS_KEY]
    await tts_service.run_in_executor(tts_service.prune)
    if app[START_SCHEDULER_KEY]:
        app[COORDINATOR_KEY].start()


async def _on_cleanup(app: web.Application) -> None:
    coordinator = app[COORDINATOR_KEY]
    await coordinator.stop()
    await coordinator.fetcher.close()
    app[TTS_KEY].close()


def create_app(
    coordinator: Optional[FetchCoordinator] = None,
    summarizer: Optional[Summarizer] = None,
    tts_service: Optional[TTSService] = None,
    start_scheduler: bool = True,
) -> web.Application:
    """Build the aiohttp application.

    Args:
        coordinator: Fetch coordinator owning the article cache.
        summarizer: Summarization proxy.
        tts_service: Speech synthesis proxy.
        start_scheduler: Start the daily fetch task when the app starts.
    """
    app = web.Application(middlewares=[error_middleware])
    app[COORDINATOR_KEY] = coordinator or create_coordinator()
    app[SUMMARIZER_KEY] = summarizer or Summarizer()
    app[TTS_KEY] = tts_service or TTSService()
    app[START_SCHEDULER_KEY] = start_scheduler

    app.router.add_get("/api/news", get_news)
    app.router.add_post("/api/summarize", post_summarize)
    app.router.add_post("/api/tts", post_tts)
    app.router.add_post("/api/clear-cache", post_clear_cache)
    app.router.add_post("/api/fetch-now", post_fetch_now)
    app.router.add_get("/api/schedule", get_schedule)
    setup_cors(app)

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app
