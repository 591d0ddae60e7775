#!/usr/bin/env python3
"""
Text-to-speech proxy with a content-addressed disk cache.

Audio for a given text is generated once through the speech API and stored as
`<sha256 hex>.mp3` in the cache directory; later requests for the same text are
answered from the file without an upstream call. A failed cache write is
logged and the freshly generated audio is still returned.
"""

from asyncio import get_running_loop
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from dataclasses import dataclass
from functools import partial
from os import makedirs, path, remove, replace, scandir
from tempfile import NamedTemporaryFile
import time
from typing import Any, Optional

from config import config, get_logger
from errors import CacheWriteError, InvalidInput
from llm_client import speech
from telemetry import init_telemetry, trace_span
from utils import content_digest

# Module-specific logger
logger = get_logger("tts")
init_telemetry("news-briefing-tts")

AUDIO_EXTENSION = ".mp3"
PARTIAL_SUFFIX = ".part"
AUDIO_CONTENT_TYPE = "audio/mpeg"
AUDIO_CACHE_CONTROL = "public, max-age=3600"
AUDIO_HEADERS = {"Content-Type": AUDIO_CONTENT_TYPE, "Cache-Control": AUDIO_CACHE_CONTROL}

SECONDS_PER_DAY = 86400


class TTSCache:
    """Flat directory of audio files named by the digest of their text."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory or config.TTS_CACHE_DIR

    def ensure_dir(self) -> None:
        makedirs(self.directory, exist_ok=True)

    def path_for(self, text: str) -> str:
        return path.join(self.directory, content_digest(text) + AUDIO_EXTENSION)

    def get(self, text: str) -> Optional[str]:
        """Path of the cached audio for `text`, or None on a miss."""
        file_path = self.path_for(text)
        return file_path if path.isfile(file_path) else None

    def write(self, text: str, audio: bytes) -> str:
        """Store audio for `text` and return its path (blocking).

        Raises:
            CacheWriteError: If the file cannot be written.
        """
        file_path = self.path_for(text)
        tmp_path = None
        try:
            self.ensure_dir()
            # Readers only ever see complete files under the final name
            with NamedTemporaryFile(dir=self.directory, suffix=PARTIAL_SUFFIX, delete=False) as f:
                tmp_path = f.name
                f.write(audio)
            replace(tmp_path, file_path)
        except OSError as e:
            if tmp_path and path.exists(tmp_path):
                with suppress(OSError):
                    remove(tmp_path)
            raise CacheWriteError(file_path, str(e)) from e
        return file_path

    def prune_expired(self, max_age_days: int) -> int:
        """Delete cached audio older than `max_age_days`; 0 disables pruning.

        Returns:
            Number of files removed.
        """
        if max_age_days <= 0 or not path.isdir(self.directory):
            return 0
        cutoff = time.time() - max_age_days * SECONDS_PER_DAY
        removed = 0
        with scandir(self.directory) as entries:
            for entry in entries:
                if not entry.is_file() or not entry.name.endswith(AUDIO_EXTENSION):
                    continue
                try:
                    if entry.stat().st_mtime < cutoff:
                        remove(entry.path)
                        removed += 1
                except OSError as e:
                    logger.warning(f"Could not prune cached audio {entry.path}: {e}")
        if removed:
            logger.info(f"🧹 Pruned {removed} cached audio files older than {max_age_days} days")
        return removed


@dataclass
class SpeechResult:
    """Synthesized audio, either as a cached file or as in-memory bytes."""

    size: int
    cached: bool
    path: Optional[str] = None
    audio: Optional[bytes] = None

    @property
    def headers(self) -> dict:
        return {**AUDIO_HEADERS, "Content-Length": str(self.size)}


class TTSService:
    """Speech synthesis proxy backed by a TTSCache."""

    def __init__(self, cache: Optional[TTSCache] = None, client_override: Optional[Any] = None):
        self.cache = cache or TTSCache()
        self.client_override = client_override
        self.executor = ThreadPoolExecutor(max_workers=2)

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in a thread pool executor."""
        loop = get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    @trace_span(
        "synthesize",
        tracer_name="tts",
        attr_from_args=lambda self, text: {"text.length": len(text or "")},
    )
    async def synthesize(self, text: Optional[str]) -> SpeechResult:
        """Return audio for `text`, generating and caching it on a miss.

        Raises:
            InvalidInput: If text is absent or empty.
            UpstreamError: If the speech API call fails.
        """
        if not text or not isinstance(text, str):
            raise InvalidInput("Missing text")

        await self.run_in_executor(self.cache.ensure_dir)
        cached_path = self.cache.get(text)
        if cached_path:
            size = path.getsize(cached_path)
            logger.info(f"🔁 Serving cached TTS audio {path.basename(cached_path)} ({size} bytes)")
            return SpeechResult(size=size, cached=True, path=cached_path)

        logger.info(f"🔊 Generating TTS audio for {len(text)} characters")
        audio = await speech(
            text,
            model=config.TTS_MODEL,
            voice=config.TTS_VOICE,
            speed=config.TTS_SPEED,
            client_override=self.client_override,
        )

        try:
            file_path = await self.run_in_executor(self.cache.write, text, audio)
            logger.info(f"💾 Cached TTS audio at {file_path}")
        except CacheWriteError as e:
            logger.error(f"❌ Failed to cache TTS audio: {e}")

        return SpeechResult(size=len(audio), cached=False, audio=audio)

    def prune(self) -> int:
        return self.cache.prune_expired(config.TTS_CACHE_MAX_AGE_DAYS)

    def close(self) -> None:
        self.executor.shutdown(wait=False)
