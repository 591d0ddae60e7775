#!/usr/bin/env python3
"""
Configuration for the News Briefing service.

Settings come from the process environment, an optional `.env` file next to
this module and an optional YAML secrets file (SECRETS_FILE). Feed sources and
the default fetch schedule live in feeds.yaml. Invalid values are logged and
replaced by defaults, so importing this module never fails on configuration.

Logging is configured here once for the whole process; modules obtain their
logger with get_logger().
"""

import logging
import sys
from os import environ, path, access, R_OK
from typing import Any, Callable, Dict, List, Optional

import yaml
from dotenv import load_dotenv

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

BASE_DIR = path.dirname(path.abspath(__file__))

DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_FETCH_HOUR = 7

SECRETS_MAX_BYTES = 2 * 1024 * 1024
FEEDS_MAX_BYTES = 5 * 1024 * 1024


def _level_from_env(name: str, default: str) -> int:
    return LOG_LEVELS.get(environ.get(name, default).upper(), LOG_LEVELS.get(default, logging.INFO))


def _setup_global_logger() -> logging.Logger:
    """Configure the root logger to write line-buffered records to stdout.

    Environment Variables:
        LOG_LEVEL: DEBUG, INFO, WARNING or ERROR (default INFO)
        LOG_TIMESTAMPS: "false" drops timestamps, e.g. when the platform adds its own
        ACCESS_LOG_LEVEL: level for aiohttp access logs (default LOG_LEVEL)
        AZURE_LOG_LEVEL: level for the Azure SDK loggers (default WARNING)
    """
    environ["PYTHONUNBUFFERED"] = "1"
    level = _level_from_env("LOG_LEVEL", "INFO")

    fields = ["%(name)s", "%(levelname)s", "%(message)s"]
    if environ.get("LOG_TIMESTAMPS", "true").lower() != "false":
        fields.insert(0, "%(asctime)s")

    logging.basicConfig(
        level=level,
        format=" - ".join(fields),
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # Captured streams (pytest, some supervisors) lack reconfigure()
    for stream in (sys.stdout, sys.stderr):
        if hasattr(stream, "reconfigure"):
            stream.reconfigure(line_buffering=True)

    logging.getLogger("aiohttp.access").setLevel(
        _level_from_env("ACCESS_LOG_LEVEL", logging.getLevelName(level))
    )
    azure_level = _level_from_env("AZURE_LOG_LEVEL", "WARNING")
    for name in ("azure", "azure.core", "azure.monitor"):
        logging.getLogger(name).setLevel(azure_level)

    return logging.getLogger("NewsBriefing")


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module, named "NewsBriefing.<name>"."""
    return logging.getLogger(f"NewsBriefing.{name}")


logger = _setup_global_logger()


class Config:
    """Process-wide settings.

    Precedence, lowest first: system environment, `.env`, the SECRETS_FILE
    YAML (either a flat mapping or one nested under `environment:`). For the
    fetch schedule, SCHEDULER_TIMEZONE and FETCH_HOUR in the environment win
    over the `schedule:` section of feeds.yaml.
    """

    def __init__(self):
        dotenv_path = path.join(BASE_DIR, '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")
        self._load_secrets_file()
        self._read_settings()
        self._load_feed_sources()

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------
    def _env_number(self, name: str, default, minimum, cast: Callable[[str], Any] = int):
        raw = environ.get(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            value = cast(raw)
        except ValueError:
            logger.warning(f"Invalid {name} value '{raw}', using default {default}")
            return default
        if value < minimum:
            logger.warning(f"{name} must be at least {minimum}, using default {default}")
            return default
        return value

    def _parse_hour(self, value: Any, source: str) -> int:
        try:
            hour = int(str(value).strip())
        except ValueError:
            logger.warning(f"Invalid fetch hour '{value}' in {source}, using {DEFAULT_FETCH_HOUR}")
            return DEFAULT_FETCH_HOUR
        if not 0 <= hour <= 23:
            logger.warning(f"Fetch hour must be 0-23 in {source} (got {hour}), using {DEFAULT_FETCH_HOUR}")
            return DEFAULT_FETCH_HOUR
        return hour

    def _parse_origins(self, value: str) -> List[str]:
        origins = [origin.strip() for origin in value.split(",") if origin.strip()]
        return origins or ["*"]

    def _read_settings(self):
        # HTTP server
        self.HOST = environ.get("HOST", "0.0.0.0")
        self.PORT = self._env_number("PORT", 4000, 1)
        self.CORS_ALLOWED_ORIGINS = self._parse_origins(environ.get("CORS_ALLOWED_ORIGINS", "*"))

        # Feed retrieval, one attempt per feed per cycle
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; NewsBriefing/1.0)")
        self.HTTP_TIMEOUT = self._env_number("HTTP_TIMEOUT", 30, 5)
        self.MAX_REDIRECTS = self._env_number("MAX_REDIRECTS", 5, 0)

        # OpenAI API
        self.OPENAI_API_KEY = environ.get("OPENAI_API_KEY")
        self.OPENAI_BASE_URL = environ.get("OPENAI_BASE_URL") or None
        self.UPSTREAM_TIMEOUT = self._env_number("UPSTREAM_TIMEOUT", 60, 5)

        # Summarization
        self.SUMMARIZER_MODEL = environ.get("SUMMARIZER_MODEL", "gpt-4o-mini")
        self.SUMMARIZER_MAX_TOKENS = self._env_number("SUMMARIZER_MAX_TOKENS", 300, 16)
        self.SUMMARIZER_TEMPERATURE = self._env_number("SUMMARIZER_TEMPERATURE", 0.6, 0.0, float)

        # Text to speech
        self.TTS_MODEL = environ.get("TTS_MODEL", "tts-1")
        self.TTS_VOICE = environ.get("TTS_VOICE", "alloy")  # alloy, echo, fable, onyx, nova, shimmer
        self.TTS_SPEED = self._env_number("TTS_SPEED", 1.0, 0.25, float)
        self.TTS_CACHE_DIR = environ.get("TTS_CACHE_DIR", path.join(".", "tts_cache"))
        self.TTS_CACHE_MAX_AGE_DAYS = self._env_number("TTS_CACHE_MAX_AGE_DAYS", 0, 0)

        # Schedule; unset values are filled from feeds.yaml
        self.SCHEDULER_TIMEZONE: Optional[str] = environ.get("SCHEDULER_TIMEZONE") or None
        fetch_hour = environ.get("FETCH_HOUR")
        self.FETCH_HOUR: Optional[int] = self._parse_hour(fetch_hour, "FETCH_HOUR") if fetch_hour else None
        self.FETCH_ON_STARTUP = environ.get("FETCH_ON_STARTUP", "true").lower() == "true"

        self.FEEDS_CONFIG_PATH = environ.get("FEEDS_CONFIG_PATH", path.join(BASE_DIR, "feeds.yaml"))

    # ------------------------------------------------------------------
    # YAML sources
    # ------------------------------------------------------------------
    def _read_yaml(self, file_path: str, max_size: int, kind: str) -> Any:
        """Parse a YAML file, or return None (with a log line) if it is missing, unreadable, oversized or invalid."""
        if not path.isfile(file_path):
            logger.warning(f"{kind.capitalize()} file not found at {file_path}")
            return None
        if not access(file_path, R_OK):
            logger.error(f"No read permission for {kind} file at {file_path}")
            return None
        try:
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
            return None
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
            return None
        if not data:
            logger.warning(f"Empty {kind} file {file_path}")
            return None
        return data

    def _load_secrets_file(self):
        """Export the entries of the SECRETS_FILE YAML mapping into the environment."""
        secrets_path = environ.get("SECRETS_FILE")
        if not secrets_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env for secrets")
            return

        secrets = self._read_yaml(secrets_path, SECRETS_MAX_BYTES, 'secrets')
        if secrets is None:
            return
        if not isinstance(secrets, dict):
            logger.warning(f"Secrets file {secrets_path} must be a YAML mapping at the top level")
            return
        if isinstance(secrets.get('environment'), dict):
            secrets = secrets['environment']

        exported = 0
        for key, value in secrets.items():
            if not isinstance(key, str) or value is None:
                logger.warning(f"Skipping invalid entry in secrets file: {key}")
                continue
            environ[key] = str(value)
            exported += 1
        logger.info(f"Loaded {exported} settings from secrets file {secrets_path}")

    def _load_feed_sources(self) -> None:
        """Populate FEED_SOURCES and fill the schedule defaults from feeds.yaml.

        A missing or invalid file leaves no feeds and the built-in schedule.
        """
        feeds_path = self.FEEDS_CONFIG_PATH
        data = self._read_yaml(feeds_path, FEEDS_MAX_BYTES, 'feeds')
        if not isinstance(data, dict):
            data = {}

        self._apply_schedule_section(data.get('schedule'), feeds_path)

        sources: Dict[str, str] = {}
        feeds_section = data.get('feeds')
        if not isinstance(feeds_section, dict):
            logger.warning(f"No valid feeds found in {feeds_path}")
            feeds_section = {}
        for slug, entry in feeds_section.items():
            url = entry.get('url') if isinstance(entry, dict) else entry
            if isinstance(url, str) and url.strip():
                sources[str(slug)] = url.strip()
            else:
                logger.warning(f"Skipping invalid feed configuration for '{slug}': {entry}")

        self.FEED_SOURCES = sources
        logger.info(f"Loaded {len(sources)} feeds from {feeds_path}")

    def _apply_schedule_section(self, schedule: Any, feeds_path: str) -> None:
        if schedule is not None and not isinstance(schedule, dict):
            logger.warning(f"Schedule configuration in {feeds_path} must be a mapping with timezone/hour")
            schedule = None
        schedule = schedule or {}

        if not self.SCHEDULER_TIMEZONE:
            self.SCHEDULER_TIMEZONE = str(schedule.get('timezone') or DEFAULT_TIMEZONE)
        if self.FETCH_HOUR is None:
            hour = schedule.get('hour')
            self.FETCH_HOUR = DEFAULT_FETCH_HOUR if hour is None else self._parse_hour(hour, feeds_path)

    @property
    def FEED_URLS(self) -> List[str]:
        """Feed URLs in configuration order."""
        return list(self.FEED_SOURCES.values())

    def get_config_summary(self) -> Dict[str, Any]:
        """Non-secret view of the active settings, for logging."""
        return {
            "port": self.PORT,
            "feed_count": len(self.FEED_SOURCES),
            "http_timeout": self.HTTP_TIMEOUT,
            "scheduler_timezone": self.SCHEDULER_TIMEZONE,
            "fetch_hour": self.FETCH_HOUR,
            "fetch_on_startup": self.FETCH_ON_STARTUP,
            "tts_cache_dir": self.TTS_CACHE_DIR,
            "tts_cache_max_age_days": self.TTS_CACHE_MAX_AGE_DAYS,
            "summarizer_model": self.SUMMARIZER_MODEL,
            "tts_model": self.TTS_MODEL,
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
            "has_openai_key": bool(self.OPENAI_API_KEY),
        }


# Global configuration instance
config = Config()
