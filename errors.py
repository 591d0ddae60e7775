#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Any, Optional


class FeedFetchError(Exception):
    """Raised when a single feed cannot be retrieved or parsed.

    Contained by the fetcher: logged and skipped, never surfaced to callers.
    """

    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.message = message


class InvalidInput(Exception):
    """Raised when a proxy endpoint receives missing or empty text."""

    def __init__(self, message: str = "Missing text"):
        super().__init__(message)
        self.message = message


class UpstreamError(Exception):
    """Raised on transport or API failure from the external AI API.

    Attributes:
        status: Upstream HTTP status when one was received, else None.
        details: Provider error payload (parsed JSON body or message) for diagnostics.
    """

    def __init__(self, message: str, status: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details if details is not None else message


class CacheWriteError(Exception):
    """Raised when generated audio cannot be written to the disk cache."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


__all__ = ["FeedFetchError", "InvalidInput", "UpstreamError", "CacheWriteError"]
