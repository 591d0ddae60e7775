#!/usr/bin/env python3
"""
Utility functions shared by the fetcher, scheduler and proxies.
"""

from hashlib import sha256
import re
from typing import Optional
import warnings

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

from config import get_logger

# Module-specific logger
logger = get_logger("utils")

_WHITESPACE_RE = re.compile(r"\s+")


def html_to_text(html_content: Optional[str]) -> str:
    """Reduce an HTML fragment to a single line of plain text.

    Script and style elements are dropped, block boundaries become spaces and
    whitespace runs collapse to one space.
    """
    if not html_content:
        return ""
    if "<" not in html_content and "&" not in html_content:
        return _WHITESPACE_RE.sub(" ", html_content).strip()

    with warnings.catch_warnings():
        # Snippets that look like URLs or filenames are still valid text
        warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
        soup = BeautifulSoup(html_content, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    text = soup.get_text(separator=" ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def content_digest(text: str) -> str:
    """Return the hex SHA-256 digest of the UTF-8 encoded text."""
    return sha256(text.encode("utf-8")).hexdigest()


def format_duration(seconds: float) -> str:
    """Render a duration as "1h 23m 45s", omitting zero hour/minute parts."""
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = [f"{value}{unit}" for value, unit in ((hours, "h"), (minutes, "m")) if value]
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)
