#!/usr/bin/env python3
"""
Article summarization proxy.

Forwards article text to the chat completion API with a fixed instruction and
returns the reply, rendering bullet-point replies as an HTML list.
"""

import re
from typing import Any, List, Optional

from config import config, get_logger
from errors import InvalidInput
from llm_client import chat_completion
from telemetry import init_telemetry, trace_span

# Module-specific logger
logger = get_logger("summarizer")
init_telemetry("news-briefing-summarizer")

SYSTEM_PROMPT = "You are a helpful assistant that summarizes news articles."
USER_PROMPT = "Summarize the following article as 4-5 concise bullet points. Do not write a paragraph."

BULLET_LIST_OPEN = '<ul style="padding-left:1.5em;list-style:disc;">'
BULLET_LIST_CLOSE = '</ul>'

_LINE_SPLIT_RE = re.compile(r"\n+")
_BULLET_PREFIX_RE = re.compile(r"^\s*-\s*")


def build_messages(text: str) -> List[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": f"{USER_PROMPT}\n\n{text}"},
    ]


def format_bullets(summary: str) -> str:
    """Render a "- item" per line reply as an unordered list; other text is returned unchanged."""
    if not summary.startswith("-"):
        return summary
    items = [
        _BULLET_PREFIX_RE.sub("", line).strip()
        for line in _LINE_SPLIT_RE.split(summary)
    ]
    items = [item for item in items if item]
    return BULLET_LIST_OPEN + "".join(f"<li>{item}</li>" for item in items) + BULLET_LIST_CLOSE


class Summarizer:
    """Summarization proxy.

    Args:
        client_override: OpenAI-compatible async client, used instead of the shared one.
    """

    def __init__(self, client_override: Optional[Any] = None):
        self.client_override = client_override

    @trace_span(
        "summarize",
        tracer_name="summarizer",
        attr_from_args=lambda self, text: {"text.length": len(text or "")},
    )
    async def summarize(self, text: Optional[str]) -> str:
        """Summarize `text` as bullet points.

        Raises:
            InvalidInput: If text is absent or empty.
            UpstreamError: On transport or API failure.
        """
        if not text or not isinstance(text, str):
            raise InvalidInput("Missing text")

        logger.info(f"Summarizing {len(text)} characters with {config.SUMMARIZER_MODEL}")
        raw = await chat_completion(
            build_messages(text),
            model=config.SUMMARIZER_MODEL,
            max_tokens=config.SUMMARIZER_MAX_TOKENS,
            temperature=config.SUMMARIZER_TEMPERATURE,
            purpose="summarize",
            client_override=self.client_override,
        )
        return format_bullets(raw)
