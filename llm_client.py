#!/usr/bin/env python3
"""Async OpenAI helpers: `chat_completion` returning the first choice text and
`speech` returning synthesized audio bytes. Transport and API failures are
raised as `UpstreamError` carrying the upstream status and error payload; no
call is retried."""
from __future__ import annotations
from typing import List, Dict, Any, Optional

from openai import AsyncOpenAI, APIStatusError, APIConnectionError, OpenAIError

from config import config, get_logger
from errors import UpstreamError

logger = get_logger("llm_client")

_client: Any = None


def _get_client() -> AsyncOpenAI:
    """Instantiate and cache the OpenAI async client."""
    global _client
    if _client is not None:
        return _client
    if not config.OPENAI_API_KEY:
        raise UpstreamError("OPENAI_API_KEY is not configured", status=None, details="Missing API key")
    _client = AsyncOpenAI(
        api_key=config.OPENAI_API_KEY,
        base_url=config.OPENAI_BASE_URL,
        timeout=config.UPSTREAM_TIMEOUT,
        max_retries=0,
    )
    return _client


def _error_details(error: APIStatusError) -> Any:
    """Best-effort extraction of the provider error payload."""
    body = getattr(error, "body", None)
    if body:
        return body
    response = getattr(error, "response", None)
    if response is not None:
        try:
            return response.json()
        except ValueError:
            return response.text
    return str(error)


def _to_upstream_error(purpose: str, error: Exception) -> UpstreamError:
    if isinstance(error, APIStatusError):
        logger.error("OpenAI %s error (HTTP %s): %s", purpose, error.status_code, error)
        return UpstreamError(f"{purpose} request failed", status=error.status_code, details=_error_details(error))
    if isinstance(error, APIConnectionError):
        logger.error("OpenAI %s transport failure: %s", purpose, error)
        return UpstreamError(f"{purpose} request failed", status=None, details=str(error))
    logger.error("OpenAI %s unexpected failure: %s", purpose, error)
    return UpstreamError(f"{purpose} request failed", status=None, details=str(error))


def extract_first_choice(resp: Any) -> str:
    """Return the stripped text content of the first choice, or "" when absent."""
    choices = getattr(resp, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = message.get("content") if isinstance(message, dict) else getattr(message, "content", None)
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        texts: List[str] = []
        for part in content:
            txt = part.get("text") if isinstance(part, dict) else None
            if isinstance(txt, str) and txt.strip():
                texts.append(txt.strip())
        return "\n".join(texts).strip()
    return ""


async def chat_completion(
    messages: List[Dict[str, str]],
    *,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
    purpose: str = "chat",
    client_override: Optional[Any] = None,
) -> str:
    """Execute a chat completion and return the first choice's text.

    Raises:
        UpstreamError: On transport or API failure.
    """
    client = client_override or _get_client()
    params: Dict[str, Any] = {
        "model": model or config.SUMMARIZER_MODEL,
        "messages": messages,
        "max_tokens": max_tokens if max_tokens is not None else config.SUMMARIZER_MAX_TOKENS,
        "temperature": temperature if temperature is not None else config.SUMMARIZER_TEMPERATURE,
    }
    try:
        resp = await client.chat.completions.create(**params)
    except OpenAIError as e:
        raise _to_upstream_error(purpose, e) from e

    text = extract_first_choice(resp)
    if not text:
        logger.warning("Empty content in %s response", purpose)
    return text


async def speech(
    text: str,
    *,
    model: Optional[str] = None,
    voice: Optional[str] = None,
    speed: Optional[float] = None,
    client_override: Optional[Any] = None,
) -> bytes:
    """Synthesize `text` to MP3 audio.

    Raises:
        UpstreamError: On transport or API failure.
    """
    client = client_override or _get_client()
    try:
        resp = await client.audio.speech.create(
            model=model or config.TTS_MODEL,
            input=text,
            voice=voice or config.TTS_VOICE,
            speed=speed if speed is not None else config.TTS_SPEED,
            response_format="mp3",
        )
    except OpenAIError as e:
        raise _to_upstream_error("speech", e) from e

    audio = resp.content
    if not audio:
        raise UpstreamError("speech request returned no audio", status=None, details="Empty audio payload")
    return audio


__all__ = ["chat_completion", "speech", "extract_first_choice"]
