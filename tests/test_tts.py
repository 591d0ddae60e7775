import errno
import hashlib
import logging
import os
import tempfile
import time

import httpx
import openai
import pytest

from errors import CacheWriteError, InvalidInput, UpstreamError
from tts import TTSCache, TTSService


class FakeSpeechResponse:
    def __init__(self, content):
        self.content = content


class FakeSpeechClient:
    def __init__(self, payload=b"ID3fake-mp3-bytes", error=None):
        self.requests = []
        outer = self

        class speech_api:
            @staticmethod
            async def create(**kwargs):
                outer.requests.append(kwargs)
                if error is not None:
                    raise error
                return FakeSpeechResponse(payload)

        class audio:
            speech = speech_api

        self.audio = audio


class FailingCache(TTSCache):
    def write(self, text, audio):
        raise CacheWriteError(self.path_for(text), "disk full")


@pytest.mark.asyncio
async def test_second_request_is_served_from_disk(tmp_path):
    cache_dir = tmp_path / "tts_cache"
    client = FakeSpeechClient()
    service = TTSService(cache=TTSCache(str(cache_dir)), client_override=client)

    first = await service.synthesize("Good morning")
    second = await service.synthesize("Good morning")
    service.close()

    assert len(client.requests) == 1
    assert first.cached is False
    assert first.audio == b"ID3fake-mp3-bytes"
    assert second.cached is True

    digest = hashlib.sha256("Good morning".encode("utf-8")).hexdigest()
    assert os.listdir(cache_dir) == [f"{digest}.mp3"]
    assert second.path == str(cache_dir / f"{digest}.mp3")
    with open(second.path, "rb") as f:
        assert f.read() == first.audio
    assert second.size == first.size == len(first.audio)


@pytest.mark.asyncio
async def test_headers_describe_audio(tmp_path):
    service = TTSService(cache=TTSCache(str(tmp_path)), client_override=FakeSpeechClient(payload=b"12345"))
    result = await service.synthesize("hello")
    service.close()

    assert result.headers == {
        "Content-Type": "audio/mpeg",
        "Content-Length": "5",
        "Cache-Control": "public, max-age=3600",
    }


@pytest.mark.asyncio
async def test_cache_write_failure_still_returns_audio(tmp_path, caplog):
    client = FakeSpeechClient()
    service = TTSService(cache=FailingCache(str(tmp_path)), client_override=client)

    with caplog.at_level(logging.ERROR):
        result = await service.synthesize("Unwritable")
    service.close()

    assert result.audio == b"ID3fake-mp3-bytes"
    assert result.cached is False
    assert "Failed to cache TTS audio" in caplog.text
    assert os.listdir(tmp_path) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("text", [None, ""])
async def test_missing_text_is_rejected(tmp_path, text):
    client = FakeSpeechClient()
    service = TTSService(cache=TTSCache(str(tmp_path)), client_override=client)
    with pytest.raises(InvalidInput):
        await service.synthesize(text)
    service.close()
    assert client.requests == []


@pytest.mark.asyncio
async def test_upstream_failure_writes_nothing(tmp_path):
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/speech")
    response = httpx.Response(503, request=request, json={"error": "overloaded"})
    error = openai.APIStatusError("unavailable", response=response, body={"error": "overloaded"})
    service = TTSService(cache=TTSCache(str(tmp_path)), client_override=FakeSpeechClient(error=error))

    with pytest.raises(UpstreamError) as excinfo:
        await service.synthesize("Anything")
    service.close()

    assert excinfo.value.status == 503
    assert os.listdir(tmp_path) == []


def test_write_to_unwritable_location_raises_cache_write_error(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("occupied")
    cache = TTSCache(str(blocker))
    with pytest.raises(CacheWriteError):
        cache.write("text", b"audio")


def test_prune_expired_removes_only_old_audio(tmp_path):
    cache = TTSCache(str(tmp_path))
    old_path = cache.write("old", b"old-audio")
    new_path = cache.write("new", b"new-audio")
    other = tmp_path / "notes.txt"
    other.write_text("keep me")
    ten_days_ago = time.time() - 10 * 86400
    os.utime(old_path, (ten_days_ago, ten_days_ago))
    os.utime(other, (ten_days_ago, ten_days_ago))

    assert cache.prune_expired(0) == 0
    assert cache.prune_expired(7) == 1
    assert not os.path.exists(old_path)
    assert os.path.exists(new_path)
    assert other.exists()


def test_prune_missing_directory_is_noop(tmp_path):
    assert TTSCache(str(tmp_path / "missing")).prune_expired(7) == 0


class DiskFullFile:
    """Temp file that accepts half of the payload, then runs out of space."""

    def __init__(self, real):
        self.real = real
        self.name = real.name

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.real.close()
        return False

    def write(self, data):
        self.real.write(data[: len(data) // 2])
        self.real.flush()
        raise OSError(errno.ENOSPC, "No space left on device")


@pytest.mark.asyncio
async def test_interrupted_write_leaves_no_truncated_audio(tmp_path, monkeypatch):
    monkeypatch.setattr("tts.NamedTemporaryFile", lambda **kwargs: DiskFullFile(tempfile.NamedTemporaryFile(**kwargs)))
    client = FakeSpeechClient(payload=b"x" * 1000)
    service = TTSService(cache=TTSCache(str(tmp_path)), client_override=client)

    first = await service.synthesize("hello")
    second = await service.synthesize("hello")
    service.close()

    assert first.size == second.size == 1000
    assert second.cached is False
    assert len(client.requests) == 2
    assert os.listdir(tmp_path) == []


def test_partial_files_are_not_cache_hits(tmp_path):
    cache = TTSCache(str(tmp_path))
    (tmp_path / "leftover.part").write_bytes(b"half")
    assert cache.get("hello") is None
    path = cache.write("hello", b"complete")
    assert cache.get("hello") == path
    assert sorted(os.listdir(tmp_path)) == sorted(["leftover.part", os.path.basename(path)])
