import httpx
import openai
import pytest

from errors import UpstreamError
from llm_client import chat_completion, extract_first_choice, speech


class FakeChoice:
    def __init__(self, content):
        class Msg:
            pass
        self.message = Msg()
        self.message.content = content


class FakeResp:
    def __init__(self, choices):
        self.choices = choices


class FakeSpeechResponse:
    def __init__(self, content):
        self.content = content


class FakeSpeechClient:
    def __init__(self, payload=b"", error=None):
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


def test_extract_first_choice_variants():
    assert extract_first_choice(FakeResp([FakeChoice("  hello  ")])) == "hello"
    assert extract_first_choice(FakeResp([])) == ""
    assert extract_first_choice(object()) == ""
    parts = [{"type": "text", "text": "- a"}, {"type": "text", "text": " "}, {"type": "text", "text": "- b"}]
    assert extract_first_choice(FakeResp([FakeChoice(parts)])) == "- a\n- b"


@pytest.mark.asyncio
async def test_chat_completion_connection_error_has_no_status():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")

    class FakeClient:
        class chat:
            class completions:
                @staticmethod
                async def create(**kwargs):  # type: ignore
                    raise openai.APIConnectionError(request=request)

    with pytest.raises(UpstreamError) as excinfo:
        await chat_completion([{"role": "user", "content": "hi"}], client_override=FakeClient())

    assert excinfo.value.status is None


@pytest.mark.asyncio
async def test_speech_returns_audio_bytes():
    client = FakeSpeechClient(payload=b"ID3audio")
    audio = await speech("Read this", model="tts-1", voice="alloy", speed=1.0, client_override=client)

    assert audio == b"ID3audio"
    assert client.requests == [{
        "model": "tts-1",
        "input": "Read this",
        "voice": "alloy",
        "speed": 1.0,
        "response_format": "mp3",
    }]


@pytest.mark.asyncio
async def test_speech_empty_payload_is_upstream_error():
    with pytest.raises(UpstreamError):
        await speech("Read this", client_override=FakeSpeechClient(payload=b""))


@pytest.mark.asyncio
async def test_speech_status_error_passes_status_through():
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/speech")
    body = {"message": "Invalid voice"}
    response = httpx.Response(400, request=request, json={"error": body})
    error = openai.APIStatusError("bad request", response=response, body=body)

    with pytest.raises(UpstreamError) as excinfo:
        await speech("Read this", client_override=FakeSpeechClient(error=error))

    assert excinfo.value.status == 400
    assert excinfo.value.details == body
