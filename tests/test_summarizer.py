import httpx
import openai
import pytest

from config import config
from errors import InvalidInput, UpstreamError
from summarizer import Summarizer, format_bullets


class FakeMessage:
    def __init__(self, content):
        self.content = content


class FakeChoice:
    def __init__(self, content):
        self.message = FakeMessage(content)
        self.finish_reason = "stop"


class FakeResp:
    def __init__(self, content):
        self.choices = [FakeChoice(content)]


class FakeChatClient:
    def __init__(self, content="", error=None):
        self.requests = []
        outer = self

        class completions:
            @staticmethod
            async def create(**kwargs):
                outer.requests.append(kwargs)
                if error is not None:
                    raise error
                return FakeResp(content)

        class chat:
            pass

        chat.completions = completions
        self.chat = chat


def api_status_error(status, body):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request, json=body)
    return openai.APIStatusError("upstream failed", response=response, body=body)


def test_format_bullets_renders_list():
    assert format_bullets("- a\n- b") == '<ul style="padding-left:1.5em;list-style:disc;"><li>a</li><li>b</li></ul>'


def test_format_bullets_drops_blank_lines_and_markers():
    raw = "- First point\n\n-Second point\n   - Third point  \n-\n"
    assert format_bullets(raw) == (
        '<ul style="padding-left:1.5em;list-style:disc;">'
        '<li>First point</li><li>Second point</li><li>Third point</li></ul>'
    )


def test_format_bullets_leaves_prose_untouched():
    prose = "The article says things.\n- but not as a list"
    assert format_bullets(prose) == prose


@pytest.mark.asyncio
async def test_summarize_formats_bullet_reply():
    client = FakeChatClient("- a\n- b")
    summary = await Summarizer(client_override=client).summarize("Some article text")

    assert summary == '<ul style="padding-left:1.5em;list-style:disc;"><li>a</li><li>b</li></ul>'


@pytest.mark.asyncio
async def test_summarize_sends_fixed_prompt_and_parameters():
    client = FakeChatClient("Plain summary.")
    summary = await Summarizer(client_override=client).summarize("Body of the article")

    assert summary == "Plain summary."
    assert len(client.requests) == 1
    request = client.requests[0]
    assert request["model"] == config.SUMMARIZER_MODEL
    assert request["max_tokens"] == config.SUMMARIZER_MAX_TOKENS
    assert request["temperature"] == config.SUMMARIZER_TEMPERATURE
    system, user = request["messages"]
    assert system == {"role": "system", "content": "You are a helpful assistant that summarizes news articles."}
    assert user["role"] == "user"
    assert user["content"] == (
        "Summarize the following article as 4-5 concise bullet points. Do not write a paragraph."
        "\n\nBody of the article"
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("text", [None, "", 42])
async def test_summarize_rejects_missing_text(text):
    client = FakeChatClient("- a")
    with pytest.raises(InvalidInput):
        await Summarizer(client_override=client).summarize(text)
    assert client.requests == []


@pytest.mark.asyncio
async def test_summarize_upstream_failure_carries_status_and_details():
    body = {"message": "Rate limit reached", "type": "requests"}
    client = FakeChatClient(error=api_status_error(429, body))

    with pytest.raises(UpstreamError) as excinfo:
        await Summarizer(client_override=client).summarize("text")

    assert excinfo.value.status == 429
    assert excinfo.value.details == body
