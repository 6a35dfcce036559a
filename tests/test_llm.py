"""
Tests for the hosted model client, against a fake requests session.
"""
import base64

import pytest
import requests

from todolist.config import Settings
from todolist.errors import LLMError
from todolist.llm import ClaudeClient


class FakeResponse:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no JSON")
        return self._data


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def post(self, url, headers=None, json=None, timeout=None):
        self.requests.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


def client(session, api_key="test-key"):
    settings = Settings(api_key=api_key, api_base_url="https://models.test/", text_model="text-model")
    return ClaudeClient(settings, session=session)


def ok(text):
    return FakeResponse(200, {"content": [{"type": "text", "text": text}]})


def test_complete_returns_trimmed_text():
    session = FakeSession(ok("  Shopping \n"))
    assert client(session).complete("Categorize this", system="You categorize") == "Shopping"

    sent = session.requests[0]
    assert sent["url"] == "https://models.test/v1/messages"
    assert sent["headers"]["x-api-key"] == "test-key"
    assert sent["headers"]["anthropic-version"] == "2023-06-01"
    assert sent["json"]["model"] == "text-model"
    assert sent["json"]["max_tokens"] == 500
    assert sent["json"]["system"] == "You categorize"
    assert sent["json"]["messages"] == [{"role": "user", "content": "Categorize this"}]


def test_transcribe_image_sends_image_block():
    session = FakeSession(ok("Buy milk"))
    text = client(session).transcribe_image(b"\x89PNG", "image/png", "Extract text",
                                            model="vision-model", max_tokens=800)
    assert text == "Buy milk"

    payload = session.requests[0]["json"]
    assert payload["model"] == "vision-model"
    assert payload["max_tokens"] == 800
    image, instruction = payload["messages"][0]["content"]
    assert image["source"]["media_type"] == "image/png"
    assert base64.b64decode(image["source"]["data"]) == b"\x89PNG"
    assert instruction == {"type": "text", "text": "Extract text"}


def test_http_error_carries_status_and_type():
    session = FakeSession(FakeResponse(429, {"error": {"type": "rate_limit_error"}}, "slow down"))
    with pytest.raises(LLMError) as exc:
        client(session).complete("hi")
    assert exc.value.status == 429
    assert exc.value.error_type == "rate_limit_error"


def test_missing_text_content():
    session = FakeSession(FakeResponse(200, {"content": []}))
    with pytest.raises(LLMError, match="No text content"):
        client(session).complete("hi")


def test_network_failure():
    session = FakeSession(error=requests.ConnectionError("refused"))
    with pytest.raises(LLMError, match="unreachable"):
        client(session).complete("hi")


def test_unconfigured_client_never_calls_out():
    session = FakeSession(ok("unused"))
    llm = client(session, api_key="")
    assert not llm.configured
    with pytest.raises(LLMError):
        llm.complete("hi")
    assert session.requests == []


def test_close():
    session = FakeSession()
    client(session).close()
    assert session.closed
