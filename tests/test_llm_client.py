"""
Unit tests for prompt building and the completion client.
"""

import pytest
import requests

from contextmem.config import EngineConfig
from contextmem.errors import CompletionError, CredentialInvalid, CredentialRequired
from contextmem.llm import client
from contextmem.llm.service import generate_answer
from contextmem.prompting.prompt_builder import CONTEXT_SEPARATOR, build_chat_prompt


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


@pytest.fixture
def post(monkeypatch):
    calls = []
    state = {"response": FakeResponse(200, {"choices": [{"message": {"content": "  Hi!  "}}]})}

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        response = state["response"]
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(client.requests, "post", fake_post)
    fake_post.calls = calls
    fake_post.state = state
    return fake_post


class TestBuildChatPrompt:
    def test_segments_are_joined_into_system_message(self):
        messages = build_chat_prompt(["RECENT CONVERSATION:\nuser: hi", "DOCUMENTS:\nx"], "  What now? ")

        assert messages[0]["role"] == "system"
        assert "RECENT CONVERSATION:\nuser: hi" + CONTEXT_SEPARATOR + "DOCUMENTS:\nx" in messages[0]["content"]
        assert messages[1] == {"role": "user", "content": "What now?"}


class TestGenerateAnswer:
    def test_payload_uses_config_defaults(self, post):
        config = EngineConfig(
            completion_url="https://llm.test/v1/chat/completions",
            completion_model="test-model",
            completion_temperature=0.2,
            completion_max_tokens=42,
        )
        messages = [{"role": "user", "content": "hello"}]

        assert generate_answer(messages, "sk-test", config) == "Hi!"

        call = post.calls[0]
        assert call["url"] == "https://llm.test/v1/chat/completions"
        assert call["headers"]["Authorization"] == "Bearer sk-test"
        assert call["json"] == {
            "model": "test-model",
            "messages": messages,
            "temperature": 0.2,
            "max_tokens": 42,
        }


class TestSendRequest:
    def test_missing_credential(self, post):
        with pytest.raises(CredentialRequired):
            client.send_request({}, "", url="https://llm.test")
        assert post.calls == []

    @pytest.mark.parametrize("status", [401, 403])
    def test_rejected_credential(self, post, status):
        post.state["response"] = FakeResponse(status, {"error": "nope"})

        with pytest.raises(CredentialInvalid):
            client.send_request({}, "sk-bad", url="https://llm.test")

    def test_server_error(self, post):
        post.state["response"] = FakeResponse(500, {"error": "boom"})

        with pytest.raises(CompletionError):
            client.send_request({}, "sk-test", url="https://llm.test")

    def test_transport_error(self, post):
        post.state["response"] = requests.exceptions.ConnectionError("down")

        with pytest.raises(CompletionError):
            client.send_request({}, "sk-test", url="https://llm.test")

    def test_malformed_body(self, post):
        post.state["response"] = FakeResponse(200, {"choices": []})

        with pytest.raises(CompletionError):
            client.send_request({}, "sk-test", url="https://llm.test")
