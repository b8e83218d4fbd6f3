from types import SimpleNamespace

import pytest

from vibe_rooms.llm_client import LlmClient, parse_model_name


class FakeResponses:
    def __init__(self, text):
        self.text = text
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(output_text=self.text, usage=SimpleNamespace(input_tokens=12, output_tokens=3))


@pytest.fixture
def openai_client(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    client = LlmClient("gpt-5.1_low", vertex_project="proj", vertex_region="us-central1")
    responses = FakeResponses("  {\"ok\": true}\n")
    client._client = SimpleNamespace(responses=responses)
    return client, responses


class TestLlmClient:

    def test_openai_reply_is_plain_text(self, openai_client):
        client, responses = openai_client

        assert client.invoke("hello") == '{"ok": true}'
        assert responses.calls == [{"model": "gpt-5.1", "input": "hello", "reasoning": {"effort": "low"}}]

    def test_no_usage_is_kept_between_calls(self, openai_client):
        client, _ = openai_client

        client.invoke("one")
        client.invoke("two")

        assert not hasattr(client, "last_usage")
        assert client.provider == "openai"


@pytest.mark.parametrize("raw, expected", [
    ("gpt-4o", ("gpt-4o", {})),
    ("gpt-5.1_high", ("gpt-5.1", {"reasoning": {"effort": "high"}})),
])
def test_parse_model_name(raw, expected):
    assert parse_model_name(raw) == expected


def test_parse_model_name_rejects_unknown_suffix():
    with pytest.raises(ValueError):
        parse_model_name("gpt-5.1_turbo")
