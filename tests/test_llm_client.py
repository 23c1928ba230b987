import json as jsonlib

import pytest

from workbook import llm_client
from workbook.errors import (
    EmptyResponseError,
    MalformedStructuredOutput,
    ProviderError,
    TransientProviderError,
)
from workbook.models import ImageContent, Message, ModelConfig

SCHEMA = {"type": "object", "properties": {"ok": {"type": "boolean"}}}
IMAGE = ImageContent(mime_type="image/png", base64="iVBORw0KGgo=")


class FakeResp:
    def __init__(self, status, payload):
        self.status_code = status
        self._payload = payload
        self.text = payload if isinstance(payload, str) else jsonlib.dumps(payload)

    def json(self):
        return self._payload


def _install(monkeypatch, responses):
    captured = {"urls": [], "bodies": [], "headers": [], "params": [], "timeouts": []}
    queue = list(responses)

    def fake_post(url, headers=None, params=None, json=None, timeout=None):
        captured["urls"].append(url)
        captured["headers"].append(headers)
        captured["params"].append(params)
        captured["bodies"].append(json)
        captured["timeouts"].append(timeout)
        return queue.pop(0)

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    return captured


def test_openai_system_entries_and_image_url(ctx):
    client = llm_client.OpenAIClient(ModelConfig("gpt-4o", "sk-test"), ctx)
    body = client.format_messages(
        [
            Message("system", "one"),
            Message("system", "two"),
            Message("user", "look"),
            Message("user", image=IMAGE),
        ],
        json_mode=False,
    )
    assert body["model"] == "gpt-4o"
    assert body["messages"][0] == {"role": "system", "content": "one"}
    assert body["messages"][1] == {"role": "system", "content": "two"}
    assert body["messages"][3]["content"][0]["image_url"]["url"] == "data:image/png;base64,iVBORw0KGgo="
    assert "response_format" not in body


def test_openai_json_mode_appends_schema_without_mutating_messages(ctx):
    client = llm_client.OpenAIClient(ModelConfig("gpt-4o", "sk-test"), ctx)
    messages = [Message("system", "grade"), Message("user", "answers")]
    body = client.format_messages(messages, json_mode=True, json_schema=SCHEMA)
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0]["content"].startswith("grade\nRespond using this JSON schema:")
    assert messages[0].text == "grade"


def test_openai_json_mode_without_system_message_inserts_one(ctx):
    client = llm_client.OpenAIClient(ModelConfig("gpt-4o", "sk-test"), ctx)
    body = client.format_messages([Message("user", "hi")], json_mode=True, json_schema=SCHEMA)
    assert body["messages"][0]["role"] == "system"
    assert "JSON schema" in body["messages"][0]["content"]


def test_gemini_concatenates_system_and_uses_inline_data(ctx):
    client = llm_client.GeminiClient(ModelConfig("gemini-1.5-flash-002", "g-key"), ctx)
    body = client.format_messages(
        [
            Message("system", "a"),
            Message("system", "b"),
            Message("user", image=IMAGE),
            Message("assistant", "earlier"),
        ],
        json_mode=True,
        json_schema=SCHEMA,
    )
    system_text = body["system_instruction"]["parts"][0]["text"]
    assert system_text.startswith("a\nb\n")
    assert "Respond using this JSON schema" in system_text
    assert body["contents"][0]["parts"][0] == {"inline_data": {"mime_type": "image/png", "data": "iVBORw0KGgo="}}
    assert body["contents"][1]["role"] == "model"
    assert body["generationConfig"] == {"response_mime_type": "application/json"}
    assert client.params() == {"key": "g-key"}
    assert "gemini-1.5-flash-002:generateContent" in client.endpoint()


def test_anthropic_system_string_and_image_source(ctx):
    client = llm_client.AnthropicClient(ModelConfig("claude-3-5-sonnet-20241022", "a-key"), ctx)
    body = client.format_messages(
        [Message("system", "be terse"), Message("user", "page", image=IMAGE)],
        json_mode=True,
    )
    assert body["system"] == "be terse\nRespond using ONLY JSON."
    assert body["max_tokens"] == ctx.settings.anthropic_max_tokens
    content = body["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "page"}
    assert content[1]["source"] == {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="}
    assert client.headers()["x-api-key"] == "a-key"
    assert client.headers()["anthropic-version"] == llm_client.ANTHROPIC_VERSION


def test_anthropic_omits_empty_system(ctx):
    client = llm_client.AnthropicClient(ModelConfig("claude-3-haiku-20240307", "a-key"), ctx)
    body = client.format_messages([Message("user", "hi")], json_mode=False)
    assert "system" not in body


def test_complete_returns_text_and_uses_timeout(monkeypatch, ctx):
    captured = _install(monkeypatch, [FakeResp(200, {"choices": [{"message": {"content": "hello"}}], "usage": {"total_tokens": 3}})])
    client = llm_client.OpenAIClient(ModelConfig("gpt-4o-mini", "sk-test"), ctx)
    assert client.complete([Message("user", "hi")]) == "hello"
    assert captured["urls"] == [llm_client.OPENAI_ENDPOINT]
    assert captured["headers"][0]["Authorization"] == "Bearer sk-test"
    assert captured["timeouts"] == [ctx.settings.llm_timeout_secs]


def test_complete_parses_json_mode(monkeypatch, ctx):
    payload = {"content": [{"type": "text", "text": "```json\n{\"ok\": true,}\n```"}]}
    _install(monkeypatch, [FakeResp(200, payload)])
    client = llm_client.AnthropicClient(ModelConfig("claude-3-haiku-20240307", "a-key"), ctx)
    assert client.complete([Message("user", "hi")], json_mode=True) == {"ok": True}


def test_complete_malformed_json_reports_raw_text(monkeypatch, ctx):
    _install(monkeypatch, [FakeResp(200, {"choices": [{"message": {"content": "not json at all"}}]})])
    client = llm_client.OpenAIClient(ModelConfig("gpt-4o", "sk-test"), ctx)
    with pytest.raises(MalformedStructuredOutput) as info:
        client.complete([Message("user", "hi")], json_mode=True)
    assert info.value.raw == "not json at all"


def test_complete_empty_content_is_an_error(monkeypatch, ctx):
    _install(monkeypatch, [FakeResp(200, {"candidates": [{"content": {"parts": [{"text": ""}]}}]})])
    client = llm_client.GeminiClient(ModelConfig("gemini-1.5-flash-002", "g-key"), ctx)
    with pytest.raises(EmptyResponseError):
        client.complete([Message("user", "hi")])


def test_error_status_carries_code_and_truncated_body(monkeypatch, ctx):
    _install(monkeypatch, [FakeResp(400, "x" * 5000)])
    client = llm_client.OpenAIClient(ModelConfig("gpt-4o", "sk-test"), ctx)
    with pytest.raises(ProviderError) as info:
        client.complete([Message("user", "hi")])
    err = info.value
    assert not isinstance(err, TransientProviderError)
    assert err.status == 400
    assert len(err.body) == llm_client.ERROR_EXCERPT_CHARS
    assert "(400)" in str(err)


def test_503_is_transient(monkeypatch, ctx):
    _install(monkeypatch, [FakeResp(503, {"error": "overloaded"})])
    client = llm_client.AnthropicClient(ModelConfig("claude-3-haiku-20240307", "a-key"), ctx)
    with pytest.raises(TransientProviderError) as info:
        client.complete([Message("user", "hi")])
    assert info.value.status == 503


def test_client_for_picks_adapter_and_rejects_unknown_models(ctx):
    assert isinstance(llm_client.client_for(ModelConfig("gpt-4o", "k"), ctx), llm_client.OpenAIClient)
    assert isinstance(llm_client.client_for(ModelConfig("gemini-pro", "k"), ctx), llm_client.GeminiClient)
    assert isinstance(
        llm_client.client_for(ModelConfig("claude-3-haiku-20240307", "k"), ctx), llm_client.AnthropicClient
    )
    with pytest.raises(ValueError):
        llm_client.client_for(ModelConfig("llama-2", "k"), ctx)
