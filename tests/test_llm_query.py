import json

import pytest

from workbook import llm_query
from workbook.cache import cache_key
from workbook.errors import ProviderError, RetryExhausted, TransientProviderError
from workbook.llm_query import LLMQuery, backoff_delay
from workbook.models import ImageContent, Message, ModelConfig

CONFIG = ModelConfig("gpt-4o-mini", "sk-test")


class ScriptedClient:
    """Stands in for a transport adapter; replays a list of outcomes."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def complete(self, messages, json_mode=False, json_schema=None):
        self.calls.append((list(messages), json_mode, json_schema))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def no_sleep(monkeypatch):
    delays = []
    monkeypatch.setattr(llm_query.time, "sleep", lambda s: delays.append(s))
    return delays


def _overloaded():
    return TransientProviderError("API error for X (503): busy", 503, "busy")


def test_builder_is_chainable_and_accumulates_messages(ctx):
    image = ImageContent("image/jpeg", "abc")
    q = LLMQuery(CONFIG, ctx, client=ScriptedClient([]))
    assert q.system("s").user("u").image(image).output_json({"type": "object"}) is q
    assert [m.role for m in q.messages] == ["system", "user", "user"]
    assert q.messages[2].image == image
    assert q.json_mode is True
    assert q.json_schema == {"type": "object"}


def test_output_json_without_schema_keeps_earlier_schema(ctx):
    q = LLMQuery(CONFIG, ctx, client=ScriptedClient([])).output_json({"type": "object"}).output_json()
    assert q.json_schema == {"type": "object"}


def test_second_execute_is_served_from_cache(ctx):
    client = ScriptedClient(["first answer"])
    assert LLMQuery(CONFIG, ctx, client=client).system("s").user("u").execute() == "first answer"
    again = ScriptedClient(["should not be used"])
    assert LLMQuery(CONFIG, ctx, client=again).system("s").user("u").execute() == "first answer"
    assert len(client.calls) == 1
    assert again.calls == []


def test_cache_entry_layout(ctx):
    LLMQuery(CONFIG, ctx, client=ScriptedClient([{"ok": True}])).user("u").output_json().execute()
    key = cache_key("gpt-4o-mini", [Message("user", "u")], True, None)
    entry = json.loads((ctx.settings.cache_dir / f"{key}.json").read_text(encoding="utf-8"))
    assert set(entry) == {"timestamp", "request", "response"}
    assert entry["response"] == {"ok": True}
    assert entry["request"]["model"] == "gpt-4o-mini"
    assert entry["request"]["json_mode"] is True


def test_different_schema_is_a_different_key(ctx):
    msgs = [Message("user", "u")]
    assert cache_key("m", msgs, True, {"a": 1}) != cache_key("m", msgs, True, {"a": 2})
    assert cache_key("m", msgs, True, None) != cache_key("m", msgs, False, None)
    assert cache_key("m", msgs, False, None) == cache_key("m", [Message("user", "u")], False, None)


def test_retries_transient_errors_then_succeeds(ctx, no_sleep):
    client = ScriptedClient([_overloaded(), _overloaded(), "done"])
    assert LLMQuery(CONFIG, ctx, client=client).user("u").execute(max_attempts=3) == "done"
    assert len(client.calls) == 3
    assert len(no_sleep) == 2


def test_retry_exhausted_wraps_last_cause(ctx, no_sleep):
    last = _overloaded()
    client = ScriptedClient([_overloaded(), _overloaded(), last, "never"])
    with pytest.raises(RetryExhausted) as info:
        LLMQuery(CONFIG, ctx, client=client).user("u").execute(max_attempts=3)
    assert info.value.cause is last
    assert info.value.__cause__ is last
    assert len(client.calls) == 3


def test_other_provider_errors_propagate_immediately(ctx, no_sleep):
    client = ScriptedClient([ProviderError("API error (401): nope", 401, "nope"), "never"])
    with pytest.raises(ProviderError):
        LLMQuery(CONFIG, ctx, client=client).user("u").execute()
    assert len(client.calls) == 1
    assert no_sleep == []


def test_failures_are_not_cached(ctx, no_sleep):
    with pytest.raises(ProviderError):
        LLMQuery(CONFIG, ctx, client=ScriptedClient([ProviderError("bad", 400)])).user("u").execute()
    assert LLMQuery(CONFIG, ctx, client=ScriptedClient(["ok"])).user("u").execute() == "ok"


def test_backoff_delay_grows_and_caps(monkeypatch):
    monkeypatch.setattr(llm_query.random, "random", lambda: 0.0)
    assert backoff_delay(1) == 2.0
    assert backoff_delay(3) == 8.0
    assert backoff_delay(10) == 64.0
    monkeypatch.setattr(llm_query.random, "random", lambda: 1.0)
    assert backoff_delay(10) == pytest.approx(64.0 * 1.1)
