"""Unit tests for the vendor adapters: wire mapping, response parsing, rate limits and the factory."""

import datetime
import json
import time

import pytest

from samvaad import config
from samvaad.errors import LLMError, RateLimitError
from samvaad.models import Message, ProviderResponse, StopReason, TextPart, ToolDescriptor, ToolResultPart, ToolUsePart
from samvaad.providers import AnthropicProvider, OpenAIProvider, ProviderName, create_provider
from samvaad.providers.openai import parse_reset_duration


class FakeHTTPResponse:
    def __init__(self, status_code, body=None, headers=None, text=""):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}
        self.text = text or json.dumps(body or {})
        self.reason = "OK" if status_code == 200 else "Error"

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeSession:
    def __init__(self, response):
        self.headers = {}
        self.response = response
        self.posted = []

    def post(self, url, json=None, timeout=None):
        self.posted.append((url, json))
        return self.response


def _history():
    return [
        Message(role="user", content=[TextPart(text="hi")]),
        Message(
            role="assistant",
            content=[TextPart(text="looking"), ToolUsePart(id="t1", name="search_project", input={"file_pattern": "*.py"})],
        ),
        Message(role="user", content=[ToolResultPart(tool_use_id="t1", content=[TextPart(text="2 files")])]),
        Message(role="user", content=[TextPart(text="continue")]),
    ]


SEARCH_TOOL = ToolDescriptor(name="search_project", description="Search files", input_schema={"type": "object"})


class TestAnthropicProvider:
    def test_auth_headers(self, ctx):
        p = AnthropicProvider(ctx, api_key="secret", model="m", base_url="http://anthropic/")
        assert p.session.headers["x-api-key"] == "secret"
        assert p.session.headers["anthropic-version"] == config.ANTHROPIC_VERSION
        assert p.endpoint == "http://anthropic/v1/messages"

    def test_payload_merges_same_role_turns(self, ctx):
        p = AnthropicProvider(ctx, api_key="k", model="m", base_url="http://x")
        payload = p.build_payload("sys", _history(), [], "m", 100, 0.2)
        assert payload["system"] == "sys"
        assert payload["max_tokens"] == 100
        assert [w["role"] for w in payload["messages"]] == ["user", "assistant", "user"]
        assert payload["messages"][1]["content"][1] == {
            "type": "tool_use",
            "id": "t1",
            "name": "search_project",
            "input": {"file_pattern": "*.py"},
        }
        assert payload["messages"][2]["content"] == [
            {"type": "tool_result", "tool_use_id": "t1", "content": [{"type": "text", "text": "2 files"}], "is_error": False},
            {"type": "text", "text": "continue"},
        ]
        assert "tools" not in payload

    def test_payload_advertises_tools(self, ctx):
        p = AnthropicProvider(ctx, api_key="k", model="m", base_url="http://x")
        payload = p.build_payload("", _history()[:1], [SEARCH_TOOL], "m", 100, 0.2)
        assert payload["tools"] == [{"name": "search_project", "description": "Search files", "input_schema": {"type": "object"}}]

    def test_parse_response(self, ctx):
        p = AnthropicProvider(ctx, api_key="k", model="m", base_url="http://x")
        body = {
            "id": "msg_1",
            "type": "message",
            "role": "assistant",
            "model": "m",
            "content": [{"type": "text", "text": "ok"}, {"type": "tool_use", "id": "t1", "name": "x", "input": {"a": 1}}],
            "stop_reason": "tool_use",
            "usage": {"input_tokens": 12, "output_tokens": 3},
        }
        headers = {
            "anthropic-ratelimit-requests-remaining": "49",
            "anthropic-ratelimit-requests-reset": "2024-01-01T00:00:00Z",
        }
        r = p.parse_response(body, headers, 200, "OK")
        assert r.usage.input_tokens == 12
        assert r.usage.total_tokens == 15
        assert r.rate_limit.requests_remaining == 49
        assert r.rate_limit.requests_reset == datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc).timestamp()
        assert r.rate_limit.tokens_remaining == 0
        assert r.answer_content[1] == ToolUsePart(id="t1", name="x", input={"a": 1})
        assert p.classify_stop_reason(r) == StopReason.tool_call

    @pytest.mark.parametrize(
        "raw,kind",
        [("end_turn", StopReason.natural_end), ("max_tokens", StopReason.length_limit), ("weird", StopReason.other)],
    )
    def test_stop_reasons(self, ctx, raw, kind):
        p = AnthropicProvider(ctx, api_key="k", model="m", base_url="http://x")
        assert p.classify_stop_reason(ProviderResponse(stop_reason=raw)) == kind

    @pytest.mark.asyncio
    async def test_send_maps_429_to_rate_limit_error(self, ctx):
        session = FakeSession(FakeHTTPResponse(429, text="slow down"))
        p = AnthropicProvider(ctx, api_key="k", model="m", base_url="http://x", session=session)
        with pytest.raises(RateLimitError):
            await p.send({"model": "m"})

    @pytest.mark.asyncio
    async def test_send_maps_other_errors_to_llm_error(self, ctx):
        session = FakeSession(FakeHTTPResponse(500, text="boom"))
        p = AnthropicProvider(ctx, api_key="k", model="m", base_url="http://x", session=session)
        with pytest.raises(LLMError) as exc:
            await p.send({"model": "m"})
        assert exc.value.details["status"] == 500

    @pytest.mark.asyncio
    async def test_send_normalizes_success(self, ctx):
        body = {"content": [{"type": "text", "text": "done"}], "stop_reason": "end_turn", "usage": {"input_tokens": 1, "output_tokens": 1}}
        session = FakeSession(FakeHTTPResponse(200, body=body))
        p = AnthropicProvider(ctx, api_key="k", model="m", base_url="http://x", session=session)
        r = await p.send({"model": "m"})
        assert session.posted[0][0] == "http://x/v1/messages"
        assert r.stop_reason_kind == StopReason.natural_end
        assert r.is_tool is False


class TestOpenAIProvider:
    def test_payload_splits_tool_results_into_tool_messages(self, ctx):
        p = OpenAIProvider(ctx, api_key="k", model="gpt", base_url="http://openai")
        payload = p.build_payload("sys", _history(), [SEARCH_TOOL], "gpt", 100, 0.2)
        wire = payload["messages"]
        assert wire[0] == {"role": "system", "content": "sys"}
        assert wire[1] == {"role": "user", "content": [{"type": "text", "text": "hi"}]}
        assert wire[2]["role"] == "assistant"
        assert wire[2]["content"] == "looking"
        assert wire[2]["tool_calls"] == [
            {"id": "t1", "type": "function", "function": {"name": "search_project", "arguments": json.dumps({"file_pattern": "*.py"})}}
        ]
        assert wire[3] == {"role": "tool", "tool_call_id": "t1", "content": "2 files"}
        assert wire[4] == {"role": "user", "content": [{"type": "text", "text": "continue"}]}
        assert payload["tools"] == [
            {"type": "function", "function": {"name": "search_project", "description": "Search files", "parameters": {"type": "object"}}}
        ]

    def test_error_tool_results_are_marked(self, ctx):
        p = OpenAIProvider(ctx, api_key="k", model="gpt", base_url="http://openai")
        messages = [Message(role="user", content=[ToolResultPart(tool_use_id="t1", content=[TextPart(text="nope")], is_error=True)])]
        wire = p.build_payload("", messages, [], "gpt", 10, 0.0)["messages"]
        assert wire == [{"role": "tool", "tool_call_id": "t1", "content": "Error: nope"}]

    def test_parse_response_with_tool_calls(self, ctx):
        p = OpenAIProvider(ctx, api_key="k", model="gpt", base_url="http://openai")
        body = {
            "id": "c1",
            "model": "gpt",
            "choices": [{
                "message": {
                    "content": None,
                    "tool_calls": [{"id": "call_1", "type": "function", "function": {"name": "search_project", "arguments": "{\"file_pattern\": \"*.txt\"}"}}],
                },
                "finish_reason": "tool_calls",
            }],
            "usage": {"prompt_tokens": 7, "completion_tokens": 2, "total_tokens": 9},
        }
        headers = {"x-ratelimit-remaining-requests": "99", "x-ratelimit-reset-requests": "6m0s"}
        before = time.time()
        r = p.parse_response(body, headers, 200, "OK")
        after = time.time()
        assert r.answer_content == [ToolUsePart(id="call_1", name="search_project", input={"file_pattern": "*.txt"})]
        assert r.usage.total_tokens == 9
        assert r.rate_limit.requests_remaining == 99
        assert before + 360 <= r.rate_limit.requests_reset <= after + 360
        assert p.classify_stop_reason(r) == StopReason.tool_call

    def test_malformed_arguments_become_empty_input(self, ctx):
        p = OpenAIProvider(ctx, api_key="k", model="gpt", base_url="http://openai")
        body = {"choices": [{"message": {"tool_calls": [{"id": "c", "function": {"name": "x", "arguments": "{not json"}}]}, "finish_reason": "tool_calls"}]}
        r = p.parse_response(body, {}, 200, "OK")
        assert r.answer_content[0].input == {}

    def test_content_filter_stop_reason(self, ctx):
        p = OpenAIProvider(ctx, api_key="k", model="gpt", base_url="http://openai")
        assert p.classify_stop_reason(ProviderResponse(stop_reason="content_filter")) == StopReason.content_filtered
        assert p.classify_stop_reason(ProviderResponse(stop_reason="length")) == StopReason.length_limit


@pytest.mark.parametrize(
    "value,expected",
    [("6m0s", 1360.0), ("1.5s", 1001.5), ("250ms", 1000.25), ("1h", 4600.0), (None, 0.0), ("", 0.0)],
)
def test_parse_reset_duration(value, expected):
    assert parse_reset_duration(value, now=1000.0) == pytest.approx(expected)


class TestCreateProvider:
    def test_unknown_provider_raises(self, ctx):
        with pytest.raises(ValueError):
            create_provider(ctx, "mystery", api_key="k")

    def test_missing_key_raises(self, ctx, monkeypatch):
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "")
        with pytest.raises(RuntimeError):
            create_provider(ctx, "anthropic")

    def test_settings_supply_key_and_model(self, ctx):
        p = create_provider(ctx, "OpenAI", settings={"api": {"api_key": "sk-test", "model": "gpt-test"}})
        assert isinstance(p, OpenAIProvider)
        assert p.name == ProviderName.openai
        assert p.model == "gpt-test"

    def test_explicit_args_win_over_settings(self, ctx):
        p = create_provider(ctx, ProviderName.anthropic, api_key="arg-key", model="arg-model", settings={"api": {"model": "cfg"}})
        assert isinstance(p, AnthropicProvider)
        assert p.api_key == "arg-key"
        assert p.model == "arg-model"
