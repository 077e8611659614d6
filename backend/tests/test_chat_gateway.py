"""
LifeSync Backend: ChatCompletionGateway Unit Tests
====================================================

What we test:
    ✅ Local validation rejects bad parameters without any network call
    ✅ Sanitization (control characters, trimming, truncation)
    ✅ Request body shape, including the json_schema response_format
    ✅ Structured output parsing, code fences, schema mismatch (no retry)
    ✅ Strict json_schema: closed objects, every property required, no length keywords
    ✅ Usage accounting, health check, reset
    ✅ Health checks leave breaker state and usage statistics untouched
"""

import json
from typing import List, Optional

import pytest
from pydantic import BaseModel, Field

from conftest import completion_payload, json_response
from lifesync.exceptions import InvalidRequestError, SchemaInvalidError, ServiceUnavailableError
from lifesync.schemas.report import ReportContent
from lifesync.services.chat_gateway import (
    ChatCompletionGateway,
    sanitize_content,
    strict_json_schema,
    strip_code_fence,
)
from lifesync.services.circuit_breaker import CircuitState
from lifesync.services.llm_base import ChatMessage, CompletionOptions


class Summary(BaseModel):
    title: str
    score: int


USER = [ChatMessage(role="user", content="Hello")]


@pytest.fixture
def gateway(make_client):
    return ChatCompletionGateway(make_client(), max_message_chars=50)


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "model, messages, options, expected",
        [
            ("", USER, None, "model"),
            ("m", [], None, "messages"),
            ("m", [ChatMessage(role="tool", content="x")], None, "role"),
            ("m", USER, CompletionOptions(temperature=2.5), "temperature"),
            ("m", USER, CompletionOptions(temperature=-0.1), "temperature"),
            ("m", USER, CompletionOptions(max_tokens=0), "max_tokens"),
            ("m", USER, CompletionOptions(max_tokens=200_001), "max_tokens"),
            ("m", USER, CompletionOptions(top_p=1.5), "top_p"),
        ],
    )
    async def test_rejected_locally(self, gateway, fake_transport, model, messages, options, expected):
        with pytest.raises(InvalidRequestError) as exc_info:
            await gateway.complete(model, messages, options)

        assert fake_transport.call_count == 0
        assert any(expected in err for err in exc_info.value.errors)
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_boundaries_accepted(self, gateway, fake_transport):
        fake_transport.script = [json_response(200, completion_payload("hi"))]
        options = CompletionOptions(temperature=2.0, max_tokens=200_000, top_p=0.0)

        result = await gateway.complete("m", USER, options)

        assert result.text == "hi"
        assert fake_transport.call_count == 1


class TestSanitize:
    def test_strips_control_characters_but_keeps_line_structure(self):
        assert sanitize_content("a\x00b\x07c\td\ne\r\x1b[31m\x7f") == "abc\td\ne\r[31m"

    def test_trims_and_truncates(self):
        assert sanitize_content("   " + "x" * 20 + "   ", max_chars=10) == "x" * 10

    def test_strip_code_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fence('{"a": 1}') == '{"a": 1}'


class TestComplete:
    @pytest.mark.asyncio
    async def test_request_body(self, gateway, fake_transport):
        fake_transport.script = [json_response(200, completion_payload("ok"))]
        messages = [
            ChatMessage(role="system", content="Be brief.\x00"),
            ChatMessage(role="user", content="y" * 80),
        ]

        await gateway.complete(" acme/model ", messages, CompletionOptions(temperature=0.3, max_tokens=100))

        body = fake_transport.calls[0]["body"]
        assert body["model"] == "acme/model"
        assert body["messages"][0] == {"role": "system", "content": "Be brief."}
        assert body["messages"][1]["content"] == "y" * 50
        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 100
        assert "top_p" not in body
        assert "response_format" not in body

    @pytest.mark.asyncio
    async def test_structured_output(self, gateway, fake_transport):
        content = '```json\n{"title": "Week", "score": 7}\n```'
        fake_transport.script = [json_response(200, completion_payload(content, total_tokens=300))]

        result = await gateway.complete("m", USER, CompletionOptions(response_schema=Summary))

        assert result.parsed == Summary(title="Week", score=7)
        assert result.usage.total_tokens == 300
        assert result.response_id == "gen-123"
        fmt = fake_transport.calls[0]["body"]["response_format"]
        assert fmt["type"] == "json_schema"
        assert fmt["json_schema"]["name"] == "Summary"
        assert fmt["json_schema"]["strict"] is True
        assert fmt["json_schema"]["schema"]["required"] == ["title", "score"]

    @pytest.mark.asyncio
    async def test_schema_mismatch_is_not_retried(self, gateway, fake_transport):
        fake_transport.script = [json_response(200, completion_payload(json.dumps({"title": "x"})))]

        with pytest.raises(SchemaInvalidError) as exc_info:
            await gateway.complete("m", USER, CompletionOptions(response_schema=Summary))

        assert fake_transport.call_count == 1
        assert exc_info.value.retryable is False
        assert gateway.get_usage_stats().errors_count == 1
        assert gateway.get_usage_stats().requests_count == 0

    @pytest.mark.asyncio
    async def test_missing_content_is_schema_invalid(self, gateway, fake_transport):
        fake_transport.script = [json_response(200, {"id": "x", "choices": []})]

        with pytest.raises(SchemaInvalidError):
            await gateway.complete("m", USER)

    @pytest.mark.asyncio
    async def test_missing_usage_counts_as_zero(self, gateway, fake_transport):
        payload = completion_payload("hi")
        del payload["usage"]
        fake_transport.script = [json_response(200, payload)]

        result = await gateway.complete("m", USER)

        assert result.usage.total_tokens == 0
        assert gateway.get_usage_stats().requests_count == 1

    @pytest.mark.asyncio
    async def test_upstream_error_propagates(self, make_client, fake_transport):
        fake_transport.script = [json_response(503)]
        gateway = ChatCompletionGateway(make_client(max_retries=1))

        with pytest.raises(ServiceUnavailableError):
            await gateway.complete("m", USER)

        assert fake_transport.call_count == 2


class Tag(BaseModel):
    format: str = Field(min_length=1)
    label: Optional[str] = None


class Digest(BaseModel):
    tags: List[Tag] = Field(min_length=1)
    note: str = Field(default="", max_length=20)


class TestStrictSchema:
    @pytest.mark.asyncio
    async def test_report_content_schema_is_closed(self, gateway, fake_transport):
        fake_transport.script = [
            json_response(200, completion_payload(json.dumps({"html": "<p>x</p>", "text_version": "x"})))
        ]

        await gateway.complete("m", USER, CompletionOptions(response_schema=ReportContent))

        schema = fake_transport.calls[0]["body"]["response_format"]["json_schema"]["schema"]
        assert schema["additionalProperties"] is False
        assert schema["required"] == ["html", "text_version"]
        assert "minLength" not in json.dumps(schema)

    def test_nested_models_are_closed_and_unconstrained(self):
        schema = strict_json_schema(Digest.model_json_schema())

        tag = schema["$defs"]["Tag"]
        assert tag["additionalProperties"] is False
        assert tag["required"] == ["format", "label"]
        assert "format" in tag["properties"]
        assert schema["required"] == ["tags", "note"]
        dumped = json.dumps(schema)
        for keyword in ("minLength", "maxLength", "minItems", '"default"'):
            assert keyword not in dumped

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"html": "   ", "text_version": "x"},
            {"html": "<p>x</p>", "text_version": "x", "summary": "extra"},
        ],
    )
    async def test_blank_html_or_extra_keys_rejected(self, gateway, fake_transport, payload):
        fake_transport.script = [json_response(200, completion_payload(json.dumps(payload)))]

        with pytest.raises(SchemaInvalidError):
            await gateway.complete("m", USER, CompletionOptions(response_schema=ReportContent))

        assert fake_transport.call_count == 1


class TestUsageStats:
    @pytest.mark.asyncio
    async def test_tokens_cost_and_reset(self, gateway, fake_transport):
        fake_transport.script = [json_response(200, completion_payload("a", total_tokens=500_000))]

        await gateway.complete("m", USER)
        await gateway.complete("m", USER)

        snap = gateway.get_usage_stats()
        assert snap.requests_count == 2
        assert snap.total_tokens_used == 1_000_000
        assert snap.estimated_cost == pytest.approx(30.0)
        assert snap.average_response_time_ms == pytest.approx(12.0)

        gateway.reset_usage_stats()
        assert gateway.get_usage_stats().requests_count == 0
        assert gateway.get_usage_stats().rolling_window_size == 0

    def test_rolling_window_keeps_last_100(self, gateway):
        stats = gateway.client.usage_stats
        for ms in range(150):
            stats.record_latency(float(ms))

        snap = stats.snapshot()
        assert snap.rolling_window_size == 100
        assert snap.average_response_time_ms == pytest.approx(sum(range(50, 150)) / 100)


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, gateway, fake_transport):
        fake_transport.script = [json_response(200, {"data": []})]
        assert await gateway.health_check() is True
        assert fake_transport.calls[0]["method"] == "GET"
        assert fake_transport.calls[0]["url"].endswith("/models")

    @pytest.mark.asyncio
    async def test_unhealthy_never_raises_and_never_retries(self, gateway, fake_transport):
        fake_transport.script = [json_response(503)]
        assert await gateway.health_check() is False
        assert fake_transport.call_count == 1

    @pytest.mark.asyncio
    async def test_success_does_not_reset_failure_streak(self, make_client, fake_transport):
        gateway = ChatCompletionGateway(make_client(max_retries=0, failure_threshold=5))
        fake_transport.script = [json_response(503)]
        for _ in range(4):
            with pytest.raises(ServiceUnavailableError):
                await gateway.complete("m", USER)

        fake_transport.script = [json_response(200, {"data": []})]
        assert await gateway.health_check() is True
        assert gateway.client.breaker.consecutive_failures == 4

        fake_transport.script = [json_response(503)]
        with pytest.raises(ServiceUnavailableError):
            await gateway.complete("m", USER)
        assert gateway.client.breaker.state is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_usage_stats_untouched(self, gateway, fake_transport):
        fake_transport.script = [json_response(200, {"data": []}), json_response(503)]

        await gateway.health_check()
        await gateway.health_check()

        snap = gateway.get_usage_stats()
        assert snap.requests_count == 0
        assert snap.errors_count == 0
        assert snap.rolling_window_size == 0

    @pytest.mark.asyncio
    async def test_half_open_slot_stays_free(self, make_client, fake_transport, fake_clock):
        gateway = ChatCompletionGateway(make_client(max_retries=0, failure_threshold=1))
        fake_transport.script = [json_response(503)]
        with pytest.raises(ServiceUnavailableError):
            await gateway.complete("m", USER)
        fake_clock.advance(60)

        fake_transport.script = [json_response(200, {"data": []})]
        assert await gateway.health_check() is True

        assert gateway.client.breaker.state is CircuitState.OPEN
        assert gateway.client.breaker.before_call() is True
