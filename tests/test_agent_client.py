"""Tests for the agent clients."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from claude_agent_sdk import AssistantMessage, ResultMessage, TextBlock

from feature_harness.agent_client import (
    AgentRequest, AgentResult, MockAgentClient, SDKAgentClient, get_auth_method, is_auth_configured
)
from feature_harness.protocols import AgentClient


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def request_(tmp_path):
    return AgentRequest(prompt="do it", system_prompt="persona", working_directory=tmp_path)


def _text_message(text: str):
    block = MagicMock(spec=TextBlock)
    block.text = text
    message = MagicMock(spec=AssistantMessage)
    message.content = [block]
    return message


def _result_message(subtype: str = "success", is_error: bool = False, result=None):
    message = MagicMock(spec=ResultMessage)
    message.subtype = subtype
    message.is_error = is_error
    message.result = result
    message.total_cost_usd = 0.25
    message.num_turns = 4
    return message


def _fake_query(*messages, error: Exception = None, delay: float = 0):
    async def fake_query(prompt, options):
        if delay:
            await asyncio.sleep(delay)
        for message in messages:
            yield message
        if error:
            raise error
    return fake_query


# =============================================================================
# Authentication
# =============================================================================

class TestAuth:
    def test_oauth_preferred(self, monkeypatch):
        monkeypatch.setenv("CLAUDE_CODE_OAUTH_TOKEN", "token")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "key")
        assert get_auth_method() == "oauth"

    def test_api_key(self, monkeypatch):
        monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
        monkeypatch.setenv("ANTHROPIC_API_KEY", "key")
        assert get_auth_method() == "api_key"

    def test_none(self, monkeypatch):
        monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert get_auth_method() is None
        assert not is_auth_configured()


# =============================================================================
# SDK client
# =============================================================================

class TestSDKAgentClient:
    def test_satisfies_protocol(self):
        assert isinstance(SDKAgentClient(), AgentClient)

    @pytest.mark.asyncio
    async def test_streams_text_and_reads_result(self, request_):
        streamed = []
        fake = _fake_query(_text_message("Working"), _text_message(" on it"), _result_message())

        with patch("feature_harness.agent_client.query", fake):
            result = await SDKAgentClient().run(request_, on_text=streamed.append)

        assert result.success
        assert result.output == "Working on it"
        assert result.total_cost_usd == 0.25
        assert result.num_turns == 4
        assert streamed == ["Working", " on it"]

    @pytest.mark.asyncio
    async def test_result_text_wins_over_stream(self, request_):
        fake = _fake_query(_text_message("partial"), _result_message(result="final answer"))

        with patch("feature_harness.agent_client.query", fake):
            result = await SDKAgentClient().run(request_)

        assert result.output == "final answer"

    @pytest.mark.asyncio
    async def test_error_result(self, request_):
        fake = _fake_query(_result_message(subtype="error_max_turns", is_error=True))

        with patch("feature_harness.agent_client.query", fake):
            result = await SDKAgentClient().run(request_)

        assert not result.success
        assert "error_max_turns" in result.error

    @pytest.mark.asyncio
    async def test_sdk_exception_becomes_failed_result(self, request_):
        fake = _fake_query(_text_message("so far"), error=RuntimeError("CLI crashed"))

        with patch("feature_harness.agent_client.query", fake):
            result = await SDKAgentClient().run(request_)

        assert not result.success
        assert result.error == "CLI crashed"
        assert result.output == "so far"

    @pytest.mark.asyncio
    async def test_missing_result_message(self, request_):
        with patch("feature_harness.agent_client.query", _fake_query(_text_message("hi"))):
            result = await SDKAgentClient().run(request_)

        assert not result.success
        assert "without a result" in result.error

    @pytest.mark.asyncio
    async def test_timeout(self, request_):
        fake = _fake_query(_result_message(), delay=5)

        with patch("feature_harness.agent_client.query", fake):
            result = await SDKAgentClient(timeout_seconds=0.05).run(request_)

        assert not result.success
        assert "timeout" in result.error.lower()

    @pytest.mark.asyncio
    async def test_options(self, request_):
        captured = {}

        async def fake_query(prompt, options):
            captured["prompt"] = prompt
            captured["options"] = options
            yield _result_message()

        with patch("feature_harness.agent_client.query", fake_query):
            await SDKAgentClient().run(request_)

        assert captured["prompt"] == "do it"
        assert captured["options"].system_prompt == "persona"
        assert Path(captured["options"].cwd) == request_.working_directory
        assert captured["options"].max_turns == 50


# =============================================================================
# Mock client
# =============================================================================

class TestMockAgentClient:
    def test_satisfies_protocol(self):
        assert isinstance(MockAgentClient(), AgentClient)

    @pytest.mark.asyncio
    async def test_responses_in_order_then_repeat(self, request_):
        client = MockAgentClient(responses=["one", AgentResult(success=False, error="two")])

        first = await client.run(request_)
        second = await client.run(request_)
        third = await client.run(request_)

        assert first.output == "one" and first.success
        assert second.error == "two"
        assert third.error == "two"
        assert client.call_count == 3

    @pytest.mark.asyncio
    async def test_exception_response(self, request_):
        client = MockAgentClient(responses=[ConnectionError("offline")])
        with pytest.raises(ConnectionError):
            await client.run(request_)

    @pytest.mark.asyncio
    async def test_side_effect_sync_and_async(self, request_):
        calls = []

        async def async_effect(request):
            calls.append("async")

        await MockAgentClient(side_effect=lambda r: calls.append("sync")).run(request_)
        await MockAgentClient(side_effect=async_effect).run(request_)

        assert calls == ["sync", "async"]
