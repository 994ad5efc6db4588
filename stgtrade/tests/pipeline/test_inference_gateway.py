"""Tests for InferenceGateway and extract_json_object."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from stgtrade.core.exceptions import CredentialMissingError, MalformedResponseError, QuotaExhaustedError
from stgtrade.core.types import AgentRole
from stgtrade.services.inference_gateway import EMPTY_RESPONSE_TEXT, InferenceGateway, extract_json_object
from stgtrade.tests.pipeline.pipeline_fakes import make_text_response


def make_gateway(app_config, responses, api_key=None, sleep=None):
    """Gateway whose client factory returns a mock with messages.create scripted by `responses`."""
    client = Mock()
    client.messages.create = AsyncMock(side_effect=responses)
    factory = Mock(return_value=client)
    gateway = InferenceGateway(app_config, api_key=api_key, client_factory=factory, sleep=sleep or AsyncMock())
    return gateway, client, factory


class TestExtractJsonObject:

    def test_object_surrounded_by_prose(self):
        text = 'Here is the data you asked for: {"name": "Acme Corp", "price": 101.5} Let me know.'
        assert extract_json_object(text) == {"name": "Acme Corp", "price": 101.5}

    def test_braces_inside_strings_do_not_end_the_span(self):
        text = 'Result {"name": "Weird } Name {Inc}", "price": 3}'
        assert extract_json_object(text) == {"name": "Weird } Name {Inc}", "price": 3}

    def test_nested_object(self):
        text = '```json\n{"name": "A", "price": 2, "meta": {"currency": "USD"}}\n```'
        assert extract_json_object(text)["meta"] == {"currency": "USD"}

    def test_skips_invalid_leading_span(self):
        text = 'Note {not json} then {"name": "B", "price": 4}'
        assert extract_json_object(text) == {"name": "B", "price": 4}

    def test_absent_object(self):
        assert extract_json_object("no json at all") is None
        assert extract_json_object("") is None
        assert extract_json_object('{"unterminated": 1') is None


class TestCredentialResolution:

    def test_explicit_key_takes_precedence(self, app_config):
        gateway = InferenceGateway(app_config, api_key="user-key", client_factory=Mock())
        assert gateway.resolve_api_key() == "user-key"

    def test_falls_back_to_environment_key(self, app_config):
        gateway = InferenceGateway(app_config, api_key="  ", client_factory=Mock())
        assert gateway.resolve_api_key() == "test-key"

    def test_undefined_placeholder_is_absent(self, app_config):
        app_config.claude.api_key = "undefined"
        gateway = InferenceGateway(app_config, api_key=None, client_factory=Mock())
        with pytest.raises(CredentialMissingError):
            gateway.resolve_api_key()

    @pytest.mark.asyncio
    async def test_missing_credential_fails_before_any_attempt(self, app_config):
        app_config.claude.api_key = None
        sleep = AsyncMock()
        gateway, client, factory = make_gateway(app_config, [], sleep=sleep)

        with pytest.raises(CredentialMissingError):
            await gateway.generate(AgentRole.BULL_RESEARCHER, "prompt", "system")
        with pytest.raises(CredentialMissingError):
            await gateway.resolve_ticker("ACME")

        factory.assert_not_called()
        client.messages.create.assert_not_awaited()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_client_is_cached_per_key(self, app_config):
        gateway, client, factory = make_gateway(app_config, [make_text_response("a"), make_text_response("b")])

        await gateway.generate(AgentRole.BULL_RESEARCHER, "p1", "s")
        await gateway.generate(AgentRole.BEAR_RESEARCHER, "p2", "s")

        factory.assert_called_once_with("test-key")

    def test_default_client_disables_sdk_retries(self, app_config):
        gateway = InferenceGateway(app_config)
        client = gateway._default_client_factory("sk-test")
        assert client.max_retries == 0


class TestResolveTicker:

    @pytest.mark.asyncio
    async def test_parses_name_and_price(self, app_config):
        response = make_text_response('Found it. {"name": "Acme Corp", "price": 123.45}')
        gateway, client, _ = make_gateway(app_config, [response])

        info = await gateway.resolve_ticker("ACME")

        assert info.name == "Acme Corp"
        assert info.price == 123.45
        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["tools"][0]["type"] == InferenceGateway.WEB_SEARCH_TOOL_TYPE
        assert kwargs["model"] == app_config.claude.lookup_model
        assert "ACME" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_accepts_numeric_string_price(self, app_config):
        gateway, _, _ = make_gateway(app_config, [make_text_response('{"name": "Big Co", "price": "1,234.50"}')])
        info = await gateway.resolve_ticker("BIG")
        assert info.price == 1234.5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [
        "I could not find that ticker.",
        '{"name": "Acme Corp"}',
        '{"name": "Acme Corp", "price": 0}',
        '{"name": "", "price": 10}',
        '{"name": "Acme Corp", "price": "n/a"}',
    ])
    async def test_malformed_response(self, app_config, text):
        gateway, client, _ = make_gateway(app_config, [make_text_response(text)])

        with pytest.raises(MalformedResponseError):
            await gateway.resolve_ticker("ACME")
        assert client.messages.create.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_rate_limited_lookup(self, app_config):
        sleep = AsyncMock()
        responses = [Exception("429 Too Many Requests"), make_text_response('{"name": "Acme", "price": 9}')]
        gateway, client, _ = make_gateway(app_config, responses, sleep=sleep)

        info = await gateway.resolve_ticker("ACME")

        assert info.price == 9.0
        assert client.messages.create.await_count == 2
        sleep.assert_awaited_once_with(20.0)

    @pytest.mark.asyncio
    async def test_quota_exhausted_is_not_retried(self, app_config):
        sleep = AsyncMock()
        gateway, client, _ = make_gateway(app_config, [Exception("Your credit balance is too low")], sleep=sleep)

        with pytest.raises(QuotaExhaustedError):
            await gateway.resolve_ticker("ACME")
        assert client.messages.create.await_count == 1
        sleep.assert_not_awaited()


class TestGenerate:

    @pytest.mark.asyncio
    async def test_analysis_roles_use_near_zero_temperature(self, app_config):
        gateway, client, _ = make_gateway(app_config, [make_text_response("x"), make_text_response("y")])

        await gateway.generate(AgentRole.TECHNICAL_ANALYST, "p", "s")
        analysis_kwargs = client.messages.create.await_args.kwargs
        await gateway.generate(AgentRole.FUND_MANAGER, "p", "s")
        manager_kwargs = client.messages.create.await_args.kwargs

        assert analysis_kwargs["temperature"] == 0.01
        assert manager_kwargs["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_request_shape_without_search(self, app_config):
        gateway, client, _ = make_gateway(app_config, [make_text_response("report")])

        result = await gateway.generate(AgentRole.RISK_MANAGER, "the prompt", "the system", False, "claude-opus-4-5")

        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["model"] == "claude-opus-4-5"
        assert kwargs["system"] == "the system"
        assert kwargs["messages"] == [{"role": "user", "content": "the prompt"}]
        assert "tools" not in kwargs
        assert result.text == "report"
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_defaults_to_economy_model(self, app_config):
        gateway, client, _ = make_gateway(app_config, [make_text_response("report")])
        await gateway.generate(AgentRole.BULL_RESEARCHER, "p", "s")
        assert client.messages.create.await_args.kwargs["model"] == app_config.claude.economy_model

    @pytest.mark.asyncio
    async def test_search_sources_are_deduplicated_and_uri_less_dropped(self, app_config):
        search_block = SimpleNamespace(type="web_search_tool_result", content=[
            SimpleNamespace(type="web_search_result", url="https://a.example/1", title="A1"),
            SimpleNamespace(type="web_search_result", url=None, title="no uri"),
            SimpleNamespace(type="web_search_result", url="https://b.example/2", title=""),
        ])
        citations = [
            SimpleNamespace(type="web_search_result_location", url="https://a.example/1", title="A1 again"),
            SimpleNamespace(type="web_search_result_location", url="https://c.example/3", title="C3"),
        ]
        response = make_text_response("dossier", citations=citations, extra_blocks=[search_block])
        gateway, client, _ = make_gateway(app_config, [response])

        result = await gateway.generate(AgentRole.INTELLIGENCE_OFFICER, "p", "s", use_search=True)

        assert client.messages.create.await_args.kwargs["tools"][0]["name"] == "web_search"
        assert [s.uri for s in result.sources] == ["https://a.example/1", "https://b.example/2", "https://c.example/3"]
        assert result.sources[0].title == "A1"
        assert result.sources[1].title == "https://b.example/2"

    @pytest.mark.asyncio
    async def test_search_error_block_is_ignored(self, app_config):
        error_block = SimpleNamespace(type="web_search_tool_result", content=SimpleNamespace(error_code="max_uses_exceeded"))
        response = make_text_response("text", extra_blocks=[error_block])
        gateway, _, _ = make_gateway(app_config, [response])

        result = await gateway.generate(AgentRole.INTELLIGENCE_OFFICER, "p", "s", use_search=True)
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_empty_text_uses_placeholder(self, app_config):
        gateway, _, _ = make_gateway(app_config, [SimpleNamespace(content=[])])
        result = await gateway.generate(AgentRole.BULL_RESEARCHER, "p", "s")
        assert result.text == EMPTY_RESPONSE_TEXT

    @pytest.mark.asyncio
    async def test_exhausted_retries_reraise_original(self, app_config):
        sleep = AsyncMock()
        error = ConnectionError("reset by peer")
        gateway, client, _ = make_gateway(app_config, [error] * 4, sleep=sleep)

        with pytest.raises(ConnectionError):
            await gateway.generate(AgentRole.BULL_RESEARCHER, "p", "s")
        assert client.messages.create.await_count == 4
        assert sleep.await_count == 3


class TestPausedTurns:

    @pytest.mark.asyncio
    async def test_paused_turn_is_resumed(self, app_config):
        first = SimpleNamespace(content=[SimpleNamespace(type="text", text="Part one. ", citations=None)], stop_reason="pause_turn")
        second = SimpleNamespace(content=[SimpleNamespace(type="text", text="Part two.", citations=None)], stop_reason="end_turn")
        gateway, client, _ = make_gateway(app_config, [first, second])

        result = await gateway.generate(AgentRole.INTELLIGENCE_OFFICER, "p", "s", use_search=True)

        assert result.text == "Part one. Part two."
        assert client.messages.create.await_count == 2
        first_messages = client.messages.create.await_args_list[0].kwargs["messages"]
        resumed_messages = client.messages.create.await_args_list[1].kwargs["messages"]
        assert len(first_messages) == 1
        assert resumed_messages[-1] == {"role": "assistant", "content": first.content}

    @pytest.mark.asyncio
    async def test_gives_up_after_continuation_limit(self, app_config, caplog):
        paused = [
            SimpleNamespace(content=[SimpleNamespace(type="text", text=f"chunk{i} ", citations=None)], stop_reason="pause_turn")
            for i in range(InferenceGateway.MAX_TURN_CONTINUATIONS + 1)
        ]
        gateway, client, _ = make_gateway(app_config, paused)

        with caplog.at_level("WARNING"):
            result = await gateway.generate(AgentRole.INTELLIGENCE_OFFICER, "p", "s", use_search=True)

        assert client.messages.create.await_count == InferenceGateway.MAX_TURN_CONTINUATIONS + 1
        assert result.text.startswith("chunk0")
        assert "still paused" in caplog.text
