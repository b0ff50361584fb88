"""Tests for the Ollama extraction and summarization client."""

import httpx
import pytest

from sitequarry.config.config import LLMConfig
from sitequarry.config.options import ExtractOptions, SummarizeOptions
from sitequarry.llm.ollama import (
    OllamaClient,
    adaptive_truncate,
    context_size,
    estimate_tokens,
    parse_json_reply,
)
from sitequarry.observability import METRICS

from tests.helpers import histogram_observes, metric_delta
from tests.helpers.ollama import DEFAULT_MODEL as MODEL
from tests.helpers.ollama import FakeOllama

CONTENT = "Widgets are small devices. " * 20


def client_for(server: FakeOllama) -> OllamaClient:
    return OllamaClient(LLMConfig(model=MODEL), transport=server.transport())


@pytest.mark.unit
class TestParseJsonReply:
    def test_whole_reply(self):
        assert parse_json_reply('  {"a": 1}  ') == {"a": 1}

    def test_object_embedded_in_prose(self):
        assert parse_json_reply('Sure! Here it is: {"a": {"b": 2}} Hope that helps.') == {"a": {"b": 2}}

    def test_no_object_raises(self):
        with pytest.raises(ValueError, match="No valid JSON"):
            parse_json_reply("I could not find anything")

    def test_broken_object_raises(self):
        with pytest.raises(ValueError, match="Failed to parse JSON"):
            parse_json_reply("prefix {not: json} suffix")

    def test_array_is_rejected(self):
        with pytest.raises(ValueError):
            parse_json_reply("[1, 2]")


@pytest.mark.unit
class TestTruncation:
    def test_context_size_by_family(self):
        assert context_size("llama3:8b") == 8192
        assert context_size("mixtral") == 32768
        assert context_size("phi3:mini") == 2048
        assert context_size("unknown") == 4096
        assert context_size(None) == 4096

    def test_short_content_untouched(self):
        assert adaptive_truncate("short text", "phi3") == "short text"

    def test_medium_content_cut_at_end(self):
        content = "a" * 9000
        truncated = adaptive_truncate(content, "phi3")
        assert truncated.endswith("[...remainder truncated for model context size...]")
        # phi3 leaves 548 tokens for content
        assert estimate_tokens(truncated.split("\n\n")[0]) <= 548

    def test_long_content_keeps_head_and_tail(self):
        content = "h" * 10_000 + "t" * 10_000
        truncated = adaptive_truncate(content, "llama2")
        head, tail = truncated.split("\n\n[...content truncated for model context size...]\n\n")
        assert set(head) == {"h"}
        assert set(tail) == {"t"}
        assert len(head) > len(tail)


@pytest.mark.unit
class TestOllamaClient:
    @pytest.mark.asyncio
    async def test_extracts_json_with_default_schema(self):
        server = FakeOllama()
        client = client_for(server)
        try:
            result = await client.extract_structured_data(CONTENT)
        finally:
            await client.close()

        assert result.success
        assert result.data == {"title": "Widgets"}
        payload = server.chat_payloads()[0]
        assert payload["model"] == MODEL
        assert payload["format"] == "json"
        assert payload["stream"] is False
        assert '"summary"' in payload["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_custom_prompt_and_model_options(self):
        server = FakeOllama()
        client = client_for(server)
        options = ExtractOptions(
            prompt="Only the title please",
            system_prompt="Be terse",
            model_options={"temperature": 0.1},
        )
        try:
            await client.extract_structured_data(CONTENT, options)
        finally:
            await client.close()

        payload = server.chat_payloads()[0]
        assert payload["messages"] == [
            {"role": "system", "content": "Be terse"},
            {"role": "user", "content": "Only the title please"},
        ]
        assert payload["options"] == {"temperature": 0.1}

    @pytest.mark.asyncio
    async def test_short_content_never_reaches_server(self):
        server = FakeOllama()
        client = client_for(server)
        result = await client.extract_structured_data("tiny")
        await client.close()

        assert not result.success
        assert result.data == {"_warning": "Content too short for extraction"}
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_missing_model_reported(self):
        client = client_for(FakeOllama(models=["llama3:8b"]))
        result = await client.extract_structured_data(CONTENT)
        await client.close()

        assert not result.success
        assert result.error == f'Model "{MODEL}" not found in Ollama. Try running: ollama pull {MODEL}'

    @pytest.mark.asyncio
    async def test_unreachable_server_reported(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        client = OllamaClient(LLMConfig(host="http://llm.test:11434/"), transport=httpx.MockTransport(refuse))
        result = await client.extract_structured_data(CONTENT)
        await client.close()

        assert not result.success
        assert "Could not connect to Ollama server at http://llm.test:11434" in result.error

    @pytest.mark.asyncio
    async def test_unparsable_reply_kept_raw(self):
        client = client_for(FakeOllama(reply="no json here"))
        result = await client.extract_structured_data(CONTENT)
        await client.close()

        assert not result.success
        assert result.raw_response == "no json here"

    @pytest.mark.asyncio
    async def test_chat_404_marks_model_missing(self):
        server = FakeOllama(chat_status=404)
        client = client_for(server)
        result = await client.extract_structured_data(CONTENT)
        await client.close()

        assert not result.success
        assert result.data["_error"] == "Model not found"

    @pytest.mark.asyncio
    async def test_health_and_model_checks_are_cached(self):
        server = FakeOllama()
        client = client_for(server)
        try:
            await client.extract_structured_data(CONTENT)
            await client.extract_structured_data(CONTENT)
        finally:
            await client.close()

        assert server.paths() == ["/api/version", "/api/tags", "/api/chat", "/api/chat"]

    @pytest.mark.asyncio
    async def test_summarize(self):
        server = FakeOllama(reply="  Widgets are small.  ")
        client = client_for(server)
        try:
            result = await client.summarize_content(CONTENT, SummarizeOptions(max_length=50))
        finally:
            await client.close()

        assert result.success
        assert result.summary == "Widgets are small."
        prompt = server.chat_payloads()[0]["messages"][1]["content"]
        assert prompt.startswith("Summarize the following content in 50 words or less")
        assert "format" not in server.chat_payloads()[0]

    @pytest.mark.asyncio
    async def test_chat_outcomes_recorded_in_metrics(self):
        client = client_for(FakeOllama())
        failing = client_for(FakeOllama(chat_status=500))
        try:
            with metric_delta(METRICS["llm_requests"], 1, model=MODEL, outcome="success"):
                with histogram_observes(METRICS["llm_request_seconds"]):
                    await client.extract_structured_data(CONTENT)
            with metric_delta(METRICS["llm_requests"], 1, model=MODEL, outcome="error"):
                result = await failing.extract_structured_data(CONTENT)
        finally:
            await client.close()
            await failing.close()

        assert not result.success
