"""
Structured extraction and summarization against a local Ollama server.

Every public coroutine returns a result object; connection problems, missing
models and unparsable replies are reported through ``success``/``error``
rather than raised.
"""

from __future__ import annotations

import json
import math
import time
from typing import Any, Dict, List, Optional

import httpx
import structlog

from sitequarry.config.config import LLMConfig
from sitequarry.config.options import ExtractOptions, SummarizeOptions
from sitequarry.exceptions import ExtractionError
from sitequarry.observability import histogram, increment
from sitequarry.protocols import ExtractResult, SummarizeResult
from sitequarry.utils.cache import TTLCache

logger = structlog.get_logger(__name__)

CHARS_PER_TOKEN = 4
PROMPT_OVERHEAD_TOKENS = 500
MAX_RESPONSE_TOKENS = 1000
DEFAULT_CONTEXT_SIZE = 4096
HEAD_TAIL_THRESHOLD = 10_000
HEAD_SHARE = 0.7
MIN_EXTRACTION_CHARS = 200

# Checked in order; the first family contained in the model name wins
CONTEXT_SIZES = (
    ("llama3", 8192),
    ("llama2", 4096),
    ("gemma3", 8192),
    ("gemma", 8192),
    ("mistral", 8192),
    ("mixtral", 32768),
    ("phi3", 2048),
)

DEFAULT_SCHEMA: Dict[str, Any] = {
    "title": {"type": "string", "description": "The title of the page"},
    "summary": {"type": "string", "description": "A brief summary of the content"},
    "topics": {"type": "array", "items": {"type": "string"}, "description": "Main topics covered"},
}

DEFAULT_EXTRACTION_PROMPT = """
You are an AI assistant specialized in extracting structured data from web content.
Extract the requested information according to the provided schema.
Only include information that is explicitly mentioned in the content.
Response MUST be valid JSON matching the schema exactly.
Be thorough in your analysis and extract all relevant information.
If you cannot find information for a field, use an appropriate default value based on the field type.
"""

SUMMARY_SYSTEM_PROMPT = (
    "You are an AI assistant specialized in summarizing web content.\n"
    "Create clear, concise summaries that capture the main points."
)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def context_size(model: Optional[str]) -> int:
    name = (model or "").lower()
    for family, size in CONTEXT_SIZES:
        if family in name:
            return size
    return DEFAULT_CONTEXT_SIZE


def adaptive_truncate(content: str, model: Optional[str] = None) -> str:
    """
    Shorten ``content`` to fit the model's context window.

    Long documents keep their beginning and end; shorter ones are cut at the end.
    """
    available = context_size(model) - PROMPT_OVERHEAD_TOKENS - MAX_RESPONSE_TOKENS
    estimated = estimate_tokens(content)
    if estimated <= available:
        return content

    chars_to_keep = math.floor(len(content) * (available / estimated))
    if len(content) > HEAD_TAIL_THRESHOLD:
        head = math.floor(chars_to_keep * HEAD_SHARE)
        tail = chars_to_keep - head
        return (
            f"{content[:head]}\n\n[...content truncated for model context size...]\n\n"
            f"{content[len(content) - tail:]}"
        )
    return f"{content[:chars_to_keep]}\n\n[...remainder truncated for model context size...]"


def parse_json_reply(reply: str) -> Dict[str, Any]:
    """
    Parse a model reply as a JSON object.

    The whole reply is tried first, then the span from the first ``{`` to the
    last ``}``.

    Raises:
        ValueError: if no JSON object can be recovered
    """
    text = reply.strip()
    if text.startswith("{") and text.endswith("}"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return data

    start = text.find("{")
    end = text.rfind("}") + 1
    if start == -1 or end == 0 or end <= start:
        raise ValueError("No valid JSON found in response")

    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse JSON from response: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


class OllamaClient:
    """Async client for the Ollama HTTP API with cached health and model checks."""

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or LLMConfig()
        self._transport = transport
        self._clients: Dict[str, httpx.AsyncClient] = {}
        self._health: TTLCache[bool] = TTLCache(self.config.health_cache_ttl, name="llm_health")
        self._models: TTLCache[bool] = TTLCache(self.config.model_cache_ttl, name="llm_models")

    def _client(self, host: str) -> httpx.AsyncClient:
        host = host.rstrip("/")
        if host not in self._clients:
            self._clients[host] = httpx.AsyncClient(base_url=host, transport=self._transport)
        return self._clients[host]

    async def check_server_health(self, host: Optional[str] = None) -> bool:
        host = host or self.config.host
        key = f"server:{host}"
        cached = self._health.get(key)
        if cached is not None:
            return cached

        try:
            response = await self._client(host).get("/api/version", timeout=self.config.health_timeout)
            healthy = response.is_success
        except httpx.HTTPError as e:
            logger.warning("Ollama server unreachable", host=host, error=str(e))
            healthy = False

        self._health.set(key, healthy)
        return healthy

    async def validate_model(self, model: str, host: Optional[str] = None) -> bool:
        host = host or self.config.host
        key = f"model:{host}:{model}"
        cached = self._models.get(key)
        if cached is not None:
            return cached

        try:
            response = await self._client(host).get("/api/tags", timeout=self.config.tags_timeout)
            response.raise_for_status()
            available = [m.get("name") for m in response.json().get("models", [])]
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error checking for model", model=model, host=host, error=str(e))
            self._models.set(key, False)
            return False

        exists = model in available
        if not exists:
            logger.error("Model not found", model=model, available=available, hint=f"ollama pull {model}")
        self._models.set(key, exists)
        return exists

    async def chat(
        self,
        model: str,
        messages: List[Dict[str, str]],
        *,
        host: Optional[str] = None,
        format: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Send a non-streaming chat request and return the reply text.

        Raises:
            httpx.HTTPError: on transport failures and error statuses
            ExtractionError: if the reply has no message content
        """
        payload: Dict[str, Any] = {"model": model, "messages": messages, "stream": False}
        if format:
            payload["format"] = format
        if options:
            payload["options"] = options

        started = time.perf_counter()
        try:
            response = await self._client(host or self.config.host).post(
                "/api/chat", json=payload, timeout=self.config.request_timeout
            )
            response.raise_for_status()
        except httpx.HTTPError:
            increment("llm_requests", labels={"model": model, "outcome": "error"})
            raise
        finally:
            histogram("llm_request_seconds", time.perf_counter() - started)

        try:
            reply = str(response.json()["message"]["content"])
        except (ValueError, KeyError, TypeError) as e:
            increment("llm_requests", labels={"model": model, "outcome": "malformed"})
            raise ExtractionError(f"Malformed chat response: {e}") from e
        increment("llm_requests", labels={"model": model, "outcome": "success"})
        return reply

    async def _preflight(self, host: str, model: str) -> Optional[str]:
        """Error message when the server or model is unavailable, else ``None``."""
        if not await self.check_server_health(host):
            return f"Could not connect to Ollama server at {host}. Make sure Ollama is running."
        if not await self.validate_model(model, host):
            return f'Model "{model}" not found in Ollama. Try running: ollama pull {model}'
        return None

    async def extract_structured_data(self, content: str, options: Optional[ExtractOptions] = None) -> ExtractResult:
        options = options or ExtractOptions()
        if not content or len(content.strip()) < MIN_EXTRACTION_CHARS:
            return ExtractResult(
                success=False,
                error="Content is too short for meaningful extraction",
                data={"_warning": "Content too short for extraction"},
            )

        host = (options.ollama_host or self.config.host).rstrip("/")
        model = options.model or self.config.model
        schema = options.schema_ or DEFAULT_SCHEMA

        problem = await self._preflight(host, model)
        if problem is not None:
            return ExtractResult(success=False, error=problem, data={"_error": problem})

        truncated = adaptive_truncate(content, model)
        user_prompt = options.prompt or (
            "Extract the following data from the content according to this schema:\n"
            f"{json.dumps(schema, indent=2)}\n\n"
            f"Content:\n{truncated}\n\n"
            "Response should be ONLY valid JSON matching the schema exactly.\n"
            "Each field must be present and populated with the values from the content.\n"
            "Be thorough in your extraction and ensure to output a valid JSON object."
        )
        messages = [
            {"role": "system", "content": options.system_prompt or DEFAULT_EXTRACTION_PROMPT},
            {"role": "user", "content": user_prompt},
        ]

        logger.info("Sending extraction request", model=model, host=host)
        try:
            reply = await self.chat(model, messages, host=host, format="json", options=options.model_options)
        except httpx.ConnectError as e:
            self._health.set(f"server:{host}", False)
            logger.error("Ollama connection error", host=host, error=str(e))
            return ExtractResult(
                success=False,
                error=f"Failed to connect to Ollama. Make sure the server is running at {host}",
                data={"_error": "Ollama connection error", "_hint": "Check if Ollama is running"},
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404 or "not found" in e.response.text.lower():
                self._models.set(f"model:{host}:{model}", False)
                return ExtractResult(
                    success=False,
                    error=f'Model "{model}" not found. Try running: ollama pull {model}',
                    data={"_error": "Model not found", "_hint": f"Run: ollama pull {model}"},
                )
            return ExtractResult(success=False, error=f"LLM extraction failed: {e}", data={"_error": "Ollama API error"})
        except (httpx.HTTPError, ExtractionError) as e:
            logger.error("Ollama API error", error=str(e))
            return ExtractResult(success=False, error=f"LLM extraction failed: {e}", data={"_error": "Ollama API error"})

        try:
            data = parse_json_reply(reply)
        except ValueError as e:
            logger.warning("Could not parse extraction reply", error=str(e), preview=reply[:200])
            return ExtractResult(success=False, error=str(e), raw_response=reply)

        if not data:
            logger.warning("Extracted data is an empty object", model=model)
        return ExtractResult(success=True, data=data)

    async def summarize_content(self, content: str, options: Optional[SummarizeOptions] = None) -> SummarizeResult:
        options = options or SummarizeOptions()
        host = (options.ollama_host or self.config.host).rstrip("/")
        model = options.model or self.config.model

        problem = await self._preflight(host, model)
        if problem is not None:
            return SummarizeResult(success=False, error=problem)

        messages = [
            {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Summarize the following content in {options.max_length} words or less:\n\n"
                f"{adaptive_truncate(content, model)}",
            },
        ]

        logger.info("Sending summarization request", model=model, host=host)
        try:
            reply = await self.chat(model, messages, host=host, options=options.model_options)
        except (httpx.HTTPError, ExtractionError) as e:
            logger.error("Summarization error", error=str(e))
            return SummarizeResult(success=False, error=f"Summarization failed: {e}")

        return SummarizeResult(success=True, summary=reply.strip())

    async def close(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
