"""
Unit tests for the remote conversion client.

Tests request shape, response parsing, retry/backoff and cancellation.
"""

import asyncio
import json

import httpx
import pytest

from poml_converter.core.prompt import build_conversion_prompt
from poml_converter.sdk.gemini_client import (
    Failure,
    FailureKind,
    GeminiConversionClient,
    Success,
    build_payload,
    extract_document,
)

DOCUMENT = "<prompt><task>Summarize</task></prompt>"


def ok_body(text=DOCUMENT):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class ScriptedEndpoint:
    """MockTransport handler that replays a list of responses or errors."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        step = self.steps.pop(0) if self.steps else httpx.Response(200, json=ok_body())
        if isinstance(step, Exception):
            raise step
        return step


def make_client(handler, **kwargs):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = GeminiConversionClient(api_key="test-key", http_client=http_client, sleep=fake_sleep, **kwargs)
    return client, sleeps


class TestPayloadHelpers:
    """Test request building and response extraction."""

    def test_build_payload(self):
        assert build_payload("hi") == {"contents": [{"role": "user", "parts": [{"text": "hi"}]}]}

    def test_prompt_embeds_text(self):
        prompt = build_conversion_prompt("Write a {haiku}")
        assert "Write a {haiku}" in prompt
        assert "<role>" in prompt
        assert "only return the POML document" in prompt

    def test_extract_document(self):
        assert extract_document(ok_body()) == DOCUMENT

    @pytest.mark.parametrize("body", [
        {},
        {"candidates": []},
        {"candidates": [{"content": {"parts": []}}]},
        {"candidates": [{"content": {"parts": [{"text": ""}]}}]},
        {"candidates": [{"content": {"parts": [{"text": 42}]}}]},
        {"candidates": [{"content": None}]},
        ["not", "a", "dict"],
        None,
    ])
    def test_extract_document_rejects_other_shapes(self, body):
        assert extract_document(body) is None


class TestClientConstruction:
    """Test argument validation."""

    def test_defaults(self):
        client = GeminiConversionClient()
        assert client.max_attempts == 3
        assert client.initial_backoff_ms == 1000
        assert client.endpoint.endswith("/models/gemini-2.5-flash-preview-05-20:generateContent")

    def test_missing_model(self):
        with pytest.raises(ValueError, match="model is required"):
            GeminiConversionClient(model="")

    def test_invalid_attempts(self):
        with pytest.raises(ValueError, match="max_attempts"):
            GeminiConversionClient(max_attempts=0)

    def test_invalid_timeout(self):
        with pytest.raises(ValueError, match="timeout_seconds"):
            GeminiConversionClient(timeout_seconds=0)


class TestConvert:
    """Test the conversion call and its retry policy."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        endpoint = ScriptedEndpoint(httpx.Response(200, json=ok_body()))
        client, sleeps = make_client(endpoint)

        result = await client.convert("Summarize this")

        assert result == Success(document=DOCUMENT, attempts=1)
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_request_shape(self):
        endpoint = ScriptedEndpoint(httpx.Response(200, json=ok_body()))
        client, _ = make_client(endpoint, model="gemini-test")

        await client.convert("Summarize this")

        request = endpoint.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1beta/models/gemini-test:generateContent"
        assert request.url.params["key"] == "test-key"
        body = json.loads(request.content)
        assert body == build_payload(build_conversion_prompt("Summarize this"))

    @pytest.mark.asyncio
    async def test_no_key_param_without_api_key(self):
        endpoint = ScriptedEndpoint(httpx.Response(200, json=ok_body()))
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
        client = GeminiConversionClient(http_client=http_client)

        await client.convert("x")

        assert "key" not in endpoint.requests[0].url.params

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self):
        """Backoff waits 1000 ms then 2000 ms before the third attempt succeeds."""
        endpoint = ScriptedEndpoint(
            httpx.Response(500),
            httpx.Response(503),
            httpx.Response(200, json=ok_body()),
        )
        client, sleeps = make_client(endpoint)

        result = await client.convert("x")

        assert result == Success(document=DOCUMENT, attempts=3)
        assert sleeps == [1.0, 2.0]
        assert len(endpoint.requests) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries(self):
        endpoint = ScriptedEndpoint(httpx.Response(500), httpx.Response(500), httpx.Response(429))
        client, sleeps = make_client(endpoint)

        result = await client.convert("x")

        assert isinstance(result, Failure)
        assert result.kind == FailureKind.EXHAUSTED_RETRIES
        assert result.cause == FailureKind.HTTP_ERROR
        assert result.status == 429
        assert result.attempts == 3
        # no wait after the final attempt
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_malformed_response_is_retried(self):
        endpoint = ScriptedEndpoint(
            httpx.Response(200, json={"candidates": []}),
            httpx.Response(200, content=b"not json"),
            httpx.Response(200, json=ok_body()),
        )
        client, sleeps = make_client(endpoint)

        result = await client.convert("x")

        assert isinstance(result, Success)
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_malformed_response_exhausts(self):
        endpoint = ScriptedEndpoint(*[httpx.Response(200, json={"oops": True}) for _ in range(3)])
        client, _ = make_client(endpoint)

        result = await client.convert("x")

        assert result.kind == FailureKind.EXHAUSTED_RETRIES
        assert result.cause == FailureKind.MALFORMED_RESPONSE
        assert result.status is None

    @pytest.mark.asyncio
    async def test_network_error_is_retried(self):
        endpoint = ScriptedEndpoint(
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json=ok_body()),
        )
        client, sleeps = make_client(endpoint)

        result = await client.convert("x")

        assert isinstance(result, Success)
        assert sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_custom_retry_policy(self):
        endpoint = ScriptedEndpoint(*[httpx.Response(502) for _ in range(4)])
        client, sleeps = make_client(endpoint, max_attempts=4, initial_backoff_ms=500)

        result = await client.convert("x")

        assert result.attempts == 4
        assert sleeps == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_single_attempt_never_sleeps(self):
        endpoint = ScriptedEndpoint(httpx.Response(500))
        client, sleeps = make_client(endpoint, max_attempts=1)

        result = await client.convert("x")

        assert result.kind == FailureKind.EXHAUSTED_RETRIES
        assert sleeps == []


class TestCancellation:
    """Test that cancelling a conversion stops all further work."""

    @pytest.mark.asyncio
    async def test_cancel_during_request(self):
        started = asyncio.Event()
        calls = []

        async def hanging(request):
            calls.append(request)
            started.set()
            await asyncio.sleep(3600)

        client, _ = make_client(hanging)
        task = asyncio.create_task(client.convert("x"))
        await started.wait()

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        sleeping = asyncio.Event()
        endpoint = ScriptedEndpoint(httpx.Response(500))

        async def blocking_sleep(seconds):
            sleeping.set()
            await asyncio.sleep(3600)

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
        client = GeminiConversionClient(http_client=http_client, sleep=blocking_sleep)
        task = asyncio.create_task(client.convert("x"))
        await sleeping.wait()

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(endpoint.requests) == 1
