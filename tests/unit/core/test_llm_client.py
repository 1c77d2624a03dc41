"""Unit tests for Gemini error classification and call handling."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import errors as genai_errors

from app.core.exceptions import (
    APIClientError,
    ErrorKind,
    ExtractionTimeoutError,
    RateLimitedError,
)
from app.core.llm_client import GeminiClient, classify_provider_error, is_rate_limit_error


def api_error(code: int, status: str, message: str = "error") -> genai_errors.APIError:
    return genai_errors.APIError(code, {"error": {"code": code, "message": message, "status": status}})


class TestRateLimitDetection:
    def test_structured_429(self):
        assert is_rate_limit_error(api_error(429, "RESOURCE_EXHAUSTED"))

    def test_structured_status_wins_over_message(self):
        error = api_error(500, "INTERNAL", message="rate limit exceeded upstream")
        assert not is_rate_limit_error(error)

    def test_status_code_attribute(self):
        class UpstreamError(Exception):
            status_code = 429

        assert is_rate_limit_error(UpstreamError("too many"))

    def test_non_429_status_code_ignores_message(self):
        class UpstreamError(Exception):
            status_code = 503

        assert not is_rate_limit_error(UpstreamError("rate limit"))

    @pytest.mark.parametrize("message", ["429 Too Many Requests", "RESOURCE_EXHAUSTED", "hit the rate limit"])
    def test_message_fallback(self, message):
        assert is_rate_limit_error(Exception(message))

    def test_other_errors(self):
        assert not is_rate_limit_error(Exception("connection reset"))


class TestClassifyProviderError:
    def test_rate_limit_maps_to_rate_limited(self):
        original = api_error(429, "RESOURCE_EXHAUSTED")
        error = classify_provider_error(original, "gemini-2.5-flash")

        assert isinstance(error, RateLimitedError)
        assert error.kind == ErrorKind.RATE_LIMITED
        assert error.original_error is original

    def test_other_errors_map_to_client_error(self):
        error = classify_provider_error(ValueError("bad request"), "gemini-2.5-flash")
        assert isinstance(error, APIClientError)


class TestGeminiClient:
    @pytest.fixture
    def sdk_client(self):
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock()
        client.aio.models.embed_content = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_generate_returns_text(self, sdk_client):
        sdk_client.aio.models.generate_content.return_value = MagicMock(text='{"ok": true}')
        llm = GeminiClient(api_key="test", client=sdk_client)

        text = await llm.generate_content("hello", model="gemini-2.5-pro")

        assert text == '{"ok": true}'
        assert sdk_client.aio.models.generate_content.await_args.kwargs["model"] == "gemini-2.5-pro"

    @pytest.mark.asyncio
    async def test_generate_timeout(self, sdk_client):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        sdk_client.aio.models.generate_content = slow
        llm = GeminiClient(api_key="test", client=sdk_client)

        with pytest.raises(ExtractionTimeoutError) as exc_info:
            await llm.generate_content("hello", timeout=0.01)

        assert exc_info.value.kind == ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_generate_rate_limited(self, sdk_client):
        sdk_client.aio.models.generate_content.side_effect = api_error(429, "RESOURCE_EXHAUSTED")
        llm = GeminiClient(api_key="test", client=sdk_client)

        with pytest.raises(RateLimitedError):
            await llm.generate_content("hello")

    @pytest.mark.asyncio
    async def test_embed_returns_vector(self, sdk_client):
        embedding = MagicMock(values=[0.1, 0.2, 0.3])
        sdk_client.aio.models.embed_content.return_value = MagicMock(embeddings=[embedding])
        llm = GeminiClient(api_key="test", client=sdk_client)

        vector = await llm.embed_content("text", model="gemini-embedding-001", output_dimensionality=3)

        assert vector == [0.1, 0.2, 0.3]
        config = sdk_client.aio.models.embed_content.await_args.kwargs["config"]
        assert config.output_dimensionality == 3

    @pytest.mark.asyncio
    async def test_embed_without_vector(self, sdk_client):
        sdk_client.aio.models.embed_content.return_value = MagicMock(embeddings=[])
        llm = GeminiClient(api_key="test", client=sdk_client)

        with pytest.raises(APIClientError):
            await llm.embed_content("text", model="gemini-embedding-001")
