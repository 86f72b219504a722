"""Tests for HttpLLMClient over httpx.MockTransport."""

import json

import httpx
import pytest

from anime_spine.core.errors import (
    ConfigError,
    MissingConfigError,
    RateLimitError,
    SourceError,
    TransientError,
)
from anime_spine.core.settings import PipelineSettings
from anime_spine.enrich.llm import ANTHROPIC_URL, OPENAI_URL, HttpLLMClient, LLMConfig


def client_for(handler):
    return HttpLLMClient(transport=httpx.MockTransport(handler))


class TestLLMConfig:
    def test_from_settings(self):
        settings = PipelineSettings(
            _env_file=None, llm_provider="openai", llm_model="gpt-4o-mini", llm_api_key="sk-x"
        )
        config = LLMConfig.from_settings(settings)
        assert config.provider == "openai"
        assert config.model == "gpt-4o-mini"
        assert config.max_retries == settings.llm_max_retries

    def test_repr_masks_key(self):
        assert "sk-secret" not in repr(LLMConfig(api_key="sk-secret"))


class TestHttpLLMClient:
    def test_anthropic_request_and_response(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"content": [{"type": "text", "text": "Hello "}, {"type": "text", "text": "world"}]}
            )

        config = LLMConfig(provider="anthropic", model="m", api_key="sk-a", max_tokens=50)
        assert client_for(handler)("prompt", config) == "Hello world"
        assert seen["url"] == ANTHROPIC_URL
        assert seen["headers"]["x-api-key"] == "sk-a"
        assert seen["body"]["messages"] == [{"role": "user", "content": "prompt"}]
        assert seen["body"]["max_tokens"] == 50

    def test_openai_request_and_response(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, json={"choices": [{"message": {"content": "Hi"}}]})

        config = LLMConfig(provider="openai", model="m", api_key="sk-o")
        assert client_for(handler)("prompt", config) == "Hi"
        assert seen["url"] == OPENAI_URL
        assert seen["auth"] == "Bearer sk-o"

    def test_missing_key(self):
        with pytest.raises(MissingConfigError):
            client_for(lambda r: httpx.Response(200))("p", LLMConfig(api_key=""))

    @pytest.mark.parametrize(
        "status,error",
        [(401, ConfigError), (403, ConfigError), (429, RateLimitError), (500, TransientError), (400, SourceError)],
    )
    def test_status_mapping(self, status, error):
        client = client_for(lambda r: httpx.Response(status, headers={"Retry-After": "3"}))
        with pytest.raises(error):
            client("p", LLMConfig(api_key="k"))

    def test_unexpected_shape(self):
        client = client_for(lambda r: httpx.Response(200, json={"nothing": True}))
        with pytest.raises(SourceError):
            client("p", LLMConfig(api_key="k"))
