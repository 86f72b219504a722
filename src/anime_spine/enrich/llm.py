"""LLM call capability.

The synthesis stage only needs ``(prompt, LLMConfig) -> text``. Any callable
with that shape works (tests pass a plain function); :class:`HttpLLMClient`
is the shipped implementation, speaking the Anthropic Messages API or the
OpenAI Chat Completions API over httpx.

A missing or rejected credential is a :class:`ConfigError` and aborts the
run instead of being retried entity by entity.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from anime_spine.core.errors import (
    ConfigError,
    MissingConfigError,
    RateLimitError,
    SourceError,
    TimeoutError,
    TransientError,
)
from anime_spine.core.logging import get_logger
from anime_spine.core.settings import PipelineSettings
from anime_spine.execution.retry import parse_retry_after

logger = get_logger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"


@dataclass(frozen=True)
class LLMConfig:
    provider: Literal["anthropic", "openai"] = "anthropic"
    model: str = "claude-3-haiku-20240307"
    api_key: str = ""
    max_retries: int = 2
    temperature: float = 0.7
    max_tokens: int = 600

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> LLMConfig:
        return cls(
            provider=settings.llm_provider,
            model=settings.llm_model,
            api_key=settings.llm_api_key or "",
            max_retries=settings.llm_max_retries,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )

    def __repr__(self) -> str:
        return (
            f"LLMConfig(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'***' if self.api_key else ''!r}, max_retries={self.max_retries})"
        )


LLMCall = Callable[[str, LLMConfig], str]


class HttpLLMClient:
    """Calls a hosted LLM over HTTP. One request per call; no internal retry."""

    def __init__(
        self,
        *,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def __call__(self, prompt: str, config: LLMConfig) -> str:
        if not config.api_key:
            raise MissingConfigError(
                "llm_api_key",
                f"No API key configured for LLM provider {config.provider}",
            )
        if config.provider == "anthropic":
            url = ANTHROPIC_URL
            headers = {
                "x-api-key": config.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            }
            body: dict[str, Any] = {
                "model": config.model,
                "max_tokens": config.max_tokens,
                "temperature": config.temperature,
                "messages": [{"role": "user", "content": prompt}],
            }
        elif config.provider == "openai":
            url = OPENAI_URL
            headers = {"Authorization": f"Bearer {config.api_key}"}
            body = {
                "model": config.model,
                "max_tokens": config.max_tokens,
                "temperature": config.temperature,
                "messages": [{"role": "user", "content": prompt}],
            }
        else:
            raise ConfigError(f"Unsupported LLM provider: {config.provider}")

        logger.debug("llm.request", provider=config.provider, model=config.model)
        try:
            response = self._client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            raise TimeoutError("LLM request timed out", cause=e) from e
        except httpx.TransportError as e:
            raise TransientError(f"LLM transport error: {e}", cause=e) from e

        self._raise_for_status(response, config)
        return _extract_text(response.json(), config.provider)

    @staticmethod
    def _raise_for_status(response: httpx.Response, config: LLMConfig) -> None:
        status = response.status_code
        if status < 400:
            return
        if status in (401, 403):
            raise ConfigError(f"LLM provider {config.provider} rejected the API key (HTTP {status})")
        if status == 429:
            raise RateLimitError(
                f"LLM provider {config.provider} rate limited",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 500:
            raise TransientError(f"LLM provider {config.provider} error: HTTP {status}")
        raise SourceError(f"LLM provider {config.provider} error: HTTP {status}")

    def close(self) -> None:
        self._client.close()


def _extract_text(payload: dict[str, Any], provider: str) -> str:
    try:
        if provider == "anthropic":
            return "".join(
                block.get("text", "")
                for block in payload["content"]
                if block.get("type") == "text"
            )
        return payload["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as e:
        raise SourceError(f"Unexpected {provider} response shape", cause=e) from e


__all__ = ["LLMConfig", "LLMCall", "HttpLLMClient", "ANTHROPIC_URL", "OPENAI_URL"]
