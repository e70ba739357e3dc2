"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import os
import time

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from sage_debate.models import ModelResponse
from sage_debate.providers.base import AIProvider, ErrorKind, ProviderError, parse_reset_hint

logger = logging.getLogger(__name__)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def generate(self, prompt: str, max_output_tokens: int | None = None) -> ModelResponse:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._config.model,
                    max_tokens=max_output_tokens or self._config.max_tokens,
                    messages=[{"role": "user", "content": prompt}],
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(
                self._config.name,
                f"Request timed out after {self._config.timeout_sec}s",
                kind=ErrorKind.NETWORK,
            ) from exc
        except anthropic_sdk.RateLimitError as exc:
            raise ProviderError(
                self._config.name,
                f"Rate limit exceeded: {exc}",
                kind=ErrorKind.RATE_LIMIT,
                retry_after=parse_reset_hint(exc.response.headers.get("retry-after")),
            ) from exc
        except anthropic_sdk.APIConnectionError as exc:
            raise ProviderError(
                self._config.name, f"Anthropic API unreachable: {exc}", kind=ErrorKind.NETWORK
            ) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.content:
            raise ProviderError(self._config.name, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        content = "\n".join(text_blocks)

        prompt_tokens: int | None = None
        completion_tokens: int | None = None
        if response.usage:
            prompt_tokens = response.usage.input_tokens
            completion_tokens = response.usage.output_tokens

        logger.info(
            "Anthropic %s: %.2fs, %s/%s tokens",
            self._config.model,
            latency,
            prompt_tokens,
            completion_tokens,
        )

        return ModelResponse(
            provider=self._config.name,
            model=self._config.model,
            content=content,
            latency_sec=latency,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )
