"""OpenAI provider using openai SDK with native async."""

import asyncio
import logging
import os
import time

import openai
from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from sage_debate.models import ModelResponse
from sage_debate.providers.base import AIProvider, ErrorKind, ProviderError, parse_reset_hint

logger = logging.getLogger(__name__)


class OpenAIProvider(AIProvider):
    """OpenAI provider via openai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def generate(self, prompt: str, max_output_tokens: int | None = None) -> ModelResponse:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=[{"role": "user", "content": prompt}],
                    max_completion_tokens=max_output_tokens or self._config.max_tokens,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(
                self._config.name,
                f"Request timed out after {self._config.timeout_sec}s",
                kind=ErrorKind.NETWORK,
            ) from exc
        except openai.RateLimitError as exc:
            reset = exc.response.headers.get("x-ratelimit-reset-tokens") or exc.response.headers.get("retry-after")
            raise ProviderError(
                self._config.name,
                f"Rate limit exceeded: {exc}",
                kind=ErrorKind.RATE_LIMIT,
                retry_after=parse_reset_hint(reset),
            ) from exc
        except openai.APIConnectionError as exc:
            raise ProviderError(
                self._config.name, f"OpenAI API unreachable: {exc}", kind=ErrorKind.NETWORK
            ) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        prompt_tokens: int | None = None
        completion_tokens: int | None = None
        if response.usage:
            prompt_tokens = response.usage.prompt_tokens
            completion_tokens = response.usage.completion_tokens

        logger.info(
            "OpenAI %s: %.2fs, %s/%s tokens",
            self._config.model,
            latency,
            prompt_tokens,
            completion_tokens,
        )

        return ModelResponse(
            provider=self._config.name,
            model=self._config.model,
            content=choice.message.content,
            latency_sec=latency,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )
