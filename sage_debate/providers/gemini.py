"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import os
import time

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from sage_debate.models import ModelResponse
from sage_debate.providers.base import AIProvider, ErrorKind, ProviderError

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def generate(self, prompt: str, max_output_tokens: int | None = None) -> ModelResponse:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=prompt,
                    config=genai_types.GenerateContentConfig(
                        max_output_tokens=max_output_tokens or self._config.max_tokens,
                    ),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(
                self._config.name,
                f"Request timed out after {self._config.timeout_sec}s",
                kind=ErrorKind.NETWORK,
            ) from exc
        except genai_errors.APIError as exc:
            if exc.code == 429:
                raise ProviderError(
                    self._config.name,
                    f"Rate limit exceeded: {exc}",
                    kind=ErrorKind.RATE_LIMIT,
                    retry_after=None,
                ) from exc
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc
        except httpx.TransportError as exc:
            raise ProviderError(
                self._config.name, f"Gemini API unreachable: {exc}", kind=ErrorKind.NETWORK
            ) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        prompt_tokens: int | None = None
        completion_tokens: int | None = None
        if response.usage_metadata:
            prompt_tokens = response.usage_metadata.prompt_token_count
            completion_tokens = response.usage_metadata.candidates_token_count

        logger.info(
            "Gemini %s: %.2fs, %s/%s tokens",
            self._config.model,
            latency,
            prompt_tokens,
            completion_tokens,
        )

        return ModelResponse(
            provider=self._config.name,
            model=self._config.model,
            content=response.text,
            latency_sec=latency,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )
