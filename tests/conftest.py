"""Shared pytest fixtures."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    DefaultsConfig,
    ModelConfig,
    PromptsConfig,
    RetryConfig,
    TaskPrompts,
)
from sage_debate.models import ModelDescriptor, ModelResponse
from sage_debate.providers.base import AIProvider
from sage_debate.registry import Backend
from sage_debate.runner import RetryPolicy

# Responder: prompt -> reply text, or an exception instance to raise
Responder = Callable[[str], "str | Exception"]


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=ModelResponse(
                provider=provider_name,
                model="mock-model",
                content=response_content,
                latency_sec=0.1,
                prompt_tokens=10,
                completion_tokens=10,
            )
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(self, prompt: str, max_output_tokens: int | None = None) -> ModelResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return ModelResponse(self._name, "mock-model", self._response_content, 0.1, 10, 10)


class ScriptedProvider(AIProvider):
    """Provider whose reply depends on the prompt. Records every prompt it sees."""

    def __init__(self, provider_name: str, responder: Responder, tokens: int = 10) -> None:
        self._name = provider_name
        self._responder = responder
        self._tokens = tokens
        self.prompts: list[str] = []

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return f"{self._name}-model"

    async def generate(self, prompt: str, max_output_tokens: int | None = None) -> ModelResponse:
        self.prompts.append(prompt)
        reply = self._responder(prompt)
        if isinstance(reply, Exception):
            raise reply
        return ModelResponse(self._name, self.model_string(), reply, 0.01, self._tokens, self._tokens)


def make_backend(
    name: str,
    provider: AIProvider | None = None,
    family: str = "openai",
    token_limit: int = 100_000,
    available: bool = True,
) -> Backend:
    descriptor = ModelDescriptor(
        name=name,
        provider_family=family,
        token_limit=token_limit,
        cost_per_input_token=0.000001,
        cost_per_output_token=0.000002,
        available=available,
    )
    return Backend(descriptor, provider or MockProvider(name, f"Response from {name}"))


def debate_responder(name: str, *, judge_reply: str = "[[WINNER: 1]]", consensus_reply: str = '{"consensusScore": 0.2}') -> Responder:
    """Reply by phase, keyed off the markers in the ``prompts_config`` templates."""

    def respond(prompt: str) -> str:
        if prompt.startswith("CONSENSUS"):
            return consensus_reply
        if prompt.startswith("JUDGE"):
            return judge_reply
        if prompt.startswith("CRITIQUE"):
            return f"critique by {name}"
        if "revision round" in prompt:
            return f"revised answer from {name}"
        return f"answer from {name}"

    return respond


@pytest.fixture
def task_prompts() -> TaskPrompts:
    return TaskPrompts(
        generate="GENERATE as {worker_id}: {user_prompt}\n{code_context}",
        critique="CRITIQUE by {worker_id}:\n{entries}",
        judge="JUDGE {candidate_count} candidates:\n{entries}",
    )


@pytest.fixture
def prompts_config(task_prompts: TaskPrompts) -> PromptsConfig:
    return PromptsConfig(
        tasks={"opinion": task_prompts, "review": task_prompts, "plan": task_prompts},
        consensus="CONSENSUS check:\n{entries}",
    )


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(attempts=3, initial_delay_sec=0.01, factor=2.0, max_delay_sec=0.1, jitter=0.25)


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        provider_family="openai",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        token_limit=128_000,
    )


@pytest.fixture
def sample_app_config(tmp_path: Path, prompts_config: PromptsConfig) -> AppConfig:
    models = {
        "gpt": ModelConfig(
            name="gpt",
            provider_family="openai",
            model="gpt-test",
            api_key_env="OPENAI_API_KEY",
            timeout_sec=60,
            max_tokens=4096,
            token_limit=128_000,
            cost_per_input_token=0.000002,
            cost_per_output_token=0.000008,
        ),
        "claude": ModelConfig(
            name="claude",
            provider_family="anthropic",
            model="claude-test",
            api_key_env="ANTHROPIC_API_KEY",
            timeout_sec=60,
            max_tokens=4096,
            token_limit=200_000,
        ),
    }
    return AppConfig(
        defaults=DefaultsConfig(judge="claude", output_dir=tmp_path / "output", panel=["gpt", "claude"]),
        models=models,
        prompts=prompts_config,
        retry=RetryConfig(attempts=2, initial_delay_sec=0.01, max_delay_sec=0.05),
        available_providers={"gpt", "claude"},
    )


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()
