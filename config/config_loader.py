"""Load settings.yaml into typed dataclasses. Checks API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

_TASK_TYPES = ("opinion", "review", "plan")


@dataclass
class ModelConfig:
    name: str
    provider_family: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    token_limit: int
    cost_per_input_token: float = 0.0
    cost_per_output_token: float = 0.0
    base_url: str | None = None


@dataclass
class TaskPrompts:
    generate: str
    critique: str
    judge: str


@dataclass
class PromptsConfig:
    tasks: dict[str, TaskPrompts]
    consensus: str


@dataclass
class RetryConfig:
    attempts: int = 3
    initial_delay_sec: float = 1.0
    factor: float = 2.0
    max_delay_sec: float = 30.0
    jitter: float = 0.25


@dataclass
class DefaultsConfig:
    judge: str
    output_dir: Path
    panel: list[str] = field(default_factory=list)
    parallelism: int = 3
    timeout_sec: float = 600.0
    round_token_estimate: int = 50_000


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    retry: RetryConfig = field(default_factory=RetryConfig)
    available_providers: set[str] = field(default_factory=set)


def _load_prompts(prompts_raw: dict) -> PromptsConfig:
    tasks: dict[str, TaskPrompts] = {}
    for task_type in _TASK_TYPES:
        if task_type not in prompts_raw:
            raise ValueError(f"Missing prompts for task type: {task_type}")
        task_raw = prompts_raw[task_type]
        tasks[task_type] = TaskPrompts(
            generate=task_raw["generate"],
            critique=task_raw["critique"],
            judge=task_raw["judge"],
        )
    return PromptsConfig(tasks=tasks, consensus=prompts_raw["consensus"])


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError when the
    panel or judge references an unknown model.
    Logs missing API keys but does not raise; the registry decides whether
    enough backends are available.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        judge=str(defaults_raw["judge"]),
        output_dir=Path(defaults_raw["output_dir"]),
        panel=list(defaults_raw.get("panel", [])),
        parallelism=int(defaults_raw.get("parallelism", 3)),
        timeout_sec=float(defaults_raw.get("timeout_sec", 600)),
        round_token_estimate=int(defaults_raw.get("round_token_estimate", 50_000)),
    )

    retry_raw = raw.get("retry", {})
    retry = RetryConfig(
        attempts=int(retry_raw.get("attempts", 3)),
        initial_delay_sec=float(retry_raw.get("initial_delay_sec", 1.0)),
        factor=float(retry_raw.get("factor", 2.0)),
        max_delay_sec=float(retry_raw.get("max_delay_sec", 30.0)),
        jitter=float(retry_raw.get("jitter", 0.25)),
    )
    if retry.attempts < 1:
        raise ValueError(f"retry.attempts must be >= 1, got {retry.attempts}")

    prompts = _load_prompts(raw["prompts"])

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for model_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=model_name,
            provider_family=model_raw["provider_family"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            token_limit=int(model_raw["token_limit"]),
            cost_per_input_token=float(model_raw.get("cost_per_input_token", 0.0)),
            cost_per_output_token=float(model_raw.get("cost_per_output_token", 0.0)),
            base_url=model_raw.get("base_url"),
        )
        models[model_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(model_name)
            logger.info("Provider available: %s", model_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s, set %s in .env",
                model_name,
                model_raw["api_key_env"],
            )

    for name in [*defaults.panel, defaults.judge]:
        if name not in models:
            raise ValueError(f"Model '{name}' referenced in defaults does not exist")

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        retry=retry,
        available_providers=available_providers,
    )
