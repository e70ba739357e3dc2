"""Model registry: which backends exist, which are usable, and who judges."""

import logging
from dataclasses import dataclass

from config.config_loader import AppConfig
from sage_debate.errors import NoBackendsAvailable
from sage_debate.models import ModelDescriptor
from sage_debate.providers.anthropic import AnthropicProvider
from sage_debate.providers.base import AIProvider
from sage_debate.providers.gemini import GeminiProvider
from sage_debate.providers.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}

WORKER_IDS = ("A", "B", "C", "D", "E", "F", "G", "H")


@dataclass(frozen=True)
class Backend:
    descriptor: ModelDescriptor
    provider: AIProvider

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def provider_family(self) -> str:
        return self.descriptor.provider_family


def assign_worker_ids(backends: list[Backend]) -> dict[str, Backend]:
    """Map backends to anonymous single-letter IDs in registry order.

    Backends beyond the eighth are left out of the debate.
    """
    if len(backends) > len(WORKER_IDS):
        dropped = [b.name for b in backends[len(WORKER_IDS):]]
        logger.warning("More than %d backends available, ignoring: %s", len(WORKER_IDS), ", ".join(dropped))
    return dict(zip(WORKER_IDS, backends))


class ModelRegistry:
    """Holds every configured model and the providers built for available ones.

    Args:
        descriptors: All configured models, in configuration order.
        providers: Provider instances keyed by model name; only available
            models need an entry.
        panel: Names of models that take part in debates. Defaults to every
            descriptor.
        preferred_judge: Model used for judging when its credential is present.
    """

    def __init__(
        self,
        descriptors: list[ModelDescriptor],
        providers: dict[str, AIProvider],
        panel: list[str] | None = None,
        preferred_judge: str | None = None,
    ) -> None:
        self._descriptors = list(descriptors)
        self._backends: dict[str, Backend] = {
            d.name: Backend(d, providers[d.name])
            for d in self._descriptors
            if d.available and d.name in providers
        }
        self._panel = list(panel) if panel is not None else [d.name for d in self._descriptors]
        self._preferred_judge = preferred_judge

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        provider_classes: dict[str, type[AIProvider]] = PROVIDER_CLASSES,
    ) -> "ModelRegistry":
        """Build descriptors and providers from loaded configuration."""
        descriptors: list[ModelDescriptor] = []
        providers: dict[str, AIProvider] = {}
        for name, model_cfg in config.models.items():
            available = name in config.available_providers
            if available:
                provider_cls = provider_classes.get(model_cfg.provider_family)
                if provider_cls is None:
                    logger.warning("Provider family '%s' unknown, skipping %s", model_cfg.provider_family, name)
                    available = False
                else:
                    try:
                        providers[name] = provider_cls(model_cfg)
                    except Exception as exc:
                        logger.warning("Failed to instantiate provider '%s': %s", name, exc)
                        available = False
            descriptors.append(
                ModelDescriptor(
                    name=name,
                    provider_family=model_cfg.provider_family,
                    token_limit=model_cfg.token_limit,
                    cost_per_input_token=model_cfg.cost_per_input_token,
                    cost_per_output_token=model_cfg.cost_per_output_token,
                    available=available,
                )
            )
        return cls(
            descriptors,
            providers,
            panel=config.defaults.panel or None,
            preferred_judge=config.defaults.judge,
        )

    @property
    def descriptors(self) -> list[ModelDescriptor]:
        return list(self._descriptors)

    def get(self, name: str) -> Backend | None:
        return self._backends.get(name)

    def list_available(self) -> list[Backend]:
        """Return available panel backends in panel order.

        Raises:
            NoBackendsAvailable: If no panel model has its credential present.
        """
        available = [self._backends[n] for n in self._panel if n in self._backends]
        if not available:
            raise NoBackendsAvailable(
                "No models available. Set an API key for at least one configured model."
            )
        return available

    def select_judge(self, participants: list[Backend]) -> Backend:
        """Preferred judge if usable, else the first debate participant."""
        if self._preferred_judge and self._preferred_judge in self._backends:
            return self._backends[self._preferred_judge]
        return participants[0]

    def fallback_for(self, backend: Backend, token_count: int) -> Backend | None:
        """First available backend of another provider family that fits ``token_count``."""
        for candidate in self._backends.values():
            if candidate.provider_family == backend.provider_family:
                continue
            if token_count <= candidate.descriptor.token_limit:
                return candidate
        return None
