"""Abstract base for all AI model providers."""

import re
from abc import ABC, abstractmethod
from enum import Enum

from sage_debate.models import ModelResponse

_DEFAULT_RESET_SEC = 60.0


class ErrorKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    FATAL = "fatal"


class ProviderError(Exception):
    """Raised when a provider call fails.

    ``kind`` tells the task runner whether the failure is worth retrying;
    ``retry_after`` carries the provider's rate-limit reset hint in seconds.
    """

    def __init__(
        self,
        provider_name: str,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.FATAL,
        retry_after: float | None = None,
    ) -> None:
        self.provider_name = provider_name
        self.kind = kind
        self.retry_after = retry_after
        super().__init__(f"[{provider_name}] {message}")

    @property
    def transient(self) -> bool:
        return self.kind is not ErrorKind.FATAL


def parse_reset_hint(value: str | None) -> float | None:
    """Convert a rate-limit reset header into seconds.

    Accepts plain seconds ("20", "1.5") and duration strings ("1m20s", "30s",
    "250ms"). A missing header gives ``None`` so the caller falls back to its
    own backoff; an unrecognised one gives 60 seconds.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        seconds = 0.0
        for amount, unit in re.findall(r"(\d+(?:\.\d+)?)(ms|m|s)", value):
            if unit == "m":
                seconds += float(amount) * 60
            elif unit == "s":
                seconds += float(amount)
            else:
                seconds += float(amount) / 1000
    return seconds if seconds > 0 else _DEFAULT_RESET_SEC


class AIProvider(ABC):
    """Abstract base for all AI model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the registry name of the model (e.g. 'o3', 'gemini')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, prompt: str, max_output_tokens: int | None = None) -> ModelResponse:
        """Generate a response for the given prompt.

        Args:
            prompt: The full prompt text to send.
            max_output_tokens: Optional cap overriding the configured max_tokens.

        Returns:
            ModelResponse dataclass with content and metadata.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...
