"""Token accounting: rough estimation and the optional per-debate ceiling."""

import logging
import math

from sage_debate.models import TokenUsage

logger = logging.getLogger(__name__)

_CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token count for text whose exact usage the provider did not report."""
    return math.ceil(len(text) / _CHARS_PER_TOKEN)


class TokenBudget:
    """Cumulative token usage against an optional ceiling.

    A limit of 0 means unlimited. Usage only grows; the controller records it
    after each batch has drained, so there is a single writer.
    """

    def __init__(self, limit: int = 0) -> None:
        self.limit = limit
        self.usage = TokenUsage()

    @property
    def used(self) -> int:
        return self.usage.total

    @property
    def remaining(self) -> int | None:
        if not self.limit:
            return None
        return max(0, self.limit - self.used)

    def record(self, prompt_tokens: int, completion_tokens: int) -> None:
        self.usage.prompt += prompt_tokens
        self.usage.completion += completion_tokens

    def can_begin_round(self, estimated_tokens: int) -> bool:
        """True when a round costing ``estimated_tokens`` still fits the ceiling."""
        if not self.limit:
            return True
        fits = self.used + estimated_tokens <= self.limit
        if not fits:
            logger.info(
                "Round estimate %d exceeds remaining budget (%d of %d used)",
                estimated_tokens,
                self.used,
                self.limit,
            )
        return fits
