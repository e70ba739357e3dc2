"""Single backend call with bounded retries, backoff, cancellation and failover."""

import asyncio
import contextlib
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass

from config.config_loader import RetryConfig
from sage_debate.budget import estimate_tokens
from sage_debate.cancellation import CancelToken
from sage_debate.errors import DebateAborted
from sage_debate.models import ModelResponse, TokenUsage
from sage_debate.providers.base import ErrorKind, ProviderError
from sage_debate.registry import Backend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    initial_delay_sec: float = 1.0
    factor: float = 2.0
    max_delay_sec: float = 30.0
    jitter: float = 0.25

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")

    @classmethod
    def from_config(cls, cfg: RetryConfig) -> "RetryPolicy":
        return cls(
            attempts=cfg.attempts,
            initial_delay_sec=cfg.initial_delay_sec,
            factor=cfg.factor,
            max_delay_sec=cfg.max_delay_sec,
            jitter=cfg.jitter,
        )


def compute_backoff(
    attempt: int,
    policy: RetryPolicy,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retrying after failed ``attempt`` (1-indexed), in seconds.

    ``initial * factor^(attempt-1)`` capped at ``max_delay_sec``, then scaled
    by a factor drawn uniformly from ``[1, 1 + jitter]``. Never shorter than
    the unjittered delay.
    """
    delay = min(policy.initial_delay_sec * policy.factor ** (attempt - 1), policy.max_delay_sec)
    if policy.jitter:
        delay *= 1 + rng() * policy.jitter
    return delay


@dataclass(frozen=True)
class TaskSuccess:
    backend_name: str
    text: str
    usage: TokenUsage
    attempts: int
    served_by: str         # differs from backend_name after a failover


@dataclass(frozen=True)
class TaskFailure:
    backend_name: str
    detail: str
    transient: bool
    attempts: int


TaskOutcome = TaskSuccess | TaskFailure

FallbackResolver = Callable[[Backend, int], Backend | None]


class TaskRunner:
    """Runs one prompt against one backend.

    Provider failures come back as ``TaskFailure``; only cancellation escapes,
    as ``DebateAborted``.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        fallback: FallbackResolver | None = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._fallback = fallback
        self._rng = rng

    async def run(
        self,
        prompt: str,
        backend: Backend,
        cancel: CancelToken,
        max_output_tokens: int | None = None,
    ) -> TaskOutcome:
        cancel.raise_if_cancelled()
        attempt = 0

        while True:
            attempt += 1
            cancel.raise_if_cancelled()
            try:
                response = await self._call(backend, prompt, cancel, max_output_tokens)
            except ProviderError as exc:
                last_error = exc
            except DebateAborted:
                raise
            except Exception as exc:
                last_error = ProviderError(backend.name, f"Unexpected error: {exc}")
            else:
                return self._success(backend, prompt, response, attempt)

            if not last_error.transient:
                logger.warning("Backend %s failed: %s", backend.name, last_error)
                return TaskFailure(backend.name, str(last_error), transient=False, attempts=attempt)
            if attempt >= self.policy.attempts:
                break

            if last_error.kind is ErrorKind.RATE_LIMIT and last_error.retry_after is not None:
                delay = last_error.retry_after
            else:
                delay = compute_backoff(attempt, self.policy, self._rng)
            logger.warning(
                "Backend %s transient failure (attempt %d/%d), retrying in %.2fs: %s",
                backend.name,
                attempt,
                self.policy.attempts,
                delay,
                last_error,
            )
            await cancel.sleep(delay)

        if last_error.kind is ErrorKind.NETWORK and self._fallback is not None:
            alternate = self._fallback(backend, estimate_tokens(prompt))
            if alternate is not None:
                return await self._failover(prompt, backend, alternate, cancel, max_output_tokens, attempt, last_error)

        logger.warning("Backend %s gave up after %d attempt(s): %s", backend.name, attempt, last_error)
        return TaskFailure(backend.name, str(last_error), transient=True, attempts=attempt)

    async def _failover(
        self,
        prompt: str,
        backend: Backend,
        alternate: Backend,
        cancel: CancelToken,
        max_output_tokens: int | None,
        attempts: int,
        original_error: ProviderError,
    ) -> TaskOutcome:
        logger.warning("Backend %s unreachable, falling back to %s", backend.name, alternate.name)
        cancel.raise_if_cancelled()
        try:
            response = await self._call(alternate, prompt, cancel, max_output_tokens)
        except DebateAborted:
            raise
        except Exception as exc:
            detail = f"{original_error}; fallback to {alternate.name} failed: {exc}"
            transient = isinstance(exc, ProviderError) and exc.transient
            logger.warning("Backend %s failover failed: %s", backend.name, detail)
            return TaskFailure(backend.name, detail, transient=transient, attempts=attempts + 1)
        success = self._success(alternate, prompt, response, attempts + 1)
        return TaskSuccess(
            backend_name=backend.name,
            text=success.text,
            usage=success.usage,
            attempts=success.attempts,
            served_by=alternate.name,
        )

    @staticmethod
    def _success(backend: Backend, prompt: str, response: ModelResponse, attempts: int) -> TaskSuccess:
        usage = TokenUsage(
            prompt=response.prompt_tokens if response.prompt_tokens is not None else estimate_tokens(prompt),
            completion=(
                response.completion_tokens
                if response.completion_tokens is not None
                else estimate_tokens(response.content)
            ),
        )
        return TaskSuccess(
            backend_name=backend.name,
            text=response.content,
            usage=usage,
            attempts=attempts,
            served_by=backend.name,
        )

    @staticmethod
    async def _call(
        backend: Backend,
        prompt: str,
        cancel: CancelToken,
        max_output_tokens: int | None,
    ) -> ModelResponse:
        """Await the provider call, abandoning it as soon as ``cancel`` fires."""
        call = asyncio.ensure_future(backend.provider.generate(prompt, max_output_tokens))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not call.done():
                call.cancel()
        if call not in done:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await call
            cancel.raise_if_cancelled()
        return call.result()
