"""Collect per-debate telemetry and package it into the final DebateResult."""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from sage_debate.models import (
    ConsensusInfo,
    DebateResult,
    DebateWarning,
    Fallback,
    ModelDescriptor,
    TaskType,
    Timings,
    TokenUsage,
    TranscriptEntry,
    Winner,
)

logger = logging.getLogger(__name__)


@dataclass
class DebateTelemetry:
    """Append-only debate bookkeeping, written only by the round controller."""

    started: float = field(default_factory=time.monotonic)
    per_phase_ms: dict[str, float] = field(default_factory=dict)
    warnings: list[DebateWarning] = field(default_factory=list)
    transcript: list[TranscriptEntry] = field(default_factory=list)
    fallbacks: list[Fallback] = field(default_factory=list)
    usage_by_backend: dict[str, TokenUsage] = field(default_factory=dict)

    @contextmanager
    def time_phase(self, key: str) -> Iterator[None]:
        start = time.monotonic()
        try:
            yield
        finally:
            elapsed = (time.monotonic() - start) * 1000
            self.per_phase_ms[key] = self.per_phase_ms.get(key, 0.0) + elapsed

    def record_usage(self, backend_name: str, usage: TokenUsage) -> None:
        total = self.usage_by_backend.setdefault(backend_name, TokenUsage())
        total.prompt += usage.prompt
        total.completion += usage.completion


def estimate_cost(
    usage_by_backend: dict[str, TokenUsage],
    descriptors: dict[str, ModelDescriptor],
) -> float:
    """Price recorded usage with each backend's per-token costs."""
    cost = 0.0
    for name, usage in usage_by_backend.items():
        descriptor = descriptors.get(name)
        if descriptor is None:
            logger.debug("No pricing for backend %s", name)
            continue
        cost += usage.prompt * descriptor.cost_per_input_token
        cost += usage.completion * descriptor.cost_per_output_token
    return cost


def assemble_result(
    *,
    task_type: TaskType,
    final_text: str,
    telemetry: DebateTelemetry,
    usage: TokenUsage,
    descriptors: dict[str, ModelDescriptor],
    rounds_completed: int,
    include_debug: bool,
    winner: Winner | None = None,
    consensus: ConsensusInfo | None = None,
    aborted: bool = False,
    abort_reason: str | None = None,
) -> DebateResult:
    """Freeze the debate's telemetry into the caller-facing result.

    Transcript and fallback log are only attached when ``include_debug`` is set.
    """
    total_ms = (time.monotonic() - telemetry.started) * 1000
    return DebateResult(
        task_type=task_type,
        final_text=final_text,
        warnings=list(telemetry.warnings),
        token_usage=TokenUsage(prompt=usage.prompt, completion=usage.completion),
        timings=Timings(total_ms=total_ms, per_phase_ms=dict(telemetry.per_phase_ms)),
        rounds_completed=rounds_completed,
        winner=winner,
        consensus=consensus or ConsensusInfo(),
        estimated_cost=estimate_cost(telemetry.usage_by_backend, descriptors),
        transcript=list(telemetry.transcript) if include_debug else None,
        fallbacks=list(telemetry.fallbacks) if include_debug else None,
        aborted=aborted,
        abort_reason=abort_reason,
    )
