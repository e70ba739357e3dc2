"""Debate orchestration: generate, critique, synthesize, consensus, judge."""

import dataclasses
import logging
from collections.abc import Callable
from functools import partial

from sage_debate.assembler import DebateTelemetry, assemble_result
from sage_debate.budget import TokenBudget
from sage_debate.cancellation import CancelToken
from sage_debate.consensus import build_consensus_prompt, consensus_reached, parse_consensus_score
from sage_debate.errors import AllGenerationsFailed, DebateAborted
from sage_debate.models import (
    CandidateRecord,
    ConsensusInfo,
    Critique,
    DebateConfig,
    DebateContext,
    DebateResult,
    DebateWarning,
    Fallback,
    LogLevel,
    ModelDescriptor,
    Notification,
    Phase,
    TranscriptEntry,
    WarningCode,
    Winner,
)
from sage_debate.registry import Backend, assign_worker_ids
from sage_debate.runner import TaskRunner, TaskSuccess
from sage_debate.scheduler import run_in_batches
from sage_debate.strategies import DebateStrategy, JudgeError

logger = logging.getLogger(__name__)

NotifyFn = Callable[[Notification], None]

_JUDGE_ID = "JUDGE"

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# Job tuple handed to the batch scheduler: (worker id, backend, prompt)
Job = tuple[str, Backend, str]


def resolve_config(config: DebateConfig, strategy: DebateStrategy) -> DebateConfig:
    """Fill unset rounds/log level from the strategy; caller values win."""
    return dataclasses.replace(
        config,
        rounds=config.rounds if config.rounds is not None else strategy.default_rounds,
        log_level=config.log_level if config.log_level is not None else strategy.default_log_level,
    )


class RoundController:
    """Runs one debate from first generation to the judge's verdict.

    One instance per debate. Workers run concurrently only inside a phase;
    every piece of shared state (candidates, critiques, usage, warnings,
    transcript) is written by the controller after the phase's batches drain.

    Args:
        strategy: Prompt building and judge parsing for the task type.
        config: Debate settings already merged with strategy defaults.
        participants: Available backends in registry order.
        judge: Backend used for consensus checks and the final verdict.
        runner: Task runner shared by every call in the debate.
        consensus_template: Prompt template for the consensus check.
        notify: Optional observability sink; its failures are ignored.
        parallelism: Batch width for per-worker phases.
        round_token_estimate: Budget estimate when no earlier round cost is known.
        cancel: Token for aborting the debate; a fresh one is created if omitted.
        timeout_sec: Overall deadline after which ``cancel`` fires.
        descriptors: Pricing for every backend the runner may reach, failover
            targets included. Participants and the judge are always covered.
    """

    def __init__(
        self,
        strategy: DebateStrategy,
        config: DebateConfig,
        participants: list[Backend],
        judge: Backend,
        runner: TaskRunner,
        consensus_template: str,
        *,
        notify: NotifyFn | None = None,
        parallelism: int = 3,
        round_token_estimate: int = 50_000,
        cancel: CancelToken | None = None,
        timeout_sec: float | None = None,
        descriptors: dict[str, ModelDescriptor] | None = None,
    ) -> None:
        if config.rounds is None or config.log_level is None:
            config = resolve_config(config, strategy)
        self._strategy = strategy
        self._config = config
        self._rounds: int = config.rounds  # type: ignore[assignment]
        self._workers = assign_worker_ids(participants)
        self._judge = judge
        self._runner = runner
        self._consensus_template = consensus_template
        self._notify_fn = notify
        self._parallelism = parallelism
        self._round_token_estimate = round_token_estimate
        self._cancel = cancel or CancelToken()
        self._timeout_sec = timeout_sec

        self._debug = config.log_level is LogLevel.DEBUG
        self._budget = TokenBudget(config.max_total_tokens)
        self._telemetry = DebateTelemetry()
        self._records: list[CandidateRecord] = []
        self._consensus = ConsensusInfo()
        self._descriptors = dict(descriptors or {})
        self._descriptors.update({b.name: b.descriptor for b in [*participants, judge]})

    @property
    def worker_ids(self) -> dict[str, str]:
        """Anonymous worker id -> backend name, fixed for the debate."""
        return {wid: backend.name for wid, backend in self._workers.items()}

    @property
    def candidate_records(self) -> list[CandidateRecord]:
        """Who wrote each surviving candidate, in candidate order."""
        return list(self._records)

    async def run(self, user_prompt: str, code_context: str = "") -> DebateResult:
        """Drive the debate to completion.

        Raises:
            AllGenerationsFailed: If no backend produced an initial candidate.
        """
        context = DebateContext(user_prompt=user_prompt, code_context=code_context)
        if self._timeout_sec:
            self._cancel.cancel_after(self._timeout_sec)

        self._notify(
            "info",
            f"Starting {self._strategy.task_type.value} debate with {len(self._workers)} "
            f"model(s) and {self._rounds} round(s)",
        )
        try:
            if len(self._workers) == 1:
                final_text, winner = await self._single_backend(context)
            else:
                final_text, winner = await self._debate(context)
        except DebateAborted as exc:
            self._notify("error", f"Debate aborted: {exc.reason}")
            return self._assemble(
                context,
                context.candidates[0] if context.candidates else "",
                winner=None,
                aborted=True,
                abort_reason=exc.reason,
            )
        finally:
            self._cancel.clear_deadline()

        result = self._assemble(context, final_text, winner=winner)
        self._notify(
            "info",
            f"Debate completed in {result.timings.total_ms:.0f}ms with {len(result.warnings)} warning(s)",
        )
        return result

    # -- flows ---------------------------------------------------------------

    async def _single_backend(self, context: DebateContext) -> tuple[str, Winner | None]:
        self._notify("info", "Only one model available. Using single-model flow.")
        context.round = 1
        await self._generate(context)
        return context.candidates[0], None

    async def _debate(self, context: DebateContext) -> tuple[str, Winner | None]:
        last_round_tokens = 0
        for round_num in range(1, self._rounds + 1):
            if round_num > 1:
                if len(context.candidates) < 2:
                    self._notify("info", "Fewer than two candidates left, skipping remaining rounds.")
                    break
                estimate = last_round_tokens or self._round_token_estimate
                if not self._budget.can_begin_round(estimate):
                    self._add_warning(
                        WarningCode.TOKEN_BUDGET,
                        f"Token budget of {self._budget.limit} would be exceeded by round {round_num} "
                        f"({self._budget.used} used, ~{estimate} estimated). Ending debate early.",
                        Phase.SYNTHESIZE,
                    )
                    break

            round_start = self._budget.used
            context.round = round_num
            self._notify("info", f"Starting debate round {round_num}/{self._rounds}")

            if round_num == 1:
                await self._generate(context)
            else:
                await self._synthesize(context)
                if len(context.candidates) > 1 and await self._check_consensus(context):
                    self._notify("info", "Consensus reached! Proceeding to judgment phase.")
                    break

            if round_num < self._rounds and len(context.candidates) > 1:
                await self._critique(context)

            last_round_tokens = self._budget.used - round_start

        return await self._judge_phase(context)

    # -- phases --------------------------------------------------------------

    async def _generate(self, context: DebateContext) -> None:
        self._notify("info", "Generation phase: creating initial candidates...")
        jobs = [
            (wid, backend, self._strategy.get_prompt(Phase.GENERATE, context, wid))
            for wid, backend in self._workers.items()
        ]
        successes = await self._run_phase(Phase.GENERATE, context.round, jobs)
        if not successes:
            raise AllGenerationsFailed("All model generations failed. Cannot continue debate.")

        ordered = [wid for wid in self._workers if wid in successes]
        context.candidates = [successes[wid].text for wid in ordered]
        context.worker_ids = ordered
        self._records = [
            CandidateRecord(index=i, worker_id=wid, backend_name=successes[wid].served_by)
            for i, wid in enumerate(ordered)
        ]
        self._validate(context)

    async def _critique(self, context: DebateContext) -> None:
        self._notify("info", "Critique phase: evaluating candidates...")
        jobs = [
            (wid, self._workers[wid], self._strategy.get_prompt(Phase.CRITIQUE, context, wid))
            for wid in context.worker_ids
        ]
        successes = await self._run_phase(Phase.CRITIQUE, context.round, jobs)
        context.critiques = [
            Critique(worker_id=wid, text=successes[wid].text)
            for wid in context.worker_ids
            if wid in successes
        ]

    async def _synthesize(self, context: DebateContext) -> None:
        self._notify("info", "Synthesis phase: refining candidates based on critiques...")
        jobs = [
            (wid, self._workers[wid], self._strategy.get_prompt(Phase.GENERATE, context, wid))
            for wid in context.worker_ids
        ]
        successes = await self._run_phase(Phase.SYNTHESIZE, context.round, jobs)
        # A failed rewrite keeps that worker's previous candidate.
        context.candidates = [
            successes[wid].text if wid in successes else previous
            for wid, previous in zip(context.worker_ids, context.candidates)
        ]
        self._records = [
            dataclasses.replace(record, backend_name=successes[record.worker_id].served_by)
            if record.worker_id in successes
            else record
            for record in self._records
        ]
        context.critiques = []
        self._validate(context)

    async def _check_consensus(self, context: DebateContext) -> bool:
        self._notify("info", "Checking for consensus...")
        prompt = build_consensus_prompt(self._consensus_template, context.worker_ids, context.candidates)
        with self._telemetry.time_phase(f"round{context.round}.{Phase.CONSENSUS.value}"):
            outcome = await self._runner.run(prompt, self._judge, self._cancel)

        if isinstance(outcome, TaskSuccess):
            self._record(outcome, context.round, Phase.CONSENSUS, _JUDGE_ID, prompt)
            score = parse_consensus_score(outcome.text)
        else:
            self._notify("warning", f"Consensus check failed, assuming no consensus: {outcome.detail}")
            score = 0.0

        reached = consensus_reached(score)
        self._consensus = ConsensusInfo(reached=reached, round=context.round, score=score)
        self._notify(
            "info",
            f"Consensus check: {'Reached' if reached else 'Not reached'} (Score: {score:.2f})",
        )
        return reached

    async def _judge_phase(self, context: DebateContext) -> tuple[str, Winner | None]:
        self._notify("info", f"Judge phase: {self._judge.name} selecting the best candidate...")
        prompt = self._strategy.get_prompt(Phase.JUDGE, context)
        with self._telemetry.time_phase(Phase.JUDGE.value):
            outcome = await self._runner.run(prompt, self._judge, self._cancel)

        if not isinstance(outcome, TaskSuccess):
            return self._judge_fallback(context, f"Judge phase error: {outcome.detail}")

        self._record(outcome, context.round, Phase.JUDGE, _JUDGE_ID, prompt)
        verdict = self._strategy.parse_judge(outcome.text, context.candidates)
        if isinstance(verdict, JudgeError):
            return self._judge_fallback(context, verdict.error)

        if verdict.winner_index == -1:
            self._notify("info", "Judge provided its own synthesized answer.")
            return outcome.text, None

        record = self._records[verdict.winner_index]
        self._notify("info", f"Winner: {record.backend_name} ({record.worker_id})")
        return context.candidates[verdict.winner_index], Winner(record.worker_id, record.backend_name)

    def _judge_fallback(self, context: DebateContext, reason: str) -> tuple[str, Winner | None]:
        self._add_warning(WarningCode.JUDGE_MALFORMED, reason, Phase.JUDGE)
        if self._debug:
            self._telemetry.fallbacks.append(Fallback(Phase.JUDGE, reason))
        return context.candidates[0], None

    # -- helpers -------------------------------------------------------------

    async def _run_phase(self, phase: Phase, round_num: int, jobs: list[Job]) -> dict[str, TaskSuccess]:
        """Run one call per job in batches; return successes keyed by worker id."""
        tasks = [partial(self._runner.run, prompt, backend, self._cancel) for _, backend, prompt in jobs]
        with self._telemetry.time_phase(f"round{round_num}.{phase.value}"):
            outcomes = await run_in_batches(tasks, self._parallelism)

        successes: dict[str, TaskSuccess] = {}
        for (wid, _, prompt), outcome in zip(jobs, outcomes):
            if isinstance(outcome, TaskSuccess):
                self._record(outcome, round_num, phase, wid, prompt)
                successes[wid] = outcome
                self._notify("debug", f"Model {wid} completed {phase.value} in {outcome.attempts} attempt(s)")
            else:
                self._add_warning(
                    WarningCode.GEN_FAIL,
                    f"{phase.value.capitalize()} failed for model {wid}: {outcome.detail}",
                    phase,
                )
        return successes

    def _record(self, outcome: TaskSuccess, round_num: int, phase: Phase, worker_id: str, prompt: str) -> None:
        self._budget.record(outcome.usage.prompt, outcome.usage.completion)
        self._telemetry.record_usage(outcome.served_by, outcome.usage)
        if self._debug:
            self._telemetry.transcript.append(
                TranscriptEntry(round=round_num, phase=phase, worker_id=worker_id, prompt=prompt, response=outcome.text)
            )

    def _validate(self, context: DebateContext) -> None:
        for wid, candidate in zip(context.worker_ids, context.candidates):
            error = self._strategy.validate(candidate)
            if error:
                self._add_warning(
                    WarningCode.VALIDATION_FAIL,
                    f"Candidate from model {wid} failed validation: {error}",
                    Phase.VALIDATE,
                )

    def _add_warning(self, code: WarningCode, message: str, phase: Phase) -> None:
        self._telemetry.warnings.append(DebateWarning(code=code, message=message, phase=phase))
        self._notify("warning", f"[{code.value}] {message}")

    def _notify(self, level: str, message: str) -> None:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)
        if level == "debug" and not self._debug:
            return
        if level == "info" and self._config.log_level is LogLevel.WARN:
            return
        if self._notify_fn is None:
            return
        try:
            self._notify_fn(Notification(level=level, message=message))
        except Exception as exc:
            logger.warning("Notification sink failed: %s", exc)

    def _assemble(
        self,
        context: DebateContext,
        final_text: str,
        *,
        winner: Winner | None,
        aborted: bool = False,
        abort_reason: str | None = None,
    ) -> DebateResult:
        return assemble_result(
            task_type=self._strategy.task_type,
            final_text=final_text,
            telemetry=self._telemetry,
            usage=self._budget.usage,
            descriptors=self._descriptors,
            rounds_completed=context.round,
            include_debug=self._debug,
            winner=winner,
            consensus=self._consensus,
            aborted=aborted,
            abort_reason=abort_reason,
        )
