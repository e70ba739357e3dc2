"""Tests for sage_debate/debate.py: the round controller."""

import asyncio
import logging

import pytest

from sage_debate.cancellation import CancelToken
from sage_debate.debate import RoundController, resolve_config
from sage_debate.errors import AllGenerationsFailed
from sage_debate.models import (
    CandidateRecord,
    DebateConfig,
    LogLevel,
    ModelResponse,
    Notification,
    Phase,
    TaskType,
    WarningCode,
)
from sage_debate.providers.base import ErrorKind, ProviderError
from sage_debate.runner import TaskRunner
from sage_debate.strategies import build_strategies
from tests.conftest import ScriptedProvider, debate_responder, make_backend

_VALID_REVIEW = "SEARCH\nx = 1\nREPLACE\nx = 2\nEND"


def _failing_on(name: str, marker: str, kind: ErrorKind = ErrorKind.FATAL):
    """Responder that fails whenever ``marker`` is in the prompt."""
    base = debate_responder(name)

    def respond(prompt: str):
        if marker in prompt:
            return ProviderError(name, f"{marker} failed", kind=kind)
        return base(prompt)

    return respond


class SlowCritiqueProvider(ScriptedProvider):
    """Hangs on critique prompts so the debate deadline fires mid-round."""

    async def generate(self, prompt: str, max_output_tokens: int | None = None) -> ModelResponse:
        if prompt.startswith("CRITIQUE"):
            await asyncio.sleep(10)
        return await super().generate(prompt, max_output_tokens)


@pytest.fixture
def strategies(prompts_config):
    return build_strategies(prompts_config)


@pytest.fixture
def judge_provider():
    return ScriptedProvider("judge", debate_responder("judge"))


def _controller(
    strategies,
    providers: list[ScriptedProvider],
    judge_provider: ScriptedProvider,
    *,
    task_type: TaskType = TaskType.OPINION,
    fast_policy=None,
    **config_kwargs,
):
    notify = config_kwargs.pop("notify", None)
    timeout_sec = config_kwargs.pop("timeout_sec", None)
    cancel = config_kwargs.pop("cancel", None)
    runner = config_kwargs.pop("runner", None) or TaskRunner(fast_policy)
    descriptors = config_kwargs.pop("descriptors", None)
    participants = [make_backend(p.name(), p) for p in providers]
    judge = make_backend("judge", judge_provider, family="anthropic")
    return RoundController(
        strategies[task_type],
        DebateConfig(enabled=True, **config_kwargs),
        participants,
        judge,
        runner,
        "CONSENSUS check:\n{entries}",
        notify=notify,
        parallelism=2,
        round_token_estimate=1000,
        timeout_sec=timeout_sec,
        cancel=cancel,
        descriptors=descriptors,
    )


def _providers(*names: str) -> list[ScriptedProvider]:
    return [ScriptedProvider(n, debate_responder(n)) for n in names]


# -- configuration -----------------------------------------------------------

def test_resolve_config_applies_strategy_defaults(strategies):
    config = resolve_config(DebateConfig(), strategies[TaskType.PLAN])
    assert config.rounds == 3
    assert config.log_level is LogLevel.INFO


def test_resolve_config_caller_values_win(strategies):
    config = resolve_config(DebateConfig(rounds=1, log_level=LogLevel.DEBUG), strategies[TaskType.PLAN])
    assert config.rounds == 1
    assert config.log_level is LogLevel.DEBUG


# -- single backend ----------------------------------------------------------

async def test_single_backend_skips_critique_and_judge(strategies, judge_provider):
    (only,) = _providers("a")
    result = await _controller(strategies, [only], judge_provider, rounds=3).run("YAML or JSON?")

    assert result.final_text == "answer from a"
    assert result.winner is None
    assert result.rounds_completed == 1
    assert len(only.prompts) == 1
    assert not any(p.startswith(("CRITIQUE", "JUDGE")) for p in only.prompts)
    assert judge_provider.prompts == []
    assert set(result.timings.per_phase_ms) == {"round1.generate"}


async def test_single_backend_failure_is_fatal(strategies, judge_provider, fast_policy):
    broken = ScriptedProvider("a", _failing_on("a", "GENERATE"))
    with pytest.raises(AllGenerationsFailed):
        await _controller(strategies, [broken], judge_provider, fast_policy=fast_policy).run("q")


# -- full debate -------------------------------------------------------------

async def test_two_round_debate_flow(strategies, judge_provider):
    a, b, c = _providers("a", "b", "c")
    controller = _controller(strategies, [a, b, c], judge_provider, rounds=2)
    result = await controller.run("YAML or JSON?")

    assert result.warnings == []
    assert result.rounds_completed == 2
    assert result.final_text == "revised answer from a"
    assert result.winner.worker_id == "A"
    assert result.winner.backend_name == "a"
    assert list(result.timings.per_phase_ms) == [
        "round1.generate",
        "round1.critique",
        "round2.synthesize",
        "round2.consensus",
        "judge",
    ]
    # generate, critique, synthesize; no critique on the final round
    assert len(a.prompts) == 3
    assert sum(p.startswith("CRITIQUE") for p in a.prompts) == 1
    assert judge_provider.prompts[0].startswith("CONSENSUS")
    assert judge_provider.prompts[1].startswith("JUDGE 3 candidates")
    assert result.consensus.reached is False
    assert result.consensus.round == 2
    assert result.consensus.score == pytest.approx(0.2)


async def test_critique_excludes_own_candidate(strategies, judge_provider):
    a, b = _providers("a", "b")
    await _controller(strategies, [a, b], judge_provider, rounds=2).run("q")

    critique_prompt = next(p for p in a.prompts if p.startswith("CRITIQUE"))
    assert "answer from b" in critique_prompt
    assert "answer from a" not in critique_prompt


async def test_synthesis_receives_peer_critique(strategies, judge_provider):
    a, b = _providers("a", "b")
    await _controller(strategies, [a, b], judge_provider, rounds=2).run("q")

    synthesis_prompt = a.prompts[-1]
    assert "revision round 2" in synthesis_prompt
    assert "answer from a" in synthesis_prompt
    assert "critique by b" in synthesis_prompt
    assert "critique by a" not in synthesis_prompt


async def test_rounds_bound_the_number_of_cycles(strategies, judge_provider):
    a, b = _providers("a", "b")
    result = await _controller(strategies, [a, b], judge_provider, rounds=4).run("q")

    assert result.rounds_completed == 4
    assert sum("revision round" in p for p in a.prompts) == 3
    assert sum(p.startswith("JUDGE") for p in judge_provider.prompts) == 1


async def test_failed_generation_drops_backend(strategies, judge_provider):
    a = ScriptedProvider("a", debate_responder("a"))
    b = ScriptedProvider("b", _failing_on("b", "GENERATE"))
    c = ScriptedProvider("c", debate_responder("c"))
    judge_provider = ScriptedProvider("judge", debate_responder("judge", judge_reply="[[WINNER: 2]]"))
    controller = _controller(strategies, [a, b, c], judge_provider, rounds=2)

    result = await controller.run("q")

    gen_fail = [w for w in result.warnings if w.code is WarningCode.GEN_FAIL]
    assert len(gen_fail) == 1
    assert gen_fail[0].phase is Phase.GENERATE
    assert controller.candidate_records == [
        CandidateRecord(index=0, worker_id="A", backend_name="a"),
        CandidateRecord(index=1, worker_id="C", backend_name="c"),
    ]
    assert judge_provider.prompts[-1].startswith("JUDGE 2 candidates")
    assert result.winner.worker_id == "C"
    assert result.final_text == "revised answer from c"
    assert len(b.prompts) == 1


async def test_failover_credits_and_prices_the_serving_backend(strategies, judge_provider, fast_policy):
    a = ScriptedProvider("a", _failing_on("a", "GENERATE", kind=ErrorKind.NETWORK))
    b = ScriptedProvider("b", debate_responder("b"))
    alt = make_backend("alt", ScriptedProvider("alt", debate_responder("alt")), family="gemini")
    controller = _controller(
        strategies,
        [a, b],
        judge_provider,
        rounds=1,
        runner=TaskRunner(fast_policy, fallback=lambda backend, tokens: alt),
        descriptors={"alt": alt.descriptor},
    )

    result = await controller.run("q")

    assert result.warnings == []
    assert controller.candidate_records[0] == CandidateRecord(index=0, worker_id="A", backend_name="alt")
    assert result.final_text == "answer from alt"
    assert result.winner.worker_id == "A"
    assert result.winner.backend_name == "alt"
    # alt, b and the judge each used 10 prompt + 10 completion tokens
    assert result.token_usage.prompt == 30
    assert result.estimated_cost == pytest.approx(30 * 0.000001 + 30 * 0.000002)


async def test_candidates_keep_worker_order_not_completion_order(strategies, judge_provider):
    class SlowFirst(ScriptedProvider):
        async def generate(self, prompt, max_output_tokens=None):
            await asyncio.sleep(0.03)
            return await super().generate(prompt, max_output_tokens)

    slow = SlowFirst("a", debate_responder("a"))
    fast = ScriptedProvider("b", debate_responder("b"))
    controller = _controller(strategies, [slow, fast], judge_provider, rounds=1)
    result = await controller.run("q")

    assert [r.backend_name for r in controller.candidate_records] == ["a", "b"]
    assert "## OPINION 1\nanswer from a" in judge_provider.prompts[-1]
    assert result.final_text == "answer from a"


async def test_failed_synthesis_keeps_previous_candidate(strategies, judge_provider):
    a = ScriptedProvider("a", debate_responder("a"))
    b = ScriptedProvider("b", _failing_on("b", "revision round"))
    judge_provider = ScriptedProvider("judge", debate_responder("judge", judge_reply="[[WINNER: 2]]"))

    result = await _controller(strategies, [a, b], judge_provider, rounds=2).run("q")

    assert result.final_text == "answer from b"
    assert [(w.code, w.phase) for w in result.warnings] == [(WarningCode.GEN_FAIL, Phase.SYNTHESIZE)]


async def test_failed_critique_is_a_warning(strategies, judge_provider):
    a = ScriptedProvider("a", _failing_on("a", "CRITIQUE"))
    b = ScriptedProvider("b", debate_responder("b"))

    result = await _controller(strategies, [a, b], judge_provider, rounds=2).run("q")

    assert [(w.code, w.phase) for w in result.warnings] == [(WarningCode.GEN_FAIL, Phase.CRITIQUE)]
    # b's synthesis got no critiques, a's got b's
    assert "(no critiques received)" in b.prompts[-1]
    assert "critique by b" in a.prompts[-1]


async def test_all_generations_failed(strategies, judge_provider):
    providers = [ScriptedProvider(n, _failing_on(n, "GENERATE")) for n in ("a", "b")]
    with pytest.raises(AllGenerationsFailed):
        await _controller(strategies, providers, judge_provider).run("q")


async def test_only_one_survivor_goes_straight_to_judge(strategies, judge_provider):
    a = ScriptedProvider("a", debate_responder("a"))
    b = ScriptedProvider("b", _failing_on("b", "GENERATE"))

    result = await _controller(strategies, [a, b], judge_provider, rounds=3).run("q")

    assert result.rounds_completed == 1
    assert not any(p.startswith("CRITIQUE") for p in a.prompts)
    assert judge_provider.prompts[-1].startswith("JUDGE 1 candidates")
    assert result.final_text == "answer from a"


# -- judge -------------------------------------------------------------------

async def test_malformed_judge_falls_back_to_first_candidate(strategies):
    a, b = _providers("a", "b")
    judge_provider = ScriptedProvider("judge", debate_responder("judge", judge_reply="They are both fine."))

    result = await _controller(strategies, [a, b], judge_provider, rounds=1).run("q")

    assert result.final_text == "answer from a"
    assert result.winner is None
    malformed = [w for w in result.warnings if w.code is WarningCode.JUDGE_MALFORMED]
    assert len(malformed) == 1
    assert malformed[0].phase is Phase.JUDGE


async def test_judge_call_failure_falls_back(strategies, fast_policy):
    a, b = _providers("a", "b")
    judge_provider = ScriptedProvider("judge", _failing_on("judge", "JUDGE"))

    result = await _controller(strategies, [a, b], judge_provider, rounds=1, fast_policy=fast_policy).run("q")

    assert result.final_text == "answer from a"
    assert [w.code for w in result.warnings] == [WarningCode.JUDGE_MALFORMED]


async def test_judge_own_synthesis_uses_raw_text(strategies):
    a, b = _providers("a", "b")
    raw = "# Final Expert Opinion\nUse YAML for humans, JSON for machines."
    judge_provider = ScriptedProvider("judge", debate_responder("judge", judge_reply=raw))

    result = await _controller(strategies, [a, b], judge_provider, rounds=1).run("q")

    assert result.final_text == raw
    assert result.winner is None
    assert result.warnings == []


# -- consensus ---------------------------------------------------------------

async def test_consensus_short_circuits_remaining_rounds(strategies):
    a, b = _providers("a", "b")
    judge_provider = ScriptedProvider(
        "judge", debate_responder("judge", consensus_reply='{"consensusScore": 0.95}')
    )

    result = await _controller(strategies, [a, b], judge_provider, rounds=5).run("q")

    assert result.consensus.reached is True
    assert result.consensus.round == 2
    assert result.rounds_completed == 2
    keys = set(result.timings.per_phase_ms)
    assert not any(k.startswith(("round3", "round4", "round5")) for k in keys)
    assert "round2.critique" not in keys
    assert "judge" in keys


async def test_unparsable_consensus_means_no_consensus(strategies):
    a, b = _providers("a", "b")
    judge_provider = ScriptedProvider("judge", debate_responder("judge", consensus_reply="maybe?"))

    result = await _controller(strategies, [a, b], judge_provider, rounds=3).run("q")

    assert result.consensus.reached is False
    assert result.rounds_completed == 3
    assert result.warnings == []


# -- budget ------------------------------------------------------------------

async def test_token_budget_stops_before_round_two(strategies, judge_provider):
    a, b = _providers("a", "b")
    # Round 1 costs 4 calls x 20 tokens = 80; round 2 would need another 80.
    result = await _controller(strategies, [a, b], judge_provider, rounds=3, max_total_tokens=100).run("q")

    budget = [w for w in result.warnings if w.code is WarningCode.TOKEN_BUDGET]
    assert len(budget) == 1
    assert result.rounds_completed == 1
    assert result.final_text == "answer from a"
    assert not any(k.startswith("round2") for k in result.timings.per_phase_ms)
    assert "judge" in result.timings.per_phase_ms


async def test_token_usage_and_cost_reported(strategies, judge_provider):
    a, b = _providers("a", "b")
    result = await _controller(strategies, [a, b], judge_provider, rounds=1).run("q")

    # two generations and one judge call, 10 prompt + 10 completion each
    assert result.token_usage.prompt == 30
    assert result.token_usage.completion == 30
    assert result.estimated_cost == pytest.approx(30 * 0.000001 + 30 * 0.000002)


# -- validation --------------------------------------------------------------

async def test_review_candidates_are_validated(strategies):
    def good(prompt: str) -> str:
        return "[[WINNER: 1]]" if prompt.startswith("JUDGE") else _VALID_REVIEW

    a = ScriptedProvider("a", good)
    b = ScriptedProvider("b", debate_responder("b"))
    judge_provider = ScriptedProvider("judge", good)

    result = await _controller(
        strategies, [a, b], judge_provider, task_type=TaskType.REVIEW, rounds=1
    ).run("review this", code_context="x = 1")

    failures = [w for w in result.warnings if w.code is WarningCode.VALIDATION_FAIL]
    assert len(failures) == 1
    assert failures[0].phase is Phase.VALIDATE
    assert "model B" in failures[0].message
    assert "x = 1" in a.prompts[0]
    assert result.final_text == _VALID_REVIEW


# -- cancellation ------------------------------------------------------------

async def test_deadline_aborts_with_partial_result(strategies, judge_provider):
    a = SlowCritiqueProvider("a", debate_responder("a"))
    b = SlowCritiqueProvider("b", debate_responder("b"))

    result = await _controller(strategies, [a, b], judge_provider, rounds=2, timeout_sec=0.05).run("q")

    assert result.aborted is True
    assert "deadline" in result.abort_reason
    assert result.final_text == "answer from a"
    assert judge_provider.prompts == []
    assert not any(w.code is WarningCode.GEN_FAIL for w in result.warnings)


async def test_deadline_during_generation_aborts_without_candidates(strategies, judge_provider):
    class HangingProvider(ScriptedProvider):
        async def generate(self, prompt, max_output_tokens=None) -> ModelResponse:
            await asyncio.sleep(10)
            return await super().generate(prompt, max_output_tokens)

    a = HangingProvider("a", debate_responder("a"))
    b = HangingProvider("b", debate_responder("b"))

    result = await _controller(strategies, [a, b], judge_provider, rounds=2, timeout_sec=0.05).run("q")

    assert result.aborted is True
    assert "deadline" in result.abort_reason
    assert result.final_text == ""
    assert result.winner is None
    assert not any(w.code is WarningCode.GEN_FAIL for w in result.warnings)
    assert judge_provider.prompts == []


async def test_deadline_during_judge_call_aborts(strategies):
    class SlowJudgeProvider(ScriptedProvider):
        async def generate(self, prompt, max_output_tokens=None) -> ModelResponse:
            if prompt.startswith("JUDGE"):
                await asyncio.sleep(10)
            return await super().generate(prompt, max_output_tokens)

    a, b = _providers("a", "b")
    judge_provider = SlowJudgeProvider("judge", debate_responder("judge"))

    result = await _controller(strategies, [a, b], judge_provider, rounds=1, timeout_sec=0.05).run("q")

    assert result.aborted is True
    assert "deadline" in result.abort_reason
    assert result.final_text == "answer from a"
    assert result.winner is None
    assert not any(w.code is WarningCode.JUDGE_MALFORMED for w in result.warnings)


async def test_cancelled_before_start_aborts(strategies, judge_provider):
    a, b = _providers("a", "b")
    cancel = CancelToken()
    cancel.cancel("caller gave up")

    result = await _controller(strategies, [a, b], judge_provider, cancel=cancel).run("q")

    assert result.aborted is True
    assert result.abort_reason == "caller gave up"
    assert result.final_text == ""
    assert a.prompts == []


# -- notifications and debug output -----------------------------------------

async def test_notify_sink_failure_does_not_affect_debate(strategies, judge_provider, caplog):
    a, b = _providers("a", "b")

    def broken_sink(note: Notification) -> None:
        raise RuntimeError("sink down")

    with caplog.at_level(logging.WARNING):
        result = await _controller(strategies, [a, b], judge_provider, rounds=1, notify=broken_sink).run("q")

    assert result.final_text == "answer from a"
    assert not result.aborted
    assert "Notification sink failed" in caplog.text


async def test_notify_respects_warn_level(strategies, judge_provider):
    a = ScriptedProvider("a", debate_responder("a"))
    b = ScriptedProvider("b", _failing_on("b", "GENERATE"))
    c = ScriptedProvider("c", debate_responder("c"))
    notes: list[Notification] = []

    await _controller(
        strategies, [a, b, c], judge_provider, rounds=1, log_level=LogLevel.WARN, notify=notes.append
    ).run("q")

    assert notes
    assert {n.level for n in notes} == {"warning"}


async def test_notify_info_level_hides_debug(strategies, judge_provider):
    a, b = _providers("a", "b")
    notes: list[Notification] = []

    await _controller(strategies, [a, b], judge_provider, rounds=1, notify=notes.append).run("q")

    levels = {n.level for n in notes}
    assert "info" in levels
    assert "debug" not in levels


async def test_debug_level_includes_transcript_and_fallbacks(strategies):
    a, b = _providers("a", "b")
    judge_provider = ScriptedProvider("judge", debate_responder("judge", judge_reply="no verdict"))
    notes: list[Notification] = []

    result = await _controller(
        strategies, [a, b], judge_provider, rounds=2, log_level=LogLevel.DEBUG, notify=notes.append
    ).run("q")

    assert "debug" in {n.level for n in notes}
    phases = [(e.round, e.phase, e.worker_id) for e in result.transcript]
    assert (1, Phase.GENERATE, "A") in phases
    assert (1, Phase.CRITIQUE, "B") in phases
    assert (2, Phase.SYNTHESIZE, "A") in phases
    assert (2, Phase.CONSENSUS, "JUDGE") in phases
    assert (2, Phase.JUDGE, "JUDGE") in phases
    assert len(result.fallbacks) == 1
    assert result.fallbacks[0].phase is Phase.JUDGE


async def test_info_level_omits_transcript(strategies, judge_provider):
    a, b = _providers("a", "b")
    result = await _controller(strategies, [a, b], judge_provider, rounds=1).run("q")
    assert result.transcript is None
    assert result.fallbacks is None
