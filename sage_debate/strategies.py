"""Per-task-type debate behaviour: prompt building and judge parsing.

Strategies are pure. ``get_prompt`` depends only on its arguments and the
templates handed in at construction, so identical inputs always give
identical prompts.
"""

import re
from dataclasses import dataclass

from config.config_loader import PromptsConfig, TaskPrompts
from sage_debate.consensus import format_entries
from sage_debate.models import Critique, DebateContext, LogLevel, Phase, TaskType
from sage_debate.search_replace import parse_search_replace

_WINNER_RE = re.compile(r"\[\[WINNER:\s*(\d+)\s*\]\]", re.IGNORECASE)
_CRITIQUE_HEADING_RE = re.compile(r"^#{1,6}\s*Critique of\b.*$", re.IGNORECASE | re.MULTILINE)


@dataclass(frozen=True)
class JudgeVerdict:
    winner_index: int      # -1 means the judge wrote its own answer


@dataclass(frozen=True)
class JudgeError:
    error: str


JudgeParse = JudgeVerdict | JudgeError


def critiques_for(worker_id: str, critiques: list[Critique]) -> list[str]:
    """Collect the feedback aimed at ``worker_id`` from its peers.

    When a critique uses "Critique of ... <ID>" headings, only the section for
    ``worker_id`` is kept; a critique without such headings is kept whole.
    """
    target_re = re.compile(
        rf"^#{{1,6}}\s*Critique of\b.*\b(?-i:{re.escape(worker_id)})\b.*$",
        re.IGNORECASE | re.MULTILINE,
    )
    collected: list[str] = []
    for critique in critiques:
        if critique.worker_id == worker_id:
            continue
        headings = list(_CRITIQUE_HEADING_RE.finditer(critique.text))
        if not headings:
            collected.append(critique.text.strip())
            continue
        for i, heading in enumerate(headings):
            if not target_re.fullmatch(heading.group(0)):
                continue
            end = headings[i + 1].start() if i + 1 < len(headings) else len(critique.text)
            collected.append(critique.text[heading.start():end].strip())
    return collected


class DebateStrategy:
    """Base strategy; subclasses set the task type, labels and defaults."""

    task_type: TaskType
    default_rounds: int = 2
    default_log_level: LogLevel = LogLevel.INFO
    entry_label: str = "ANSWER"
    final_heading: str | None = None

    def __init__(self, prompts: TaskPrompts) -> None:
        self._prompts = prompts

    def get_prompt(self, phase: Phase, context: DebateContext, worker_id: str | None = None) -> str:
        """Build the prompt for ``phase``.

        ``worker_id`` is required for generate (and synthesis, which reuses the
        generate template) and critique; the judge prompt is shared.
        """
        if phase is Phase.GENERATE:
            return self._generate_prompt(context, worker_id or "A")
        if phase is Phase.CRITIQUE:
            if worker_id is None:
                raise ValueError("Critique prompts need a worker_id")
            peers = [(w, c) for w, c in zip(context.worker_ids, context.candidates) if w != worker_id]
            return self._prompts.critique.format(
                worker_id=worker_id,
                entries=format_entries([w for w, _ in peers], [c for _, c in peers], self.entry_label),
            )
        if phase is Phase.JUDGE:
            numbers = [str(i) for i in range(1, len(context.candidates) + 1)]
            return self._prompts.judge.format(
                candidate_count=len(context.candidates),
                entries=format_entries(numbers, context.candidates, self.entry_label),
            )
        raise ValueError(f"Unknown debate phase: {phase}")

    def _generate_prompt(self, context: DebateContext, worker_id: str) -> str:
        code_context = f"Context from the code base:\n{context.code_context.strip()}\n" if context.code_context else ""
        prompt = self._prompts.generate.format(
            worker_id=worker_id,
            user_prompt=context.user_prompt,
            code_context=code_context,
        )
        if context.round < 2 or worker_id not in context.worker_ids:
            return prompt

        previous = context.candidates[context.worker_ids.index(worker_id)]
        feedback = critiques_for(worker_id, context.critiques)
        critique_block = "\n\n".join(feedback) if feedback else "(no critiques received)"
        return (
            f"{prompt.rstrip()}\n\n"
            f"This is revision round {context.round}. Your previous answer:\n"
            f"{previous.strip()}\n\n"
            f"Critiques received:\n{critique_block}\n\n"
            "Produce an improved answer that addresses the valid critiques while keeping "
            "the strengths of your previous answer. Keep the same output format.\n"
        )

    def parse_judge(self, raw: str, candidates: list[str]) -> JudgeParse:
        winner = self._explicit_winner(raw, candidates)
        if winner is not None:
            return JudgeVerdict(winner)
        if self._is_own_synthesis(raw):
            return JudgeVerdict(-1)
        if len(candidates) == 1:
            return JudgeVerdict(0)
        return JudgeError(f"Could not determine winning {self.task_type.value} from judge response")

    def validate(self, candidate: str) -> str | None:
        """Return an error message when ``candidate`` is structurally unusable."""
        return None

    @staticmethod
    def _explicit_winner(raw: str, candidates: list[str]) -> int | None:
        match = _WINNER_RE.search(raw)
        if not match:
            return None
        index = int(match.group(1)) - 1
        if 0 <= index < len(candidates):
            return index
        return None

    def _is_own_synthesis(self, raw: str) -> bool:
        return self.final_heading is not None and self.final_heading in raw


class OpinionStrategy(DebateStrategy):
    task_type = TaskType.OPINION
    entry_label = "OPINION"
    final_heading = "# Final Expert Opinion"


class PlanStrategy(DebateStrategy):
    task_type = TaskType.PLAN
    default_rounds = 3
    entry_label = "PLAN"
    final_heading = "# Final Implementation Plan"


class ReviewStrategy(DebateStrategy):
    task_type = TaskType.REVIEW
    entry_label = "REVIEW"

    def _is_own_synthesis(self, raw: str) -> bool:
        parsed = parse_search_replace(raw)
        return parsed.valid and bool(parsed.blocks)

    def validate(self, candidate: str) -> str | None:
        parsed = parse_search_replace(candidate)
        return None if parsed.valid else parsed.error


_STRATEGY_CLASSES: dict[TaskType, type[DebateStrategy]] = {
    TaskType.OPINION: OpinionStrategy,
    TaskType.REVIEW: ReviewStrategy,
    TaskType.PLAN: PlanStrategy,
}


def build_strategies(prompts: PromptsConfig) -> dict[TaskType, DebateStrategy]:
    """Construct one strategy per task type from the configured templates."""
    return {
        task_type: cls(prompts.tasks[task_type.value])
        for task_type, cls in _STRATEGY_CLASSES.items()
    }
