"""Rich console output and markdown file save for debate results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from sage_debate.models import DebateResult, DebateWarning

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _winner_label(result: DebateResult) -> str:
    if result.winner is not None:
        return f"{result.winner.backend_name} (model {result.winner.worker_id})"
    return "none"


def _summary_line(result: DebateResult) -> str:
    consensus = (
        f"reached in round {result.consensus.round} ({result.consensus.score:.2f})"
        if result.consensus.reached
        else "not reached"
    )
    return (
        f"Task: {result.task_type.value} | "
        f"Rounds: {result.rounds_completed} | "
        f"Consensus: {consensus} | "
        f"Tokens: {result.token_usage.total} | "
        f"Est. cost: ${result.estimated_cost:.4f} | "
        f"Duration: {result.timings.total_ms / 1000:.1f}s"
    )


def _warning_line(warning: DebateWarning) -> str:
    return f"[{warning.code.value}] ({warning.phase.value}) {warning.message}"


def print_warnings(warnings: list[DebateWarning]) -> None:
    """Print debate warnings in a single panel, if there are any."""
    if not warnings:
        return
    console.print(
        Panel(
            "\n".join(_warning_line(w) for w in warnings),
            title=f"[bold yellow]{len(warnings)} warning(s)[/bold yellow]",
            border_style="yellow",
        )
    )


def print_result(result: DebateResult) -> None:
    """Print the final artifact to the console using Rich markdown."""
    if result.aborted:
        console.print(Rule("[bold red]Debate Aborted[/bold red]"))
        console.print(Text(f"Reason: {result.abort_reason}", style="red"))
    else:
        console.print(Rule("[bold green]Debate Result[/bold green]"))
    console.print(Text(f"Winner: {_winner_label(result)}", style="dim"))
    console.print(Text(_summary_line(result), style="dim"))
    print_warnings(result.warnings)
    if result.final_text:
        console.print(Markdown(result.final_text))


def render_markdown(result: DebateResult, user_prompt: str) -> str:
    """Render the result (and its transcript, when present) as markdown."""
    lines: list[str] = [
        f"# Debate ({result.task_type.value}): {user_prompt[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Rounds completed:** {result.rounds_completed}",
        f"**Winner:** {_winner_label(result)}",
        f"**Consensus:** {'reached' if result.consensus.reached else 'not reached'}"
        f" (score {result.consensus.score:.2f})",
        f"**Tokens:** {result.token_usage.prompt} prompt / {result.token_usage.completion} completion",
        f"**Estimated cost:** ${result.estimated_cost:.4f}",
        f"**Duration:** {result.timings.total_ms / 1000:.1f}s",
    ]
    if result.aborted:
        lines.append(f"**Aborted:** {result.abort_reason}")
    lines += ["", "---", "", "## Prompt", "", user_prompt, ""]

    if result.warnings:
        lines += ["## Warnings", ""]
        lines += [f"- {_warning_line(w)}" for w in result.warnings]
        lines.append("")

    if result.timings.per_phase_ms:
        lines += ["## Timings", "", "| Phase | ms |", "|---|---|"]
        lines += [f"| {key} | {ms:.0f} |" for key, ms in result.timings.per_phase_ms.items()]
        lines.append("")

    if result.transcript:
        lines += ["## Transcript", ""]
        for entry in result.transcript:
            lines.append(f"### Round {entry.round}: {entry.phase.value} (model {entry.worker_id})")
            lines.append("")
            lines.append(entry.response)
            lines.append("")

    if result.fallbacks:
        lines += ["## Fallbacks", ""]
        lines += [f"- {f.phase.value}: {f.reason}" for f in result.fallbacks]
        lines.append("")

    lines += ["## Final Result", "", result.final_text, ""]
    return "\n".join(lines)


def save_to_file(
    result: DebateResult,
    user_prompt: str,
    output_dir: Path,
    slug_override: str | None = None,
) -> Path:
    """Save the debate result as a markdown file.

    Args:
        result: The completed DebateResult.
        user_prompt: The prompt that started the debate.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the prompt text.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(user_prompt)
    filepath = output_dir / f"{timestamp}_{result.task_type.value}_{slug}.md"

    filepath.write_text(render_markdown(result, user_prompt), encoding="utf-8")
    logger.info("Debate saved to: %s", filepath)
    return filepath
