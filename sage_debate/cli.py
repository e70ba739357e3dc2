"""Click CLI: loads config, runs one debate, prints and saves the result."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import load_config
from sage_debate.errors import FatalError
from sage_debate.models import DebateConfig, DebateOptions, DebateResult, LogLevel, Notification, TaskType
from sage_debate.orchestrator import DebateOrchestrator
from sage_debate.output import print_result, save_to_file

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_NOTIFY_STYLES = {
    "debug": "dim",
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _read_text(path: str | None) -> str:
    return Path(path).read_text(encoding="utf-8").strip() if path else ""


async def _run(
    orchestrator: DebateOrchestrator,
    options: DebateOptions,
) -> DebateResult:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:

        def notify(note: Notification) -> None:
            style = _NOTIFY_STYLES.get(note.level, "")
            progress.print(f"[{style}]{note.message}[/{style}]" if style else note.message)

        progress.add_task(f"Running {options.task_type.value} debate...", total=None)
        return await orchestrator.run_debate(options, notify=notify)


@click.command()
@click.argument("task_type", type=click.Choice([t.value for t in TaskType]))
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read the prompt from a file")
@click.option("--context", "context_file", type=click.Path(exists=True),
              help="File with code context for the models")
@click.option("--rounds", default=None, type=click.IntRange(min=1),
              help="Number of debate rounds (default: per task type)")
@click.option("--max-tokens", default=0, type=click.IntRange(min=0),
              help="Total token budget for the debate (0 = unlimited)")
@click.option("--log-level", default=None, type=click.Choice([lv.value for lv in LogLevel]),
              help="Debate notification level (default: per task type)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--no-debate", is_flag=True, default=False, help="Ask a single model, skip the debate")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    task_type: str,
    prompt: str | None,
    prompt_file: str | None,
    context_file: str | None,
    rounds: int | None,
    max_tokens: int,
    log_level: str | None,
    output_path: str | None,
    no_debate: bool,
    verbose: bool,
) -> None:
    """Sage Debate -- multi-model debate for opinions, code reviews and plans.

    \b
    Examples:
      sage-debate opinion "Should we use REST or GraphQL?"
      sage-debate review --file request.md --context src/app.py --rounds 1
      sage-debate plan "Migrate auth to OAuth2" --max-tokens 200000
      sage-debate opinion "Tabs or spaces?" --no-debate
    """
    load_dotenv()
    _setup_logging(verbose)

    if prompt_file:
        user_prompt = _read_text(prompt_file)
    elif prompt:
        user_prompt = prompt
    else:
        console.print("[bold red]Error:[/bold red] Provide a PROMPT argument or --file.")
        sys.exit(1)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    options = DebateOptions(
        task_type=TaskType(task_type),
        user_prompt=user_prompt,
        code_context=_read_text(context_file),
        debate_config=DebateConfig(
            enabled=not no_debate,
            rounds=rounds,
            max_total_tokens=max_tokens,
            log_level=LogLevel(log_level) if log_level else None,
        ),
    )

    orchestrator = DebateOrchestrator.from_config(config)
    try:
        result = asyncio.run(_run(orchestrator, options))
    except FatalError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    print_result(result)

    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    saved_path = save_to_file(result, user_prompt, output_dir)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")

    if result.aborted:
        sys.exit(1)


if __name__ == "__main__":
    main()
