"""contextsmith decompose — show how a build request would be split into steps.

Usage:
  contextsmith decompose "Build a todo app with login and a dashboard"
  contextsmith decompose "..." --window 4096 --prompts
  contextsmith decompose "..." --model anthropic/claude-3-haiku-20240307
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from contextsmith.cli.common import load_config_or_exit
from contextsmith.estimator import TokenEstimator
from contextsmith.llm_client import get_context_window
from contextsmith.plan.decomposer import PromptDecomposer, sequential_prompts

console = Console()

_COMPLEXITY_STYLE = {"low": "green", "medium": "yellow", "high": "red"}


def decompose_cmd(
    prompt: Annotated[str, typer.Argument(help="The build request to analyze.")],
    no_optimize: Annotated[
        bool,
        typer.Option("--no-optimize", help="Skip the context-window split/merge pass."),
    ] = False,
    window: Annotated[
        int | None,
        typer.Option("--window", "-w", min=256, help="Context window in tokens to size steps against."),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option("--model", "-m", help="Size steps against this model's context window."),
    ] = None,
    show_prompts: Annotated[
        bool,
        typer.Option("--prompts", help="Also print the generated per-step prompts."),
    ] = False,
) -> None:
    """Score a build request and show its dependency-ordered generation steps."""
    cfg = load_config_or_exit()
    estimator = TokenEstimator.from_config(cfg.estimator)
    decomposer = PromptDecomposer.from_config(cfg.decomposition, estimator)

    if window is None and model is not None:
        window = get_context_window(model)
    window = window or cfg.decomposition.context_window

    result = decomposer.decompose(prompt, optimize=not no_optimize, context_window=window)

    header = (
        f"Score: [bold]{result.score:g}[/] (threshold {decomposer.threshold:g})\n"
        f"Decomposed: {'[green]yes[/]' if result.decomposed else '[dim]no[/]'}\n"
        f"Reason: {escape(result.reason)}"
    )
    if result.categories:
        header += f"\nSignals: {', '.join(result.categories)}"
    console.print(Panel(header, title="[bold]Complexity[/]", expand=False))

    table = Table(title="Generation Steps", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Key", style="bold")
    table.add_column("Category")
    table.add_column("Complexity")
    table.add_column("Depends on")
    table.add_column("Est. tokens", justify="right")
    for step in result.steps:
        style = _COMPLEXITY_STYLE.get(step.complexity, "white")
        table.add_row(
            str(step.id),
            step.key,
            step.category,
            f"[{style}]{step.complexity}[/]",
            ", ".join(str(d) for d in step.depends_on) or "-",
            f"{decomposer.estimate_step_tokens(step):,}",
        )
    console.print(table)

    if result.optimized:
        console.print(f"  [dim]Optimized for a {window:,}-token context window.[/]")

    if show_prompts:
        for i, text in enumerate(sequential_prompts(result), start=1):
            console.print(Panel(escape(text), title=f"[bold]Step {i} prompt[/]", expand=False))
