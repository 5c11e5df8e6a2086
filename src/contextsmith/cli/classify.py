"""contextsmith classify — structural failure check for a generated output.

Usage:
  contextsmith classify output.txt
  contextsmith classify output.txt --prompt "Build a React login form"
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from contextsmith.cli.errors import err_file_not_found
from contextsmith.retry.failures import FailureMode, detect_failure_mode
from contextsmith.retry.strategies import STRATEGY_TABLE

console = Console()


def classify_cmd(
    output_file: Annotated[Path, typer.Argument(help="File holding the model output to check.")],
    prompt: Annotated[
        str,
        typer.Option("--prompt", "-p", help="The prompt that produced the output (enables format/topic checks)."),
    ] = "",
) -> None:
    """Classify a model output into a failure mode and show the retry plan."""
    if not output_file.is_file():
        console.print(err_file_not_found(str(output_file)))
        raise typer.Exit(1)

    output = output_file.read_text(encoding="utf-8", errors="replace")
    mode = detect_failure_mode(output, prompt)

    if mode is FailureMode.UNKNOWN:
        console.print("[green]✓[/] No structural failure detected.")
        return

    plan = " → ".join(s.value for s in STRATEGY_TABLE[mode])
    console.print(f"[red]✗[/] Failure mode: [bold]{mode.value}[/]")
    console.print(f"  Retry strategies: {plan}")
