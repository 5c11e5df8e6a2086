"""contextsmith estimate — heuristic token count for a file or a string.

Usage:
  contextsmith estimate src/App.tsx
  contextsmith estimate --text "Build a todo app with login"
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from contextsmith.cli.common import load_config_or_exit
from contextsmith.cli.errors import err_file_not_found, err_no_input
from contextsmith.estimator import TokenEstimator

console = Console()


def estimate_cmd(
    file: Annotated[
        Path | None,
        typer.Argument(help="File to estimate. Omit when using --text."),
    ] = None,
    text: Annotated[
        str | None,
        typer.Option("--text", "-t", help="Estimate this string instead of a file."),
    ] = None,
) -> None:
    """Estimate how many model tokens a file or string will occupy."""
    if text is None and file is None:
        console.print(err_no_input())
        raise typer.Exit(1)

    if text is None:
        if not file.is_file():
            console.print(err_file_not_found(str(file)))
            raise typer.Exit(1)
        text = file.read_text(encoding="utf-8", errors="replace")
        label = str(file)
    else:
        label = "(text)"

    cfg = load_config_or_exit()
    estimator = TokenEstimator.from_config(cfg.estimator)
    tokens = estimator.estimate(text)
    body = estimator.estimate(text, include_overhead=False)

    lines = text.count("\n") + 1 if text else 0

    table = Table(show_header=True, header_style="bold")
    table.add_column("Input")
    table.add_column("Chars", justify="right")
    table.add_column("Lines", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_row(label, f"{len(text):,}", f"{lines:,}", f"{tokens:,}")
    console.print(table)
    console.print(f"  [dim]{body:,} content + {tokens - body} overhead (heuristic, uncalibrated)[/]")
