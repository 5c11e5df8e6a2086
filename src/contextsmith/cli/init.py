"""contextsmith init — write the global config and a project config template.

Creates:
  ~/.contextsmith/config.yaml   — global model defaults (created once, mode 0o600)
  contextsmith.yaml             — per-project budgets, every key commented out
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from contextsmith.config import ensure_global_config

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")
_PROJECT_TEMPLATE = (
    "# contextsmith project configuration. Overrides ~/.contextsmith/config.yaml.\n"
    "# API keys come from environment variables only.\n"
    "\n"
    "# selection:\n"
    "#   token_budget: 8192\n"
    "#\n"
    "# pruning:\n"
    "#   max_tokens: 32000\n"
    "#   reserve_tokens: 4000\n"
    "#   preserve_recent: 4\n"
    "#\n"
    "# decomposition:\n"
    "#   threshold: 8\n"
    "#\n"
    "# retry:\n"
    "#   max_attempts: 3\n"
    "#   failure_threshold: 3\n"
    "#\n"
    "# embedding:\n"
    "#   offline: false\n"
)


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
) -> None:
    """Create the global config and a contextsmith.yaml template."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    cfg_path = ensure_global_config()
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    project_cfg = project_dir / "contextsmith.yaml"
    if project_cfg.exists():
        console.print(f"  [yellow]⚠[/]  contextsmith.yaml already exists in {project_dir}; left unchanged.")
    else:
        project_cfg.write_text(_PROJECT_TEMPLATE, encoding="utf-8")
        console.print(f"  [green]✓[/] {project_cfg}")

    console.print("\nNext steps:")
    console.print("  1. export OPENAI_API_KEY=sk-...            (or use --offline)")
    console.print('  2. contextsmith select . "your request"     (pick files under a budget)')
