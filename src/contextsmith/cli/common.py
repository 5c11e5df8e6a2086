"""Helpers shared by contextsmith CLI commands: config loading and source walking."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from contextsmith.cli.errors import err_config_invalid
from contextsmith.config import ConfigError, ContextsmithConfig, load_config
from contextsmith.index.models import SourceFile

console = Console()

SOURCE_SUFFIXES: frozenset[str] = frozenset(
    [
        ".py", ".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".vue", ".svelte",
        ".css", ".scss", ".html", ".go", ".rs", ".java", ".kt", ".rb", ".php",
    ]
)
_SKIP_DIRS: frozenset[str] = frozenset(
    ["node_modules", ".git", "dist", "build", "__pycache__", ".venv", "venv", ".next", "coverage"]
)
_MAX_FILE_BYTES = 512 * 1024


def load_config_or_exit(project_dir: Path | None = None) -> ContextsmithConfig:
    """Load layered config; print an actionable error and exit 1 if it is invalid."""
    try:
        return load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config_invalid(str(exc)))
        raise typer.Exit(1) from exc


def load_sources(directory: Path) -> list[SourceFile]:
    """Read every source file under *directory*, paths relative to it, sorted."""
    sources: list[SourceFile] = []
    for f in sorted(directory.rglob("*")):
        rel = f.relative_to(directory)
        if any(part in _SKIP_DIRS for part in rel.parts[:-1]):
            continue
        if not f.is_file() or f.suffix.lower() not in SOURCE_SUFFIXES:
            continue
        if f.stat().st_size > _MAX_FILE_BYTES:
            continue
        try:
            content = f.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            continue
        sources.append(SourceFile(rel.as_posix(), content))
    return sources
