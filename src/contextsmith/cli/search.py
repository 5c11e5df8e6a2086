"""contextsmith search / select — rank code in a project directory.

Commands:
  contextsmith search DIR QUERY     — chunk, embed and rank code chunks
  contextsmith select DIR QUERY     — pick whole files under a token budget

Usage:
  contextsmith search ./app "useAuth hook" --top-k 5 --offline
  contextsmith select ./app "add dark mode toggle" --budget 4000 --active src/App.tsx
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from contextsmith.cli.common import load_config_or_exit, load_sources
from contextsmith.cli.errors import (
    err_no_api_key,
    err_no_source_files,
    err_not_a_directory,
    warn_budget_exhausted,
)
from contextsmith.estimator import TokenEstimator
from contextsmith.index.retriever import CodeRetriever
from contextsmith.index.selector import SelectionConfig, select_files
from contextsmith.llm_client import provider_of, validate_api_key

console = Console()


def _read_project(directory: Path):
    if not directory.is_dir():
        console.print(err_not_a_directory(str(directory)))
        raise typer.Exit(1)
    sources = load_sources(directory)
    if not sources:
        console.print(err_no_source_files(str(directory)))
        raise typer.Exit(0)
    return sources


def search_cmd(
    directory: Annotated[Path, typer.Argument(help="Project directory to index.")],
    query: Annotated[str, typer.Argument(help="What to look for (identifier or phrase).")],
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Maximum results. Default from config."),
    ] = None,
    offline: Annotated[
        bool,
        typer.Option("--offline", help="Use local hashed embeddings; no API calls."),
    ] = False,
) -> None:
    """Index a project directory and rank its code chunks for QUERY."""
    cfg = load_config_or_exit(directory if directory.is_dir() else None)
    sources = _read_project(directory)

    embedding = cfg.embedding
    if offline:
        embedding = replace(embedding, offline=True)
    if not embedding.offline:
        try:
            validate_api_key(embedding.model)
        except EnvironmentError:
            console.print(err_no_api_key(provider_of(embedding.model)))
            raise typer.Exit(1)
    cfg = replace(cfg, embedding=embedding)

    retriever = CodeRetriever.from_config(cfg, TokenEstimator.from_config(cfg.estimator))
    project_id = directory.resolve().as_posix()
    try:
        index = retriever.index_project(project_id, sources)
        results = retriever.search(project_id, query, top_k)
    finally:
        retriever.close()

    console.print(
        f"  [dim]Indexed {index.file_count} file(s) into {len(index.chunks)} chunk(s).[/]"
    )
    if not results:
        console.print(f"[yellow]No chunks matched[/] '{escape(query)}'.")
        return

    table = Table(title=f"Results for '{escape(query)}'", show_header=True, header_style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Match")
    table.add_column("Chunk", style="bold")
    table.add_column("Kind")
    table.add_column("Lines", justify="right")
    for r in results:
        c = r.chunk
        table.add_row(
            f"{r.score:.2f}",
            r.match_type,
            escape(f"{c.file_path} {c.name}".strip()),
            c.kind,
            f"{c.start_line}-{c.end_line}",
        )
    console.print(table)


def select_cmd(
    directory: Annotated[Path, typer.Argument(help="Project directory to select from.")],
    query: Annotated[str, typer.Argument(help="The request the files are for.")],
    budget: Annotated[
        int | None,
        typer.Option("--budget", "-b", min=0, help="Token budget. Default from config."),
    ] = None,
    active: Annotated[
        str | None,
        typer.Option("--active", "-a", help="Path (relative to DIR) of the file being edited."),
    ] = None,
) -> None:
    """Choose the most relevant whole files for QUERY within a token budget."""
    cfg = load_config_or_exit(directory if directory.is_dir() else None)
    sources = _read_project(directory)
    token_budget = cfg.selection.token_budget if budget is None else budget

    selection = select_files(
        query,
        sources,
        token_budget,
        active_file=active,
        estimator=TokenEstimator.from_config(cfg.estimator),
        config=SelectionConfig.from_config(cfg.selection),
    )

    table = Table(title="Selected Files", show_header=True, header_style="bold")
    table.add_column("File", style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("")
    for f in selection.files:
        table.add_row(
            escape(f.path),
            f"{f.score:.2f}",
            f"{f.tokens:,}",
            "[yellow]compressed[/]" if f.compressed else "",
        )
    console.print(table)
    console.print(
        f"\n  {selection.total_tokens:,} / {selection.budget:,} tokens · "
        f"{len(selection.files)} of {len(sources)} file(s)"
    )
    if selection.budget_exhausted:
        console.print(warn_budget_exhausted(selection.skipped))
