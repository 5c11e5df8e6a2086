"""contextsmith CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from contextsmith.cli.classify import classify_cmd
from contextsmith.cli.decompose import decompose_cmd
from contextsmith.cli.estimate import estimate_cmd
from contextsmith.cli.init import init_cmd
from contextsmith.cli.search import search_cmd, select_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("contextsmith")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"contextsmith {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="contextsmith",
    help=(
        "contextsmith — fit code and conversation into a model's context budget.\n\n"
        "  contextsmith init       Write the global config and a project template.\n"
        "  contextsmith decompose  Split an oversized build request into ordered steps.\n"
        "  contextsmith select     Pick the files a request needs under a token budget."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """contextsmith — context budgeting and generation orchestration."""


app.command("init")(init_cmd)
app.command("estimate")(estimate_cmd)
app.command("decompose")(decompose_cmd)
app.command("search")(search_cmd)
app.command("select")(select_cmd)
app.command("classify")(classify_cmd)


if __name__ == "__main__":
    app()
