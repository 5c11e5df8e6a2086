"""contextsmith rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from contextsmith.cli.errors import err_no_api_key
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-...\n"
        "  Or use:  --offline  to rank with local hashed embeddings."
    )


def err_file_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: '{path}'\n"
        "  Check the path, or use:  --text \"...\"  to pass text directly."
    )


def err_no_input() -> str:
    """Neither a FILE argument nor --text was given."""
    return (
        "[red]Error:[/] Nothing to estimate.\n"
        "  Use:  contextsmith estimate FILE   or   contextsmith estimate --text \"...\""
    )


def err_not_a_directory(path: str) -> str:
    return (
        f"[red]Error:[/] Not a directory: '{path}'\n"
        "  Use:  a project directory containing source files."
    )


def err_no_source_files(path: str) -> str:
    """Directory walk found nothing indexable."""
    return (
        f"[yellow]No source files found under '{path}'.[/]\n"
        "  Use:  a directory with .py, .js, .ts, .tsx or similar files "
        "(node_modules, .git and build output are skipped)."
    )


def err_config_invalid(detail: str) -> str:
    """contextsmith.yaml or the global config failed validation."""
    return (
        f"[red]Error:[/] Invalid configuration: {detail}\n"
        "  Fix contextsmith.yaml (or ~/.contextsmith/config.yaml) and run again.\n"
        "  API keys must be set via environment variables, not config files."
    )


def warn_budget_exhausted(skipped: list[str]) -> str:
    """Selection left files out for lack of budget."""
    if not skipped:
        return (
            "[yellow]⚠[/] Token budget exhausted; a file was compressed to fit.\n"
            "  Use:  --budget N  to raise the budget."
        )
    names = ", ".join(skipped[:5])
    more = f" (+{len(skipped) - 5} more)" if len(skipped) > 5 else ""
    return (
        f"[yellow]⚠[/] Token budget exhausted; skipped: {names}{more}\n"
        "  Use:  --budget N  to raise the budget."
    )
