"""
CLI utility helpers: output formatting.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_error(code: str, message: str) -> None:
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")


def fail(code: str, message: str, exit_code: int = 1) -> typer.Exit:
    """Print an error and return the Exit to raise."""
    print_error(code, message)
    return typer.Exit(code=exit_code)


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(str(v) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        if isinstance(v, dict | list):
            v = json.dumps(v, default=str)
        console.print(f"  [cyan]{k}[/cyan]: {v}", highlight=False)
