"""
Root Typer application for the conduit CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from conduit.core.logging import configure_logging
from conduit.core.settings import get_settings

app = Typer(
    name="conduit",
    help="conduit: uniform, safe execution of provider integrations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        from conduit import __version__

        try:
            v = pkg_version("conduit-core")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"conduit-core {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Enable structured logs at this level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """conduit CLI: inspect and run whitelisted providers."""
    if log_level:
        configure_logging(level=log_level, json_format=get_settings().log_json)


# ── Sub-command registration ─────────────────────────────────────────────

from conduit.cli.providers import app as providers_app  # noqa: E402

app.add_typer(providers_app, name="providers", help="Whitelisted provider handlers.")


if __name__ == "__main__":
    app()
