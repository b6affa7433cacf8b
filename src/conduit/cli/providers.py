"""
CLI: ``conduit providers``: list, health-check and run providers.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any

import typer

from conduit.cli.utils import console, fail, print_dict, print_json, print_table
from conduit.core.errors import ProviderError
from conduit.core.logging import LogContext
from conduit.execution.engine import execute
from conduit.execution.models import ExecutionContext
from conduit.providers.health import HealthCheckResult, HealthReport, HealthStatus
from conduit.providers.loader import ProviderLoader, get_default_loader

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_providers(
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List whitelisted provider keys."""
    loader = get_default_loader()
    rows = [
        {"key": key, "name": loader.display_name(key), "cached": loader.cached(key) is not None}
        for key in loader.list_allowed()
    ]
    if json_out:
        print_json(rows)
        return
    print_table(rows, title="Providers")


async def _health(loader: ProviderLoader) -> HealthReport:
    failures: list[HealthCheckResult] = []
    for key in loader.list_allowed():
        try:
            await loader.load(key)
        except ProviderError as e:
            failures.append(
                HealthCheckResult(key, HealthStatus.UNHEALTHY, e.message, {"code": e.code.value, **e.details})
            )
    report = await loader.check_health()
    return HealthReport.from_checks(report.checks + failures)


@app.command("health")
def health(
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Load every provider and run its liveness check."""
    report = asyncio.run(_health(get_default_loader()))
    if json_out:
        print_json(report.to_dict())
    else:
        console.print(f"[bold]Overall:[/bold] {report.status.value}")
        print_table(
            [
                {"provider": check.name, "status": check.status.value, "message": check.message}
                for check in report.checks
            ],
            title="Health",
        )
    if report.status == HealthStatus.UNHEALTHY:
        raise typer.Exit(code=1)


def _parse_input(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise typer.BadParameter(f"--input is not valid JSON: {e}") from e


@app.command("run")
def run(
    key: str = typer.Argument(..., help="Provider key, e.g. GENERIC_HTTP."),
    input_json: str = typer.Option("{}", "--input", "-i", help="Handler input as JSON."),
    timeout: float | None = typer.Option(None, "--timeout", "-t", min=0.001, help="Timeout in seconds."),
    task_id: str | None = typer.Option(None, "--task-id", help="Correlation id (random by default)."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Load a provider and execute it once."""
    payload = _parse_input(input_json)
    loader = get_default_loader()

    context = ExecutionContext(
        task_id=task_id or uuid.uuid4().hex,
        input=payload,
        timeout_override=timeout,
    )

    async def _run() -> Any:
        async with LogContext(task_id=context.task_id, provider=key):
            handler = await loader.load(key)
            return await execute(handler, context)

    try:
        result = asyncio.run(_run())
    except ProviderError as e:
        raise fail(e.code.value, e.message) from e

    if json_out:
        print_json(result.to_dict())
    else:
        outcome = "success" if result.success else "failed"
        print_dict(result.to_dict(), title=f"{key}: {outcome}")

    if not result.success:
        raise typer.Exit(code=1)
