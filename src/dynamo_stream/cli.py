"""Typer CLI for the DynamoDB stream reconciler."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dynamo_stream.config.loader import load_reconciler_config, load_service_config
from dynamo_stream.config.models import ReconcilerConfig, ServiceConfig
from dynamo_stream.observability.logging import configure_logging
from dynamo_stream.pipeline.reconciler import COMMAND_NAME, StreamReconciler
from dynamo_stream.provisioning.collector import collect_stream_specs

console = Console()
app = typer.Typer(
    name=COMMAND_NAME,
    help="Create DynamoDB streams for existing tables and connect them to Lambdas",
)

CONFIG_ARG = typer.Argument(..., help="Path to the service YAML")
STAGE_OPT = typer.Option(None, "--stage", help="Override provider.stage")
REGION_OPT = typer.Option(None, "--region", help="Override provider.region")
WAIT_OPT = typer.Option(
    None, "--wait-seconds", help="Override the IAM propagation wait"
)
JSON_LOGS_OPT = typer.Option(False, "--json-logs", help="Emit JSON log lines")
LOG_LEVEL_OPT = typer.Option("INFO", "--log-level", help="Log level")


def _load(
    config_path: str,
    stage: str | None,
    region: str | None,
    wait_seconds: float | None,
) -> tuple[ServiceConfig, ReconcilerConfig]:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        service = load_service_config(path, stage=stage, region=region)
        overrides: dict[str, Any] = {}
        if wait_seconds is not None:
            overrides["propagationWaitSeconds"] = wait_seconds
        settings = load_reconciler_config(service, overrides=overrides)
    except Exception as exc:
        console.print(f"[red]Invalid config:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    return service, settings


def _run(
    action: Callable[[StreamReconciler], Awaitable[None]],
    config_path: str,
    stage: str | None,
    region: str | None,
    wait_seconds: float | None,
    json_logs: bool,
    log_level: str,
) -> None:
    try:
        configure_logging(json_output=json_logs, level=log_level)
    except ValueError as exc:
        console.print(f"[red]Invalid --log-level:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    service, settings = _load(config_path, stage, region, wait_seconds)
    reconciler = StreamReconciler(service, settings)
    try:
        asyncio.run(action(reconciler))
    except KeyboardInterrupt as exc:
        reconciler.cancel()
        console.print("[yellow]Interrupted[/yellow]")
        raise typer.Exit(130) from exc
    except Exception as exc:
        console.print(f"[red]{COMMAND_NAME} failed:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


@app.command()
def create(
    config_path: str = CONFIG_ARG,
    stage: str | None = STAGE_OPT,
    region: str | None = REGION_OPT,
    json_logs: bool = JSON_LOGS_OPT,
    log_level: str = LOG_LEVEL_OPT,
) -> None:
    """Create or update DynamoDB streams where needed."""
    _run(
        lambda r: r.ensure_streams(),
        config_path,
        stage,
        region,
        None,
        json_logs,
        log_level,
    )
    console.print("[green]Streams are up to date[/green]")


@app.command()
def connect(
    config_path: str = CONFIG_ARG,
    stage: str | None = STAGE_OPT,
    region: str | None = REGION_OPT,
    wait_seconds: float | None = WAIT_OPT,
    json_logs: bool = JSON_LOGS_OPT,
    log_level: str = LOG_LEVEL_OPT,
) -> None:
    """Grant stream access and connect Lambdas to their streams."""
    _run(
        lambda r: r.ensure_bindings(),
        config_path,
        stage,
        region,
        wait_seconds,
        json_logs,
        log_level,
    )
    console.print("[green]Lambdas are connected[/green]")


@app.command()
def run(
    config_path: str = CONFIG_ARG,
    stage: str | None = STAGE_OPT,
    region: str | None = REGION_OPT,
    wait_seconds: float | None = WAIT_OPT,
    json_logs: bool = JSON_LOGS_OPT,
    log_level: str = LOG_LEVEL_OPT,
) -> None:
    """Create streams, then connect them (what runs after a deploy)."""
    _run(
        lambda r: r.run_all(),
        config_path,
        stage,
        region,
        wait_seconds,
        json_logs,
        log_level,
    )
    console.print("[green]Streams created and connected[/green]")


@app.command()
def hook(
    event: str = typer.Argument(
        ..., help="Host lifecycle event, e.g. after:deploy:deploy"
    ),
    config_path: str = CONFIG_ARG,
    stage: str | None = STAGE_OPT,
    region: str | None = REGION_OPT,
    wait_seconds: float | None = WAIT_OPT,
    json_logs: bool = JSON_LOGS_OPT,
    log_level: str = LOG_LEVEL_OPT,
) -> None:
    """Run the handler bound to a host lifecycle event."""
    _run(
        lambda r: r.handle_lifecycle_event(event),
        config_path,
        stage,
        region,
        wait_seconds,
        json_logs,
        log_level,
    )


@app.command()
def validate(
    config_path: str = CONFIG_ARG,
    stage: str | None = STAGE_OPT,
    region: str | None = REGION_OPT,
) -> None:
    """Validate the config and list the declared stream triggers."""
    service, settings = _load(config_path, stage, region, None)
    try:
        specs = collect_stream_specs(service, settings.trigger_key)
    except ValueError as exc:
        console.print(f"[red]Validation error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    console.print(
        f"[green]Valid:[/green] service={service.service} "
        f"stage={service.provider.stage} region={service.provider.region}"
    )
    console.print(f"  propagation wait: {settings.propagation_wait_seconds}s")
    if not specs:
        console.print(f"  [dim]No {settings.trigger_key} triggers declared[/dim]")
        return

    table = Table(title="Stream triggers")
    table.add_column("Function", style="cyan")
    table.add_column("Deployed name")
    table.add_column("Table")
    table.add_column("Stream type")
    table.add_column("Starting position")
    for function_name, function_specs in specs.items():
        for spec in function_specs:
            table.add_row(
                function_name,
                service.deployed_function_name(function_name),
                spec.table_name,
                spec.stream_view_type.value,
                spec.starting_position.value,
            )
    console.print(table)
