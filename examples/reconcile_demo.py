#!/usr/bin/env python3
"""Runnable demo: enable streams on existing tables and connect them to Lambdas.

Prerequisites:
    AWS credentials in the environment and the service in
    examples/serverless.yml already deployed (the deploy creates the
    Lambda roles and their inline policies).

    uv run python examples/reconcile_demo.py
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

from rich.console import Console

from dynamo_stream.config.loader import load_reconciler_config, load_service_config
from dynamo_stream.observability.logging import configure_logging
from dynamo_stream.pipeline.reconciler import StreamReconciler

console = Console()
CONFIG = Path(__file__).parent / "serverless.yml"


def main() -> None:
    configure_logging()

    # 1. Load the service config and the reconciler settings
    service = load_service_config(CONFIG)
    settings = load_reconciler_config(service)
    reconciler = StreamReconciler(service, settings)

    specs = reconciler.collect()
    if not specs:
        console.print("[yellow]No stream triggers declared[/yellow]")
        return
    for function_name, function_specs in specs.items():
        tables = ", ".join(s.table_name for s in function_specs)
        console.print(f"[cyan]{function_name}[/cyan] <- {tables}")

    # 2. Streams first, then mappings
    try:
        asyncio.run(reconciler.run_all())
    except Exception as exc:
        console.print(f"[red]Reconcile failed:[/red] {exc}")
        sys.exit(1)
    console.print("[green]Streams created and connected[/green]")


if __name__ == "__main__":
    main()
