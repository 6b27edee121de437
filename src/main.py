"""Entry point for the service monitor."""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.config import settings
from src.health.errors import ValidationError
from src.health.models import ServiceDefinition
from src.health.probes import execute

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting Service Monitor API", style="bold green"))
    uvicorn.run(
        "src.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def run_probe(kind: str, target: str, port: int | None, timeout: int) -> int:
    """Run a single probe and print the outcome. Exit code 0 on success."""
    data = {
        "name": target,
        "pingServiceName": kind,
        "timeout": timeout,
        "interval": timeout + 1,
        "failureInterval": timeout + 1,
        "warningThreshold": 0,
        "port": port,
    }
    if kind.startswith("http"):
        data["url"] = target
    else:
        data["host"] = target
    try:
        definition = ServiceDefinition.from_dict(data)
    except ValidationError as e:
        console.print(f"[bold red]Invalid probe:[/bold red] {e.field}: {e.message}")
        return 2

    with console.status(f"[bold green]Probing {target}..."):
        outcome = execute(definition.target(), definition.timeout)

    table = Table(show_header=False)
    table.add_row("target", target)
    table.add_row("result", "[green]up[/green]" if outcome.success else f"[red]{outcome.error}[/red]")
    table.add_row("latency", f"{outcome.latency_ms:.1f} ms")
    if outcome.status_code is not None:
        table.add_row("status", str(outcome.status_code))
    table.add_row("message", outcome.message)
    console.print(table)
    return 0 if outcome.success else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Service availability monitor")
    sub = parser.add_subparsers(dest="command")

    # Server mode
    sub.add_parser("serve", help="Start the API server and scheduler")

    # One-off probe
    probe_parser = sub.add_parser("probe", help="Run a single probe")
    probe_parser.add_argument("kind", choices=["http-head", "http-get", "tcp", "ping"])
    probe_parser.add_argument("target", help="URL for http kinds, host otherwise")
    probe_parser.add_argument("--port", type=int, default=None)
    probe_parser.add_argument("--timeout", type=int, default=5000, help="milliseconds")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "probe":
        sys.exit(run_probe(args.kind, args.target, args.port, args.timeout))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
