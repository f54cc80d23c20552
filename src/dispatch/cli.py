"""CLI entry point for Crew Dispatch."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from dispatch import __version__

if TYPE_CHECKING:
    from dispatch.engine.orchestrator import DelegationEngine

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="dispatch")
def main() -> None:
    """Crew Dispatch: capability-based routing and delegation between workers."""
    from dispatch.config import EngineSettings
    from dispatch.logging import configure_logging

    configure_logging(EngineSettings().log_level)


def _get_engine() -> DelegationEngine:
    from dispatch.config import EngineSettings
    from dispatch.engine.orchestrator import DelegationEngine

    engine = DelegationEngine(EngineSettings())
    asyncio.run(engine.initialize(start_sweep=False))
    return engine


@main.command()
def agents() -> None:
    """Show the worker roster with load and reliability."""
    engine = _get_engine()
    profiles = engine.registry.all()

    if not profiles:
        console.print("[dim]No workers registered.[/dim]")
        return

    table = Table(title="Workers")
    table.add_column("Worker", style="cyan")
    table.add_column("Capabilities", max_width=50)
    table.add_column("Load")
    table.add_column("Success", style="green")
    table.add_column("Avg Response")
    table.add_column("State", style="yellow")

    for profile in profiles:
        table.add_row(
            profile.worker_id,
            ", ".join(sorted(profile.capabilities)),
            f"{profile.current_load}/{profile.max_concurrent}",
            f"{profile.success_rate:.1f}%",
            f"{profile.avg_response_time_ms / 1000:.1f}s",
            profile.availability.value,
        )

    console.print(table)


@main.command()
@click.argument("message")
@click.option(
    "--attachment", "-a", "attachments", multiple=True, help="MIME type of an attached file"
)
def classify(message: str, attachments: tuple[str, ...]) -> None:
    """Classify a request and show the capabilities it needs."""
    from dispatch.delegation.taxonomy import RequestClassifier

    result = RequestClassifier().classify(message, list(attachments))
    console.print(f"[bold]Type:[/bold] {result.type} ({result.confidence:.0%} confidence)")
    console.print(
        "[bold]Requires:[/bold] " + (", ".join(result.required_capabilities) or "[dim]nothing[/dim]")
    )
    if result.matched_terms:
        console.print(f"[dim]Matched: {', '.join(result.matched_terms)}[/dim]")
    if result.suggested_actions:
        console.print("\n[bold]Next steps:[/bold]")
        for action in result.suggested_actions:
            console.print(f"  • {action}")


@main.command()
@click.argument("capabilities", nargs=-1, required=True)
@click.option(
    "--priority",
    type=click.Choice(["low", "medium", "high", "urgent"]),
    default="medium",
    help="Request priority",
)
def route(capabilities: tuple[str, ...], priority: str) -> None:
    """Rank the workers that could take a request needing CAPABILITIES."""
    engine = _get_engine()
    decision = engine.route(list(capabilities), priority)

    if decision.worker_id is None:
        console.print(f"[red]{decision.reasoning}[/red]")
        raise SystemExit(1)

    table = Table(title="Candidates")
    table.add_column("Rank")
    table.add_column("Worker", style="cyan")
    table.add_column("Score", style="bold")
    table.add_column("Success")
    table.add_column("Headroom")
    table.add_column("Responsiveness")
    table.add_column("Capability")

    for rank, candidate in enumerate(decision.candidates, start=1):
        table.add_row(
            str(rank),
            candidate.worker_id,
            f"{candidate.total:.1f}",
            f"{candidate.success_rate:.1f}",
            f"{candidate.load_headroom_bonus:.1f}",
            f"{candidate.responsiveness_bonus:.1f}",
            f"{candidate.capability_match_bonus:.1f}",
        )

    console.print(table)
    console.print(
        f"\n[green]Selected:[/green] {decision.worker_id} "
        f"({decision.confidence:.0%} confidence)"
    )


@main.command()
@click.argument("text")
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON")
def detect(text: str, as_json: bool) -> None:
    """Detect actions in generated TEXT and show what the gate decides."""
    from dispatch.safety.actions import ActionDetector
    from dispatch.safety.gate import ConfidenceGate

    detection = ActionDetector().detect(text)
    gate = ConfidenceGate()

    if as_json:
        payload = [
            {**action.to_dict(), "decision": gate.decide(action).mode.value}
            for action in detection.actions
        ]
        click.echo(json.dumps(payload, indent=2))
        return

    if not detection.has_actions:
        console.print("[dim]No actions detected.[/dim]")
        return

    table = Table(title="Detected Actions")
    table.add_column("Action", style="cyan")
    table.add_column("Description", max_width=40)
    table.add_column("Risk")
    table.add_column("Confidence", style="bold")
    table.add_column("Decision")

    for action in detection.actions:
        decision = gate.decide(action)
        style = "green" if decision.executes else "yellow"
        table.add_row(
            action.type.value,
            action.description,
            action.risk_level.value,
            f"{action.confidence:.2f}",
            f"[{style}]{decision.mode.value}[/{style}]",
        )

    console.print(table)


@main.command()
@click.option("--port", default=3848, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
def serve(port: int, host: str) -> None:
    """Start the HTTP API."""
    import uvicorn

    from dispatch.api.server import build_engine, create_app
    from dispatch.config import EngineSettings

    settings = EngineSettings()
    console.print(f"[bold cyan]Dispatch API[/bold cyan] on http://{host}:{port}")
    uvicorn.run(create_app(build_engine(settings)), host=host, port=port)
