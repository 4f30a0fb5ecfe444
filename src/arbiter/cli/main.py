"""
Rich CLI interface for Arbiter.

Query one model, let the classifier pick one, fan out to the whole roster,
run a blind peer review, or stream a single model from the terminal.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from arbiter import __version__
from arbiter.core.chat import ChatService
from arbiter.core.config import get_settings
from arbiter.core.gateway import CompletionGateway, UnknownModelError
from arbiter.core.models import (
    DEFAULT_ROSTER,
    MODEL_REGISTRY,
    ChatResponse,
    CostStats,
    Message,
)
from arbiter.council.ranking import PeerReviewEngine
from arbiter.providers.base import ProviderError
from arbiter.routing.classifier import QueryClassifier
from arbiter.streaming.channel import CompleteEvent, ErrorEvent, TokenEvent, WindTunnel
from arbiter.utils.logging import setup_logging

app = typer.Typer(
    name="arbiter",
    help="Multi-provider LLM fan-out, blind peer review and synthesis",
    no_args_is_help=True,
)
console = Console()


def get_gateway() -> CompletionGateway:
    """Get gateway instance."""
    quiet = {"log_level": "WARNING", "log_format": "console"}
    setup_logging(get_settings().arbiter.model_copy(update=quiet))
    return CompletionGateway()


def _spinner() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )


def _stats_line(stats: Optional[CostStats]) -> str:
    if stats is None:
        return ""
    return (
        f"{stats.total_ms}ms | TTFT {stats.ttft_ms}ms | {stats.tokens_per_second:.0f} tok/s | "
        f"${stats.cost:.6f} (saved {stats.saved_percent:.0f}%)"
    )


def _print_replies(response: ChatResponse) -> None:
    for reply in response.replies:
        if reply.error:
            console.print(Panel(
                f"[red]{reply.content}[/red]",
                title=f"[bold red]{reply.model_name}[/bold red]",
            ))
        else:
            console.print(Panel(
                Markdown(reply.content),
                title=f"[bold cyan]{reply.model_name}[/bold cyan]",
                subtitle=f"[dim]{_stats_line(reply.cost_stats)}[/dim]",
            ))
    if response.was_trimmed:
        console.print("[yellow]Older messages were dropped to fit the context budget.[/yellow]")


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]Arbiter[/bold cyan] v{__version__}")


@app.command()
def models():
    """List all dispatchable models."""
    roster_ids = {b.id for b in DEFAULT_ROSTER}
    configured = set(get_settings().providers.configured_backends)

    table = Table(title="Available Models", show_header=True, header_style="bold magenta")
    table.add_column("Model ID", style="cyan")
    table.add_column("Display Name", style="green")
    table.add_column("Backend", style="yellow")
    table.add_column("Roster", justify="center")
    table.add_column("Cost (in/out)", justify="right")

    for model_id, spec in MODEL_REGISTRY.items():
        backend = spec.adapter_kind.value
        table.add_row(
            model_id,
            spec.display_name,
            backend if backend in configured else f"[dim]{backend}[/dim]",
            "✓" if model_id in roster_ids else "",
            f"${spec.input_cost_per_million:.2f}/${spec.output_cost_per_million:.2f}",
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(MODEL_REGISTRY)} models, {len(roster_ids)} on the roster[/dim]")


@app.command()
def classify(
    query: str = typer.Argument(..., help="The query to classify"),
):
    """Show where auto mode would route a query."""
    decision = QueryClassifier().classify(query)

    console.print(Panel(
        f"Route: [bold]{decision.route_label}[/bold] ({decision.route.value})\n"
        f"Model: [cyan]{decision.model_name}[/cyan] ({decision.model_id})\n"
        f"Score: {decision.score}",
        title="Routing Decision",
    ))
    for signal in decision.signals:
        console.print(f"  [dim]•[/dim] {signal}")


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="The prompt to send"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model id; omit to auto-route"),
):
    """Ask one model, or let the classifier choose."""
    service = ChatService(get_gateway())
    messages = [Message.user(prompt)]

    async def run() -> ChatResponse:
        with _spinner() as progress:
            progress.add_task("Thinking...", total=None)
            if model:
                return await service.single(model, messages)
            return await service.auto(messages)

    try:
        response = asyncio.run(run())
    except UnknownModelError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except ProviderError as e:
        console.print(f"[red]{e.user_message}[/red]")
        raise typer.Exit(1)

    if response.routing is not None:
        console.print(
            f"[dim]Auto-routed via {response.routing.route_label} "
            f"(score {response.routing.score})[/dim]"
        )
    _print_replies(response)


@app.command()
def compare(
    prompt: str = typer.Argument(..., help="The prompt to send to every roster model"),
):
    """Fan out to the whole roster and compare cost and speed."""
    service = ChatService(get_gateway())

    async def run() -> ChatResponse:
        with _spinner() as progress:
            progress.add_task(f"Querying {len(DEFAULT_ROSTER)} models in parallel...", total=None)
            return await service.all_models([Message.user(prompt)])

    response = asyncio.run(run())
    _print_replies(response)

    table = Table(title="Performance Summary", show_header=True)
    table.add_column("Model", style="cyan")
    table.add_column("TTFT", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Speed", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Saved", justify="right")

    for reply in response.replies:
        stats = reply.cost_stats
        if stats is None:
            table.add_row(reply.model_name, "-", "-", "-", "-", "[red]failed[/red]")
            continue
        table.add_row(
            reply.model_name,
            f"{stats.ttft_ms}ms",
            f"{stats.total_ms}ms",
            f"{stats.tokens_per_second:.0f} tok/s",
            f"${stats.cost:.6f}",
            f"{stats.saved_percent:.0f}%",
        )

    console.print(table)


@app.command()
def compete(
    prompt: str = typer.Argument(..., help="The question to put to the council"),
    original: str = typer.Option(
        DEFAULT_ROSTER[0].id, "--original", "-o",
        help="Model id or display name whose answer is the original",
    ),
    synthesis: bool = typer.Option(True, "--synthesis/--no-synthesis", help="Show the chairman synthesis"),
):
    """Run a blind peer review across the roster."""
    engine = PeerReviewEngine(get_gateway())

    async def run():
        with _spinner() as progress:
            progress.add_task("Collecting answers and judging...", total=None)
            return await engine.compete_single([Message.user(prompt)], original)

    try:
        report = asyncio.run(run())
    except (UnknownModelError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Peer Review Results", show_header=True)
    table.add_column("Place", justify="right")
    table.add_column("Model", style="cyan")
    table.add_column("Avg Rank", justify="right")
    table.add_column("Cost", justify="right")

    for entry in report.results:
        name = f"[bold]{entry.model_name} (original)[/bold]" if entry.is_original else entry.model_name
        cost = f"${entry.cost_stats.cost:.6f}" if entry.cost_stats else "-"
        table.add_row(str(entry.place), name, f"{entry.average_rank:.1f}", cost)

    console.print(table)

    failed = [j.model_name for j in report.judgments if j.failed]
    if failed:
        console.print(f"[yellow]Judges with neutral rankings: {', '.join(failed)}[/yellow]")

    if report.original_placement is not None:
        console.print(
            f"\n{report.original_model} placed [bold]#{report.original_placement}[/bold] "
            f"of {len(report.results)}"
        )

    if synthesis:
        if report.chairman_synthesis:
            console.print(Panel(Markdown(report.chairman_synthesis), title="Chairman Synthesis"))
        else:
            console.print("[dim]No chairman synthesis available.[/dim]")


@app.command()
def stream(
    prompt: str = typer.Argument(..., help="The prompt to stream"),
    model: str = typer.Option(DEFAULT_ROSTER[0].id, "--model", "-m", help="Model id"),
):
    """Stream one model's answer token by token."""
    tunnel = WindTunnel(get_gateway())

    async def run() -> int:
        console.print(f"\n[bold cyan]{tunnel.gateway.display_name(model)}:[/bold cyan]")
        async for event in tunnel.stream(model, [Message.user(prompt)]):
            if isinstance(event, TokenEvent):
                console.print(event.content, end="")
            elif isinstance(event, CompleteEvent):
                console.print(
                    f"\n\n[dim]{event.latency}ms | {event.input_tokens} in / "
                    f"{event.output_tokens} out | ${event.cost:.6f}[/dim]"
                )
            elif isinstance(event, ErrorEvent):
                console.print(f"\n[red]{event.error}[/red]")
                return 1
        return 0

    try:
        code = asyncio.run(run())
    except UnknownModelError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    if code:
        raise typer.Exit(code)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload"),
):
    """Start the API server."""
    from arbiter.api.server import run_server

    console.print(Panel(
        f"Starting Arbiter API server\n"
        f"Host: [cyan]{host}[/cyan]\n"
        f"Port: [cyan]{port}[/cyan]\n"
        f"Docs: [link]http://{host}:{port}/docs[/link]",
        title="Arbiter Server",
    ))

    run_server(host=host, port=port, reload=reload)


@app.command()
def config():
    """Show current configuration."""
    settings = get_settings()

    table = Table(title="Arbiter Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Log Level", settings.arbiter.log_level)
    table.add_row("Log Format", settings.arbiter.log_format)
    table.add_row("Default Timeout", f"{settings.arbiter.default_timeout}s")
    table.add_row("Synthesis Timeout", f"{settings.arbiter.synthesis_timeout}s")
    table.add_row("Context Budget", f"{settings.arbiter.context_token_budget} tokens")
    table.add_row("Chairman", settings.arbiter.chairman_model)
    table.add_row("Server", f"{settings.server.host}:{settings.server.port}")

    console.print(table)

    console.print("\n[bold]Configured Backends:[/bold]")
    for backend in settings.providers.configured_backends:
        console.print(f"  [green]✓[/green] {backend}")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
