"""
omnia.cli — Command-line interface for the Omnia relay.

Usage:
    omnia serve                          Start the relay on localhost:8000
    omnia tools                          List client-executed tools and their progress labels
    omnia replay <file> --provider P     Run a captured upstream stream through the assembler
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import AsyncIterator

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _get_config():
    from omnia.proxy import _load_config
    return _load_config()


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help="Load variables from this .env file.")
def main(verbose: bool, env_file: str | None) -> None:
    """Omnia: streaming chat relay for Claude and Gemini."""
    load_dotenv(env_file)
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------

@main.command()
@click.option("--host", default=None, help="Bind host (default: OMNIA_HOST or 127.0.0.1).")
@click.option("--port", default=None, type=int, help="Bind port (default: OMNIA_PORT or 8000).")
@click.option("--reload", "do_reload", is_flag=True, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, do_reload: bool) -> None:
    """Start the relay server."""
    import uvicorn

    config = _get_config()
    host = host or config.host
    port = port or config.port

    console.print(f"[bold green]Starting Omnia relay[/] on {host}:{port}")
    console.print(
        f"[dim]Claude key: {'set' if config.anthropic_api_key else 'missing'} | "
        f"Gemini key: {'set' if config.google_api_key else 'missing'} | "
        f"Bucket: {config.storage_bucket}[/dim]"
    )
    uvicorn.run(
        "omnia.proxy:app",
        host=host,
        port=port,
        reload=do_reload,
        log_level="info",
    )


# ---------------------------------------------------------------------------
# tools
# ---------------------------------------------------------------------------

@main.command()
def tools() -> None:
    """List the tools offered to the model."""
    from omnia.tools.definitions import RELAY_TOOLS, preparing_label

    table = Table(title="Relay Tools")
    table.add_column("Tool", style="cyan")
    table.add_column("Progress label", style="yellow")
    table.add_column("Required", style="white")
    table.add_column("Description", style="dim")
    for t in RELAY_TOOLS:
        fn = t["function"]
        table.add_row(
            fn["name"],
            preparing_label(fn["name"]),
            ", ".join(fn["parameters"].get("required", [])),
            fn["description"],
        )
    table.add_row("web_search", "(provider executed)", "", "Native search of the provider.")
    console.print(table)


# ---------------------------------------------------------------------------
# replay
# ---------------------------------------------------------------------------

async def _read_chunks(path: Path, chunk_size: int) -> AsyncIterator[bytes]:
    with path.open("rb") as fh:
        while chunk := fh.read(chunk_size):
            yield chunk


async def _replay(path: Path, provider: str, chunk_size: int) -> tuple[list[dict], list]:
    from omnia.adapters import create_adapter
    from omnia.relay.emitter import NDJSONEmitter
    from omnia.relay.orchestrator import RequestContext, TurnOrchestrator

    adapter = create_adapter(provider)
    context = RequestContext(
        request_id="replay",
        provider=adapter.provider,
        messages=[],
        system_prompt="",
    )
    emitter = NDJSONEmitter(context.request_id)
    try:
        await TurnOrchestrator(adapter, None, emitter).pump(context, _read_chunks(path, chunk_size))
    finally:
        emitter.close()
        await adapter.close()

    events = [json.loads(line) async for line in emitter.stream()]
    return events, context.assembler.invocations


@main.command()
@click.argument("capture", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--provider",
    type=click.Choice(["anthropic", "google"]),
    default="anthropic",
    show_default=True,
    help="Wire format of the capture.",
)
@click.option("--chunk-size", default=64, show_default=True, help="Bytes fed to the framer per read.")
def replay(capture: Path, provider: str, chunk_size: int) -> None:
    """Replay a captured upstream SSE stream and print the normalized events.

    No tools are executed and nothing is sent upstream.
    """
    from omnia.core.errors import RelayError

    try:
        events, invocations = asyncio.run(_replay(capture, provider, chunk_size))
    except RelayError as exc:
        console.print(f"[red]Stream reported an error:[/red] {exc}")
        raise SystemExit(1)

    table = Table(title=f"Events ({len(events)})")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Type", style="cyan")
    table.add_column("Detail", style="white")
    for i, event in enumerate(events, 1):
        detail = {k: v for k, v in event.items() if k not in ("type", "request_id")}
        table.add_row(str(i), event["type"], escape(json.dumps(detail, ensure_ascii=False)[:120]))
    console.print(table)

    if invocations:
        console.print(f"\n[bold]Tool invocations ({len(invocations)})[/bold]")
        for inv in invocations:
            origin = " [dim](provider)[/dim]" if inv.provider_executed else ""
            console.print(f"  [cyan]{inv.tool_name}[/cyan] {inv.tool_call_id}{origin}: {json.dumps(inv.arguments)[:200]}")
    else:
        console.print("\n[dim]No tool invocations.[/dim]")
