import asyncio
import os
import subprocess
import sys
import webbrowser
from typing import Any, List, Optional

import typer
from rich.console import Console

from catalog import aggregator
from catalog.database import DocumentStore, MemoryDocumentStore, SQLiteDocumentStore
from catalog.errors import CatalogError
from catalog.models import KINDS
from catalog.references import PopulatedBook, PopulatedInstance
from catalog.ui_helpers import print_list_result, print_stats_result, set_output_mode
from config import settings

APP_NAME = "Local Library CLI"

console = Console()

app = typer.Typer(help=APP_NAME)


def _open_store(memory: bool) -> DocumentStore:
    if memory:
        return MemoryDocumentStore()
    return SQLiteDocumentStore(settings.database_file)


def _entities(items: List[Any]) -> List[Any]:
    """List pages hand back populated wrappers for books and copies; unwrap them."""
    entities = []
    for item in items:
        if isinstance(item, PopulatedInstance):
            entities.append(item.instance)
        elif isinstance(item, PopulatedBook):
            entities.append(item.book)
        else:
            entities.append(item)
    return entities


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    if output:
        set_output_mode(output)


@app.command("list")
def cli_list(
    kind: str = typer.Argument(..., help="author | genre | book | bookinstance"),
    memory: bool = typer.Option(False, "--memory", help="Use an empty in-memory store"),
):
    """List every entity of one kind, in list-page order."""
    if kind not in KINDS:
        print(f"Unknown kind: {kind}")
        print(f"Available kinds: {', '.join(KINDS)}")
        raise typer.Exit(code=1)
    store = _open_store(memory)
    try:
        data = asyncio.run(aggregator.load_list(store, kind))
    except CatalogError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    finally:
        store.close()
    print_list_result(kind, _entities(data["items"]))


@app.command("stats")
def cli_stats(memory: bool = typer.Option(False, "--memory", help="Use an empty in-memory store")):
    """Show the home-page counts."""
    store = _open_store(memory)
    try:
        stats = asyncio.run(aggregator.load_index(store))
    except CatalogError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    finally:
        store.close()
    print_stats_result(stats)


@app.command("serve")
def cli_serve(
    timeout: int = typer.Option(0, "--timeout", help="Seconds to run before stopping (0 = no timeout)"),
    open_browser: bool = typer.Option(True, "--browser/--no-browser", help="Open the catalog in a browser"),
):
    """Start the web UI with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/catalog"
    print(f"Starting web UI on {url}")
    if open_browser:
        try:
            webbrowser.open(url)
        except webbrowser.Error:
            console.print("[yellow]Could not open a web browser automatically.[/]")

    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    try:
        if timeout and timeout > 0:
            # No reloader when running with a timeout, so terminate reaches the server itself
            start_new_session = os.name != "nt"
            proc = subprocess.Popen(args, start_new_session=start_new_session)
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.terminate()
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait(timeout=3)
        else:
            args.append("--reload")
            subprocess.run(args)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` was not found. Make sure it is installed in this environment.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
