import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from catalog.models import display_name, entity_url

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "CATALOG_CLI_OUTPUT"

_console = Console()

STAT_LABELS = {
    "book_count": "Books",
    "book_instance_count": "Copies",
    "book_instance_available_count": "Copies available",
    "author_count": "Authors",
    "genre_count": "Genres",
}

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def print_list_result(kind: str, entities: List[Any]) -> None:
    """Print entities in the current output mode.
    - plain: 'id - name' lines, or 'No <kind>s in catalog.'
    - json: array of id, name, url
    - rich: Rich table
    """
    mode = get_output_mode()

    if not entities:
        print(f"No {kind}s in catalog.")
        return

    if mode == "json":
        payload = [{"id": e.id, "name": display_name(e), "url": entity_url(e)} for e in entities]
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=f"{kind.title()}s", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Name", style="white")
        for e in entities:
            table.add_row(e.id, display_name(e))
        _console.print(table)
    else:
        for e in entities:
            print(f"{e.id} - {display_name(e)}")

def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print the home-page counts in the current output mode."""
    mode = get_output_mode()
    counts = {key: stats.get(key, 0) for key in STAT_LABELS}

    if mode == "json":
        print(json.dumps(counts, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{STAT_LABELS[k]}:[/] {v}" for k, v in counts.items())
        _console.print(Panel.fit(content, title="Catalog", border_style="blue"))
    else:
        for key, value in counts.items():
            print(f"{STAT_LABELS[key]}: {value}")
