"""
docbus CLI

Command-line interface for running and poking a docbus deployment.

Commands:
- run: Start the worker in the foreground
- save: Save a document through the dispatcher
- find: Find documents through the gateway
- aggregate: Aggregate a field through the gateway
- config: Show the effective configuration
"""

import asyncio
import json
from typing import Any, List, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from docbus.bus.redis_streams import RedisStreamBus
from docbus.contracts.messages import DbRequest, SaveRequest
from docbus.errors import ConfigurationError, ReplyError
from docbus.logging import setup_logging
from docbus.settings import Settings, get_settings

app = typer.Typer(
    name="docbus",
    help="Message bus gateway to a MongoDB document store",
)

console = Console()


def load_or_exit() -> Settings:
    try:
        return get_settings()
    except ConfigurationError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)


def send_request(settings: Settings, address: str, body: Any, timeout: float) -> Any:
    """Send one request over Redis Streams and wait for the reply."""

    async def call() -> Any:
        bus = RedisStreamBus.from_url(
            settings.redis_url,
            consumer_name=f"{settings.consumer_name}-cli",
            group_name=settings.service_group,
            stream_prefix=settings.stream_prefix,
        )
        try:
            return await bus.request(address, body, timeout=timeout)
        finally:
            await bus.close()

    try:
        return asyncio.run(call())
    except ReplyError as e:
        rprint(f"[red]Request to {address} failed ({e.code}): {e.message}[/red]")
        raise typer.Exit(1)


def parse_json_argument(value: str, name: str) -> dict[str, Any]:
    try:
        parsed = json.loads(value)
    except ValueError as e:
        rprint(f"[red]Invalid JSON for {name}: {e}[/red]")
        raise typer.Exit(1)
    if not isinstance(parsed, dict):
        rprint(f"[red]{name} must be a JSON object[/red]")
        raise typer.Exit(1)
    return parsed


def print_rows(title: str, rows: list[dict[str, Any]]) -> None:
    if not rows:
        rprint("[yellow]No documents found[/yellow]")
        return

    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)

    table = Table(title=title)
    for column in columns:
        table.add_column(column, style="dim" if column == "_id" else None)
    for row in rows:
        table.add_row(*(format_cell(row.get(column)) for column in columns))
    console.print(table)


def format_cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, dict) and len(value) == 1:
        # {"$date": ...} / {"$oid": ...}
        (marker, inner), = value.items()
        if marker.startswith("$"):
            return str(inner)
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


@app.command()
def run():
    """Start the docbus worker in the foreground."""
    from docbus.worker import main as worker_main

    load_or_exit()
    worker_main()


@app.command()
def save(
    type_name: str = typer.Argument(..., help="Message type, names the collection"),
    document: str = typer.Argument(..., help="Document as a JSON object"),
    timeout: float = typer.Option(10.0, help="Seconds to wait for the reply"),
):
    """Save a document through the dispatcher."""
    settings = load_or_exit()
    request = SaveRequest(type_name=type_name, payload=parse_json_argument(document, "document"))
    reply = send_request(settings, settings.addresses.dispatcher_save, request.to_wire(), timeout)

    rprint(f"[green]Saved {type_name}[/green]")
    rprint(f"  ID: {reply.get('id') if isinstance(reply, dict) else reply}")


@app.command()
def find(
    collection: str = typer.Argument(..., help="Collection name"),
    query: str = typer.Option("", help="Filter as a JSON object"),
    field: Optional[List[str]] = typer.Option(None, "--field", "-f", help="Field to include (repeatable)"),
    sort: Optional[List[str]] = typer.Option(None, "--sort", "-s", help="Field to sort by, descending (repeatable)"),
    limit: int = typer.Option(-1, help="Maximum number of documents, -1 = all"),
    skip: int = typer.Option(0, help="Documents to skip"),
    raw: bool = typer.Option(False, "--json", help="Print the raw JSON reply"),
    timeout: float = typer.Option(10.0, help="Seconds to wait for the reply"),
):
    """Find documents through the gateway."""
    settings = load_or_exit()
    request = DbRequest(
        collection=collection,
        query=query,
        fields=field or [],
        sort=sort or [],
        limit=limit,
        skip=skip,
    )
    reply = send_request(settings, settings.addresses.gateway_find, request.to_wire(), timeout)

    if raw:
        console.print_json(data=reply)
        return
    print_rows(f"{collection} ({len(reply.get('result', []))} documents)", reply.get("result", []))


@app.command()
def aggregate(
    collection: str = typer.Argument(..., help="Collection name"),
    field: str = typer.Argument(..., help="Numeric field to aggregate"),
    query: str = typer.Option("", help="Filter as a JSON object"),
    raw: bool = typer.Option(False, "--json", help="Print the raw JSON reply"),
    timeout: float = typer.Option(10.0, help="Seconds to wait for the reply"),
):
    """Aggregate min/avg/max/last of a field per timestamp."""
    settings = load_or_exit()
    request = DbRequest(collection=collection, query=query, aggregate=field)
    reply = send_request(settings, settings.addresses.gateway_aggregate, request.to_wire(), timeout)

    if raw:
        console.print_json(data=reply)
        return
    rows = reply.get("cursor", {}).get("firstBatch", [])
    print_rows(f"{collection}.{field}", rows)


@app.command()
def config():
    """Show the effective configuration (password hidden)."""
    settings = load_or_exit()
    data = settings.model_dump(mode="json")
    if data["gateway"].get("password"):
        data["gateway"]["password"] = "********"
    console.print_json(data=data)


def main():
    setup_logging(fmt="text", level="WARNING")
    app()


if __name__ == "__main__":
    main()
