"""
Switchboard CLI

Usage:
    switchboard serve                 - Run the API server
    switchboard classify "query"      - Pattern classification (local)
    switchboard route "query"         - Priority router decision (local)
    switchboard chat "query"          - Send a query to the running API
    switchboard rules                 - List the intent rule table
    switchboard tools                 - List capabilities of the running API
"""

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

import httpx
import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from switchboard.core.config import get_config
from switchboard.routing.classifier import get_classifier
from switchboard.routing.priority_router import get_priority_router
from switchboard.routing.rules import target_to_dict

app = typer.Typer(
    name="switchboard",
    help="Switchboard - chat query router CLI",
    add_completion=False,
)
console = Console()

DEFAULT_API_URL = "http://localhost:8080"


# =============================================================================
# Helper Functions
# =============================================================================

def get_api_url() -> str:
    return os.getenv("SWITCHBOARD_API_URL", DEFAULT_API_URL)


def get_api_headers() -> dict:
    """Get headers for API requests including auth."""
    headers = {"Content-Type": "application/json"}
    api_key = os.getenv("SWITCHBOARD_API__API_KEY", "") or get_config().api.api_key
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


async def api_request(method: str, endpoint: str, data: Optional[dict] = None, timeout: float = 120.0) -> dict:
    """Make an API request to the running service."""
    url = f"{get_api_url()}{endpoint}"
    async with httpx.AsyncClient(timeout=timeout) as client:
        if method.upper() == "GET":
            response = await client.get(url, headers=get_api_headers())
        else:
            response = await client.post(url, json=data or {}, headers=get_api_headers())
        response.raise_for_status()
        return response.json()


def _read_queries(query: Optional[str], file: Optional[Path]) -> List[str]:
    if file is not None:
        return [line.strip() for line in file.read_text(encoding="utf-8").splitlines() if line.strip()]
    if query:
        return [query]
    console.print("[red]Error: give a query or --file[/red]")
    raise typer.Exit(1)


# =============================================================================
# Server
# =============================================================================

@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, help="Port (default from config)"),
):
    """Run the API server."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "switchboard.api.routes:app",
        host=host or config.system.host,
        port=port or config.system.port,
        reload=config.system.debug,
    )


# =============================================================================
# Routing Commands
# =============================================================================

@app.command()
def classify(
    query: Optional[str] = typer.Argument(None, help="Query to classify"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="One query per line"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
):
    """Classify queries with the pattern classifier."""
    queries = _read_queries(query, file)
    results = get_classifier().classify_many(queries)

    if as_json:
        print(json.dumps(results, ensure_ascii=False, indent=2))
        return

    table = Table(title="Pattern Classification")
    table.add_column("Query", style="cyan")
    table.add_column("Intent")
    table.add_column("Target", style="magenta")
    table.add_column("Confidence", justify="center")
    for item in results:
        target = item["target"]
        label = target.get("workflowId") or target.get("toolId") or target.get("command") or ""
        table.add_row(item["query"], item["intent"], f"{target['type']} {label}".strip(), item["confidence"])
    console.print(table)


@app.command()
def route(
    query: Optional[str] = typer.Argument(None, help="Query to route"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="One query per line"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
):
    """Show the priority router decision for queries."""
    queries = _read_queries(query, file)
    decisions = get_priority_router().route_many(queries)

    if as_json:
        payload = [{"query": q, **d.to_dict()} for q, d in zip(queries, decisions)]
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    table = Table(title="Priority Routing")
    table.add_column("Query", style="cyan")
    table.add_column("Destination", style="magenta")
    table.add_column("Type")
    table.add_column("Confidence", justify="right")
    table.add_column("Keywords")
    for q, decision in zip(queries, decisions):
        table.add_row(
            q,
            decision.destination_id,
            decision.type.value,
            f"{decision.confidence:.2f}",
            ", ".join(decision.matched_keywords),
        )
    console.print(table)


@app.command()
def rules():
    """List the enabled intent rules in priority order."""
    table = Table(title="Intent Rules")
    table.add_column("Priority", justify="right")
    table.add_column("Id", style="cyan")
    table.add_column("Target", style="magenta")
    table.add_column("Patterns", justify="right")
    table.add_column("Description")

    for rule in get_classifier().rules:
        target = target_to_dict(rule.target)
        label = target.get("workflowId") or target.get("toolId") or ""
        table.add_row(
            str(rule.priority),
            rule.id,
            f"{target['type']} {label}".strip(),
            str(len(rule.patterns)),
            rule.description,
        )
    console.print(table)


# =============================================================================
# API Commands
# =============================================================================

@app.command()
def chat(
    query: str = typer.Argument(..., help="Query to send"),
    chat_id: Optional[str] = typer.Option(None, help="Chat id (enables memory)"),
    user_id: Optional[str] = typer.Option(None, help="User id"),
):
    """Send a query to the running API and print the answer."""
    if not sys.stdin.isatty():
        piped_data = sys.stdin.read()
        if piped_data.strip():
            query = f"{query}\n\nContext:\n{piped_data}"

    try:
        with console.status("[yellow]Thinking...[/yellow]", spinner="dots"):
            response = asyncio.run(api_request(
                "POST", "/chat", {"text": query, "chat_id": chat_id, "user_id": user_id}
            ))
    except httpx.ConnectError:
        console.print("[red]Error: Cannot connect to Switchboard. Is the service running?[/red]")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(Markdown(response.get("text", "") or "_No response_"))
    via = response.get("routed_via", "")
    target = response.get("workflow_id") or response.get("tool_id") or ""
    console.print(f"[dim]Routed via: {via} {target}".rstrip() + "[/dim]")
    if response.get("needs_confirmation"):
        console.print("[yellow]Needs confirmation (use the Feishu card buttons)[/yellow]")


@app.command()
def tools():
    """List capabilities registered in the running API."""
    try:
        response = asyncio.run(api_request("GET", "/tools"))
    except httpx.ConnectError:
        console.print("[red]Error: Cannot connect to Switchboard API[/red]")
        raise typer.Exit(1)

    table = Table(title="Registered Capabilities")
    table.add_column("Name", style="cyan")
    table.add_column("Mutating", justify="center")
    table.add_column("Description")
    for tool in response.get("tools", []):
        mutating = "[red]Yes[/red]" if tool.get("mutating") else "[green]No[/green]"
        table.add_row(tool["name"], mutating, tool["description"])
    console.print(table)
    console.print(f"\n[dim]Total: {response.get('count', 0)} capabilities[/dim]")


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
