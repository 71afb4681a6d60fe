"""Rich terminal rendering for tracker results."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.tree import Tree

console = Console()

STATUS_COLORS = {
    "success": "green",
    "failure": "red",
    "enabled": "green",
    "disabled": "red",
    "uninitialized": "yellow",
    "connecting": "yellow",
}

LABEL_COLORS = {
    "User": "cyan",
    "Action": "white",
    "Backend": "magenta",
}


def _compact(value: Any, width: int = 60) -> str:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    if len(text) > width:
        return text[: width - 3] + "..."
    return text


def _colored(value: str) -> str:
    color = STATUS_COLORS.get(value, "white")
    return f"[{color}]{value}[/{color}]"


def render_status(status: str, target: str, stats: dict[str, Any] | None) -> None:
    table = Table(title="Action tracker", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Status", _colored(status))
    table.add_row("Store", target)
    if stats:
        table.add_row("Users", str(stats["users"]))
        table.add_row("Backends", str(stats["backends"]))
        table.add_row("Actions", str(stats["actions"]))
        table.add_row("Success rate", f"{stats['success_rate']:.0%}")
    console.print(table)


def render_similar(matches: list[dict[str, Any]]) -> None:
    if not matches:
        console.print("[dim]No similar actions found.[/dim]")
        return
    table = Table(title="Similar actions")
    table.add_column("Score", justify="right")
    table.add_column("Backend")
    table.add_column("Action")
    table.add_column("Parameters")
    table.add_column("Status")
    table.add_column("When", style="dim")
    for match in matches:
        action = match["action"]
        table.add_row(
            f"{match['similarity']:.3f}",
            match["backend"]["name"],
            f"{action['type']}/{action['name']}",
            _compact(action["parameters"]),
            _colored(action["status"]),
            action["timestamp"],
        )
    console.print(table)


def render_suggestions(suggestions: list[dict[str, Any]]) -> None:
    if not suggestions:
        console.print("[dim]No follow-up pattern found.[/dim]")
        return
    table = Table(title="Likely next actions")
    table.add_column("Freq", justify="right")
    table.add_column("Action")
    table.add_column("Parameters seen")
    for suggestion in suggestions:
        params = suggestion["possibleParameters"]
        table.add_row(
            str(suggestion["frequency"]),
            f"{suggestion['actionType']}/{suggestion['actionName']}",
            "\n".join(_compact(p) for p in params[:3]) + (" ..." if len(params) > 3 else ""),
        )
    console.print(table)


def render_recommendations(recommendations: list[dict[str, Any]]) -> None:
    if not recommendations:
        console.print("[dim]Nothing matches that context.[/dim]")
        return
    table = Table(title="Recommended actions")
    table.add_column("Freq", justify="right")
    table.add_column("Backend")
    table.add_column("Action")
    table.add_column("Sample parameters")
    for rec in recommendations:
        samples = rec["parameterSamples"]
        table.add_row(
            str(rec["frequency"]),
            f"{rec['backendType']} ({rec['backendName']})",
            f"{rec['actionType']}/{rec['actionName']}",
            _compact(samples[0]) if samples else "",
        )
    console.print(table)


def render_history(user_id: str, entries: list[dict[str, Any]]) -> None:
    if not entries:
        console.print(f"[dim]No actions recorded for {user_id}.[/dim]")
        return
    table = Table(title=f"History of {user_id}")
    table.add_column("When", style="dim")
    table.add_column("Backend")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("ID", style="dim")
    for entry in entries:
        action = entry["action"]
        table.add_row(
            action["timestamp"],
            entry["backend"]["name"],
            f"{action['type']}/{action['name']}",
            _colored(action["status"]),
            action["id"],
        )
    console.print(table)


def render_graph(action_id: str, graph: dict[str, Any]) -> None:
    if not graph["nodes"]:
        console.print(f"[dim]Action {action_id} not found.[/dim]")
        return
    root = Tree(f"[bold]{action_id}[/bold]")
    for label in ("User", "Action", "Backend"):
        nodes = [n for n in graph["nodes"] if n["label"] == label]
        if not nodes:
            continue
        color = LABEL_COLORS[label]
        branch = root.add(f"[{color}]{label}[/{color}] ({len(nodes)})")
        for node in nodes:
            props = node["properties"]
            name = props.get("name", node["id"])
            branch.add(f"{name} [dim]{node['id']}[/dim]")
    root.add(f"[dim]{len(graph['relationships'])} relationships[/dim]")
    console.print(root)
