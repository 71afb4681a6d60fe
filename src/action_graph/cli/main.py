"""action-graph CLI main entry point."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable
from typing import Annotated, Any, Optional

import typer

from action_graph.cli._helpers import connected_tracker, get_config, parse_json, run_async
from action_graph.cli.render import (
    render_graph,
    render_history,
    render_recommendations,
    render_similar,
    render_status,
    render_suggestions,
)
from action_graph.core.action import ActionStatus
from action_graph.core.lifecycle import Disabled
from action_graph.core.policy import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_RELATED_DEPTH,
    DEFAULT_SIMILAR_LIMIT,
)

app = typer.Typer(
    name="actiongraph",
    help="Action graph - track tool invocations and mine what comes next",
    no_args_is_help=True,
)

JsonOption = Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")]


@app.callback()
def _configure(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log debug output to stderr")
    ] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def output_result(
    result: dict[str, Any],
    as_json: bool,
    render: Callable[[dict[str, Any]], None],
) -> None:
    """Print a tracker result; exit non-zero on failure."""
    if as_json:
        typer.echo(json.dumps(result, indent=2, default=str))
    elif not result["success"]:
        typer.secho(f"Error: {result['message']}", fg=typer.colors.RED, err=True)
    else:
        if "message" in result:
            typer.secho(result["message"], fg=typer.colors.YELLOW)
        render(result)

    if not result["success"]:
        raise typer.Exit(1)


@app.command()
def status(json_output: JsonOption = False) -> None:
    """Show tracker status and store statistics.

    Examples:
        actiongraph status
        actiongraph status --json
    """
    config = get_config()

    async def _status() -> dict[str, Any]:
        async with connected_tracker(config) as tracker:
            state = tracker.state
            data: dict[str, Any] = {
                "status": tracker.status.value,
                "store": config.store.to_dict(),
                "policy": config.policy.to_dict(),
            }
            if isinstance(state, Disabled):
                data["reason"] = state.reason
                return data
            data["target"] = state.store.describe()
            stats = await tracker.get_stats()
            data["stats"] = stats.get("stats")
            return data

    data = run_async(_status())
    if json_output:
        typer.echo(json.dumps(data, indent=2, default=str))
        return
    render_status(data["status"], data.get("target") or data.get("reason", ""), data.get("stats"))


@app.command()
def init(json_output: JsonOption = False) -> None:
    """Connect to the configured store and create constraints and indexes.

    Safe to run repeatedly.
    """
    config = get_config()

    async def _init() -> dict[str, Any]:
        async with connected_tracker(config) as tracker:
            state = tracker.state
            if isinstance(state, Disabled):
                message = f"Action tracking is disabled - {state.reason}"
                return {"success": False, "message": message}
            return {"success": True, "target": state.store.describe()}

    result = run_async(_init())
    output_result(
        result,
        json_output,
        lambda r: typer.secho(f"Schema ready on {r['target']}", fg=typer.colors.GREEN),
    )


@app.command()
def record(
    user_id: Annotated[str, typer.Option("--user", "-u", help="User ID")],
    backend_id: Annotated[str, typer.Option("--backend", "-b", help="Backend instance ID")],
    backend_type: Annotated[str, typer.Option("--backend-type", "-B", help="Backend category")],
    action_type: Annotated[str, typer.Option("--type", "-t", help="Action type")],
    action_name: Annotated[str, typer.Option("--name", "-n", help="Action name")],
    user_name: Annotated[
        Optional[str], typer.Option("--user-name", help="User display name (default: user ID)")
    ] = None,
    backend_name: Annotated[
        Optional[str],
        typer.Option("--backend-name", help="Backend display name (default: backend ID)"),
    ] = None,
    params: Annotated[
        Optional[str], typer.Option("--params", "-p", help="Parameters as JSON")
    ] = None,
    result_json: Annotated[
        Optional[str], typer.Option("--result", "-r", help="Result as JSON")
    ] = None,
    action_status: Annotated[
        ActionStatus, typer.Option("--status", "-s", help="Outcome of the invocation")
    ] = ActionStatus.SUCCESS,
    json_output: JsonOption = False,
) -> None:
    """Record one tool invocation.

    Examples:
        actiongraph record -u alice -b ddb-eu -B DynamoDB -t query -n query_table \\
            -p '{"table": "orders"}'
    """
    config = get_config()
    parameters = parse_json(params, "--params")
    outcome = parse_json(result_json, "--result")

    async def _record() -> dict[str, Any]:
        async with connected_tracker(config) as tracker:
            return await tracker.record_action(
                user_id=user_id,
                user_name=user_name or user_id,
                backend_id=backend_id,
                backend_type=backend_type,
                backend_name=backend_name or backend_id,
                action_type=action_type,
                action_name=action_name,
                parameters=parameters,
                result=outcome,
                status=action_status.value,
            )

    output_result(
        run_async(_record()),
        json_output,
        lambda r: typer.echo(f"Recorded action {r['actionId']}"),
    )


@app.command()
def similar(
    backend_type: Annotated[str, typer.Argument(help="Backend category")],
    action_type: Annotated[str, typer.Argument(help="Action type")],
    params: Annotated[
        Optional[str], typer.Option("--params", "-p", help="Parameters to compare, as JSON")
    ] = None,
    limit: Annotated[
        int, typer.Option("--limit", "-l", help="Maximum results")
    ] = DEFAULT_SIMILAR_LIMIT,
    json_output: JsonOption = False,
) -> None:
    """Find past actions with similar parameters."""
    config = get_config()
    parameters = parse_json(params, "--params")

    async def _similar() -> dict[str, Any]:
        async with connected_tracker(config) as tracker:
            return await tracker.find_similar_actions(backend_type, action_type, parameters, limit)

    output_result(run_async(_similar()), json_output, lambda r: render_similar(r["similarActions"]))


@app.command()
def suggest(
    user_id: Annotated[str, typer.Argument(help="Calling user")],
    backend_type: Annotated[str, typer.Argument(help="Backend category")],
    action_type: Annotated[str, typer.Argument(help="Type of the current action")],
    params: Annotated[
        Optional[str], typer.Option("--params", "-p", help="Current parameters, as JSON")
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Suggest what usually follows an action like this one."""
    config = get_config()
    parameters = parse_json(params, "--params")

    async def _suggest() -> dict[str, Any]:
        async with connected_tracker(config) as tracker:
            return await tracker.suggest_next_action(user_id, backend_type, action_type, parameters)

    output_result(
        run_async(_suggest()), json_output, lambda r: render_suggestions(r["suggestions"])
    )


@app.command()
def recommend(
    user_id: Annotated[str, typer.Argument(help="Calling user")],
    context: Annotated[str, typer.Argument(help="Free-text context")],
    json_output: JsonOption = False,
) -> None:
    """Recommend actions matching a free-text context."""
    config = get_config()

    async def _recommend() -> dict[str, Any]:
        async with connected_tracker(config) as tracker:
            return await tracker.get_action_recommendations(user_id, context)

    output_result(
        run_async(_recommend()),
        json_output,
        lambda r: render_recommendations(r["recommendations"]),
    )


@app.command()
def history(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    limit: Annotated[
        int, typer.Option("--limit", "-l", help="Maximum results")
    ] = DEFAULT_HISTORY_LIMIT,
    json_output: JsonOption = False,
) -> None:
    """Show a user's most recent actions."""
    config = get_config()

    async def _history() -> dict[str, Any]:
        async with connected_tracker(config) as tracker:
            return await tracker.get_user_action_history(user_id, limit)

    output_result(
        run_async(_history()), json_output, lambda r: render_history(user_id, r["actions"])
    )


@app.command()
def related(
    action_id: Annotated[str, typer.Argument(help="Action ID")],
    depth: Annotated[
        int, typer.Option("--depth", "-d", help="Maximum hops from the action")
    ] = DEFAULT_RELATED_DEPTH,
    json_output: JsonOption = False,
) -> None:
    """Show users, actions and backends around an action."""
    config = get_config()

    async def _related() -> dict[str, Any]:
        async with connected_tracker(config) as tracker:
            return await tracker.get_related_actions(action_id, depth)

    output_result(
        run_async(_related()), json_output, lambda r: render_graph(action_id, r["graph"])
    )


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
