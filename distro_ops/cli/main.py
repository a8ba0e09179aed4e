"""
CLI entrypoint.

doctor: print effective settings.
actions: list registered actions and what they need stopped first.
check: show the stop-before-action decision for one action and state.
validate: offline check of a JSON file of action requests.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from pydantic import TypeAdapter, ValidationError
from rich.console import Console
from rich.table import Table

from ..core import registry
from ..core.action import ActionRequest
from ..core.controller.gate import PreconditionGate
from ..core.controller.runner import AsyncActionRunner
from ..core.controller.session import load_builtin_actions
from ..core.errors import ActionNotRegisteredError
from ..core.lifecycle import Distribution, LifecycleState, SnapshotStateView
from ..core.logging_utils import configure_logging
from ..core.registry import StopScope
from ..core.settings import settings
from ..core.store import Store

app = typer.Typer(help="distro-ops CLI")
console = Console()

_SCOPE_TEXT = {
    StopScope.NONE: "-",
    StopScope.TARGET: "[yellow]stop distribution[/]",
    StopScope.ALL: "[red]shut down WSL[/]",
}


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override log level"),
) -> None:
    configure_logging(level=log_level)


@app.command("doctor")
def doctor() -> None:
    """Environment check: print key settings to confirm CLI is usable."""
    console.print("[bold green]distro-ops[/] environment")
    console.print(f"- log level: {settings.log_level}")
    console.print(f"- transitioning counts as running: {settings.treat_transitioning_as_running}")
    console.print(f"- refresh after stop: {settings.refresh_after_stop}")
    console.print(f"- serialize per target: {settings.serialize_per_target}")


@app.command("actions")
def actions() -> None:
    """List registered actions with their precondition."""
    load_builtin_actions()
    table = Table(title="Registered Actions", show_header=True, header_style="bold")
    table.add_column("id")
    table.add_column("label")
    table.add_column("params")
    table.add_column("requires")

    for name, meta in sorted(registry.list_actions().items()):
        params = meta.params_model.__name__ if meta.params_model else "-"
        table.add_row(name, meta.label, params, _SCOPE_TEXT[meta.precondition])
    console.print(table)


@app.command("check")
def check(
    action_id: str = typer.Argument(..., help="Registered action id, e.g. clone"),
    state: LifecycleState = typer.Option(
        LifecycleState.RUNNING, "--state", help="Current state of the target distribution"
    ),
    others_running: bool = typer.Option(
        False, "--others-running/--no-others-running", help="Another distribution is running"
    ),
    target: str = typer.Option("target", "--target", help="Distribution name to show"),
) -> None:
    """
    Show whether the action would run directly or ask to stop first.
    No backend is contacted.
    """
    load_builtin_actions()
    distributions = [Distribution(name=target, state=state)]
    if others_running:
        distributions.append(Distribution(name=f"{target}-other", state=LifecycleState.RUNNING))

    gate = PreconditionGate(
        AsyncActionRunner(Store()), SnapshotStateView(distributions), backend=None
    )
    try:
        decision = gate.decide(action_id, target)
        label = registry.get_meta(action_id).label
    except ActionNotRegisteredError as e:
        typer.secho(f"[check] {e}", fg=typer.colors.RED)
        raise typer.Exit(code=2)

    if not decision.needs_confirmation:
        typer.secho(
            f"[check] {label} runs directly on {target} ({state.value})", fg=typer.colors.GREEN
        )
        return
    if not decision.stop_required:
        typer.secho(f"[check] {label} asks for confirmation first", fg=typer.colors.YELLOW)
        return
    if decision.scope is StopScope.ALL:
        what = "all distributions to be shut down"
    else:
        what = f"{target} to be stopped"
    typer.secho(f"[check] {label} requires {what}; confirmation needed", fg=typer.colors.YELLOW)


@app.command("validate")
def validate(
    script: Path = typer.Argument(..., help="Path to JSON file of ActionRequest[]"),
) -> None:
    """
    Offline request validation: read JSON array [{action, target, args}] and
    validate each item against the params model bound in the registry. Print
    a table result and exit non-zero if any failures.
    """
    if not script.exists():
        typer.secho(f"[validate] file not found: {script}", fg=typer.colors.RED)
        raise typer.Exit(code=2)

    try:
        data = json.loads(script.read_text(encoding="utf-8"))
        requests = TypeAdapter(list[ActionRequest]).validate_python(data)
    except (ValidationError, json.JSONDecodeError) as e:
        typer.secho("[validate] invalid file format for ActionRequest[]", fg=typer.colors.RED)
        console.print(e)
        raise typer.Exit(code=2)

    load_builtin_actions()

    table = Table(title="Validation Results", show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("action")
    table.add_column("target")
    table.add_column("result")
    table.add_column("detail")

    failures = 0
    for i, request in enumerate(requests, start=1):
        try:
            meta, _call = registry.validate_request(request)
            requires = _SCOPE_TEXT[meta.precondition]
            table.add_row(str(i), request.action, request.target, "[green]OK[/]", requires)
        except ActionNotRegisteredError as e:
            failures += 1
            table.add_row(
                str(i), request.action, request.target, "[red]Not Registered[/]", str(e)
            )
        except ValidationError as ve:
            failures += 1
            msg = ve.errors()[0].get("msg", "invalid args")
            table.add_row(str(i), request.action, request.target, "[red]Invalid Args[/]", msg)

    console.print(table)
    if failures:
        raise typer.Exit(code=1)
    typer.secho("[validate] all requests passed", fg=typer.colors.GREEN)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
