"""
CLI entry point for Shoal.

This module provides the Typer-based command-line interface for Shoal.

Commands:
    init            Create a database and seed policies from a config file
    policies        List stored policies
    check-content   Evaluate message text against content filters
    check-tool      Evaluate a tool call (may open an approval request)
    decide          Approve, reject or expire a pending approval request
    pending         List pending approval requests
    constraints     Show the constraints that apply to a principal
    record-result   Audit the outcome of an executed tool call
    audit           Show recent audit entries

Architecture Note:
    The CLI parses arguments and delegates to GovernanceService. Errors exit
    with code 1 and print the error code, or a JSON error object with --json.
"""

import json
import logging
import traceback
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from shoal import __version__
from shoal.config import DEFAULT_DB_PATH, ShoalConfig, load_config, seed_policies
from shoal.errors import InvalidInputError, ShoalError
from shoal.policy import format_constraints_for_prompt
from shoal.schema import ApprovalState, Principal, Role
from shoal.service import GovernanceService
from shoal.store import ShoalDB

# Initialize Typer app with metadata
app = typer.Typer(
    name="shoal",
    help="Governance for autonomous agents: content filters, tool restrictions and approval gates.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()
err_console = Console(stderr=True)

_state: dict[str, Any] = {"log_level": None}

DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", help="Path to the SQLite database.", resolve_path=True),
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to a Shoal YAML config file.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output results in JSON format."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]shoal[/bold] version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route library logging through rich on stderr."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.addHandler(
        RichHandler(
            console=err_console,
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
    )
    root.setLevel(level.upper())


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        Optional[str],
        typer.Option(
            "--log-level",
            help="Log level (DEBUG, INFO, WARNING, ERROR). Overrides the config file.",
        ),
    ] = None,
) -> None:
    """
    Shoal - Governance layer for autonomous agents.

    Filters message content, restricts tool usage, gates sensitive actions
    behind human approval and records every decision in an audit trail.
    """
    _state["log_level"] = log_level


def _load(config_path: Path | None, db_path: Path | None) -> tuple[ShoalConfig, Path]:
    """Resolve config and database path; --db wins over the config file."""
    try:
        config = load_config(config_path) if config_path else ShoalConfig()
    except (ValidationError, yaml.YAMLError, OSError) as e:
        raise InvalidInputError(
            message=f"Error loading config: {e}",
            field_name="config",
            value=str(config_path),
        ) from e

    level = _state["log_level"]
    if level:
        try:
            level = ShoalConfig(log_level=level).log_level
        except ValidationError as e:
            raise InvalidInputError(
                message=f"Invalid log level: {level}",
                field_name="log_level",
                value=level,
                suggestion="Use one of DEBUG, INFO, WARNING, ERROR, CRITICAL",
            ) from e
    configure_logging(level or config.log_level)
    return config, db_path or config.db_path or DEFAULT_DB_PATH


def _open(config_path: Path | None, db_path: Path | None) -> tuple[ShoalDB, GovernanceService]:
    _, path = _load(config_path, db_path)
    db = ShoalDB(path)
    return db, GovernanceService(policies=db, approvals=db, audit=db)


def _parse_params(values: list[str] | None) -> dict[str, Any]:
    """Parse repeated key=value options; values are JSON when they parse as JSON."""
    params: dict[str, Any] = {}
    for item in values or []:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {item!r}", param_hint="--param")
        try:
            params[key] = json.loads(raw)
        except json.JSONDecodeError:
            params[key] = raw
    return params


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _fail(error: Exception, json_output: bool) -> None:
    """Report an error and exit with code 1."""
    if json_output:
        if isinstance(error, ShoalError):
            payload = {"error": True, **error.to_dict()}
        else:
            payload = {"error": True, "error_type": type(error).__name__, "message": str(error)}
        _print_json(payload)
    else:
        console.print(f"[red]{escape(str(error))}[/red]")
        if _state["log_level"] and _state["log_level"].upper() == "DEBUG":
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


def _print_reasons(reasons: list[str]) -> None:
    for reason in reasons:
        console.print(f"  [dim]-[/dim] {escape(reason)}")


@app.command()
def init(
    config_path: Annotated[
        Path,
        typer.Option(
            "--config",
            "-c",
            help="Path to a Shoal YAML config file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    db: DbOption = None,
) -> None:
    """
    Create the database and seed the policies listed in the config file.

    Example:
        $ shoal init --config shoal.yaml
    """
    try:
        config, path = _load(config_path, db)
        with ShoalDB(path) as store:
            stored = seed_policies(store, config)
    except ShoalError as e:
        _fail(e, False)
    console.print(f"[green]✓[/green] Seeded {len(stored)} policies into [bold]{path}[/bold]")


@app.command("policies")
def list_policies(
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """List stored policies."""
    try:
        store, _ = _open(config, db)
        with store:
            policies = store.list_policies()
    except ShoalError as e:
        _fail(e, json_output)

    if json_output:
        _print_json([p.model_dump(mode="json", by_alias=True) for p in policies])
        return

    if not policies:
        console.print("[dim]No policies found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Category")
    table.add_column("Name")
    table.add_column("Enabled", width=8)
    table.add_column("Rules")
    for p in policies:
        table.add_row(
            p.id[:8],
            p.category.value,
            p.name or "",
            "[green]yes[/green]" if p.enabled else "[dim]no[/dim]",
            json.dumps(p.rules.model_dump(by_alias=True)),
        )
    console.print(table)


@app.command("check-content")
def check_content(
    text: Annotated[str, typer.Argument(help="Message text to evaluate.")],
    actor: Annotated[str, typer.Option("--actor", help="Agent the message belongs to.")],
    direction: Annotated[
        str,
        typer.Option("--direction", help="inbound or outbound."),
    ] = "inbound",
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Evaluate message text against all enabled content filters.

    Exits with code 1 when the text is blocked.
    """
    try:
        store, service = _open(config, db)
        with store:
            result = service.evaluate_content(text, direction, actor)
    except ShoalError as e:
        _fail(e, json_output)

    if json_output:
        _print_json(result.model_dump(mode="json", by_alias=True))
    elif result.allowed:
        console.print("[green]✓ allowed[/green]")
    else:
        console.print("[red]✗ blocked[/red]")
        _print_reasons(result.reasons)
    if not result.allowed:
        raise typer.Exit(code=1)


@app.command("check-tool")
def check_tool(
    tool: Annotated[str, typer.Argument(help="Tool the agent wants to call.")],
    agent: Annotated[str, typer.Option("--agent", help="Agent id.")],
    role: Annotated[
        Optional[Role],
        typer.Option("--role", help="Role of the principal."),
    ] = None,
    actor: Annotated[
        Optional[str],
        typer.Option("--actor", help="Caller id. Defaults to the agent id."),
    ] = None,
    action_type: Annotated[
        str,
        typer.Option("--action-type", help="Kind of action."),
    ] = "tool_call",
    param: Annotated[
        Optional[list[str]],
        typer.Option("--param", "-p", help="Tool parameter as key=value. Repeatable."),
    ] = None,
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Evaluate a tool call.

    Exits with code 1 when the call is blocked or waits on approval.

    Example:
        $ shoal check-tool wire_transfer --agent agent-1 --role member -p amount=100
    """
    params = _parse_params(param)
    try:
        store, service = _open(config, db)
        with store:
            decision = service.evaluate_tool_call(
                actor_id=actor or agent,
                role=role,
                agent_id=agent,
                action_type=action_type,
                tool_name=tool,
                params=params,
            )
    except ShoalError as e:
        _fail(e, json_output)

    if json_output:
        _print_json(decision.model_dump(mode="json", by_alias=True))
    elif decision.approval_id:
        console.print(
            f"[yellow]⏸ approval required[/yellow] id [bold]{decision.approval_id}[/bold]"
        )
        _print_reasons(decision.reasons)
    elif decision.blocked:
        console.print("[red]✗ blocked[/red]")
        _print_reasons(decision.reasons)
    else:
        console.print("[green]✓ allowed[/green]")
    if decision.blocked:
        raise typer.Exit(code=1)


@app.command()
def decide(
    approval_id: Annotated[str, typer.Argument(help="Approval request id.")],
    decision: Annotated[
        ApprovalState,
        typer.Argument(help="approved, rejected or expired."),
    ],
    decider: Annotated[str, typer.Option("--decider", help="Id of the deciding user.")],
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """Decide a pending approval request."""
    try:
        store, service = _open(config, db)
        with store:
            updated = service.decide_approval(approval_id, decision, decider)
    except ShoalError as e:
        _fail(e, json_output)

    if json_output:
        _print_json(updated.model_dump(mode="json"))
    else:
        console.print(
            f"[green]✓[/green] Approval [bold]{updated.id}[/bold]: {updated.state.value}"
        )


@app.command()
def pending(
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum number of requests to show."),
    ] = 20,
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """List pending approval requests, newest first."""
    try:
        store, service = _open(config, db)
        with store:
            requests = service.list_pending_approvals(limit)
    except ShoalError as e:
        _fail(e, json_output)

    if json_output:
        _print_json([r.model_dump(mode="json") for r in requests])
        return

    if not requests:
        console.print("[dim]No pending approvals.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Approval ID", style="cyan")
    table.add_column("Requested")
    table.add_column("Agent")
    table.add_column("Action")
    table.add_column("Tool")
    for r in requests:
        table.add_row(
            r.id,
            r.requested_at.isoformat()[:19],
            r.agent_id,
            r.action_type,
            str(r.params.get("toolName", "")),
        )
    console.print(table)


@app.command()
def constraints(
    agent: Annotated[str, typer.Option("--agent", help="Agent id.")],
    role: Annotated[
        Optional[Role],
        typer.Option("--role", help="Role of the principal."),
    ] = None,
    action_type: Annotated[
        str,
        typer.Option("--action-type", help="Kind of action."),
    ] = "tool_call",
    prompt: Annotated[
        bool,
        typer.Option("--prompt", help="Render as an agent context block."),
    ] = False,
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the constraints that apply to a principal."""
    try:
        store, service = _open(config, db)
        with store:
            expression = service.query_constraints(
                Principal(agent_id=agent, role=role), action_type
            )
    except ShoalError as e:
        _fail(e, json_output)

    if json_output:
        _print_json(expression.model_dump(mode="json", by_alias=True))
    elif prompt:
        print(format_constraints_for_prompt(expression))
    else:
        console.print(f"[bold]Allowed tools:[/bold] {', '.join(expression.allowed_tools) or '-'}")
        console.print(f"[bold]Forbidden tools:[/bold] {', '.join(expression.forbidden_tools) or '-'}")
        console.print(f"[bold]Requires approval:[/bold] {', '.join(expression.requires_approval) or '-'}")
        console.print(f"[dim]{expression.scope_note}[/dim]")


@app.command("record-result")
def record_result(
    tool: Annotated[str, typer.Argument(help="Tool that was executed.")],
    actor: Annotated[str, typer.Option("--actor", help="Agent that executed the tool.")],
    detail: Annotated[str, typer.Option("--detail", help="Serialized result context.")] = "",
    cost: Annotated[
        int,
        typer.Option("--cost", help="Tokens spent.", min=0),
    ] = 0,
    db: DbOption = None,
    config: ConfigOption = None,
) -> None:
    """Audit the outcome of an executed tool call."""
    try:
        store, service = _open(config, db)
        with store:
            entry = service.record_tool_result(actor, tool, detail, cost)
    except ShoalError as e:
        _fail(e, False)
    console.print(f"[green]✓[/green] Recorded [bold]{entry.action}[/bold]")


@app.command()
def audit(
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum number of entries to show."),
    ] = 50,
    action_prefix: Annotated[
        Optional[str],
        typer.Option("--action", help="Only show actions starting with this prefix."),
    ] = None,
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show recent audit entries, newest first."""
    try:
        store, _ = _open(config, db)
        with store:
            entries = store.list_audit_entries(limit=limit, action_prefix=action_prefix)
    except ShoalError as e:
        _fail(e, json_output)

    if json_output:
        _print_json([e.model_dump(mode="json") for e in entries])
        return

    if not entries:
        console.print("[dim]No audit entries found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Created")
    table.add_column("Actor", style="cyan")
    table.add_column("Action")
    table.add_column("Cost", justify="right")
    table.add_column("Detail")
    for entry in entries:
        detail_text = entry.detail
        if len(detail_text) > 60:
            detail_text = detail_text[:57] + "..."
        table.add_row(
            entry.created_at.isoformat()[:19],
            f"{entry.actor_id} ({entry.actor_type.value})",
            entry.action,
            str(entry.cost_tokens),
            detail_text,
        )
    console.print(table)


if __name__ == "__main__":
    app()
