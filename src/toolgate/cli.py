"""
CLI entry point for Toolgate.

This module provides the Typer-based command-line interface for Toolgate.

Commands:
    policy      Manage versioned policy documents and test decisions
    approval    Grant and revoke approvals
    audit       Inspect, summarize and verify the audit trail

Architecture Note:
    The CLI is intentionally thin - it parses arguments and delegates to the
    Engine for actual work. Everything here is also available
    programmatically.
"""

import json
import traceback
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from toolgate import __version__
from toolgate.config import Settings, configure_logging, load_settings
from toolgate.engine import Engine
from toolgate.errors import PolicyValidationError, ToolgateError
from toolgate.interfaces import StaticCapabilityProvider
from toolgate.policy.defaults import default_policies
from toolgate.report import (
    audit_entries_dict,
    chain_dict,
    diff_dict,
    metrics_dict,
    policy_dict,
    print_audit_entries,
    print_chain,
    print_diff,
    print_metrics,
    print_policy,
    print_verdict,
    print_versions,
    to_json,
    verdict_dict,
    versions_dict,
)
from toolgate.schema import ActorContext, AuditFilters, load_policy_bundle, load_policy_document

# Initialize Typer app with metadata
app = typer.Typer(
    name="toolgate",
    help="Gate AI-agent tool calls behind versioned, audited policies.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

# Global options, set by the app callback
_state: dict[str, Any] = {"config": None, "db": None, "verbose": False}

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]toolgate[/bold] version {__version__}")
        raise typer.Exit()


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
    config: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to a toolgate.yaml settings file.",
            envvar="TOOLGATE_CONFIG",
        ),
    ] = None,
    db: Annotated[
        Optional[Path],
        typer.Option(
            "--db",
            help="SQLite database path (overrides the settings file).",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            help="Log at INFO level.",
        ),
    ] = False,
) -> None:
    """
    Toolgate - Policy enforcement for AI-agent tool invocations.

    Rate limits, time windows, content filters, entity rules and approval
    workflows, with a versioned policy store and a tamper-evident audit log.
    """
    _state["config"] = config
    _state["db"] = db
    _state["verbose"] = verbose


def _settings() -> Settings:
    """Settings from --config (or defaults), with --db applied."""
    config_path = _state.get("config")
    settings = load_settings(config_path) if config_path else Settings()
    if _state.get("db") is not None:
        settings = settings.model_copy(update={"db_path": str(_state["db"])})
    return settings


def _open_engine(admin_ids: list[int] | None = None) -> Engine:
    """Build an Engine from the global options."""
    settings = _settings()
    level = "INFO" if _state.get("verbose") and settings.log_level != "DEBUG" else settings.log_level
    configure_logging(level)
    return Engine(settings, capabilities=StaticCapabilityProvider(admin_ids or []))


def _fail(error_type: str, error: Exception, json_output: bool) -> None:
    """Report an error and exit with code 1."""
    if json_output:
        _output_json_error(error_type, error)
    else:
        console.print(f"[red]Error: {error}[/red]")
        if _state.get("verbose"):
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


def _output_json_error(error_type: str, error: Exception) -> None:
    """Output an error in JSON format."""
    output: dict[str, Any] = {
        "error": True,
        "error_type": error_type,
        "message": error.message if isinstance(error, ToolgateError) else str(error),
    }
    if isinstance(error, ToolgateError):
        output["details"] = error.to_dict()
    print(json.dumps(output, indent=2, default=str))


JsonOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output results in JSON format.",
    ),
]


# =============================================================================
# Policy Subcommand Group
# =============================================================================

policy_app = typer.Typer(
    name="policy",
    help="Manage versioned policy documents.",
    no_args_is_help=True,
)
app.add_typer(policy_app, name="policy")


@policy_app.command("bootstrap")
def policy_bootstrap(
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            help="Store a new version even for tools that already have one.",
        ),
    ] = False,
    author: Annotated[int, typer.Option("--author", help="User id recorded as author.")] = 0,
    json_output: JsonOption = False,
) -> None:
    """
    Store the built-in policies as versions.

    Example:
        $ toolgate policy bootstrap
    """
    try:
        with _open_engine() as engine:
            created = []
            for tool, document in default_policies().items():
                if not force and engine.store.get_active_version(tool) is not None:
                    continue
                result = engine.create_version(tool, document, author)
                if result.ok:
                    created.append({"tool": tool, "version": result.value.version})
    except ToolgateError as e:
        _fail("bootstrap_error", e, json_output)

    if json_output:
        print(to_json({"created": created}))
    elif created:
        for item in created:
            console.print(f"[green]✓[/green] {item['tool']} v{item['version']}")
    else:
        console.print("[dim]All default policies already stored[/dim]")


@policy_app.command("create")
def policy_create(
    tool: Annotated[str, typer.Argument(help="Tool name, e.g. posts.create")],
    policy_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the policy YAML/JSON file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    author: Annotated[int, typer.Option("--author", help="User id recorded as author.")] = 0,
    json_output: JsonOption = False,
) -> None:
    """
    Store a new policy version and make it active.

    Example:
        $ toolgate policy create posts.create policies/posts_create.yaml
    """
    try:
        document = load_policy_document(policy_path)
    except ValidationError as e:
        _fail("invalid_policy", PolicyValidationError(tool=tool, validation_error=str(e)), json_output)
    except (OSError, yaml.YAMLError) as e:
        _fail("policy_load_error", e, json_output)

    try:
        with _open_engine() as engine:
            result = engine.create_version(tool, document, author)
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if not result.ok:
        _fail("invalid_policy", ValueError(result.error), json_output)

    if json_output:
        print(to_json({"tool": result.value.tool, "version": result.value.version, "id": result.value.id}))
    else:
        console.print(f"[green]✓[/green] Created {result.value.tool} v{result.value.version}")


@policy_app.command("import")
def policy_import(
    bundle_path: Annotated[
        Path,
        typer.Argument(
            help="YAML file mapping tool names to policy documents.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    author: Annotated[int, typer.Option("--author", help="User id recorded as author.")] = 0,
    json_output: JsonOption = False,
) -> None:
    """
    Store a new version for every tool in a policy bundle.

    Nothing is stored unless every document in the bundle is valid.

    Example:
        $ toolgate policy import policies.yaml
    """
    try:
        bundle = load_policy_bundle(bundle_path)
    except ValidationError as e:
        _fail("invalid_policy", PolicyValidationError(validation_error=str(e)), json_output)
    except (OSError, ValueError, yaml.YAMLError) as e:
        _fail("policy_load_error", e, json_output)

    created = []
    try:
        with _open_engine() as engine, engine.db.transaction():
            for tool, document in bundle.items():
                result = engine.create_version(tool, document, author)
                if not result.ok:
                    _fail("invalid_policy", ValueError(result.error), json_output)
                created.append({"tool": result.value.tool, "version": result.value.version})
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if json_output:
        print(to_json({"created": created}))
    else:
        for item in created:
            console.print(f"[green]✓[/green] {item['tool']} v{item['version']}")


@policy_app.command("show")
def policy_show(
    tool: Annotated[str, typer.Argument(help="Tool name.")],
    version: Annotated[
        Optional[str],
        typer.Option("--version", help="Show a stored version instead of the active one."),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """
    Show the active (or a stored) policy for a tool.

    Example:
        $ toolgate policy show posts.create --version 0.0.2
    """
    try:
        with _open_engine() as engine:
            if version is not None:
                stored = engine.store.get_version(tool, version)
                found = (stored.document, stored.version) if stored else None
            else:
                found = engine.store.resolve(tool)
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if found is None:
        label = f"{tool} v{version}" if version else tool
        _fail("policy_not_found", LookupError(f"No policy found for {label}"), json_output)

    document, shown_version = found
    if json_output:
        print(to_json(policy_dict(tool, shown_version, document)))
    else:
        print_policy(console, tool, shown_version, document)


@policy_app.command("versions")
def policy_versions(
    tool: Annotated[str, typer.Argument(help="Tool name.")],
    json_output: JsonOption = False,
) -> None:
    """
    List stored versions of a tool's policy, newest first.

    Example:
        $ toolgate policy versions posts.create
    """
    try:
        with _open_engine() as engine:
            versions = engine.store.get_versions(tool)
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if json_output:
        print(to_json(versions_dict(tool, versions)))
    else:
        print_versions(console, tool, versions)


@policy_app.command("list")
def policy_list(json_output: JsonOption = False) -> None:
    """List tools that have a stored policy."""
    try:
        with _open_engine() as engine:
            rows = [
                {"tool": tool, "active_version": engine.store.get_active_version(tool)}
                for tool in engine.store.list_tools()
            ]
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if json_output:
        print(to_json({"tools": rows}))
        return

    if not rows:
        console.print("[dim]No policies stored[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Tool", style="cyan")
    table.add_column("Active Version")
    for row in rows:
        table.add_row(row["tool"], row["active_version"] or "[dim]unversioned[/dim]")
    console.print(table)


@policy_app.command("rollback")
def policy_rollback(
    tool: Annotated[str, typer.Argument(help="Tool name.")],
    version: Annotated[str, typer.Argument(help="Version to reactivate.")],
    json_output: JsonOption = False,
) -> None:
    """
    Reactivate a stored policy version.

    Example:
        $ toolgate policy rollback posts.create 0.0.1
    """
    try:
        with _open_engine() as engine:
            result = engine.rollback(tool, version)
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if not result.ok:
        _fail("version_not_found", LookupError(result.error), json_output)

    if json_output:
        print(to_json({"tool": result.value.tool, "version": result.value.version, "active": True}))
    else:
        console.print(f"[green]✓[/green] {result.value.tool} rolled back to v{result.value.version}")


@policy_app.command("diff")
def policy_diff(
    tool: Annotated[str, typer.Argument(help="Tool name.")],
    version1: Annotated[str, typer.Argument(help="Baseline version.")],
    version2: Annotated[str, typer.Argument(help="Version to compare.")],
    json_output: JsonOption = False,
) -> None:
    """
    Show top-level differences between two stored versions.

    Example:
        $ toolgate policy diff posts.create 0.0.1 0.0.2
    """
    try:
        with _open_engine() as engine:
            diff = engine.store.diff_versions(tool, version1, version2)
    except ToolgateError as e:
        _fail("diff_error", e, json_output)

    if json_output:
        print(to_json(diff_dict(diff, tool, version1, version2)))
    else:
        print_diff(console, diff, f"v{version1}", f"v{version2}")


@policy_app.command("test")
def policy_test(
    tool: Annotated[str, typer.Argument(help="Tool name.")],
    fields: Annotated[
        str,
        typer.Option("--fields", "-f", help="Request fields as a JSON object."),
    ] = "{}",
    entity_id: Annotated[
        Optional[int],
        typer.Option("--entity-id", help="Entity the call targets."),
    ] = None,
    actor: Annotated[int, typer.Option("--actor", help="Actor user id.")] = 0,
    ip: Annotated[Optional[str], typer.Option("--ip", help="Client IP address.")] = None,
    admin: Annotated[
        bool,
        typer.Option("--admin", help="Treat the actor as having admin bypass."),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """
    Evaluate a tool call without counting it against rate limits.

    Exits with code 0 when the call would be allowed, 1 when denied.

    Example:
        $ toolgate policy test products.update --fields '{"price": 900}' --actor 7
    """
    try:
        parsed = json.loads(fields)
    except json.JSONDecodeError as e:
        _fail("invalid_fields", e, json_output)

    if not isinstance(parsed, dict):
        _fail("invalid_fields", ValueError("--fields must be a JSON object"), json_output)

    try:
        with _open_engine(admin_ids=[actor] if admin else None) as engine:
            verdict = engine.decide(
                tool,
                entity_id,
                parsed,
                ActorContext(id=actor, ip=ip),
                dry_run=True,
            )
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if json_output:
        print(to_json(verdict_dict(tool, verdict, dry_run=True)))
    else:
        print_verdict(console, tool, verdict, dry_run=True)

    raise typer.Exit(code=0 if verdict.allowed else 1)


# =============================================================================
# Approval Subcommand Group
# =============================================================================

approval_app = typer.Typer(
    name="approval",
    help="Grant and revoke approvals for workflow-gated tool calls.",
    no_args_is_help=True,
)
app.add_typer(approval_app, name="approval")


def _set_approval(
    tool: str,
    actor: int,
    entity_id: int | None,
    approved: bool,
    json_output: bool,
) -> None:
    try:
        with _open_engine() as engine:
            record = engine.set_approval(tool, entity_id, actor, approved)
    except ToolgateError as e:
        _fail("approval_error", e, json_output)

    if json_output:
        print(to_json(record.model_dump(mode="json")))
    else:
        action = "Granted" if approved else "Revoked"
        target = f" on entity {record.entity_id}" if record.entity_id else ""
        console.print(f"[green]✓[/green] {action} {record.tool} for actor {record.actor_id}{target}")


@approval_app.command("grant")
def approval_grant(
    tool: Annotated[str, typer.Argument(help="Tool name.")],
    actor: Annotated[int, typer.Argument(help="Actor user id being approved.")],
    entity_id: Annotated[
        Optional[int],
        typer.Option("--entity-id", help="Entity the approval applies to."),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """
    Record an approval.

    Example:
        $ toolgate approval grant products.update 7 --entity-id 42
    """
    _set_approval(tool, actor, entity_id, True, json_output)


@approval_app.command("revoke")
def approval_revoke(
    tool: Annotated[str, typer.Argument(help="Tool name.")],
    actor: Annotated[int, typer.Argument(help="Actor user id.")],
    entity_id: Annotated[
        Optional[int],
        typer.Option("--entity-id", help="Entity the approval applies to."),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Withdraw an approval."""
    _set_approval(tool, actor, entity_id, False, json_output)


@approval_app.command("list")
def approval_list(
    tool: Annotated[Optional[str], typer.Option("--tool", help="Only this tool.")] = None,
    json_output: JsonOption = False,
) -> None:
    """List recorded approvals."""
    try:
        with _open_engine() as engine:
            records = engine.approvals.list_approvals(tool)
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if json_output:
        print(to_json({"approvals": [r.model_dump(mode="json") for r in records]}))
        return

    if not records:
        console.print("[dim]No approvals recorded[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Tool", style="cyan")
    table.add_column("Entity", justify="right")
    table.add_column("Actor", justify="right")
    table.add_column("Approved", justify="center")
    table.add_column("Updated")
    for record in records:
        table.add_row(
            record.tool,
            str(record.entity_id or "—"),
            str(record.actor_id),
            "[green]✓[/green]" if record.approved else "[red]✗[/red]",
            record.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


# =============================================================================
# Audit Subcommand Group
# =============================================================================

audit_app = typer.Typer(
    name="audit",
    help="Inspect the audit trail.",
    no_args_is_help=True,
)
app.add_typer(audit_app, name="audit")

SinceOption = Annotated[
    Optional[datetime],
    typer.Option("--since", help="Only entries at or after this UTC time.", formats=DATE_FORMATS),
]
UntilOption = Annotated[
    Optional[datetime],
    typer.Option("--until", help="Only entries at or before this UTC time.", formats=DATE_FORMATS),
]


@audit_app.command("list")
def audit_list(
    action: Annotated[Optional[str], typer.Option("--action", help="Tool or event name.")] = None,
    actor: Annotated[Optional[int], typer.Option("--actor", help="Actor user id.")] = None,
    status: Annotated[
        Optional[str],
        typer.Option("--status", help="approved, denied, security_event, ..."),
    ] = None,
    category: Annotated[Optional[str], typer.Option("--category", help="Error category.")] = None,
    entity_type: Annotated[Optional[str], typer.Option("--entity-type", help="Entity type.")] = None,
    entity_id: Annotated[Optional[int], typer.Option("--entity-id", help="Entity id.")] = None,
    since: SinceOption = None,
    until: UntilOption = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum entries.", min=1)] = 50,
    offset: Annotated[int, typer.Option("--offset", help="Entries to skip.", min=0)] = 0,
    verbose: Annotated[bool, typer.Option("--verbose", help="Show payloads and details.")] = False,
    json_output: JsonOption = False,
) -> None:
    """
    List audit entries, newest first.

    Example:
        $ toolgate audit list --status denied --since 2024-01-01
    """
    filters = AuditFilters(
        action=action,
        actor_id=actor,
        entity_type=entity_type,
        entity_id=entity_id,
        status=status,
        error_category=category,
        date_from=since,
        date_to=until,
    )
    try:
        with _open_engine() as engine:
            entries = engine.query(filters, limit=limit, offset=offset)
            total = engine.audit.count(filters)
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if json_output:
        print(to_json(audit_entries_dict(entries, total)))
    else:
        print_audit_entries(console, entries, verbose)
        if total > len(entries):
            console.print(f"[dim]Showing {len(entries)} of {total} entries[/dim]")


@audit_app.command("metrics")
def audit_metrics(
    since: SinceOption = None,
    until: UntilOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Summarize the audit trail by status, category and date.

    Example:
        $ toolgate audit metrics --since 2024-01-01 --json
    """
    try:
        with _open_engine() as engine:
            metrics = engine.metrics(AuditFilters(date_from=since, date_to=until))
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if json_output:
        print(to_json(metrics_dict(metrics)))
    else:
        print_metrics(console, metrics)


@audit_app.command("verify")
def audit_verify(json_output: JsonOption = False) -> None:
    """
    Recompute the audit hash chain.

    Exits with code 1 if any entry was altered.
    """
    try:
        with _open_engine() as engine:
            result = engine.audit.verify_chain()
    except ToolgateError as e:
        _fail("storage_error", e, json_output)

    if json_output:
        print(to_json(chain_dict(result)))
    else:
        print_chain(console, result)

    raise typer.Exit(code=0 if result.ok else 1)


if __name__ == "__main__":
    app()
