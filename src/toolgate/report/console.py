"""
Console output for Toolgate.

Renders verdicts, policy versions, diffs and the audit trail with Rich.

Design Principles:
    - Status at a glance: Icons and colors for allow/deny
    - Summary first: Headline panel, then the table
    - Consistent formatting: Predictable layout across commands
"""

import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from toolgate.audit.taxonomy import CATEGORIES
from toolgate.schema import (
    AuditEntry,
    AuditMetrics,
    ChainVerification,
    PolicyDiff,
    PolicyDocument,
    PolicyVerdict,
    PolicyVersion,
    ReasonCode,
)

# Status icons
ICON_ALLOW = "[green]✓[/green]"
ICON_DENY = "[red]✗[/red]"
ICON_BYPASS = "[yellow]⚑[/yellow]"
ICON_EVENT = "[magenta]![/magenta]"

STATUS_ICONS = {
    "approved": ICON_ALLOW,
    "denied": ICON_DENY,
    "security_event": ICON_EVENT,
}


def print_verdict(
    console: Console,
    tool: str,
    verdict: PolicyVerdict,
    audit_id: int | None = None,
    dry_run: bool = False,
) -> None:
    """Print one decision as a panel."""
    if not verdict.allowed:
        icon, style, label = ICON_DENY, "red", "DENIED"
    elif verdict.reason == ReasonCode.ADMIN_BYPASS:
        icon, style, label = ICON_BYPASS, "yellow", "ALLOWED (admin bypass)"
    else:
        icon, style, label = ICON_ALLOW, "green", "ALLOWED"

    header = Text()
    header.append(" ")
    header.append(tool, style="bold cyan")
    header.append(" │ ", style="dim")
    header.append(label, style=f"bold {style}")
    header.append(" ")
    header.append_text(Text.from_markup(icon))
    if dry_run:
        header.append(" │ ", style="dim")
        header.append("DRY RUN", style="bold magenta")

    console.print(Panel(header, expand=False))
    console.print(f"  [dim]Reason:[/dim]  {verdict.reason.value}")
    console.print(f"  [dim]Details:[/dim] {escape(verdict.details)}")
    if verdict.triggering_rule:
        console.print(f"  [dim]Rule:[/dim]    {verdict.triggering_rule}")
    if verdict.policy_version:
        console.print(f"  [dim]Policy:[/dim]  v{verdict.policy_version}")
    if audit_id is not None:
        console.print(f"  [dim]Audit:[/dim]   #{audit_id}")


def print_policy(
    console: Console,
    tool: str,
    version: str | None,
    document: PolicyDocument,
) -> None:
    """Print a policy document."""
    title = f"{tool} v{version}" if version else f"{tool} (unversioned)"
    body = json.dumps(document.to_document(), indent=2, sort_keys=True)
    console.print(Panel(escape(body), title=title, expand=False))


def print_versions(console: Console, tool: str, versions: list[PolicyVersion]) -> None:
    """Print a tool's version history, newest first."""
    if not versions:
        console.print(f"[yellow]No stored versions for {tool}[/yellow]")
        return

    table = Table(title=f"Policy versions: {tool}", show_header=True, header_style="bold")
    table.add_column("Version", style="cyan")
    table.add_column("Active", justify="center", width=6)
    table.add_column("Created")
    table.add_column("Author", justify="right")
    table.add_column("Sections", overflow="fold")

    for version in versions:
        table.add_row(
            version.version,
            ICON_ALLOW if version.active else "",
            version.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(version.created_by),
            ", ".join(version.document.to_document()) or "[dim]none[/dim]",
        )

    console.print(table)


def print_diff(
    console: Console,
    diff: PolicyDiff,
    old_label: str = "old",
    new_label: str = "new",
) -> None:
    """Print a shallow policy diff."""
    if diff.is_empty:
        console.print(f"[dim]No differences between {old_label} and {new_label}[/dim]")
        return

    console.print(f"[bold]Diff {old_label} → {new_label}[/bold]")
    for key, value in diff.added.items():
        console.print(f"  [green]+ {key}[/green]: {escape(_compact(value))}")
    for key, value in diff.removed.items():
        console.print(f"  [red]- {key}[/red]: {escape(_compact(value))}")
    for key, change in diff.modified.items():
        console.print(f"  [yellow]~ {key}[/yellow]")
        console.print(f"      [dim]old:[/dim] {escape(_compact(change['old']))}")
        console.print(f"      [dim]new:[/dim] {escape(_compact(change['new']))}")


def print_audit_entries(
    console: Console,
    entries: list[AuditEntry],
    verbose: bool = False,
) -> None:
    """Print audit entries as a table."""
    if not entries:
        console.print("[dim]No audit entries[/dim]")
        return

    table = Table(show_header=True, header_style="bold", show_lines=verbose, expand=True)
    table.add_column("#", style="dim", justify="right", width=5)
    table.add_column("Status", width=6, justify="center")
    table.add_column("Time", width=19)
    table.add_column("Action", style="cyan")
    table.add_column("Actor", justify="right", width=6)
    table.add_column("Details", overflow="fold")

    for entry in entries:
        table.add_row(
            str(entry.id),
            STATUS_ICONS.get(entry.status, "[dim]○[/dim]"),
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.action,
            str(entry.actor_id),
            _format_entry_details(entry, verbose),
        )

    console.print(table)


def _format_entry_details(entry: AuditEntry, verbose: bool) -> str:
    """Format the details column for an entry."""
    parts = []
    if entry.policy_reason:
        style = "green" if entry.policy_verdict == "allow" else "yellow"
        parts.append(f"[{style}]{entry.policy_reason}[/{style}]")
    if entry.error_code:
        parts.append(f"[dim]{entry.error_code}[/dim]")
    if entry.policy_details and (verbose or entry.policy_verdict == "deny"):
        parts.append(escape(_truncate(entry.policy_details, 80)))
    if verbose:
        if entry.payload:
            parts.append(f"[dim]data:[/dim] {escape(_truncate(_compact(entry.payload), 100))}")
        if entry.policy_version:
            parts.append(f"[dim]policy:[/dim] v{entry.policy_version}")
    return "\n".join(parts)


def print_metrics(console: Console, metrics: AuditMetrics) -> None:
    """Print aggregate audit counts."""
    console.print("[bold]Summary[/bold]")
    console.print()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column("Metric", style="dim")
    stats_table.add_column("Value")
    stats_table.add_row("Total Events", str(metrics.total_events))
    stats_table.add_row(
        "Denials",
        f"[yellow]{metrics.policy_denials}[/yellow]" if metrics.policy_denials else "0",
    )
    stats_table.add_row(
        "Security Events",
        f"[red]{metrics.security_events}[/red]" if metrics.security_events else "0",
    )
    console.print(stats_table)
    console.print()

    if metrics.by_category:
        table = Table(title="By category", show_header=True, header_style="bold")
        table.add_column("Category")
        table.add_column("Severity")
        table.add_column("Count", justify="right")
        for name, count in sorted(metrics.by_category.items(), key=lambda item: -item[1]):
            category = CATEGORIES.get(name)
            table.add_row(
                category.name if category else name,
                category.severity if category else "",
                str(count),
            )
        console.print(table)

    if metrics.by_date:
        table = Table(title="By date", show_header=True, header_style="bold")
        table.add_column("Date")
        table.add_column("Count", justify="right")
        for date, count in sorted(metrics.by_date.items(), reverse=True):
            table.add_row(date, str(count))
        console.print(table)


def print_chain(console: Console, result: ChainVerification) -> None:
    """Print the outcome of verifying the audit hash chain."""
    if result.ok:
        console.print(f"{ICON_ALLOW} Audit chain intact ({result.checked} entries)")
    else:
        console.print(
            f"{ICON_DENY} [red]Audit chain broken at entry #{result.broken_at}[/red]: {result.reason}"
        )
        console.print(f"  [dim]{result.checked} entries verified before the break[/dim]")


def _compact(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _truncate(s: str, max_len: int) -> str:
    """Truncate string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."
