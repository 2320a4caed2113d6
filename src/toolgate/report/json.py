"""
JSON output for Toolgate.

Design Principles:
    - Consistent schema: Same keys whatever the outcome
    - Human-readable keys: Descriptive snake_case names
    - ISO timestamps: Standard datetime format
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from toolgate.audit.taxonomy import CATEGORIES
from toolgate.schema import (
    AuditEntry,
    AuditMetrics,
    ChainVerification,
    PolicyDiff,
    PolicyDocument,
    PolicyVerdict,
    PolicyVersion,
)

REPORT_VERSION = "1.0"


def to_json(data: Any, indent: int = 2) -> str:
    """Serialize report data."""
    return json.dumps(data, indent=indent, default=_json_serializer)


def verdict_dict(
    tool: str,
    verdict: PolicyVerdict,
    audit_id: int | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """One decision."""
    return {
        "tool": tool,
        "allowed": verdict.allowed,
        "reason": verdict.reason.value,
        "details": verdict.details,
        "triggering_rule": verdict.triggering_rule,
        "policy_version": verdict.policy_version,
        "audit_id": audit_id,
        "dry_run": dry_run,
    }


def policy_dict(tool: str, version: str | None, document: PolicyDocument) -> dict[str, Any]:
    """An active or historical policy document."""
    return {
        "tool": tool,
        "version": version,
        "policy": document.to_document(),
    }


def versions_dict(tool: str, versions: list[PolicyVersion]) -> dict[str, Any]:
    """Version history of a tool, newest first."""
    return {
        "tool": tool,
        "count": len(versions),
        "versions": [
            {
                "id": v.id,
                "version": v.version,
                "active": v.active,
                "created_at": v.created_at.isoformat(),
                "created_by": v.created_by,
                "policy": v.document.to_document(),
            }
            for v in versions
        ],
    }


def diff_dict(
    diff: PolicyDiff,
    tool: str | None = None,
    old_version: str | None = None,
    new_version: str | None = None,
) -> dict[str, Any]:
    """A policy diff."""
    return {
        "tool": tool,
        "version1": old_version,
        "version2": new_version,
        "diff": {
            "added": diff.added,
            "removed": diff.removed,
            "modified": diff.modified,
        },
    }


def audit_entries_dict(entries: list[AuditEntry], total: int | None = None) -> dict[str, Any]:
    """A page of audit entries."""
    return {
        "report_version": REPORT_VERSION,
        "generated_at": datetime.now(UTC).isoformat(),
        "total": total if total is not None else len(entries),
        "entries": [entry.model_dump(mode="json") for entry in entries],
    }


def metrics_dict(metrics: AuditMetrics) -> dict[str, Any]:
    """Audit metrics, with the taxonomy entry for each category seen."""
    data = metrics.model_dump(mode="json")
    data["categories"] = {
        name: CATEGORIES[name].model_dump()
        for name in metrics.by_category
        if name in CATEGORIES
    }
    return data


def chain_dict(result: ChainVerification) -> dict[str, Any]:
    """Hash-chain verification outcome."""
    return result.model_dump(mode="json")


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
