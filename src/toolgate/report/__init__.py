"""
Reporting module for Toolgate.

This module renders decisions, policy versions and the audit trail for
people and for programs.

Output formats:
    - Console: Rich tables and panels with status icons
    - JSON: Structured output for programmatic consumption

Example:
    from toolgate.report import print_verdict, verdict_dict

    print_verdict(console, "posts.create", verdict)
    print(to_json(verdict_dict("posts.create", verdict)))
"""

from toolgate.report.console import (
    print_audit_entries,
    print_chain,
    print_diff,
    print_metrics,
    print_policy,
    print_verdict,
    print_versions,
)
from toolgate.report.json import (
    audit_entries_dict,
    chain_dict,
    diff_dict,
    metrics_dict,
    policy_dict,
    to_json,
    verdict_dict,
    versions_dict,
)

__all__ = [
    "audit_entries_dict",
    "chain_dict",
    "diff_dict",
    "metrics_dict",
    "policy_dict",
    "print_audit_entries",
    "print_chain",
    "print_diff",
    "print_metrics",
    "print_policy",
    "print_verdict",
    "print_versions",
    "to_json",
    "verdict_dict",
    "versions_dict",
]
