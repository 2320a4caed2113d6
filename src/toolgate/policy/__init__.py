"""
Policy module for Toolgate.

This module decides whether a proposed tool call may proceed, and manages
the versioned policy documents those decisions are made against.

Key concepts:
    - PolicyDocument: Per-tool rate limits, time windows, content filters,
      entity rules and approval workflows
    - PolicyStore: Versioned documents with rollback and an in-memory cache
    - PolicyEvaluator: Runs the checks in a fixed order and returns a PolicyVerdict
    - ApprovalWorkflowEngine: Workflow conditions plus the approval ledger
    - PolicyDiffer: Shallow, top-level comparison of two documents

The evaluator is the security boundary of Toolgate. It must be:
    - Fail-closed: Any unexpected error results in denial
    - Predictable: Same inputs and counters always produce the same verdict
    - Explainable: Every verdict carries a reason code and details
"""

from toolgate.policy.approval import ApprovalWorkflowEngine
from toolgate.policy.differ import PolicyDiffer, diff_documents
from toolgate.policy.evaluator import PolicyEvaluator
from toolgate.policy.store import PolicyStore

__all__ = [
    "ApprovalWorkflowEngine",
    "PolicyDiffer",
    "PolicyEvaluator",
    "PolicyStore",
    "diff_documents",
]
