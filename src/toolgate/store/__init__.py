"""
Storage module for Toolgate.

This module provides SQLite-based persistence for policy versions, rate
counters, the approval ledger and the audit trail.

Tables:
    - policy_versions: Every version of every tool's policy document
    - rate_counters: Windowed call counters with an expiry
    - approvals: Recorded human approvals
    - audit_log: Hash-chained record of decisions and actions

Design principles:
    - Append-only: Versions and audit entries are never modified
    - Integrity: Each audit entry hashes its predecessor
    - Atomic: Transactions ensure consistency
    - Self-contained: Single .db file shared by every component
"""

from toolgate.store.db import GENESIS_HASH, ToolgateDB, compute_entry_hash, compute_hash

__all__ = [
    "GENESIS_HASH",
    "ToolgateDB",
    "compute_entry_hash",
    "compute_hash",
]
