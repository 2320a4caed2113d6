"""
Approval workflows and the approval ledger.

A workflow names a set of conditions over the request. When any condition is
true the workflow fires, and the call is denied until an approval has been
recorded for (tool, entity_id, actor_id). Approvals stay in force until they
are revoked. Actors with the admin-bypass capability skip workflows entirely.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from toolgate.errors import InvalidToolError
from toolgate.interfaces import CapabilityProvider, Clock, SystemClock
from toolgate.policy.sanitize import sanitize_entity_id, sanitize_key, sanitize_tool_name
from toolgate.schema import ApprovalRecord, ApprovalWorkflow, ConditionType, WorkflowCondition
from toolgate.store.db import ToolgateDB

logger = logging.getLogger(__name__)

_MISSING = object()


def lookup_field(fields: Mapping[str, Any], name: str) -> Any:
    """
    Read a request field by name; dotted names walk nested mappings.

    Returns the _MISSING sentinel when any segment is absent.
    """
    value: Any = fields
    for segment in name.split("."):
        if not isinstance(value, Mapping):
            return _MISSING
        value = value.get(sanitize_key(segment), _MISSING)
        if value is _MISSING:
            return _MISSING
    return value


def _as_number(value: Any) -> float | None:
    """Float value of ints, floats and numeric strings; None otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


class ApprovalWorkflowEngine:
    """
    Evaluates workflow conditions and keeps the approval ledger.

    Attributes:
        db: Database holding the approvals table
        capabilities: Answers admin-bypass questions (None = nobody bypasses)
        clock: Timestamps ledger updates
    """

    def __init__(
        self,
        db: ToolgateDB,
        capabilities: CapabilityProvider | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.db = db
        self.capabilities = capabilities
        self.clock = clock or SystemClock()

    # =========================================================================
    # Conditions
    # =========================================================================

    def evaluate_condition(
        self,
        condition: WorkflowCondition,
        tool: str,
        entity_id: int | None,
        fields: Mapping[str, Any],
    ) -> bool:
        """Whether one condition holds for the request."""
        if condition.type == ConditionType.TOOL_EQUALS:
            return sanitize_tool_name(tool) == sanitize_tool_name(str(condition.value or ""))

        value = lookup_field(fields, condition.field) if condition.field else _MISSING
        expected = condition.value

        if condition.type == ConditionType.FIELD_EQUALS:
            actual = "" if value is _MISSING else value
            return actual == expected

        if condition.type == ConditionType.FIELD_CONTAINS:
            if not isinstance(value, str) or expected is None:
                return False
            return str(expected).lower() in value.lower()

        if condition.type == ConditionType.FIELD_LENGTH_GREATER:
            threshold = _as_number(expected)
            if threshold is None:
                return False
            if value is _MISSING or value is None:
                length = 0
            else:
                length = len(value if isinstance(value, str) else str(value))
            return length > int(threshold)

        if condition.type == ConditionType.FIELD_NUMERIC_GREATER:
            actual = _as_number(value) if value is not _MISSING else None
            threshold = _as_number(expected)
            if actual is None or threshold is None:
                return False
            return actual > threshold

        return False

    def matching_workflow(
        self,
        workflows: Sequence[ApprovalWorkflow],
        tool: str,
        entity_id: int | None,
        fields: Mapping[str, Any],
    ) -> ApprovalWorkflow | None:
        """First workflow with at least one true condition."""
        for workflow in workflows:
            if any(
                self.evaluate_condition(condition, tool, entity_id, fields)
                for condition in workflow.conditions
            ):
                return workflow
        return None

    def requires_approval(
        self,
        workflows: Sequence[ApprovalWorkflow],
        tool: str,
        entity_id: int | None,
        fields: Mapping[str, Any],
    ) -> bool:
        """Whether any workflow fires for the request."""
        return self.matching_workflow(workflows, tool, entity_id, fields) is not None

    # =========================================================================
    # Ledger
    # =========================================================================

    def has_approval(self, tool: str, entity_id: int | None, actor_id: int) -> bool:
        """Whether an approval is on record for the key."""
        record = self.db.get_approval(
            sanitize_tool_name(tool),
            sanitize_entity_id(entity_id),
            actor_id,
        )
        return record is not None and record.approved

    def set_approval(
        self,
        tool: str,
        entity_id: int | None,
        actor_id: int,
        approved: bool = True,
    ) -> ApprovalRecord:
        """
        Record (or overwrite) an approval decision.

        Raises:
            InvalidToolError: If the tool name sanitizes to nothing
            StorageWriteError: If the ledger can't be written
        """
        canonical = sanitize_tool_name(tool)
        if not canonical:
            raise InvalidToolError(raw_tool=str(tool))

        entity = sanitize_entity_id(entity_id)
        now = self.clock.now()
        self.db.upsert_approval(canonical, entity, actor_id, approved, now)
        logger.info(
            "Approval for %s (entity %s, actor %d) set to %s",
            canonical,
            entity,
            actor_id,
            approved,
        )
        return ApprovalRecord(
            tool=canonical,
            entity_id=entity,
            actor_id=actor_id,
            approved=approved,
            updated_at=now,
        )

    def revoke_approval(self, tool: str, entity_id: int | None, actor_id: int) -> ApprovalRecord:
        """Withdraw a recorded approval."""
        return self.set_approval(tool, entity_id, actor_id, approved=False)

    def list_approvals(self, tool: str | None = None) -> list[ApprovalRecord]:
        """Ledger contents, optionally for one tool."""
        return self.db.list_approvals(sanitize_tool_name(tool) if tool else None)

    def has_admin_bypass(self, actor_id: int) -> bool:
        """Whether the actor may skip approval workflows."""
        if self.capabilities is None:
            return False
        return self.capabilities.has_admin_bypass(actor_id)
