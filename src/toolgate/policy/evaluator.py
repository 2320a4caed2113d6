"""
Policy Evaluator for Toolgate.

The evaluator is the decision point of Toolgate. Every proposed tool call
passes through decide() before the host application carries it out.

Design Principles:
    - Deny-by-default: A tool without an active policy is denied
    - Ordered: Checks run in a fixed order and stop at the first denial
    - Fail-closed: Unexpected errors become an unknown_error denial
    - Side-effect light: Only rate counters change; nothing is audited here

How it works:
    1. Sanitize the tool name, entity id and request fields
    2. Look up the tool's active policy document
    3. Rate limits (per_hour, per_day, per_ip_hour)
    4. Time windows (blackout windows, allowed hours, allowed days)
    5. Content restrictions (blocked terms, blocked patterns)
    6. Entity rules (post type, post status)
    7. Approval workflows (admin bypass, recorded approvals)
    8. Return PolicyVerdict stamped with the active policy version
"""

import logging
from collections.abc import Mapping
from datetime import tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from toolgate.errors import StorageError
from toolgate.interfaces import Clock, EntityLookup, SystemClock
from toolgate.policy.approval import ApprovalWorkflowEngine
from toolgate.policy.sanitize import (
    iter_string_fields,
    sanitize_entity_id,
    sanitize_fields,
    sanitize_tool_name,
)
from toolgate.policy.store import PolicyStore
from toolgate.ratelimit.limiter import RateLimiter
from toolgate.schema import (
    ActorContext,
    ApprovalWorkflow,
    ContentRestrictions,
    EntityRules,
    PolicyVerdict,
    RateLimits,
    RateScope,
    ReasonCode,
    TimeWindows,
    compile_pattern,
)

logger = logging.getLogger(__name__)

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

# (scope, label used in details), in evaluation order
RATE_SCOPES = (
    (RateScope.PER_HOUR, "Hourly"),
    (RateScope.PER_DAY, "Daily"),
    (RateScope.PER_IP_HOUR, "IP hourly"),
)

UNKNOWN_IP = "0.0.0.0"


class PolicyEvaluator:
    """
    Central policy evaluator for Toolgate.

    Usage:
        evaluator = PolicyEvaluator(store, limiter, approvals)
        verdict = evaluator.decide("posts.create", None, {"title": "Hi"}, ActorContext(id=7))
        if verdict.allowed:
            # carry out the tool call
        else:
            # report verdict.reason / verdict.details

    Attributes:
        store: Source of active policy documents
        limiter: Rate counters
        approvals: Workflow conditions and approval ledger
        entity_lookup: Post type / status of targeted entities (optional)
        clock: Current time
        timezone: Zone time windows are evaluated in
        enforce_time_windows: When False the time-window step always passes
        fail_open: When True a storage failure passes the affected step
    """

    def __init__(
        self,
        store: PolicyStore,
        limiter: RateLimiter,
        approvals: ApprovalWorkflowEngine,
        entity_lookup: EntityLookup | None = None,
        clock: Clock | None = None,
        timezone: str | tzinfo = "UTC",
        enforce_time_windows: bool = True,
        fail_open: bool = False,
    ) -> None:
        self.store = store
        self.limiter = limiter
        self.approvals = approvals
        self.entity_lookup = entity_lookup
        self.clock = clock or SystemClock()
        self.timezone = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self.enforce_time_windows = enforce_time_windows
        self.fail_open = fail_open

    def decide(
        self,
        tool: str,
        entity_id: int | None = None,
        fields: Mapping[str, Any] | None = None,
        actor: ActorContext | None = None,
        *,
        dry_run: bool = False,
    ) -> PolicyVerdict:
        """
        Decide whether a tool call may proceed.

        This is the main entry point for policy evaluation. It never raises:
        every outcome, including internal failures, is a PolicyVerdict.

        Args:
            tool: The tool being called (e.g., "posts.create")
            entity_id: The entity the call targets, if any
            fields: The request fields
            actor: Who is asking (anonymous if omitted)
            dry_run: Read rate counters without incrementing them

        Returns:
            PolicyVerdict indicating allow/deny with reason
        """
        actor = actor or ActorContext()
        try:
            verdict = self._decide(tool, entity_id, fields, actor, dry_run)
        except StorageError as e:
            logger.warning("Storage failure while deciding %s: %s", tool, e.message)
            verdict = PolicyVerdict.deny(
                ReasonCode.UNKNOWN_ERROR,
                f"Policy storage unavailable: {e.message}",
                rule="storage",
            )
        except Exception:
            logger.exception("Unexpected error while deciding %s", tool)
            verdict = PolicyVerdict.deny(
                ReasonCode.UNKNOWN_ERROR,
                "Policy evaluation failed",
                rule="internal_error",
            )

        if not verdict.allowed:
            logger.info("Denied %s: %s (%s)", tool, verdict.reason.value, verdict.details)
        return verdict

    def _decide(
        self,
        raw_tool: str,
        raw_entity_id: Any,
        raw_fields: Mapping[str, Any] | None,
        actor: ActorContext,
        dry_run: bool,
    ) -> PolicyVerdict:
        tool = sanitize_tool_name(raw_tool)
        entity_id = sanitize_entity_id(raw_entity_id)
        fields = sanitize_fields(raw_fields)

        if not tool:
            return PolicyVerdict.deny(
                ReasonCode.INVALID_TOOL,
                "Invalid tool name",
                rule="tool_name",
            )

        resolved = self.store.resolve(tool)
        if resolved is None:
            return PolicyVerdict.deny(
                ReasonCode.NO_POLICY,
                f"No policy found for tool: {tool}",
                rule="deny_by_default",
            )
        policy, version = resolved

        decision = self._guarded(
            "rate_limits",
            self.check_rate_limits,
            tool,
            policy.rate_limits,
            actor,
            dry_run,
        )
        if not decision.allowed:
            return decision.with_version(version)

        decision = self.check_time_window(policy.time_windows)
        if not decision.allowed:
            return decision.with_version(version)

        decision = self.check_content(policy.content_restrictions, fields)
        if not decision.allowed:
            return decision.with_version(version)

        decision = self.check_entity_rules(policy.entity_rules, entity_id)
        if not decision.allowed:
            return decision.with_version(version)

        decision = self._guarded(
            "approval_workflows",
            self.check_approval,
            policy.approval_workflows,
            tool,
            entity_id,
            fields,
            actor,
        )
        if not decision.allowed or decision.reason == ReasonCode.ADMIN_BYPASS:
            return decision.with_version(version)

        return PolicyVerdict.allow(
            ReasonCode.APPROVED,
            "All policy checks passed",
        ).with_version(version)

    def _guarded(self, step: str, check: Any, *args: Any) -> PolicyVerdict:
        """Run a storage-backed check, applying the fail_open setting to storage errors."""
        try:
            return check(*args)
        except StorageError as e:
            if not self.fail_open:
                raise
            logger.warning("Skipping %s check after storage failure: %s", step, e.message)
            return PolicyVerdict.allow(
                ReasonCode.APPROVED,
                f"{step} check skipped (storage unavailable)",
                rule=step,
            )

    # =========================================================================
    # Rate Limits
    # =========================================================================

    def check_rate_limits(
        self,
        tool: str,
        limits: RateLimits | None,
        actor: ActorContext,
        dry_run: bool = False,
    ) -> PolicyVerdict:
        """
        Count the call against every configured scope.

        Scopes are checked in order per_hour, per_day, per_ip_hour; each one
        that passes has already counted the call when the next is checked.
        """
        if limits is None:
            return PolicyVerdict.allow(ReasonCode.APPROVED, "No rate limits configured")

        for scope, label in RATE_SCOPES:
            limit = getattr(limits, scope.value)
            if limit is None:
                continue

            if scope == RateScope.PER_IP_HOUR:
                identity = actor.ip or UNKNOWN_IP
            else:
                identity = str(actor.id)

            if dry_run:
                result = self.limiter.peek(tool, scope, identity, limit)
            else:
                result = self.limiter.check_and_increment(tool, scope, identity, limit)

            if result.exceeded:
                return PolicyVerdict.deny(
                    ReasonCode.RATE_LIMIT_EXCEEDED,
                    f"{label} limit exceeded: {result.current}/{result.limit}",
                    rule=f"rate_limits.{scope.value}",
                )

        return PolicyVerdict.allow(ReasonCode.APPROVED, "Rate limits within bounds")

    # =========================================================================
    # Time Windows
    # =========================================================================

    def check_time_window(self, windows: TimeWindows | None) -> PolicyVerdict:
        """
        Evaluate time-of-day and day-of-week restrictions at the current time.

        Blackout windows take precedence over allowed hours and days.
        """
        if not self.enforce_time_windows:
            return PolicyVerdict.allow(ReasonCode.APPROVED, "Time window check disabled")
        if windows is None:
            return PolicyVerdict.allow(ReasonCode.APPROVED, "No time restrictions configured")

        now = self.clock.now().astimezone(self.timezone)
        minute_of_day = now.hour * 60 + now.minute
        weekday = now.isoweekday()

        for index, blackout in enumerate(windows.blackout_windows):
            if blackout.contains(minute_of_day, weekday):
                return PolicyVerdict.deny(
                    ReasonCode.BLACKOUT_WINDOW,
                    f"Operation blocked during blackout window: {blackout.start}-{blackout.end}",
                    rule=f"time_windows.blackout_windows[{index}]",
                )

        if windows.allowed_hours and now.hour not in windows.allowed_hours:
            allowed = ", ".join(str(hour) for hour in windows.allowed_hours)
            return PolicyVerdict.deny(
                ReasonCode.TIME_RESTRICTION,
                f"Operation not allowed at hour {now.hour}. Allowed hours: {allowed}",
                rule="time_windows.allowed_hours",
            )

        if windows.allowed_days and weekday not in windows.allowed_days:
            allowed = ", ".join(DAY_NAMES[day - 1] for day in windows.allowed_days)
            return PolicyVerdict.deny(
                ReasonCode.DAY_RESTRICTION,
                f"Operation not allowed on {DAY_NAMES[weekday - 1]}. Allowed days: {allowed}",
                rule="time_windows.allowed_days",
            )

        return PolicyVerdict.allow(ReasonCode.APPROVED, "Time window check passed")

    # =========================================================================
    # Content Restrictions
    # =========================================================================

    def check_content(
        self,
        restrictions: ContentRestrictions | None,
        fields: Mapping[str, Any],
    ) -> PolicyVerdict:
        """
        Scan every string field for blocked terms, then blocked patterns.

        Terms match as case-insensitive substrings.
        """
        if restrictions is None:
            return PolicyVerdict.allow(ReasonCode.APPROVED, "No content restrictions configured")

        strings = list(iter_string_fields(fields))

        for term in restrictions.blocked_terms:
            needle = term.lower()
            for path, value in strings:
                if needle in value.lower():
                    severity = restrictions.severity_for(term)
                    return PolicyVerdict.deny(
                        ReasonCode.BLOCKED_TERM,
                        f"Field '{path}' contains blocked term '{term}' (severity: {severity})",
                        rule=f"content_restrictions.blocked_terms[{term}]",
                    )

        for pattern in restrictions.blocked_patterns:
            regex = compile_pattern(pattern)
            for path, value in strings:
                if regex.search(value):
                    return PolicyVerdict.deny(
                        ReasonCode.BLOCKED_PATTERN,
                        f"Field '{path}' matches blocked pattern: {pattern}",
                        rule=f"content_restrictions.blocked_patterns[{pattern}]",
                    )

        return PolicyVerdict.allow(ReasonCode.APPROVED, "Content restrictions check passed")

    # =========================================================================
    # Entity Rules
    # =========================================================================

    def check_entity_rules(self, rules: EntityRules | None, entity_id: int | None) -> PolicyVerdict:
        """
        Check the targeted entity's post type and status.

        Passes when there is no entity, no lookup, or the entity is unknown.
        """
        if rules is None:
            return PolicyVerdict.allow(ReasonCode.APPROVED, "No entity rules configured")
        if entity_id is None or self.entity_lookup is None:
            return PolicyVerdict.allow(ReasonCode.APPROVED, "Entity rules not applicable")

        found = self.entity_lookup.get_type_and_status(entity_id)
        if found is None:
            return PolicyVerdict.allow(ReasonCode.APPROVED, f"Entity {entity_id} not found")
        post_type, status = found

        if rules.allowed_post_types is not None and post_type and post_type not in rules.allowed_post_types:
            return PolicyVerdict.deny(
                ReasonCode.POST_TYPE_RESTRICTION,
                f"Post type '{post_type}' not allowed. "
                f"Allowed types: {', '.join(rules.allowed_post_types)}",
                rule="entity_rules.allowed_post_types",
            )

        if rules.allowed_statuses is not None and status and status not in rules.allowed_statuses:
            return PolicyVerdict.deny(
                ReasonCode.STATUS_RESTRICTION,
                f"Post status '{status}' not allowed. "
                f"Allowed statuses: {', '.join(rules.allowed_statuses)}",
                rule="entity_rules.allowed_statuses",
            )

        return PolicyVerdict.allow(ReasonCode.APPROVED, "Entity rules check passed")

    # =========================================================================
    # Approval Workflows
    # =========================================================================

    def check_approval(
        self,
        workflows: list[ApprovalWorkflow] | None,
        tool: str,
        entity_id: int | None,
        fields: Mapping[str, Any],
        actor: ActorContext,
    ) -> PolicyVerdict:
        """
        Deny when a workflow fires and no approval is on record.

        Actors with admin bypass are allowed with reason admin_bypass.
        """
        if not workflows:
            return PolicyVerdict.allow(ReasonCode.APPROVED, "No approval workflow configured")

        if self.approvals.has_admin_bypass(actor.id):
            return PolicyVerdict.allow(
                ReasonCode.ADMIN_BYPASS,
                "Admin user bypassed approval workflow",
                rule="admin_bypass",
            )

        workflow = self.approvals.matching_workflow(workflows, tool, entity_id, fields)
        if workflow is not None and not self.approvals.has_approval(tool, entity_id, actor.id):
            return PolicyVerdict.deny(
                ReasonCode.APPROVAL_REQUIRED,
                f"Approval required for workflow: {workflow.name}. "
                "Please contact an administrator.",
                rule=f"approval_workflows[{workflow.name}]",
            )

        return PolicyVerdict.allow(ReasonCode.APPROVED, "Approval workflow check passed")
