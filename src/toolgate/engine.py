"""
Toolgate Engine.

The Engine is the orchestration layer for hosts that want the default
wiring. It coordinates between:
- PolicyStore: Versioned policy documents
- PolicyEvaluator: Decides if tool calls are allowed
- ApprovalWorkflowEngine: Workflow conditions and approvals
- AuditLog: Records every decision and outcome

Authorization Flow:
    1. Host calls authorize(tool, entity_id, fields, actor)
    2. The evaluator decides (rate limits, time windows, content, entity, approval)
    3. The decision is recorded in the audit log
    4. Host carries out the call only if the verdict allows it
    5. Host calls record_outcome() with the content before and after

Design Principles:
    - Fail-closed: Evaluation errors deny
    - Full audit: Every decision is recorded; with strict_audit an
      unrecordable decision raises instead of passing silently
    - Reproducible: Same inputs, counters and clock give the same verdict
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from toolgate.audit import AuditLog, content_hash
from toolgate.config import Settings
from toolgate.errors import AuditWriteError
from toolgate.interfaces import CapabilityProvider, Clock, EntityLookup, SystemClock
from toolgate.policy import ApprovalWorkflowEngine, PolicyEvaluator, PolicyStore, diff_documents
from toolgate.ratelimit import RateLimiter
from toolgate.schema import (
    ActorContext,
    ApprovalRecord,
    AuditEntry,
    AuditEntryInput,
    AuditFilters,
    AuditMetrics,
    PolicyDiff,
    PolicyDocument,
    PolicyVerdict,
    VersionResult,
)
from toolgate.store import ToolgateDB

logger = logging.getLogger(__name__)


@dataclass
class GateResult:
    """
    Result of authorizing one tool call.

    Attributes:
        verdict: The policy decision
        audit_id: Id of the audit entry for the decision (None if it wasn't recorded)
    """

    verdict: PolicyVerdict
    audit_id: int | None = None

    @property
    def allowed(self) -> bool:
        """Whether the tool call may proceed."""
        return self.verdict.allowed


class Engine:
    """
    Default wiring of the Toolgate components around one database.

    Usage:
        with Engine(Settings(db_path="toolgate.db")) as engine:
            result = engine.authorize("posts.create", None, fields, ActorContext(id=7))
            if result.allowed:
                ...

    Attributes:
        settings: Runtime settings
        db: Shared database connection
        store: Policy documents
        limiter: Rate counters
        approvals: Workflow conditions and approval ledger
        evaluator: Policy decisions
        audit: Audit trail
    """

    def __init__(
        self,
        settings: Settings | None = None,
        db_path: str | Path | None = None,
        clock: Clock | None = None,
        entity_lookup: EntityLookup | None = None,
        capabilities: CapabilityProvider | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            settings: Runtime settings (defaults apply when omitted)
            db_path: Overrides settings.db_path
            clock: Time source (defaults to the system clock)
            entity_lookup: Entity type/status/content provider
            capabilities: Admin-bypass provider
        """
        self.settings = settings or Settings()
        self.clock = clock or SystemClock()
        self.entity_lookup = entity_lookup

        self.db = ToolgateDB(
            db_path if db_path is not None else self.settings.db_path,
            timeout=self.settings.busy_timeout_seconds,
        )
        self.store = PolicyStore(self.db)
        self.limiter = RateLimiter(self.db, self.clock)
        self.approvals = ApprovalWorkflowEngine(self.db, capabilities, self.clock)
        self.evaluator = PolicyEvaluator(
            self.store,
            self.limiter,
            self.approvals,
            entity_lookup=entity_lookup,
            clock=self.clock,
            timezone=self.settings.timezone,
            enforce_time_windows=self.settings.enforce_time_windows,
            fail_open=self.settings.fail_open,
        )
        self.audit = AuditLog(
            self.db,
            clock=self.clock,
            strict_security_events=self.settings.strict_security_events,
        )

        if self.settings.bootstrap_defaults:
            installed = self.store.load_defaults()
            logger.info("Installed default policies for %s", ", ".join(installed) or "no tools")

    def close(self) -> None:
        """Close database connection."""
        self.db.close()

    def __enter__(self) -> "Engine":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Decisions
    # =========================================================================

    def decide(
        self,
        tool: str,
        entity_id: int | None = None,
        fields: Mapping[str, Any] | None = None,
        actor: ActorContext | None = None,
        *,
        dry_run: bool = False,
    ) -> PolicyVerdict:
        """Evaluate a tool call without recording it."""
        return self.evaluator.decide(tool, entity_id, fields, actor, dry_run=dry_run)

    def authorize(
        self,
        tool: str,
        entity_id: int | None = None,
        fields: Mapping[str, Any] | None = None,
        actor: ActorContext | None = None,
    ) -> GateResult:
        """
        Decide a tool call and record the decision.

        The verdict is never changed by the audit write. When the decision
        can't be recorded, strict_audit raises; otherwise audit_id is None.

        Raises:
            AuditWriteError: If strict_audit is set and recording fails
        """
        actor = actor or ActorContext()
        verdict = self.evaluator.decide(tool, entity_id, fields, actor)

        try:
            audit_id = self.audit.record_decision(tool, actor, entity_id, fields, verdict)
        except AuditWriteError:
            if self.settings.strict_audit:
                raise
            logger.warning("Decision for %s was not recorded in the audit log", tool)
            audit_id = None

        return GateResult(verdict=verdict, audit_id=audit_id)

    def record_outcome(
        self,
        tool: str,
        actor: ActorContext,
        status: str,
        entity_type: str | None = None,
        entity_id: int | None = None,
        payload: Mapping[str, Any] | None = None,
        before_content: Mapping[str, Any] | None = None,
        after_content: Mapping[str, Any] | None = None,
        verdict: PolicyVerdict | None = None,
        mode: str = "execute",
    ) -> int:
        """
        Record an executed action with before/after content fingerprints.

        after_content is the entity as it exists after the write. When it is
        omitted and an entity lookup is configured, the entity is re-read.

        Raises:
            AuditWriteError: If the entry can't be stored
        """
        if after_content is None and entity_id and self.entity_lookup is not None:
            after_content = self.entity_lookup.get_content(entity_id)

        return self.audit.record(
            AuditEntryInput(
                action=tool,
                actor_id=actor.id,
                entity_type=entity_type,
                entity_id=entity_id,
                mode=mode,
                payload=dict(payload or {}),
                status=status,
                before_hash=content_hash(entity_type, before_content),
                after_hash=content_hash(entity_type, after_content),
                policy_version=verdict.policy_version if verdict else None,
                policy_verdict=("allow" if verdict.allowed else "deny") if verdict else None,
                policy_reason=verdict.reason.value if verdict else None,
                policy_details=verdict.details if verdict else None,
                ip_address=actor.ip,
                user_agent=actor.user_agent,
            )
        )

    # =========================================================================
    # Policy versions
    # =========================================================================

    def create_version(
        self,
        tool: str,
        document: PolicyDocument | Mapping[str, Any],
        author_id: int = 0,
    ) -> VersionResult:
        """Record a new policy version and make it active."""
        return self.store.create_version(tool, document, author_id)

    def rollback(self, tool: str, version: str) -> VersionResult:
        """Reactivate a historical policy version."""
        return self.store.rollback(tool, version)

    def diff(
        self,
        old: PolicyDocument | Mapping[str, Any],
        new: PolicyDocument | Mapping[str, Any],
    ) -> PolicyDiff:
        """Shallow diff of two policy documents."""
        return diff_documents(old, new)

    # =========================================================================
    # Approvals
    # =========================================================================

    def set_approval(
        self,
        tool: str,
        entity_id: int | None,
        actor_id: int,
        approved: bool = True,
    ) -> ApprovalRecord:
        """Record an approval decision."""
        return self.approvals.set_approval(tool, entity_id, actor_id, approved)

    def revoke_approval(self, tool: str, entity_id: int | None, actor_id: int) -> ApprovalRecord:
        """Withdraw an approval."""
        return self.approvals.revoke_approval(tool, entity_id, actor_id)

    # =========================================================================
    # Audit
    # =========================================================================

    def record(self, entry: AuditEntryInput) -> int:
        """Persist an arbitrary audit entry."""
        return self.audit.record(entry)

    def query(
        self,
        filters: AuditFilters | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Audit entries, newest first."""
        return self.audit.query(filters, limit=limit, offset=offset)

    def metrics(self, filters: AuditFilters | None = None) -> AuditMetrics:
        """Aggregate audit counts."""
        return self.audit.metrics(filters)
