"""
Audit log for Toolgate.

Every policy decision, executed action and security event can be recorded
here. Entries are append-only: the log never updates or deletes a row.

Before an entry is persisted:
    - Sensitive payload keys are replaced with "[REDACTED]" (nested too)
    - It is chained to the previous entry by hash, so edits to stored rows
      are detectable with verify_chain()
"""

import hashlib
import json
import logging
from collections.abc import Mapping
from typing import Any

from toolgate.audit.taxonomy import categorize
from toolgate.errors import AuditWriteError, StorageError
from toolgate.interfaces import Clock, SystemClock
from toolgate.schema import (
    ActorContext,
    AuditEntry,
    AuditEntryInput,
    AuditFilters,
    AuditMetrics,
    ChainVerification,
    PolicyVerdict,
)
from toolgate.store.db import GENESIS_HASH, ToolgateDB, compute_entry_hash, to_iso

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = frozenset({"password", "secret", "key", "token", "auth", "email", "phone"})
REDACTED = "[REDACTED]"

# Content fields hashed for each entity type, in order
CONTENT_FIELDS: dict[str, tuple[str, ...]] = {
    "post": ("post_title", "post_content", "post_excerpt"),
    "page": ("post_title", "post_content", "post_excerpt"),
    "media": ("post_title", "post_content"),
}


def redact_payload(payload: Any) -> Any:
    """
    Copy of a payload with sensitive keys redacted.

    Key matching is exact and case-insensitive; mappings inside lists are
    redacted as well.
    """
    if isinstance(payload, Mapping):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_FIELDS else redact_payload(value)
            for key, value in payload.items()
        }
    if isinstance(payload, (list, tuple)):
        return [redact_payload(item) for item in payload]
    return payload


def content_hash(
    entity_type: str | None,
    content: Mapping[str, Any] | None,
    changes: Mapping[str, Any] | None = None,
) -> str | None:
    """
    SHA-256 fingerprint of an entity's content.

    Posts and pages hash "title|content|excerpt", media "title|content";
    other entity types hash their content as canonical JSON. Changes, when
    given, are appended as "|<json>".

    Returns:
        Hex digest, or None when there is nothing to hash
    """
    if content is None and not changes:
        return None

    material = ""
    if content is not None:
        names = CONTENT_FIELDS.get(entity_type or "")
        if names is None:
            material = json.dumps(dict(content), sort_keys=True, default=str)
        else:
            material = "|".join(
                str(content.get(name, content.get(name.removeprefix("post_"), "")) or "")
                for name in names
            )

    if changes:
        material += "|" + json.dumps(dict(changes), sort_keys=True, default=str)

    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class AuditLog:
    """
    Append-only, redacted, hash-chained audit trail.

    Usage:
        audit = AuditLog(db)
        entry_id = audit.record_decision("posts.create", actor, None, fields, verdict)
        for entry in audit.query(AuditFilters(status="denied")):
            ...

    Attributes:
        db: Database holding the audit_log table
        clock: Timestamps entries
        strict_security_events: Raise instead of logging when a security event
            can't be recorded
    """

    def __init__(
        self,
        db: ToolgateDB,
        clock: Clock | None = None,
        strict_security_events: bool = False,
    ) -> None:
        self.db = db
        self.clock = clock or SystemClock()
        self.strict_security_events = strict_security_events

    # =========================================================================
    # Writes
    # =========================================================================

    def record(self, entry: AuditEntryInput) -> int:
        """
        Persist one entry.

        Returns:
            The new entry's id

        Raises:
            AuditWriteError: If the entry can't be stored
        """
        row = {
            "action": entry.action,
            "user_id": entry.actor_id,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "mode": entry.mode,
            "data": json.dumps(redact_payload(entry.payload), sort_keys=True, default=str),
            "before_hash": entry.before_hash,
            "after_hash": entry.after_hash,
            "status": entry.status,
            "policy_version": entry.policy_version,
            "policy_verdict": entry.policy_verdict,
            "policy_reason": entry.policy_reason,
            "policy_details": entry.policy_details,
            "error_code": entry.error_code,
            "error_category": entry.error_category,
            "ip_address": entry.ip_address,
            "user_agent": entry.user_agent,
            "created_at": to_iso(self.clock.now()),
        }

        try:
            entry_id, _, _ = self.db.insert_audit_entry(row)
        except StorageError as e:
            logger.error("Failed to record audit entry for %s: %s", entry.action, e.message)
            raise AuditWriteError(
                operation="record",
                action=entry.action,
                underlying_error=getattr(e, "underlying_error", "") or e.message,
            ) from e

        logger.debug("Recorded audit entry %d for %s", entry_id, entry.action)
        return entry_id

    def record_decision(
        self,
        tool: str,
        actor: ActorContext,
        entity_id: int | None,
        fields: Mapping[str, Any] | None,
        verdict: PolicyVerdict,
    ) -> int:
        """
        Record a policy decision.

        Raises:
            AuditWriteError: If the entry can't be stored
        """
        error_code, error_category = categorize(verdict)
        return self.record(
            AuditEntryInput(
                action=tool,
                actor_id=actor.id,
                entity_type="policy_decision",
                entity_id=entity_id,
                mode="policy_check",
                payload=dict(fields or {}),
                status="approved" if verdict.allowed else "denied",
                policy_version=verdict.policy_version,
                policy_verdict="allow" if verdict.allowed else "deny",
                policy_reason=verdict.reason.value,
                policy_details=verdict.details,
                error_code=error_code,
                error_category=error_category,
                ip_address=actor.ip,
                user_agent=actor.user_agent,
            )
        )

    def record_security_event(
        self,
        event_type: str,
        actor: ActorContext,
        context: Mapping[str, Any] | None = None,
    ) -> int | None:
        """
        Record a security event.

        Best-effort: a failure is logged and None returned, unless
        strict_security_events is set.

        Raises:
            AuditWriteError: Only when strict_security_events is set
        """
        context = dict(context or {})
        entry = AuditEntryInput(
            action=event_type,
            actor_id=actor.id,
            entity_type="security_event",
            mode="security",
            payload=context,
            status="security_event",
            error_code=str(context.get("error_code", "SECURITY_EVENT")),
            error_category=str(context.get("error_category", "security")),
            ip_address=actor.ip,
            user_agent=actor.user_agent,
        )
        try:
            return self.record(entry)
        except AuditWriteError:
            if self.strict_security_events:
                raise
            logger.warning("Security event %s was not recorded", event_type)
            return None

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, entry_id: int) -> AuditEntry | None:
        """One entry by id."""
        return self.db.get_audit_entry(entry_id)

    def query(
        self,
        filters: AuditFilters | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Entries matching every set filter, newest first."""
        return self.db.query_audit_entries(filters or AuditFilters(), limit=limit, offset=offset)

    def count(self, filters: AuditFilters | None = None) -> int:
        """Number of entries matching the filters."""
        return self.db.count_audit_entries(filters or AuditFilters())

    def metrics(self, filters: AuditFilters | None = None) -> AuditMetrics:
        """
        Aggregate counts by status, error category and UTC date.

        Entries without an error category are counted under "none".
        """
        total = 0
        by_status: dict[str, int] = {}
        by_category: dict[str, int] = {}
        by_date: dict[str, int] = {}
        security_events = 0
        policy_denials = 0

        for row in self.db.audit_rollup(filters or AuditFilters()):
            count = row["count"]
            status = row["status"]
            category = row["error_category"] or "none"

            total += count
            by_status[status] = by_status.get(status, 0) + count
            by_category[category] = by_category.get(category, 0) + count
            by_date[row["date"]] = by_date.get(row["date"], 0) + count

            if category == "security":
                security_events += count
            if status == "denied":
                policy_denials += count

        return AuditMetrics(
            total_events=total,
            by_status=by_status,
            by_category=by_category,
            by_date=by_date,
            security_events=security_events,
            policy_denials=policy_denials,
        )

    def verify_chain(self) -> ChainVerification:
        """
        Recompute every entry hash in insertion order.

        Returns:
            ChainVerification; broken_at names the first entry that was
            altered, removed from under its successor, or reordered
        """
        expected_previous = GENESIS_HASH
        checked = 0

        for row in self.db.iter_audit_rows():
            values = dict(row)
            if values["previous_hash"] != expected_previous:
                return ChainVerification(
                    ok=False,
                    checked=checked,
                    broken_at=values["id"],
                    reason="previous hash does not match the preceding entry",
                )
            if compute_entry_hash(expected_previous, values) != values["entry_hash"]:
                return ChainVerification(
                    ok=False,
                    checked=checked,
                    broken_at=values["id"],
                    reason="entry contents do not match its hash",
                )
            expected_previous = values["entry_hash"]
            checked += 1

        return ChainVerification(ok=True, checked=checked)
