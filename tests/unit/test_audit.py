"""
Unit tests for the audit log.

Tests cover:
- Payload redaction
- Content hashes
- Recording decisions and security events
- Filtered queries and metrics
- Hash chain verification
- Error taxonomy
"""

from datetime import UTC, datetime

import pytest

from toolgate.audit import AuditLog, categorize, content_hash, redact_payload
from toolgate.audit.taxonomy import CATEGORIES, ERROR_MAP
from toolgate.errors import AuditWriteError
from toolgate.interfaces import FixedClock
from toolgate.schema import ActorContext, AuditEntryInput, AuditFilters, PolicyVerdict, ReasonCode
from toolgate.store import ToolgateDB

ACTOR = ActorContext(id=7, ip="203.0.113.5", user_agent="pytest")


def entry(action: str = "posts.create", status: str = "success", **kwargs: object) -> AuditEntryInput:
    return AuditEntryInput(action=action, status=status, **kwargs)


# =============================================================================
# Redaction
# =============================================================================


class TestRedaction:
    """Tests for sensitive-field redaction."""

    @pytest.mark.parametrize(
        "field", ["password", "secret", "key", "token", "auth", "email", "phone"]
    )
    def test_each_sensitive_field(self, field: str) -> None:
        """Every configured field name is redacted."""
        assert redact_payload({field: "value", "title": "x"}) == {
            field: "[REDACTED]",
            "title": "x",
        }

    def test_case_insensitive(self) -> None:
        """Key matching ignores case."""
        assert redact_payload({"Password": "hunter2"}) == {"Password": "[REDACTED]"}

    def test_nested(self) -> None:
        """Nested mappings and lists are redacted."""
        payload = {"user": {"email": "a@b.c", "name": "A"}, "items": [{"token": "t"}]}
        assert redact_payload(payload) == {
            "user": {"email": "[REDACTED]", "name": "A"},
            "items": [{"token": "[REDACTED]"}],
        }

    def test_similar_names_kept(self) -> None:
        """Only exact names are redacted."""
        assert redact_payload({"keyword": "k"}) == {"keyword": "k"}

    def test_record_persists_redacted(self, audit: AuditLog) -> None:
        """Stored payloads never contain sensitive values."""
        entry_id = audit.record(entry(payload={"password": "hunter2", "nested": {"secret": "s"}}))
        stored = audit.get(entry_id)
        assert stored.payload == {"password": "[REDACTED]", "nested": {"secret": "[REDACTED]"}}


# =============================================================================
# Content Hashes
# =============================================================================


class TestContentHash:
    """Tests for content fingerprints."""

    def test_post_fields(self) -> None:
        """Posts hash title|content|excerpt."""
        a = content_hash("post", {"post_title": "T", "post_content": "C", "post_excerpt": "E"})
        b = content_hash("post", {"post_title": "T", "post_content": "C", "post_excerpt": "E", "x": 1})
        assert a == b
        assert len(a) == 64

    def test_content_change_changes_hash(self) -> None:
        """Different content gives a different hash."""
        a = content_hash("page", {"post_title": "T", "post_content": "C"})
        b = content_hash("page", {"post_title": "T", "post_content": "D"})
        assert a != b

    def test_other_types_use_json(self) -> None:
        """Unknown entity types hash their canonical JSON."""
        assert content_hash("product", {"a": 1, "b": 2}) == content_hash("product", {"b": 2, "a": 1})

    def test_changes_appended(self) -> None:
        """Changes alter the hash."""
        base = {"post_title": "T"}
        assert content_hash("post", base) != content_hash("post", base, {"post_title": "U"})

    def test_nothing_to_hash(self) -> None:
        """No content and no changes gives None."""
        assert content_hash("post", None) is None


# =============================================================================
# Recording
# =============================================================================


class TestRecording:
    """Tests for recording entries."""

    def test_record_returns_id(self, audit: AuditLog, clock: FixedClock) -> None:
        """record() returns the new row id and timestamps with the clock."""
        entry_id = audit.record(entry(actor_id=7, entity_type="post", entity_id=3))
        stored = audit.get(entry_id)
        assert stored.action == "posts.create"
        assert stored.actor_id == 7
        assert stored.entity_id == 3
        assert stored.created_at == clock.now()

    def test_record_decision_denied(self, audit: AuditLog) -> None:
        """Denied decisions carry the taxonomy code and category."""
        verdict = PolicyVerdict.deny(
            ReasonCode.RATE_LIMIT_EXCEEDED, "Hourly limit exceeded: 20/20", rule="rate_limits.per_hour"
        ).with_version("0.0.4")

        stored = audit.get(audit.record_decision("posts.create", ACTOR, None, {"title": "x"}, verdict))

        assert stored.entity_type == "policy_decision"
        assert stored.mode == "policy_check"
        assert stored.status == "denied"
        assert stored.policy_verdict == "deny"
        assert stored.policy_reason == "rate_limit_exceeded"
        assert stored.policy_version == "0.0.4"
        assert stored.error_code == "RATE_LIMIT_EXCEEDED"
        assert stored.error_category == "rate_limit"
        assert stored.ip_address == "203.0.113.5"
        assert stored.user_agent == "pytest"

    def test_record_decision_allowed(self, audit: AuditLog) -> None:
        """Allowed decisions have no error code."""
        verdict = PolicyVerdict.allow(ReasonCode.APPROVED, "All policy checks passed")
        stored = audit.get(audit.record_decision("posts.create", ACTOR, 5, {}, verdict))
        assert stored.status == "approved"
        assert stored.policy_verdict == "allow"
        assert stored.error_code is None
        assert stored.error_category is None

    def test_security_event(self, audit: AuditLog) -> None:
        """Security events are categorized as security."""
        stored = audit.get(audit.record_security_event("login_failed", ACTOR, {"attempts": 5}))
        assert stored.status == "security_event"
        assert stored.error_category == "security"
        assert stored.error_code == "SECURITY_EVENT"
        assert stored.payload == {"attempts": 5}

    def test_record_failure_raises(self, audit: AuditLog, db: ToolgateDB) -> None:
        """record() raises AuditWriteError when storage fails."""
        db._conn.execute("DROP TABLE audit_log")
        with pytest.raises(AuditWriteError) as exc_info:
            audit.record(entry())
        assert exc_info.value.action == "posts.create"

    def test_security_event_best_effort(self, audit: AuditLog, db: ToolgateDB) -> None:
        """A failed security event is logged, not raised."""
        db._conn.execute("DROP TABLE audit_log")
        assert audit.record_security_event("login_failed", ACTOR) is None

    def test_security_event_strict(self, db: ToolgateDB, clock: FixedClock) -> None:
        """strict_security_events raises instead."""
        audit = AuditLog(db, clock=clock, strict_security_events=True)
        db._conn.execute("DROP TABLE audit_log")
        with pytest.raises(AuditWriteError):
            audit.record_security_event("login_failed", ACTOR)


# =============================================================================
# Queries and Metrics
# =============================================================================


class TestQueries:
    """Tests for query(), count() and metrics()."""

    @pytest.fixture
    def populated(self, audit: AuditLog, clock: FixedClock) -> AuditLog:
        deny = PolicyVerdict.deny(ReasonCode.BLOCKED_TERM, "blocked")
        allow = PolicyVerdict.allow(ReasonCode.APPROVED, "ok")

        audit.record_decision("posts.create", ActorContext(id=7), None, {}, allow)
        clock.advance(minutes=1)
        audit.record_decision("posts.create", ActorContext(id=7), None, {}, deny)
        clock.advance(days=1)
        audit.record_decision("posts.update", ActorContext(id=8), 3, {}, deny)
        audit.record_security_event("login_failed", ActorContext(id=9))
        return audit

    def test_newest_first(self, populated: AuditLog) -> None:
        """Entries come back newest first."""
        actions = [e.action for e in populated.query()]
        assert actions == ["login_failed", "posts.update", "posts.create", "posts.create"]

    def test_filters_combine(self, populated: AuditLog) -> None:
        """Filters are ANDed."""
        results = populated.query(AuditFilters(action="posts.create", status="denied"))
        assert len(results) == 1
        assert results[0].policy_reason == "blocked_term"

    def test_actor_and_entity_filters(self, populated: AuditLog) -> None:
        """Actor and entity filters match stored columns."""
        assert len(populated.query(AuditFilters(actor_id=7))) == 2
        assert len(populated.query(AuditFilters(entity_id=3))) == 1
        assert len(populated.query(AuditFilters(error_category="content"))) == 2

    def test_date_range(self, populated: AuditLog) -> None:
        """Date filters bound created_at."""
        results = populated.query(AuditFilters(date_from=datetime(2024, 1, 9, tzinfo=UTC)))
        assert {e.action for e in results} == {"posts.update", "login_failed"}

        results = populated.query(AuditFilters(date_to=datetime(2024, 1, 8, 23, 59, tzinfo=UTC)))
        assert len(results) == 2

    def test_pagination(self, populated: AuditLog) -> None:
        """limit and offset page through results."""
        page = populated.query(limit=2, offset=1)
        assert [e.action for e in page] == ["posts.update", "posts.create"]
        assert populated.count() == 4

    def test_metrics(self, populated: AuditLog) -> None:
        """Metrics group by status, category and date."""
        metrics = populated.metrics()
        assert metrics.total_events == 4
        assert metrics.by_status == {"approved": 1, "denied": 2, "security_event": 1}
        assert metrics.by_category == {"none": 1, "content": 2, "security": 1}
        assert metrics.by_date == {"2024-01-08": 2, "2024-01-09": 2}
        assert metrics.policy_denials == 2
        assert metrics.security_events == 1

    def test_metrics_filtered(self, populated: AuditLog) -> None:
        """Metrics respect filters."""
        metrics = populated.metrics(AuditFilters(date_from=datetime(2024, 1, 9, tzinfo=UTC)))
        assert metrics.total_events == 2


# =============================================================================
# Hash Chain
# =============================================================================


class TestHashChain:
    """Tests for tamper evidence."""

    def test_chain_links(self, audit: AuditLog) -> None:
        """Each entry links to the previous one."""
        first = audit.get(audit.record(entry()))
        second = audit.get(audit.record(entry()))
        assert first.previous_hash == "0" * 64
        assert second.previous_hash == first.entry_hash

    def test_intact_chain(self, audit: AuditLog) -> None:
        """An untouched log verifies."""
        for _ in range(3):
            audit.record(entry())
        result = audit.verify_chain()
        assert result.ok
        assert result.checked == 3

    def test_empty_chain(self, audit: AuditLog) -> None:
        """An empty log verifies."""
        assert audit.verify_chain().ok

    def test_tampered_entry(self, audit: AuditLog, db: ToolgateDB) -> None:
        """Editing a stored row breaks the chain at that row."""
        audit.record(entry())
        target = audit.record(entry(status="denied"))
        audit.record(entry())

        db._conn.execute("UPDATE audit_log SET status = 'success' WHERE id = ?", (target,))

        result = audit.verify_chain()
        assert not result.ok
        assert result.broken_at == target
        assert result.checked == 1

    def test_deleted_entry(self, audit: AuditLog, db: ToolgateDB) -> None:
        """Deleting a row breaks the chain at its successor."""
        audit.record(entry())
        middle = audit.record(entry())
        last = audit.record(entry())

        db._conn.execute("DELETE FROM audit_log WHERE id = ?", (middle,))

        result = audit.verify_chain()
        assert not result.ok
        assert result.broken_at == last


# =============================================================================
# Taxonomy
# =============================================================================


class TestTaxonomy:
    """Tests for the error taxonomy."""

    def test_every_category_is_described(self) -> None:
        """Mapped categories all have a description."""
        for _, category in ERROR_MAP.values():
            assert category in CATEGORIES

    def test_unknown_reason(self) -> None:
        """Unmapped denials are unknown."""
        verdict = PolicyVerdict.deny(ReasonCode.UNKNOWN_ERROR, "boom")
        assert categorize(verdict) == ("UNKNOWN_ERROR", "unknown")

    def test_time_reasons_are_policy(self) -> None:
        """Time-based denials share the policy category."""
        for reason in (ReasonCode.TIME_RESTRICTION, ReasonCode.DAY_RESTRICTION, ReasonCode.BLACKOUT_WINDOW):
            assert categorize(PolicyVerdict.deny(reason, ""))[1] == "policy"
