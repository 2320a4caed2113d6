"""
Unit tests for the policy evaluator.

Tests cover:
- Deny-by-default and invalid tool names
- Rate limits (per actor, per IP, bucket rollover, dry run)
- Time windows (blackouts, hours, days, timezone)
- Content restrictions (terms, patterns, nested fields)
- Entity rules
- Approval workflows and admin bypass
- Storage failures and fail_open
- Check ordering and version stamping
"""

from datetime import UTC, datetime
from typing import Any

import pytest

from toolgate.errors import StorageReadError, StorageWriteError
from toolgate.interfaces import FixedClock, StaticEntityLookup
from toolgate.policy import ApprovalWorkflowEngine, PolicyEvaluator, PolicyStore
from toolgate.ratelimit import RateLimiter
from toolgate.schema import ActorContext, ReasonCode
from toolgate.store import ToolgateDB

ADMIN_ID = 1
ACTOR = ActorContext(id=7, ip="203.0.113.5")


def at(hour: int, minute: int = 0, day: int = 8) -> datetime:
    """2024-01-<day> at the given UTC time (the 8th is a Monday)."""
    return datetime(2024, 1, day, hour, minute, tzinfo=UTC)


# =============================================================================
# Test Helpers
# =============================================================================


class BrokenLimiter:
    """Rate limiter whose storage is unavailable."""

    def check_and_increment(self, *args: Any, **kwargs: Any) -> None:
        raise StorageWriteError(operation="increment_counter", underlying_error="database is locked")

    def peek(self, *args: Any, **kwargs: Any) -> None:
        raise StorageReadError(operation="get_counter", underlying_error="database is locked")


class BrokenStore:
    """Policy store that fails in an unexpected way."""

    def resolve(self, tool: str) -> None:
        raise RuntimeError("unexpected")


# =============================================================================
# Deny by default
# =============================================================================


class TestDenyByDefault:
    """Tests for tools without a policy."""

    def test_no_policy(self, evaluator: PolicyEvaluator) -> None:
        """A tool with no active document is denied."""
        verdict = evaluator.decide("posts.create", None, {}, ACTOR)
        assert not verdict.allowed
        assert verdict.reason == ReasonCode.NO_POLICY
        assert verdict.details == "No policy found for tool: posts.create"
        assert verdict.triggering_rule == "deny_by_default"

    def test_invalid_tool(self, evaluator: PolicyEvaluator) -> None:
        """A tool name that sanitizes to nothing is invalid."""
        verdict = evaluator.decide("<>!!", None, {}, ACTOR)
        assert not verdict.allowed
        assert verdict.reason == ReasonCode.INVALID_TOOL

    def test_empty_policy_allows(self, evaluator: PolicyEvaluator, store: PolicyStore) -> None:
        """An empty document places no restriction."""
        store.create_version("posts.create", {})
        verdict = evaluator.decide("posts.create", None, {}, ACTOR)
        assert verdict.allowed
        assert verdict.reason == ReasonCode.APPROVED
        assert verdict.details == "All policy checks passed"

    def test_verdict_carries_policy_version(
        self, evaluator: PolicyEvaluator, store: PolicyStore
    ) -> None:
        """Verdicts name the version they were made under."""
        store.create_version("posts.create", {})
        store.create_version("posts.create", {"rate_limits": {"per_hour": 0}})

        denied = evaluator.decide("posts.create", None, {}, ACTOR)
        assert denied.policy_version == "0.0.2"

        store.rollback("posts.create", "0.0.1")
        allowed = evaluator.decide("posts.create", None, {}, ACTOR)
        assert allowed.allowed
        assert allowed.policy_version == "0.0.1"

    def test_tool_name_canonicalized(self, evaluator: PolicyEvaluator, store: PolicyStore) -> None:
        """Mixed-case tool names find the canonical policy."""
        store.create_version("products.bulkupdate", {})
        assert evaluator.decide("Products.BulkUpdate", None, {}, ACTOR).allowed

    def test_anonymous_actor(self, evaluator: PolicyEvaluator, store: PolicyStore) -> None:
        """The actor may be omitted."""
        store.create_version("posts.create", {})
        assert evaluator.decide("posts.create").allowed


# =============================================================================
# Rate Limits
# =============================================================================


class TestRateLimits:
    """Tests for the rate-limit step."""

    def test_twenty_first_call_denied(self, evaluator: PolicyEvaluator, store: PolicyStore) -> None:
        """With per_hour=20 the 21st call in the hour is denied."""
        store.create_version("posts.create", {"rate_limits": {"per_hour": 20}})

        for _ in range(20):
            assert evaluator.decide("posts.create", None, {}, ACTOR).allowed

        verdict = evaluator.decide("posts.create", None, {}, ACTOR)
        assert not verdict.allowed
        assert verdict.reason == ReasonCode.RATE_LIMIT_EXCEEDED
        assert verdict.details == "Hourly limit exceeded: 20/20"
        assert verdict.triggering_rule == "rate_limits.per_hour"

    def test_next_hour_succeeds(
        self, evaluator: PolicyEvaluator, store: PolicyStore, clock: FixedClock
    ) -> None:
        """A call in the next hour bucket succeeds."""
        store.create_version("posts.create", {"rate_limits": {"per_hour": 2}})
        for _ in range(2):
            evaluator.decide("posts.create", None, {}, ACTOR)
        assert not evaluator.decide("posts.create", None, {}, ACTOR).allowed

        clock.advance(hours=1)
        assert evaluator.decide("posts.create", None, {}, ACTOR).allowed

    def test_daily_limit(self, evaluator: PolicyEvaluator, store: PolicyStore) -> None:
        """per_day counts separately from per_hour."""
        store.create_version("posts.create", {"rate_limits": {"per_hour": 10, "per_day": 1}})
        evaluator.decide("posts.create", None, {}, ACTOR)
        verdict = evaluator.decide("posts.create", None, {}, ACTOR)
        assert verdict.reason == ReasonCode.RATE_LIMIT_EXCEEDED
        assert verdict.details == "Daily limit exceeded: 1/1"

    def test_per_ip_limit_shared_across_actors(
        self, evaluator: PolicyEvaluator, store: PolicyStore
    ) -> None:
        """per_ip_hour is keyed by IP, not actor."""
        store.create_version("posts.create", {"rate_limits": {"per_ip_hour": 1}})
        assert evaluator.decide("posts.create", None, {}, ActorContext(id=7, ip="10.0.0.1")).allowed

        verdict = evaluator.decide("posts.create", None, {}, ActorContext(id=8, ip="10.0.0.1"))
        assert verdict.reason == ReasonCode.RATE_LIMIT_EXCEEDED
        assert verdict.details == "IP hourly limit exceeded: 1/1"

        assert evaluator.decide("posts.create", None, {}, ActorContext(id=8, ip="10.0.0.2")).allowed

    def test_actors_have_separate_counters(
        self, evaluator: PolicyEvaluator, store: PolicyStore
    ) -> None:
        """per_hour is keyed by actor id."""
        store.create_version("posts.create", {"rate_limits": {"per_hour": 1}})
        assert evaluator.decide("posts.create", None, {}, ActorContext(id=7)).allowed
        assert evaluator.decide("posts.create", None, {}, ActorContext(id=8)).allowed

    def test_dry_run_does_not_count(self, evaluator: PolicyEvaluator, store: PolicyStore) -> None:
        """Dry runs read counters without incrementing them."""
        store.create_version("posts.create", {"rate_limits": {"per_hour": 1}})
        for _ in range(3):
            assert evaluator.decide("posts.create", None, {}, ACTOR, dry_run=True).allowed

        assert evaluator.decide("posts.create", None, {}, ACTOR).allowed
        verdict = evaluator.decide("posts.create", None, {}, ACTOR, dry_run=True)
        assert verdict.reason == ReasonCode.RATE_LIMIT_EXCEEDED


# =============================================================================
# Time Windows
# =============================================================================


class TestTimeWindows:
    """Tests for the time-window step."""

    def test_outside_allowed_hours(
        self, evaluator: PolicyEvaluator, store: PolicyStore, clock: FixedClock
    ) -> None:
        """At 20:00 with allowed hours 9-17 the call is denied."""
        store.create_version(
            "posts.create", {"time_windows": {"allowed_hours": list(range(9, 18))}}
        )
        clock.set(at(20))

        verdict = evaluator.decide("posts.create", None, {}, ACTOR)
        assert not verdict.allowed
        assert verdict.reason == ReasonCode.TIME_RESTRICTION
        assert verdict.details.startswith("Operation not allowed at hour 20")

    def test_inside_allowed_hours(self, evaluator: PolicyEvaluator, store: PolicyStore) -> None:
        """At 10:00 the call passes."""
        store.create_version(
            "posts.create", {"time_windows": {"allowed_hours": list(range(9, 18))}}
        )
        assert evaluator.decide("posts.create", None, {}, ACTOR).allowed

    def test_blackout_takes_precedence(
        self, evaluator: PolicyEvaluator, store: PolicyStore, clock: FixedClock
    ) -> None:
        """A blackout window denies even inside allowed hours."""
        store.create_version(
            "posts.create",
            {
                "time_windows": {
                    "allowed_hours": list(range(9, 18)),
                    "blackout_windows": [{"start": "12:00", "end": "13:00", "days": [1, 2, 3, 4, 5]}],
                }
            },
        )
        clock.set(at(12, 30))

        verdict = evaluator.decide("posts.create", None, {}, ACTOR)
        assert verdict.reason == ReasonCode.BLACKOUT_WINDOW
        assert verdict.details == "Operation blocked during blackout window: 12:00-13:00"
        assert verdict.triggering_rule == "time_windows.blackout_windows[0]"

        clock.set(at(13, 0))
        assert evaluator.decide("posts.create", None, {}, ACTOR).allowed

    def test_blackout_other_day(
        self, evaluator: PolicyEvaluator, store: PolicyStore, clock: FixedClock
    ) -> None:
        """Blackouts only apply on their days."""
        store.create_version(
            "posts.create",
            {"time_windows": {"blackout_windows": [{"start": "00:00", "end": "24:00", "days": [7]}]}},
        )
        assert evaluator.decide("posts.create", None, {}, ACTOR).allowed

        clock.set(at(10, day=14))  # Sunday
        assert evaluator.decide("posts.create", None, {}, ACTOR).reason == ReasonCode.BLACKOUT_WINDOW

    def test_overnight_blackout(
        self, evaluator: PolicyEvaluator, store: PolicyStore, clock: FixedClock
    ) -> None:
        """Blackouts may cross midnight."""
        store.create_version(
            "posts.create",
            {"time_windows": {"blackout_windows": [{"start": "22:00", "end": "06:00"}]}},
        )
        clock.set(at(23, 15))
        assert evaluator.decide("posts.create", None, {}, ACTOR).reason == ReasonCode.BLACKOUT_WINDOW
        clock.set(at(5, 59))
        assert evaluator.decide("posts.create", None, {}, ACTOR).reason == ReasonCode.BLACKOUT_WINDOW
        clock.set(at(6, 0))
        assert evaluator.decide("posts.create", None, {}, ACTOR).allowed

    def test_day_restriction(
        self, evaluator: PolicyEvaluator, store: PolicyStore, clock: FixedClock
    ) -> None:
        """Calls on a day outside allowed_days are denied."""
        store.create_version("posts.create", {"time_windows": {"allowed_days": [1, 2, 3, 4, 5]}})
        clock.set(at(10, day=13))  # Saturday

        verdict = evaluator.decide("posts.create", None, {}, ACTOR)
        assert verdict.reason == ReasonCode.DAY_RESTRICTION
        assert verdict.details.startswith("Operation not allowed on Saturday")

    def test_timezone(
        self,
        store: PolicyStore,
        limiter: RateLimiter,
        approvals: ApprovalWorkflowEngine,
        clock: FixedClock,
    ) -> None:
        """Hours are evaluated in the configured timezone."""
        evaluator = PolicyEvaluator(
            store, limiter, approvals, clock=clock, timezone="America/New_York"
        )
        store.create_version(
            "posts.create", {"time_windows": {"allowed_hours": list(range(9, 18))}}
        )

        clock.set(at(15))  # 10:00 in New York
        assert evaluator.decide("posts.create", None, {}, ACTOR).allowed

        clock.set(at(23))  # 18:00 in New York
        verdict = evaluator.decide("posts.create", None, {}, ACTOR)
        assert verdict.reason == ReasonCode.TIME_RESTRICTION
        assert "hour 18" in verdict.details

    def test_disabled(
        self,
        store: PolicyStore,
        limiter: RateLimiter,
        approvals: ApprovalWorkflowEngine,
        clock: FixedClock,
    ) -> None:
        """enforce_time_windows=False skips the step."""
        evaluator = PolicyEvaluator(
            store, limiter, approvals, clock=clock, enforce_time_windows=False
        )
        store.create_version("posts.create", {"time_windows": {"allowed_hours": [3]}})
        assert evaluator.decide("posts.create", None, {}, ACTOR).allowed


# =============================================================================
# Content Restrictions
# =============================================================================


class TestContent:
    """Tests for the content step."""

    @pytest.fixture(autouse=True)
    def content_policy(self, store: PolicyStore) -> None:
        store.create_version(
            "posts.create",
            {
                "content_restrictions": {
                    "blocked_terms": ["spam", "scam"],
                    "blocked_patterns": [r"/\b(free\s+money)\b/i"],
                    "severity_levels": {"scam": "critical"},
                }
            },
        )

    def test_term_case_insensitive(self, evaluator: PolicyEvaluator) -> None:
        """Blocked terms match regardless of case."""
        verdict = evaluator.decide("posts.create", None, {"post_title": "Totally not SPAM"}, ACTOR)
        assert verdict.reason == ReasonCode.BLOCKED_TERM
        assert verdict.details == (
            "Field 'post_title' contains blocked term 'spam' (severity: medium)"
        )

    def test_term_substring_any_field(self, evaluator: PolicyEvaluator) -> None:
        """Terms match as substrings in any string field."""
        verdict = evaluator.decide(
            "posts.create",
            None,
            {"post_title": "Hello", "post_content": "a Scammer appears"},
            ACTOR,
        )
        assert verdict.reason == ReasonCode.BLOCKED_TERM
        assert "'post_content'" in verdict.details
        assert "(severity: critical)" in verdict.details

    def test_nested_field(self, evaluator: PolicyEvaluator) -> None:
        """Nested strings are scanned and named by dotted path."""
        verdict = evaluator.decide(
            "posts.create", None, {"meta": {"tags": ["ok", "spammy"]}}, ACTOR
        )
        assert verdict.reason == ReasonCode.BLOCKED_TERM
        assert "Field 'meta.tags.1'" in verdict.details

    def test_pattern(self, evaluator: PolicyEvaluator) -> None:
        """Blocked patterns deny after terms pass."""
        verdict = evaluator.decide(
            "posts.create", None, {"post_content": "Get <b>FREE</b>   money now"}, ACTOR
        )
        assert verdict.reason == ReasonCode.BLOCKED_PATTERN
        assert verdict.details == (
            r"Field 'post_content' matches blocked pattern: /\b(free\s+money)\b/i"
        )

    def test_clean_content(self, evaluator: PolicyEvaluator) -> None:
        """Content without blocked terms passes."""
        assert evaluator.decide("posts.create", None, {"post_title": "Quarterly report"}, ACTOR).allowed

    def test_non_string_fields_ignored(self, evaluator: PolicyEvaluator) -> None:
        """Numbers and booleans are not scanned."""
        assert evaluator.decide("posts.create", None, {"price": 5, "spam": True}, ACTOR).allowed


# =============================================================================
# Entity Rules
# =============================================================================


class TestEntityRules:
    """Tests for the entity step."""

    @pytest.fixture
    def entity_evaluator(
        self,
        store: PolicyStore,
        limiter: RateLimiter,
        approvals: ApprovalWorkflowEngine,
        clock: FixedClock,
    ) -> PolicyEvaluator:
        lookup = StaticEntityLookup(
            {
                10: {"post_type": "post", "post_status": "draft"},
                11: {"post_type": "product", "post_status": "draft"},
                12: {"post_type": "page", "post_status": "publish"},
            }
        )
        store.create_version(
            "posts.update",
            {
                "entity_rules": {
                    "allowed_post_types": ["post", "page"],
                    "allowed_statuses": ["draft", "pending"],
                }
            },
        )
        return PolicyEvaluator(store, limiter, approvals, entity_lookup=lookup, clock=clock)

    def test_allowed_entity(self, entity_evaluator: PolicyEvaluator) -> None:
        """Allowed type and status pass."""
        assert entity_evaluator.decide("posts.update", 10, {}, ACTOR).allowed

    def test_post_type_restriction(self, entity_evaluator: PolicyEvaluator) -> None:
        """Disallowed post types are denied."""
        verdict = entity_evaluator.decide("posts.update", 11, {}, ACTOR)
        assert verdict.reason == ReasonCode.POST_TYPE_RESTRICTION
        assert verdict.details == "Post type 'product' not allowed. Allowed types: post, page"

    def test_status_restriction(self, entity_evaluator: PolicyEvaluator) -> None:
        """Disallowed statuses are denied."""
        verdict = entity_evaluator.decide("posts.update", 12, {}, ACTOR)
        assert verdict.reason == ReasonCode.STATUS_RESTRICTION

    def test_unknown_entity_passes(self, entity_evaluator: PolicyEvaluator) -> None:
        """Entities the lookup doesn't know pass."""
        assert entity_evaluator.decide("posts.update", 999, {}, ACTOR).allowed

    def test_no_entity_passes(self, entity_evaluator: PolicyEvaluator) -> None:
        """Calls without an entity pass."""
        assert entity_evaluator.decide("posts.update", None, {}, ACTOR).allowed

    def test_no_lookup_passes(self, evaluator: PolicyEvaluator, store: PolicyStore) -> None:
        """Without an entity lookup the step passes."""
        store.create_version("posts.update", {"entity_rules": {"allowed_post_types": ["post"]}})
        assert evaluator.decide("posts.update", 11, {}, ACTOR).allowed


# =============================================================================
# Approval Workflows
# =============================================================================


class TestApproval:
    """Tests for the approval step."""

    @pytest.fixture(autouse=True)
    def workflow_policy(self, store: PolicyStore) -> None:
        store.create_version(
            "products.update",
            {
                "approval_workflows": [
                    {
                        "name": "Large Price Change",
                        "conditions": [
                            {"type": "field_numeric_greater", "field": "price", "value": 500}
                        ],
                    }
                ]
            },
        )

    def test_approval_required(self, evaluator: PolicyEvaluator) -> None:
        """A firing workflow without approval denies a non-admin."""
        verdict = evaluator.decide("products.update", 42, {"price": 1000}, ACTOR)
        assert not verdict.allowed
        assert verdict.reason == ReasonCode.APPROVAL_REQUIRED
        assert verdict.details == (
            "Approval required for workflow: Large Price Change. Please contact an administrator."
        )

    def test_workflow_not_fired(self, evaluator: PolicyEvaluator) -> None:
        """Requests the workflow doesn't match pass."""
        assert evaluator.decide("products.update", 42, {"price": 100}, ACTOR).allowed

    def test_approval_persists_until_revoked(
        self, evaluator: PolicyEvaluator, approvals: ApprovalWorkflowEngine
    ) -> None:
        """Once approved, matching calls pass until the approval is revoked."""
        approvals.set_approval("products.update", 42, ACTOR.id, True)

        for _ in range(3):
            verdict = evaluator.decide("products.update", 42, {"price": 1000}, ACTOR)
            assert verdict.allowed
            assert verdict.reason == ReasonCode.APPROVED

        approvals.revoke_approval("products.update", 42, ACTOR.id)
        verdict = evaluator.decide("products.update", 42, {"price": 1000}, ACTOR)
        assert verdict.reason == ReasonCode.APPROVAL_REQUIRED

    def test_approval_is_per_entity(
        self, evaluator: PolicyEvaluator, approvals: ApprovalWorkflowEngine
    ) -> None:
        """An approval for one entity doesn't cover another."""
        approvals.set_approval("products.update", 42, ACTOR.id, True)
        verdict = evaluator.decide("products.update", 43, {"price": 1000}, ACTOR)
        assert verdict.reason == ReasonCode.APPROVAL_REQUIRED

    def test_matching_comes_from_approval_engine(
        self, store: PolicyStore, limiter: RateLimiter, db: ToolgateDB, clock: FixedClock
    ) -> None:
        """The evaluator asks the approval engine which workflow fires."""
        calls = []

        class RecordingApprovals(ApprovalWorkflowEngine):
            def matching_workflow(self, workflows, tool, entity_id, fields):
                calls.append((tool, entity_id, dict(fields)))
                return super().matching_workflow(workflows, tool, entity_id, fields)

        evaluator = PolicyEvaluator(store, limiter, RecordingApprovals(db, clock=clock), clock=clock)
        verdict = evaluator.decide("products.update", 42, {"price": 1000}, ACTOR)

        assert verdict.reason == ReasonCode.APPROVAL_REQUIRED
        assert verdict.triggering_rule == "approval_workflows[Large Price Change]"
        assert calls == [("products.update", 42, {"price": 1000})]

    def test_first_firing_workflow_named(self, evaluator: PolicyEvaluator, store: PolicyStore) -> None:
        """With several firing workflows the first one is reported."""
        store.create_version(
            "products.update",
            {
                "approval_workflows": [
                    {"name": "Quiet", "conditions": [{"type": "field_equals", "field": "sku", "value": "x"}]},
                    {"name": "Any Update", "conditions": [{"type": "tool_equals", "value": "products.update"}]},
                    {"name": "Pricey", "conditions": [{"type": "field_numeric_greater", "field": "price", "value": 1}]},
                ]
            },
        )
        verdict = evaluator.decide("products.update", 42, {"price": 1000}, ACTOR)
        assert verdict.details.startswith("Approval required for workflow: Any Update.")

    def test_admin_bypass(self, evaluator: PolicyEvaluator) -> None:
        """Admins skip workflows with reason admin_bypass."""
        verdict = evaluator.decide("products.update", 42, {"price": 1000}, ActorContext(id=ADMIN_ID))
        assert verdict.allowed
        assert verdict.reason == ReasonCode.ADMIN_BYPASS
        assert verdict.policy_version == "0.0.1"


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    """Tests for storage failures and unexpected errors."""

    def test_storage_failure_fails_closed(
        self,
        store: PolicyStore,
        approvals: ApprovalWorkflowEngine,
        clock: FixedClock,
    ) -> None:
        """By default a storage failure denies with unknown_error."""
        evaluator = PolicyEvaluator(store, BrokenLimiter(), approvals, clock=clock)
        store.create_version("posts.create", {"rate_limits": {"per_hour": 5}})

        verdict = evaluator.decide("posts.create", None, {}, ACTOR)
        assert not verdict.allowed
        assert verdict.reason == ReasonCode.UNKNOWN_ERROR
        assert verdict.triggering_rule == "storage"

    def test_storage_failure_fail_open(
        self,
        store: PolicyStore,
        approvals: ApprovalWorkflowEngine,
        clock: FixedClock,
    ) -> None:
        """With fail_open the affected step passes."""
        evaluator = PolicyEvaluator(store, BrokenLimiter(), approvals, clock=clock, fail_open=True)
        store.create_version("posts.create", {"rate_limits": {"per_hour": 5}})

        verdict = evaluator.decide("posts.create", None, {}, ACTOR)
        assert verdict.allowed
        assert verdict.reason == ReasonCode.APPROVED

    def test_fail_open_still_runs_later_checks(
        self,
        store: PolicyStore,
        approvals: ApprovalWorkflowEngine,
        clock: FixedClock,
    ) -> None:
        """fail_open skips only the failing step."""
        evaluator = PolicyEvaluator(store, BrokenLimiter(), approvals, clock=clock, fail_open=True)
        store.create_version(
            "posts.create",
            {
                "rate_limits": {"per_hour": 5},
                "content_restrictions": {"blocked_terms": ["spam"]},
            },
        )
        verdict = evaluator.decide("posts.create", None, {"title": "spam"}, ACTOR)
        assert verdict.reason == ReasonCode.BLOCKED_TERM

    def test_unexpected_error(
        self,
        limiter: RateLimiter,
        approvals: ApprovalWorkflowEngine,
        clock: FixedClock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Unexpected exceptions become unknown_error and are logged."""
        evaluator = PolicyEvaluator(BrokenStore(), limiter, approvals, clock=clock)

        verdict = evaluator.decide("posts.create", None, {}, ACTOR)

        assert not verdict.allowed
        assert verdict.reason == ReasonCode.UNKNOWN_ERROR
        assert verdict.details == "Policy evaluation failed"
        assert "unexpected" not in verdict.details
        assert "Unexpected error while deciding posts.create" in caplog.text


# =============================================================================
# Ordering
# =============================================================================


class TestOrdering:
    """Tests for check order."""

    def test_rate_limit_before_time_window(
        self, evaluator: PolicyEvaluator, store: PolicyStore, clock: FixedClock
    ) -> None:
        """Rate limits are checked before time windows."""
        store.create_version(
            "posts.create",
            {"rate_limits": {"per_hour": 0}, "time_windows": {"allowed_hours": [9]}},
        )
        clock.set(at(20))
        assert evaluator.decide("posts.create", None, {}, ACTOR).reason == ReasonCode.RATE_LIMIT_EXCEEDED

    def test_content_before_approval(self, evaluator: PolicyEvaluator, store: PolicyStore) -> None:
        """Content checks run before approval workflows."""
        store.create_version(
            "posts.create",
            {
                "content_restrictions": {"blocked_terms": ["spam"]},
                "approval_workflows": [
                    {"name": "All", "conditions": [{"type": "tool_equals", "value": "posts.create"}]}
                ],
            },
        )
        verdict = evaluator.decide("posts.create", None, {"title": "spam"}, ActorContext(id=ADMIN_ID))
        assert verdict.reason == ReasonCode.BLOCKED_TERM
