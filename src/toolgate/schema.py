"""
Schema definitions for Toolgate.

This module defines the Pydantic models used throughout Toolgate:
- PolicyDocument and its sections: what a tool is allowed to do
- PolicyVersion/VersionResult: versioned history of policy documents
- PolicyVerdict/ReasonCode: the outcome of one authorization decision
- ActorContext: who is asking, from where
- AuditEntryInput/AuditEntry/AuditFilters/AuditMetrics: the audit trail

Design Decisions:
    - Policy sections reject unknown keys, so a document is validated once
      when it is loaded rather than trusted when it is used
    - Every section is optional; a missing section means "no restriction"
    - Models are immutable (frozen=True)
    - Regex patterns are compiled at validation time
"""

import re
from datetime import UTC, datetime
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class ReasonCode(str, Enum):
    """Reason attached to every PolicyVerdict."""

    INVALID_TOOL = "invalid_tool"
    NO_POLICY = "no_policy"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    TIME_RESTRICTION = "time_restriction"
    DAY_RESTRICTION = "day_restriction"
    BLACKOUT_WINDOW = "blackout_window"
    BLOCKED_TERM = "blocked_term"
    BLOCKED_PATTERN = "blocked_pattern"
    POST_TYPE_RESTRICTION = "post_type_restriction"
    STATUS_RESTRICTION = "status_restriction"
    APPROVAL_REQUIRED = "approval_required"
    ADMIN_BYPASS = "admin_bypass"
    APPROVED = "approved"
    UNKNOWN_ERROR = "unknown_error"


class ConditionType(str, Enum):
    """Operators available to approval workflow conditions."""

    FIELD_EQUALS = "field_equals"
    FIELD_CONTAINS = "field_contains"
    FIELD_LENGTH_GREATER = "field_length_greater"
    FIELD_NUMERIC_GREATER = "field_numeric_greater"
    TOOL_EQUALS = "tool_equals"


class RateScope(str, Enum):
    """Independent rate-limit counters kept for each tool."""

    PER_HOUR = "per_hour"
    PER_DAY = "per_day"
    PER_IP_HOUR = "per_ip_hour"


# =============================================================================
# Pattern helpers
# =============================================================================

_DELIMITED_PATTERN = re.compile(r"^/(?P<body>.*)/(?P<flags>[imsxu]*)$", re.DOTALL)
_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "u": 0,
}


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """
    Compile a blocked-content pattern.

    Accepts a plain Python regex or the delimited form "/body/flags"
    (e.g. "/\\b(free\\s+money)\\b/i").

    Raises:
        re.error: If the pattern is not a valid regular expression
    """
    match = _DELIMITED_PATTERN.match(pattern)
    if match is None:
        return re.compile(pattern)

    flags = 0
    for flag in match.group("flags"):
        flags |= _FLAG_MAP[flag]
    return re.compile(match.group("body"), flags)


def _parse_clock(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


# =============================================================================
# Policy Document Sections
# =============================================================================

Hour = Annotated[int, Field(ge=0, le=23)]
IsoWeekday = Annotated[int, Field(ge=1, le=7)]
ClockTime = Annotated[str, Field(pattern=r"^(?:[01]?\d|2[0-3]):[0-5]\d$|^24:00$")]


class RateLimits(BaseModel):
    """
    Per-tool rate limits. Each configured scope is an independent counter.

    Attributes:
        per_hour: Calls per actor per clock hour
        per_day: Calls per actor per UTC day
        per_ip_hour: Calls per client IP per clock hour
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    per_hour: int | None = Field(default=None, ge=0, description="Calls per actor per hour")
    per_day: int | None = Field(default=None, ge=0, description="Calls per actor per day")
    per_ip_hour: int | None = Field(default=None, ge=0, description="Calls per IP per hour")


class BlackoutWindow(BaseModel):
    """
    A day-and-time range during which the tool is always denied.

    Windows whose end is earlier than their start cross midnight
    (e.g. 22:00-06:00).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    start: ClockTime = Field(..., description="Start of the window, HH:MM")
    end: ClockTime = Field(..., description="End of the window (exclusive), HH:MM")
    days: list[IsoWeekday] = Field(
        default_factory=lambda: [1, 2, 3, 4, 5, 6, 7],
        description="ISO weekdays the window applies to (1 = Monday)",
    )

    def contains(self, minute_of_day: int, weekday: int) -> bool:
        """Whether the given minute of the given ISO weekday falls in the window."""
        if weekday not in self.days:
            return False

        start = _parse_clock(self.start)
        end = _parse_clock(self.end)
        if start <= end:
            return start <= minute_of_day < end
        return minute_of_day >= start or minute_of_day < end


class TimeWindows(BaseModel):
    """
    Time-of-day and day-of-week restrictions.

    Attributes:
        allowed_hours: Hours (0-23) during which the tool may run; empty = any
        allowed_days: ISO weekdays (1-7) on which the tool may run; empty = any
        blackout_windows: Ranges that always deny, checked first
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed_hours: list[Hour] = Field(default_factory=list)
    allowed_days: list[IsoWeekday] = Field(default_factory=list)
    blackout_windows: list[BlackoutWindow] = Field(default_factory=list)


class ContentRestrictions(BaseModel):
    """
    Content filters applied to every string-valued request field.

    Attributes:
        blocked_terms: Case-insensitive substrings that deny the request
        blocked_patterns: Regular expressions that deny the request
        severity_levels: Optional severity label per blocked term
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    blocked_terms: list[Annotated[str, Field(min_length=1)]] = Field(default_factory=list)
    blocked_patterns: list[Annotated[str, Field(min_length=1)]] = Field(default_factory=list)
    severity_levels: dict[str, str] = Field(default_factory=dict)

    @field_validator("blocked_patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        """Reject patterns that do not compile."""
        for pattern in v:
            try:
                compile_pattern(pattern)
            except re.error as e:
                msg = f"Invalid blocked pattern {pattern!r}: {e}"
                raise ValueError(msg) from e
        return v

    def severity_for(self, term: str) -> str:
        """Severity label for a blocked term (defaults to medium)."""
        return self.severity_levels.get(term, "medium")


class EntityRules(BaseModel):
    """Restrictions on the entity a tool call targets."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed_post_types: list[str] | None = Field(default=None)
    allowed_statuses: list[str] | None = Field(default=None)


class WorkflowCondition(BaseModel):
    """
    One trigger condition of an approval workflow.

    Attributes:
        type: Which operator to apply
        field: Name of the request field the operator reads (unused by tool_equals)
        operator: Free-form operator label kept for documents that carry one
        value: Operand compared against the field (or the tool name)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ConditionType
    field: str = ""
    operator: str | None = None
    value: Any = None


class ApprovalWorkflow(BaseModel):
    """A named rule set that requires a recorded human approval when it fires."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default="unnamed", min_length=1)
    conditions: list[WorkflowCondition] = Field(default_factory=list)


class PolicyDocument(BaseModel):
    """
    The complete policy for one tool.

    Every section is optional; absence means no restriction of that kind.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rate_limits: RateLimits | None = None
    time_windows: TimeWindows | None = None
    content_restrictions: ContentRestrictions | None = None
    entity_rules: EntityRules | None = None
    approval_workflows: list[ApprovalWorkflow] | None = None

    def to_document(self) -> dict[str, Any]:
        """Plain JSON-compatible dict containing only the sections that were set."""
        return self.model_dump(mode="json", exclude_unset=True, exclude_none=True)


# =============================================================================
# Versioning Models
# =============================================================================


class PolicyVersion(BaseModel):
    """
    One immutable, historical snapshot of a tool's policy document.

    Exactly one version per tool is active at any time.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int = Field(..., description="Database row id")
    tool: str = Field(..., description="Canonical tool name")
    version: str = Field(..., description="Semantic version, e.g. 0.0.3")
    document: PolicyDocument
    created_at: datetime
    created_by: int = Field(default=0, description="User id of the author")
    active: bool = False


class VersionResult(BaseModel):
    """
    Result of create_version/rollback.

    Expected failures (invalid document, unknown version) are reported through
    ok=False; storage failures raise instead.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    ok: bool
    value: PolicyVersion | None = None
    error: str | None = None

    @classmethod
    def succeeded(cls, value: PolicyVersion) -> "VersionResult":
        """Create a successful result."""
        return cls(ok=True, value=value)

    @classmethod
    def failed(cls, error: str) -> "VersionResult":
        """Create a failed result."""
        return cls(ok=False, error=error)


class PolicyDiff(BaseModel):
    """Shallow, top-level difference between two policy documents."""

    model_config = ConfigDict(frozen=True)

    added: dict[str, Any] = Field(default_factory=dict)
    removed: dict[str, Any] = Field(default_factory=dict)
    modified: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True when both documents were identical."""
        return not (self.added or self.removed or self.modified)


# =============================================================================
# Runtime Models
# =============================================================================


class ActorContext(BaseModel):
    """
    The caller on whose behalf a tool invocation is being authorized.

    Attributes:
        id: User id (0 for anonymous)
        ip: Client IP address, used for per-IP rate limits
        user_agent: Client user agent, stored in the audit trail
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int = Field(default=0, ge=0)
    ip: str | None = None
    user_agent: str | None = None


class RateLimitResult(BaseModel):
    """Outcome of one check-and-increment against a rate counter."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    exceeded: bool
    current: int
    limit: int


class ApprovalRecord(BaseModel):
    """Whether an actor has been approved to run a tool against an entity."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tool: str
    entity_id: int | None = None
    actor_id: int
    approved: bool
    updated_at: datetime


class PolicyVerdict(BaseModel):
    """
    Result of evaluating a tool call against its policy.

    Attributes:
        allowed: Whether the action is permitted
        reason: Machine-readable reason code
        details: Human-readable explanation of the decision
        triggering_rule: Which policy rule caused this decision
        policy_version: Active policy version the decision was made under
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed: bool = Field(..., description="Whether the action is permitted")
    reason: ReasonCode = Field(..., description="Reason code")
    details: str = Field(default="", description="Human-readable explanation")
    triggering_rule: str | None = Field(default=None, description="Rule that decided")
    policy_version: str | None = Field(default=None, description="Policy version used")

    @classmethod
    def allow(
        cls,
        reason: ReasonCode,
        details: str,
        rule: str | None = None,
    ) -> "PolicyVerdict":
        """Create an ALLOW verdict."""
        return cls(allowed=True, reason=reason, details=details, triggering_rule=rule)

    @classmethod
    def deny(
        cls,
        reason: ReasonCode,
        details: str,
        rule: str | None = None,
    ) -> "PolicyVerdict":
        """Create a DENY verdict."""
        return cls(allowed=False, reason=reason, details=details, triggering_rule=rule)

    def with_version(self, version: str | None) -> "PolicyVerdict":
        """Copy of this verdict stamped with a policy version."""
        return self.model_copy(update={"policy_version": version})


# =============================================================================
# Audit Models
# =============================================================================


class AuditEntryInput(BaseModel):
    """
    Data supplied by the caller for one audit entry.

    The payload is redacted and the entry hash-chained before persistence.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    action: str = Field(..., min_length=1, description="Tool or event name")
    actor_id: int = Field(default=0, ge=0)
    entity_type: str | None = None
    entity_id: int | None = None
    mode: str = Field(default="suggest")
    payload: dict[str, Any] = Field(default_factory=dict)
    status: str = Field(..., min_length=1)
    before_hash: str | None = None
    after_hash: str | None = None
    policy_version: str | None = None
    policy_verdict: str | None = None
    policy_reason: str | None = None
    policy_details: str | None = None
    error_code: str | None = None
    error_category: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class AuditEntry(AuditEntryInput):
    """A persisted, immutable audit entry."""

    id: int
    created_at: datetime
    entry_hash: str
    previous_hash: str


class AuditFilters(BaseModel):
    """Combinable filters for audit queries. Unset filters match everything."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    action: str | None = None
    actor_id: int | None = None
    entity_type: str | None = None
    entity_id: int | None = None
    status: str | None = None
    error_category: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


class AuditMetrics(BaseModel):
    """Aggregate counts over the audit trail."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_events: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)
    by_date: dict[str, int] = Field(default_factory=dict)
    security_events: int = 0
    policy_denials: int = 0


class ChainVerification(BaseModel):
    """Result of recomputing the audit hash chain."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ok: bool
    checked: int = 0
    broken_at: int | None = Field(default=None, description="First entry id that fails")
    reason: str | None = None


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_policy_document(path: Path | str) -> PolicyDocument:
    """
    Load a policy document from a YAML (or JSON) file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the document doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return PolicyDocument.model_validate(data or {})


def load_policy_document_from_string(content: str) -> PolicyDocument:
    """Load a policy document from a YAML string."""
    data = yaml.safe_load(content)
    return PolicyDocument.model_validate(data or {})


def load_policy_bundle(path: Path | str) -> dict[str, PolicyDocument]:
    """
    Load a mapping of tool name -> policy document from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the top level is not a mapping
        ValidationError: If any document doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        msg = f"Policy bundle must map tool names to documents: {path}"
        raise ValueError(msg)

    return {
        str(tool): PolicyDocument.model_validate(document or {})
        for tool, document in data.items()
    }
