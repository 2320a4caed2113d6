"""
Error taxonomy for audit entries.

Denied decisions are stored with a stable error code and a category so the
audit trail can be grouped and reported on without parsing detail strings.
"""

from pydantic import BaseModel, ConfigDict

from toolgate.schema import PolicyVerdict, ReasonCode


class ErrorCategory(BaseModel):
    """Human-facing description of an error category."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    severity: str


UNKNOWN = ("UNKNOWN_ERROR", "unknown")

# Reason code -> (error code, category)
ERROR_MAP: dict[ReasonCode, tuple[str, str]] = {
    ReasonCode.RATE_LIMIT_EXCEEDED: ("RATE_LIMIT_EXCEEDED", "rate_limit"),
    ReasonCode.TIME_RESTRICTION: ("TIME_RESTRICTION", "policy"),
    ReasonCode.DAY_RESTRICTION: ("DAY_RESTRICTION", "policy"),
    ReasonCode.BLACKOUT_WINDOW: ("BLACKOUT_WINDOW", "policy"),
    ReasonCode.BLOCKED_TERM: ("CONTENT_BLOCKED", "content"),
    ReasonCode.BLOCKED_PATTERN: ("PATTERN_BLOCKED", "content"),
    ReasonCode.POST_TYPE_RESTRICTION: ("POST_TYPE_RESTRICTED", "entity"),
    ReasonCode.STATUS_RESTRICTION: ("STATUS_RESTRICTED", "entity"),
    ReasonCode.APPROVAL_REQUIRED: ("APPROVAL_REQUIRED", "workflow"),
    ReasonCode.NO_POLICY: ("NO_POLICY", "configuration"),
    ReasonCode.INVALID_TOOL: ("INVALID_TOOL", "validation"),
}

CATEGORIES: dict[str, ErrorCategory] = {
    "rate_limit": ErrorCategory(
        name="Rate Limiting",
        description="Requests exceeding configured rate limits",
        severity="medium",
    ),
    "policy": ErrorCategory(
        name="Policy Violations",
        description="Actions not allowed by current policies",
        severity="high",
    ),
    "content": ErrorCategory(
        name="Content Restrictions",
        description="Content violating filtering rules",
        severity="high",
    ),
    "entity": ErrorCategory(
        name="Entity Restrictions",
        description="Actions on restricted entity types or statuses",
        severity="medium",
    ),
    "workflow": ErrorCategory(
        name="Approval Workflows",
        description="Actions requiring approval",
        severity="low",
    ),
    "configuration": ErrorCategory(
        name="Configuration Issues",
        description="Missing or invalid configuration",
        severity="critical",
    ),
    "validation": ErrorCategory(
        name="Validation Errors",
        description="Invalid input or parameters",
        severity="medium",
    ),
    "security": ErrorCategory(
        name="Security Events",
        description="Security-related events and alerts",
        severity="critical",
    ),
    "unknown": ErrorCategory(
        name="Unknown Errors",
        description="Uncategorized errors",
        severity="medium",
    ),
}


def categorize(verdict: PolicyVerdict) -> tuple[str | None, str | None]:
    """
    Error code and category for a verdict.

    Allowed verdicts have neither.
    """
    if verdict.allowed:
        return None, None
    return ERROR_MAP.get(verdict.reason, UNKNOWN)
