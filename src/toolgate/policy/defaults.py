"""
Built-in policy documents.

These are the policies Toolgate ships with for the common content tools.
PolicyStore.load_defaults() installs them in memory; `toolgate policy
bootstrap` stores them as versions.
"""

from typing import Any

from toolgate.schema import PolicyDocument

WEEKDAYS = [1, 2, 3, 4, 5]
OFFICE_HOURS = list(range(9, 18))

DEFAULT_POLICY_DATA: dict[str, dict[str, Any]] = {
    "products.create": {
        "rate_limits": {"per_hour": 50, "per_day": 200, "per_ip_hour": 100},
        "approval_workflows": [
            {
                "name": "High Price Creation",
                "conditions": [
                    {"type": "field_length_greater", "field": "title", "value": 120},
                ],
            },
        ],
    },
    "products.update": {
        "rate_limits": {"per_hour": 100, "per_day": 500, "per_ip_hour": 200},
        "approval_workflows": [
            {
                "name": "Large Price Change",
                "conditions": [
                    {"type": "field_numeric_greater", "field": "price", "value": 500},
                ],
            },
        ],
    },
    "products.bulkupdate": {
        "rate_limits": {"per_hour": 200, "per_day": 1000, "per_ip_hour": 300},
        "approval_workflows": [
            {
                "name": "Bulk Sensitive Change",
                "conditions": [
                    {"type": "tool_equals", "value": "products.bulkupdate"},
                ],
            },
        ],
    },
    "posts.create": {
        "rate_limits": {"per_hour": 20, "per_day": 100, "per_ip_hour": 50},
        "time_windows": {
            "allowed_hours": OFFICE_HOURS,
            "allowed_days": WEEKDAYS,
            "blackout_windows": [
                {"start": "12:00", "end": "13:00", "days": WEEKDAYS},
            ],
        },
        "content_restrictions": {
            "blocked_terms": ["spam", "scam", "phishing"],
            "blocked_patterns": [r"/\b(viagra|cialis)\b/i", r"/\b(free\s+money)\b/i"],
            "severity_levels": {"spam": "high", "scam": "critical", "phishing": "critical"},
        },
        "entity_rules": {
            "allowed_post_types": ["post", "page"],
            "allowed_statuses": ["draft", "pending"],
        },
        "approval_workflows": [
            {
                "name": "Long Content Approval",
                "conditions": [
                    {"type": "field_length_greater", "field": "post_content", "value": 1000},
                ],
            },
        ],
    },
    "posts.update": {
        "rate_limits": {"per_hour": 30, "per_day": 150, "per_ip_hour": 75},
        "time_windows": {
            "allowed_hours": OFFICE_HOURS,
            "allowed_days": WEEKDAYS,
        },
        "content_restrictions": {
            "blocked_terms": ["spam", "scam"],
            "blocked_patterns": [r"/\b(viagra|cialis)\b/i"],
        },
        "entity_rules": {
            "allowed_post_types": ["post", "page"],
            "allowed_statuses": ["draft", "pending", "publish"],
        },
    },
}


def default_policies() -> dict[str, PolicyDocument]:
    """Validated copies of the built-in policies, keyed by tool name."""
    return {
        tool: PolicyDocument.model_validate(data)
        for tool, data in DEFAULT_POLICY_DATA.items()
    }
