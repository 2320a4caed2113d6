"""
Audit module for Toolgate.

Records policy decisions, executed actions and security events in an
append-only, hash-chained table, with sensitive payload fields redacted.
"""

from toolgate.audit.log import REDACTED, SENSITIVE_FIELDS, AuditLog, content_hash, redact_payload
from toolgate.audit.taxonomy import CATEGORIES, ERROR_MAP, categorize

__all__ = [
    "CATEGORIES",
    "ERROR_MAP",
    "REDACTED",
    "SENSITIVE_FIELDS",
    "AuditLog",
    "categorize",
    "content_hash",
    "redact_payload",
]
