"""
Rate limiting for Toolgate.

Counters are fixed windows keyed by (tool, scope, identity, bucket), where
bucket = floor(now / window_seconds). The check and the increment happen in
one conditional UPDATE, so callers racing at the limit cannot both pass.
"""

from toolgate.ratelimit.limiter import SCOPE_WINDOWS, RateLimiter, rate_key

__all__ = [
    "SCOPE_WINDOWS",
    "RateLimiter",
    "rate_key",
]
