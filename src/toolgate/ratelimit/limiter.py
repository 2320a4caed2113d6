"""
Fixed-window rate limiter backed by the Toolgate database.

Usage:
    limiter = RateLimiter(db)
    result = limiter.check_and_increment("posts.create", RateScope.PER_HOUR, "42", limit=20)
    if result.exceeded:
        ...
"""

import logging

from toolgate.interfaces import Clock, SystemClock
from toolgate.schema import RateLimitResult, RateScope
from toolgate.store.db import ToolgateDB

logger = logging.getLogger(__name__)

# Window length in seconds for each scope
SCOPE_WINDOWS: dict[RateScope, int] = {
    RateScope.PER_HOUR: 3600,
    RateScope.PER_DAY: 86400,
    RateScope.PER_IP_HOUR: 3600,
}


def rate_key(tool: str, scope: RateScope | str, identity: str, bucket: int) -> str:
    """Counter key: rate_limit:{tool}:{scope}:{identity}:{bucket}."""
    return f"rate_limit:{tool}:{RateScope(scope).value}:{identity}:{bucket}"


class RateLimiter:
    """
    Windowed call counters with atomic check-and-increment.

    Attributes:
        db: Database holding the rate_counters table
        clock: Source of "now" for bucket computation
    """

    def __init__(self, db: ToolgateDB, clock: Clock | None = None) -> None:
        self.db = db
        self.clock = clock or SystemClock()

    def _bucket(self, window_seconds: int) -> tuple[int, int]:
        """Current bucket index and its start time in epoch seconds."""
        epoch = int(self.clock.now().timestamp())
        bucket = epoch // window_seconds
        return bucket, bucket * window_seconds

    @staticmethod
    def _window(scope: RateScope, window_seconds: int | None) -> int:
        """Window length for a call; an explicit window must be positive."""
        if window_seconds is None:
            return SCOPE_WINDOWS[scope]
        if window_seconds <= 0:
            msg = f"window_seconds must be positive, got {window_seconds}"
            raise ValueError(msg)
        return window_seconds

    def check_and_increment(
        self,
        tool: str,
        scope: RateScope | str,
        identity: str,
        limit: int,
        window_seconds: int | None = None,
    ) -> RateLimitResult:
        """
        Count one call against a limit.

        If the counter is already at the limit, nothing is incremented and the
        result is exceeded. A limit of 0 always reports exceeded.

        Args:
            tool: Canonical tool name
            scope: Which counter (per_hour, per_day, per_ip_hour)
            identity: Actor id or client IP
            limit: Maximum calls per window
            window_seconds: Window length; defaults to the scope's window

        Returns:
            RateLimitResult with the count after this call

        Raises:
            ValueError: If window_seconds is given and not positive
        """
        scope = RateScope(scope)
        window = self._window(scope, window_seconds)
        bucket, window_start = self._bucket(window)
        key = rate_key(tool, scope, identity, bucket)

        incremented, current = self.db.increment_counter(
            key,
            limit=limit,
            window_start=window_start,
            expires_at=window_start + window,
        )
        if not incremented:
            logger.debug("Rate limit reached for %s (%d/%d)", key, current, limit)
        return RateLimitResult(exceeded=not incremented, current=current, limit=limit)

    def peek(
        self,
        tool: str,
        scope: RateScope | str,
        identity: str,
        limit: int,
        window_seconds: int | None = None,
    ) -> RateLimitResult:
        """Report whether the next call would exceed the limit, without counting it."""
        scope = RateScope(scope)
        window = self._window(scope, window_seconds)
        bucket, _ = self._bucket(window)
        current = self.db.get_counter(rate_key(tool, scope, identity, bucket))
        return RateLimitResult(exceeded=current >= limit, current=current, limit=limit)

    def purge_expired(self) -> int:
        """Delete counters whose window has ended. Returns the number removed."""
        removed = self.db.purge_expired_counters(int(self.clock.now().timestamp()))
        if removed:
            logger.debug("Purged %d expired rate counters", removed)
        return removed
