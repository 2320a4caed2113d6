"""
Pytest configuration and fixtures for Toolgate tests.

This module provides shared fixtures used across unit and integration
tests. Every fixture uses an in-memory SQLite database and a FixedClock so
decisions are reproducible.
"""

import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Generator

import pytest

from toolgate.audit import AuditLog
from toolgate.interfaces import FixedClock, StaticCapabilityProvider
from toolgate.policy import ApprovalWorkflowEngine, PolicyEvaluator, PolicyStore
from toolgate.ratelimit import RateLimiter
from toolgate.store import ToolgateDB

ADMIN_ID = 1

# Monday, inside office hours
MONDAY_10AM = datetime(2024, 1, 8, 10, 0, tzinfo=UTC)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FixedClock:
    """A clock fixed at Monday 2024-01-08 10:00 UTC."""
    return FixedClock(MONDAY_10AM)


@pytest.fixture
def db() -> Generator[ToolgateDB, None, None]:
    """An in-memory database."""
    database = ToolgateDB(":memory:")
    yield database
    database.close()


@pytest.fixture
def store(db: ToolgateDB) -> PolicyStore:
    """A policy store over the in-memory database."""
    return PolicyStore(db)


@pytest.fixture
def limiter(db: ToolgateDB, clock: FixedClock) -> RateLimiter:
    """A rate limiter driven by the fixed clock."""
    return RateLimiter(db, clock)


@pytest.fixture
def approvals(db: ToolgateDB, clock: FixedClock) -> ApprovalWorkflowEngine:
    """An approval engine where actor 1 is an admin."""
    return ApprovalWorkflowEngine(db, StaticCapabilityProvider([ADMIN_ID]), clock)


@pytest.fixture
def evaluator(
    store: PolicyStore,
    limiter: RateLimiter,
    approvals: ApprovalWorkflowEngine,
    clock: FixedClock,
) -> PolicyEvaluator:
    """An evaluator wired to the shared fixtures."""
    return PolicyEvaluator(store, limiter, approvals, clock=clock)


@pytest.fixture
def audit(db: ToolgateDB, clock: FixedClock) -> AuditLog:
    """An audit log over the in-memory database."""
    return AuditLog(db, clock=clock)


@pytest.fixture
def sample_policy_yaml() -> str:
    """Return a policy document YAML for testing."""
    return """
rate_limits:
  per_hour: 20
  per_day: 100
time_windows:
  allowed_hours: [9, 10, 11, 12, 13, 14, 15, 16, 17]
  allowed_days: [1, 2, 3, 4, 5]
content_restrictions:
  blocked_terms: [spam]
  severity_levels:
    spam: high
"""
