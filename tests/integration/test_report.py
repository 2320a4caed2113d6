"""
Integration tests for the Report module.

Tests cover:
- JSON report generation
- Console report generation
- Report content verification
"""

import json
from io import StringIO
from typing import Generator

import pytest
from rich.console import Console

from toolgate.config import Settings
from toolgate.engine import Engine
from toolgate.interfaces import FixedClock
from toolgate.report import (
    audit_entries_dict,
    diff_dict,
    metrics_dict,
    print_audit_entries,
    print_chain,
    print_diff,
    print_metrics,
    print_verdict,
    print_versions,
    to_json,
    verdict_dict,
)
from toolgate.schema import ActorContext, PolicyDiff, PolicyVerdict, ReasonCode

ACTOR = ActorContext(id=7)


@pytest.fixture
def engine(clock: FixedClock) -> Generator[Engine, None, None]:
    """An engine with two versions and a few audited decisions."""
    with Engine(Settings(db_path=":memory:"), clock=clock) as eng:
        eng.create_version("posts.create", {"rate_limits": {"per_hour": 1}})
        eng.create_version(
            "posts.create",
            {"rate_limits": {"per_hour": 1}, "content_restrictions": {"blocked_terms": ["spam"]}},
        )
        eng.authorize("posts.create", None, {"post_title": "Hello", "password": "x"}, ACTOR)
        eng.authorize("posts.create", None, {"post_title": "Again"}, ACTOR)
        yield eng


def render() -> tuple[Console, StringIO]:
    output = StringIO()
    return Console(file=output, width=200), output


class TestJsonReport:
    """Tests for JSON report generation."""

    def test_audit_entries(self, engine: Engine) -> None:
        """Entries serialize with version metadata and redacted payloads."""
        report = json.loads(to_json(audit_entries_dict(engine.query(), engine.audit.count())))

        assert report["report_version"] == "1.0"
        assert "generated_at" in report
        assert report["total"] == 2
        first = report["entries"][1]
        assert first["payload"]["password"] == "[REDACTED]"
        assert first["policy_version"] == "0.0.2"
        assert len(first["entry_hash"]) == 64

    def test_verdict(self) -> None:
        """Verdicts serialize reason values."""
        verdict = PolicyVerdict.deny(ReasonCode.BLOCKED_TERM, "Blocked term: spam")
        data = verdict_dict("posts.create", verdict, audit_id=3)
        assert data["reason"] == "blocked_term"
        assert data["allowed"] is False
        assert data["audit_id"] == 3

    def test_metrics_include_categories(self, engine: Engine) -> None:
        """Metrics carry taxonomy details for each category seen."""
        data = metrics_dict(engine.metrics())
        assert data["total_events"] == 2
        assert data["categories"]["rate_limit"]["severity"] == "medium"
        assert "none" not in data["categories"]

    def test_diff(self, engine: Engine) -> None:
        """Diffs list changed sections."""
        diff = engine.store.diff_versions("posts.create", "0.0.1", "0.0.2")
        data = diff_dict(diff, "posts.create", "0.0.1", "0.0.2")
        assert data["diff"]["added"] == {"content_restrictions": {"blocked_terms": ["spam"]}}
        assert data["diff"]["modified"] == {}


class TestConsoleReport:
    """Tests for console report generation."""

    def test_verdict_panel(self) -> None:
        """Denied verdicts show the reason and rule."""
        console, output = render()
        verdict = PolicyVerdict.deny(
            ReasonCode.RATE_LIMIT_EXCEEDED, "Hourly limit exceeded: 1/1", rule="rate_limits.per_hour"
        )
        print_verdict(console, "posts.create", verdict, dry_run=True)

        text = output.getvalue()
        assert "DENIED" in text
        assert "DRY RUN" in text
        assert "rate_limits.per_hour" in text

    def test_admin_bypass_label(self) -> None:
        """Admin bypass is labelled as such."""
        console, output = render()
        print_verdict(console, "products.update", PolicyVerdict.allow(ReasonCode.ADMIN_BYPASS, "Admin"))
        assert "admin bypass" in output.getvalue()

    def test_versions_table(self, engine: Engine) -> None:
        """Version history lists every version."""
        console, output = render()
        print_versions(console, "posts.create", engine.store.get_versions("posts.create"))
        text = output.getvalue()
        assert "0.0.1" in text
        assert "0.0.2" in text

    def test_empty_diff(self) -> None:
        """Identical documents say so."""
        console, output = render()
        print_diff(console, PolicyDiff(), "v1", "v2")
        assert "No differences" in output.getvalue()

    def test_audit_table_verbose(self, engine: Engine) -> None:
        """Verbose listings include payloads."""
        console, output = render()
        print_audit_entries(console, engine.query(), verbose=True)
        text = output.getvalue()
        assert "posts.create" in text
        assert "rate_limit_exceeded" in text
        assert "[REDACTED]" in text

    def test_metrics_and_chain(self, engine: Engine) -> None:
        """Summary and chain status render."""
        console, output = render()
        print_metrics(console, engine.metrics())
        print_chain(console, engine.audit.verify_chain())
        text = output.getvalue()
        assert "Total Events" in text
        assert "Audit chain intact (2 entries)" in text
