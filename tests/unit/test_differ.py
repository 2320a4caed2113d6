"""
Unit tests for the policy differ.

Tests cover:
- Identical documents
- Added, removed and modified sections
- Mixed input types
"""

from toolgate.policy import PolicyDiffer, diff_documents
from toolgate.schema import PolicyDocument


class TestDiffDocuments:
    """Tests for diff_documents."""

    def test_identical_documents(self) -> None:
        """Identical documents give three empty maps."""
        doc = {"rate_limits": {"per_hour": 10}, "time_windows": {"allowed_hours": [9, 10]}}
        diff = diff_documents(doc, doc)
        assert diff.added == {}
        assert diff.removed == {}
        assert diff.modified == {}
        assert diff.is_empty

    def test_added_and_modified(self) -> None:
        """New sections are added; changed sections carry old and new values."""
        diff = diff_documents(
            {"rate_limits": {"per_hour": 10}},
            {"rate_limits": {"per_hour": 20}, "time_windows": {"allowed_hours": [9]}},
        )
        assert diff.added == {"time_windows": {"allowed_hours": [9]}}
        assert diff.modified == {
            "rate_limits": {"old": {"per_hour": 10}, "new": {"per_hour": 20}}
        }
        assert diff.removed == {}

    def test_removed(self) -> None:
        """Sections only in the old document are removed."""
        diff = diff_documents({"entity_rules": {"allowed_statuses": ["draft"]}}, {})
        assert diff.removed == {"entity_rules": {"allowed_statuses": ["draft"]}}
        assert not diff.is_empty

    def test_shallow_comparison(self) -> None:
        """A nested change is reported as the whole section."""
        diff = diff_documents(
            {"rate_limits": {"per_hour": 10, "per_day": 50}},
            {"rate_limits": {"per_hour": 10, "per_day": 60}},
        )
        assert diff.modified["rate_limits"]["old"] == {"per_hour": 10, "per_day": 50}
        assert diff.modified["rate_limits"]["new"] == {"per_hour": 10, "per_day": 60}

    def test_models_and_none(self) -> None:
        """PolicyDocument and None are accepted."""
        new = PolicyDocument.model_validate({"rate_limits": {"per_hour": 5}})
        diff = diff_documents(None, new)
        assert diff.added == {"rate_limits": {"per_hour": 5}}


class TestPolicyDiffer:
    """Tests for the PolicyDiffer wrapper."""

    def test_diff(self) -> None:
        """PolicyDiffer.diff delegates to diff_documents."""
        differ = PolicyDiffer()
        assert differ.diff({"a": 1}, {"a": 2}).modified == {"a": {"old": 1, "new": 2}}
