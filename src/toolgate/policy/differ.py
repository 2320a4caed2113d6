"""
Shallow differences between policy documents.

Only top-level sections are compared. A section present in both documents
whose whole value differs is reported once under "modified" with its old and
new values, which is the granularity reviewers read policy changes at.
"""

from collections.abc import Mapping
from typing import Any

from toolgate.schema import PolicyDiff, PolicyDocument


def _as_mapping(document: PolicyDocument | Mapping[str, Any] | None) -> dict[str, Any]:
    if document is None:
        return {}
    if isinstance(document, PolicyDocument):
        return document.to_document()
    return dict(document)


def diff_documents(
    old: PolicyDocument | Mapping[str, Any] | None,
    new: PolicyDocument | Mapping[str, Any] | None,
) -> PolicyDiff:
    """
    Compare two policy documents key by key.

    Args:
        old: The baseline document
        new: The document being compared against it

    Returns:
        PolicyDiff with added, removed and modified sections
    """
    before = _as_mapping(old)
    after = _as_mapping(new)

    added: dict[str, Any] = {}
    removed: dict[str, Any] = {}
    modified: dict[str, dict[str, Any]] = {}

    keys = list(before) + [key for key in after if key not in before]
    for key in keys:
        if key not in after:
            removed[key] = before[key]
        elif key not in before:
            added[key] = after[key]
        elif before[key] != after[key]:
            modified[key] = {"old": before[key], "new": after[key]}

    return PolicyDiff(added=added, removed=removed, modified=modified)


class PolicyDiffer:
    """Object form of diff_documents, for callers that inject collaborators."""

    def diff(
        self,
        old: PolicyDocument | Mapping[str, Any] | None,
        new: PolicyDocument | Mapping[str, Any] | None,
    ) -> PolicyDiff:
        return diff_documents(old, new)
