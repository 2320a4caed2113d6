"""
Versioned policy store.

PolicyStore owns the mapping tool -> active PolicyDocument. Every change goes
through one of three doors:

    create_version: append a new version and make it active
    rollback: reactivate a historical version (later versions are kept)
    update_active: replace the in-memory document without recording a version

Active documents are cached in memory and swapped as whole, frozen objects
under a lock, so an evaluator never observes a half-updated policy. Use
reload() or invalidate() when another process may have changed the database.
"""

import logging
import threading
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from toolgate.errors import PolicyValidationError, PolicyVersionNotFoundError
from toolgate.policy.defaults import default_policies
from toolgate.policy.differ import diff_documents
from toolgate.policy.sanitize import sanitize_tool_name
from toolgate.schema import PolicyDiff, PolicyDocument, PolicyVersion, VersionResult, utc_now
from toolgate.store.db import ToolgateDB

logger = logging.getLogger(__name__)

INITIAL_VERSION = "0.0.0"


def next_version(latest: str | None) -> str:
    """
    Increment the patch component of a version string.

    Examples:
        None -> "0.0.1"
        "1.0.0" -> "1.0.1"
        "2.3" -> "2.3.1"
    """
    parts = (latest or INITIAL_VERSION).split(".")
    parts += ["0"] * (3 - len(parts))
    try:
        patch = int(parts[2])
    except ValueError:
        patch = 0
    parts[2] = str(patch + 1)
    return ".".join(parts)


class PolicyStore:
    """
    Versioned, cached access to policy documents.

    Usage:
        store = PolicyStore(db)
        result = store.create_version("posts.create", {"rate_limits": {"per_hour": 20}})
        if result.ok:
            print(result.value.version)
        document = store.get_active("posts.create")

    Attributes:
        db: Database holding the policy_versions table
    """

    def __init__(self, db: ToolgateDB) -> None:
        self.db = db
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[PolicyDocument, str]] = {}
        self._overrides: dict[str, PolicyDocument] = {}

    # =========================================================================
    # Reads
    # =========================================================================

    def resolve(self, tool: str) -> tuple[PolicyDocument, str | None] | None:
        """
        Active document for a tool together with its version.

        The version is None for in-memory documents installed through
        update_active.

        Raises:
            StorageReadError: If the database can't be read
        """
        tool = sanitize_tool_name(tool)
        if not tool:
            return None

        with self._lock:
            override = self._overrides.get(tool)
            if override is not None:
                return override, None
            cached = self._cache.get(tool)
            if cached is not None:
                return cached

        with self.db.transaction():
            stored = self.db.get_active_policy_version(tool)
            if stored is None:
                return None
            with self._lock:
                override = self._overrides.get(tool)
                if override is not None:
                    return override, None
                return self._cache.setdefault(tool, (stored.document, stored.version))

    def get_active(self, tool: str) -> PolicyDocument | None:
        """The document decisions for this tool are made against."""
        entry = self.resolve(tool)
        return entry[0] if entry else None

    def get_active_version(self, tool: str) -> str | None:
        """Version string of the active document (None if unversioned or missing)."""
        entry = self.resolve(tool)
        return entry[1] if entry else None

    def get_versions(self, tool: str) -> list[PolicyVersion]:
        """Every stored version of a tool's policy, newest first."""
        return self.db.list_policy_versions(sanitize_tool_name(tool))

    def get_version(self, tool: str, version: str) -> PolicyVersion | None:
        """One stored version, or None."""
        return self.db.get_policy_version(sanitize_tool_name(tool), version)

    def list_tools(self) -> list[str]:
        """Tools with a stored version or an in-memory document."""
        with self._lock:
            in_memory = set(self._overrides)
        return sorted(set(self.db.list_policy_tools()) | in_memory)

    def diff_versions(self, tool: str, old_version: str, new_version: str) -> PolicyDiff:
        """
        Diff two stored versions of a tool's policy.

        Raises:
            PolicyVersionNotFoundError: If either version doesn't exist
        """
        canonical = sanitize_tool_name(tool)
        documents = []
        for version in (old_version, new_version):
            stored = self.db.get_policy_version(canonical, version)
            if stored is None:
                raise PolicyVersionNotFoundError(tool=canonical, version=version)
            documents.append(stored.document)
        return diff_documents(documents[0], documents[1])

    # =========================================================================
    # Writes
    # =========================================================================

    def create_version(
        self,
        tool: str,
        document: PolicyDocument | Mapping[str, Any],
        author_id: int = 0,
    ) -> VersionResult:
        """
        Record a new version of a tool's policy and make it active.

        The version number is the latest version's patch component plus one
        (the first version is 0.0.1).

        Returns:
            VersionResult; ok=False for an invalid tool name or document

        Raises:
            StorageWriteError: If the version can't be persisted
        """
        canonical = sanitize_tool_name(tool)
        if not canonical:
            return VersionResult.failed(f"Invalid tool name: {tool!r}")

        if not isinstance(document, PolicyDocument):
            try:
                document = PolicyDocument.model_validate(dict(document))
            except ValidationError as e:
                logger.warning("Rejected policy document for %s: %s", canonical, e)
                return VersionResult.failed(f"Invalid policy document: {e}")

        with self.db.transaction():
            version = next_version(self.db.latest_policy_version(canonical))
            stored = self.db.insert_policy_version(
                canonical,
                version,
                document,
                created_by=author_id,
                created_at=utc_now(),
            )
            self._activate(canonical, stored)

        logger.info("Created policy version %s for %s", stored.version, canonical)
        return VersionResult.succeeded(stored)

    def rollback(self, tool: str, version: str) -> VersionResult:
        """
        Reactivate a historical version. Versions created after it are kept.

        Returns:
            VersionResult; ok=False if the version doesn't exist

        Raises:
            StorageWriteError: If the swap can't be persisted
        """
        canonical = sanitize_tool_name(tool)
        if not canonical:
            return VersionResult.failed(f"Invalid tool name: {tool!r}")

        with self.db.transaction():
            stored = self.db.activate_policy_version(canonical, version)
            if stored is None:
                return VersionResult.failed(f"Policy version {version} not found for {canonical}")
            self._activate(canonical, stored)

        logger.info("Rolled back %s to policy version %s", canonical, version)
        return VersionResult.succeeded(stored)

    def update_active(self, tool: str, document: PolicyDocument | Mapping[str, Any]) -> None:
        """
        Replace the in-memory active document without recording a version.

        The override wins over stored versions until the next create_version
        or rollback for the tool, or clear_override().

        Raises:
            PolicyValidationError: If a mapping doesn't match the policy schema
        """
        canonical = sanitize_tool_name(tool)
        if not canonical:
            return
        if not isinstance(document, PolicyDocument):
            try:
                document = PolicyDocument.model_validate(dict(document))
            except ValidationError as e:
                raise PolicyValidationError(tool=canonical, validation_error=str(e)) from e
        with self._lock:
            self._overrides[canonical] = document
        logger.debug("Installed in-memory policy for %s", canonical)

    def clear_override(self, tool: str) -> None:
        """Drop an update_active document so the stored version applies again."""
        with self._lock:
            self._overrides.pop(sanitize_tool_name(tool), None)

    def load_defaults(self) -> list[str]:
        """
        Install the built-in policies in memory for tools that have no stored version.

        Returns:
            The tools that received a default policy
        """
        installed = []
        for tool, document in default_policies().items():
            if self.db.get_active_policy_version(tool) is None:
                self.update_active(tool, document)
                installed.append(tool)
        return installed

    # =========================================================================
    # Cache control
    # =========================================================================

    def invalidate(self, tool: str | None = None) -> None:
        """Forget cached stored documents (all tools, or one)."""
        with self._lock:
            if tool is None:
                self._cache.clear()
            else:
                self._cache.pop(sanitize_tool_name(tool), None)

    def reload(self) -> None:
        """Re-read every active stored document from the database."""
        fresh: dict[str, tuple[PolicyDocument, str]] = {}
        with self.db.transaction():
            for tool in self.db.list_policy_tools():
                stored = self.db.get_active_policy_version(tool)
                if stored is not None:
                    fresh[tool] = (stored.document, stored.version)
            with self._lock:
                self._cache = fresh

    def _activate(self, tool: str, stored: PolicyVersion) -> None:
        # Callers hold the database transaction, so cache swaps follow commit order.
        with self._lock:
            self._overrides.pop(tool, None)
            self._cache[tool] = (stored.document, stored.version)
