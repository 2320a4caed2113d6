"""
SQLite storage for Toolgate.

This module is the persistence backend shared by the policy store, the rate
limiter, the approval ledger and the audit log. Everything lives in a single
SQLite database file (or ":memory:" for tests).

Design Principles:
    - Append-only: Policy versions and audit entries are never deleted
    - Integrity: Audit entries are hash-chained for tamper evidence
    - Atomic: Every multi-statement operation runs in one transaction
    - Serialized: One lock guards the shared connection across threads

Tables:
    - policy_versions: Versioned policy documents, one active row per tool
    - rate_counters: Windowed counters keyed by (tool, scope, identity, bucket)
    - approvals: Approval ledger keyed by (tool, entity_id, actor_id)
    - audit_log: Redacted, hash-chained audit trail
"""

import hashlib
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

from toolgate.errors import (
    StorageConnectionError,
    StorageIntegrityError,
    StorageReadError,
    StorageWriteError,
)
from toolgate.schema import (
    ApprovalRecord,
    AuditEntry,
    AuditFilters,
    PolicyDocument,
    PolicyVersion,
)

# Schema version for migrations
SCHEMA_VERSION = 1

# Hash that precedes the first audit entry
GENESIS_HASH = "0" * 64

# SQL for creating tables
CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Policy versions: append-only history, exactly one active row per tool
CREATE TABLE IF NOT EXISTS policy_versions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tool TEXT NOT NULL,
    version TEXT NOT NULL,
    document_json TEXT NOT NULL,
    created_at TEXT NOT NULL,
    created_by INTEGER NOT NULL DEFAULT 0,
    active INTEGER NOT NULL DEFAULT 0,
    UNIQUE (tool, version)
);

-- Rate counters: one row per (tool, scope, identity, bucket) key
CREATE TABLE IF NOT EXISTS rate_counters (
    key TEXT PRIMARY KEY,
    window_start INTEGER NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    expires_at INTEGER NOT NULL
);

-- Approval ledger (entity_id 0 stands for "no entity")
CREATE TABLE IF NOT EXISTS approvals (
    tool TEXT NOT NULL,
    entity_id INTEGER NOT NULL DEFAULT 0,
    actor_id INTEGER NOT NULL,
    approved INTEGER NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (tool, entity_id, actor_id)
);

-- Audit log: immutable once written
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action TEXT NOT NULL,
    user_id INTEGER NOT NULL,
    entity_type TEXT,
    entity_id INTEGER,
    mode TEXT NOT NULL DEFAULT 'suggest',
    data TEXT NOT NULL,
    before_hash TEXT,
    after_hash TEXT,
    status TEXT NOT NULL,
    policy_version TEXT,
    policy_verdict TEXT,
    policy_reason TEXT,
    policy_details TEXT,
    error_code TEXT,
    error_category TEXT,
    ip_address TEXT,
    user_agent TEXT,
    created_at TEXT NOT NULL,
    entry_hash TEXT NOT NULL,
    previous_hash TEXT NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_policy_versions_tool ON policy_versions(tool);
CREATE INDEX IF NOT EXISTS idx_rate_counters_expires_at ON rate_counters(expires_at);
CREATE INDEX IF NOT EXISTS idx_audit_log_action ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_log_user_id ON audit_log(user_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_status ON audit_log(status);
CREATE INDEX IF NOT EXISTS idx_audit_log_error_category ON audit_log(error_category);
CREATE INDEX IF NOT EXISTS idx_audit_log_created_at ON audit_log(created_at);
"""

# Audit columns that participate in the entry hash, in a fixed order
AUDIT_HASHED_COLUMNS = (
    "action",
    "user_id",
    "entity_type",
    "entity_id",
    "mode",
    "data",
    "before_hash",
    "after_hash",
    "status",
    "policy_version",
    "policy_verdict",
    "policy_reason",
    "policy_details",
    "error_code",
    "error_category",
    "ip_address",
    "user_agent",
    "created_at",
)


def compute_hash(data: Any) -> str:
    """Compute SHA256 hash of data."""
    if data is None:
        return ""
    if isinstance(data, str):
        content = data.encode("utf-8")
    elif isinstance(data, bytes):
        content = data
    else:
        content = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def compute_entry_hash(previous_hash: str, row: dict[str, Any]) -> str:
    """Chain hash of an audit row: covers the previous hash and every hashed column."""
    material = {"previous_hash": previous_hash}
    material.update({column: row.get(column) for column in AUDIT_HASHED_COLUMNS})
    return compute_hash(material)


def to_iso(moment: datetime) -> str:
    """Serialize a datetime as a sortable UTC ISO string."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="microseconds")


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return to_iso(datetime.now(UTC))


class ToolgateDB:
    """
    SQLite database for Toolgate storage.

    Usage:
        db = ToolgateDB("toolgate.db")
        with db.transaction():
            ...
        db.close()

    Or use as context manager:
        with ToolgateDB(":memory:") as db:
            ...

    Write methods open their own transaction, or join the caller's when
    called inside transaction(), so several writes can commit atomically.
    """

    def __init__(self, db_path: str | Path, timeout: float = 5.0) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
                     Will be created if it doesn't exist.
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else None
        self._path_str = str(db_path)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                self._path_str,
                check_same_thread=False,
                timeout=self.timeout,
            )
            self._conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=self._path_str,
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            cursor = self._conn.executescript(CREATE_TABLES_SQL)
            cursor.close()

            cursor = self._conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()
            if row is None:
                self._conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, now_iso()),
                )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """
        Context manager for database transactions.

        Holds the connection lock for the whole block. Nested transactions
        join the outermost one, which commits or rolls back.
        """
        with self._lock:
            self._depth += 1
            try:
                yield
            except Exception:
                self._depth -= 1
                if self._depth == 0 and self._conn is not None:
                    self._conn.rollback()
                raise
            self._depth -= 1
            if self._depth == 0:
                self._conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "ToolgateDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    def _read(self, operation: str, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        """Run a SELECT under the lock and return all rows."""
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation=operation,
                underlying_error=str(e),
            ) from e

    # =========================================================================
    # Policy Version Operations
    # =========================================================================

    def latest_policy_version(self, tool: str) -> str | None:
        """Version string of the most recently created row for a tool."""
        rows = self._read(
            "latest_policy_version",
            "SELECT version FROM policy_versions WHERE tool = ? ORDER BY id DESC LIMIT 1",
            (tool,),
        )
        return rows[0]["version"] if rows else None

    def insert_policy_version(
        self,
        tool: str,
        version: str,
        document: PolicyDocument,
        created_by: int,
        created_at: datetime,
    ) -> PolicyVersion:
        """
        Append a policy version and make it the only active row for its tool.

        Returns:
            The stored PolicyVersion
        """
        document_json = json.dumps(document.to_document(), sort_keys=True)
        created_iso = to_iso(created_at)

        with self.transaction():
            try:
                self._conn.execute(
                    "UPDATE policy_versions SET active = 0 WHERE tool = ? AND active = 1",
                    (tool,),
                )
                cursor = self._conn.execute(
                    """
                    INSERT INTO policy_versions (
                        tool, version, document_json, created_at, created_by, active
                    ) VALUES (?, ?, ?, ?, ?, 1)
                    """,
                    (tool, version, document_json, created_iso, created_by),
                )
                row_id = cursor.lastrowid
            except sqlite3.Error as e:
                raise StorageWriteError(
                    operation="insert_policy_version",
                    underlying_error=str(e),
                ) from e

        return PolicyVersion(
            id=row_id,
            tool=tool,
            version=version,
            document=document,
            created_at=datetime.fromisoformat(created_iso),
            created_by=created_by,
            active=True,
        )

    def activate_policy_version(self, tool: str, version: str) -> PolicyVersion | None:
        """
        Make a historical version the active one. Other rows are kept.

        Returns:
            The activated PolicyVersion, or None if the version doesn't exist
        """
        with self.transaction():
            target = self.get_policy_version(tool, version)
            if target is None:
                return None
            try:
                self._conn.execute(
                    "UPDATE policy_versions SET active = 0 WHERE tool = ? AND active = 1",
                    (tool,),
                )
                self._conn.execute(
                    "UPDATE policy_versions SET active = 1 WHERE id = ?",
                    (target.id,),
                )
            except sqlite3.Error as e:
                raise StorageWriteError(
                    operation="activate_policy_version",
                    underlying_error=str(e),
                ) from e

        return target.model_copy(update={"active": True})

    def get_policy_version(self, tool: str, version: str) -> PolicyVersion | None:
        """Get one version of a tool's policy."""
        rows = self._read(
            "get_policy_version",
            "SELECT * FROM policy_versions WHERE tool = ? AND version = ?",
            (tool, version),
        )
        return self._row_to_policy_version(rows[0]) if rows else None

    def get_active_policy_version(self, tool: str) -> PolicyVersion | None:
        """
        Get the active version of a tool's policy.

        Raises:
            StorageIntegrityError: If more than one row is marked active
        """
        rows = self._read(
            "get_active_policy_version",
            "SELECT * FROM policy_versions WHERE tool = ? AND active = 1",
            (tool,),
        )
        if len(rows) > 1:
            raise StorageIntegrityError(
                message=f"{len(rows)} active versions stored for {tool}",
                operation="get_active_policy_version",
            )
        return self._row_to_policy_version(rows[0]) if rows else None

    def list_policy_versions(self, tool: str) -> list[PolicyVersion]:
        """All versions of a tool's policy, newest first."""
        rows = self._read(
            "list_policy_versions",
            "SELECT * FROM policy_versions WHERE tool = ? ORDER BY id DESC",
            (tool,),
        )
        return [self._row_to_policy_version(row) for row in rows]

    def list_policy_tools(self) -> list[str]:
        """Names of all tools that have at least one stored version."""
        rows = self._read(
            "list_policy_tools",
            "SELECT DISTINCT tool FROM policy_versions ORDER BY tool",
        )
        return [row["tool"] for row in rows]

    def _row_to_policy_version(self, row: sqlite3.Row) -> PolicyVersion:
        return PolicyVersion(
            id=row["id"],
            tool=row["tool"],
            version=row["version"],
            document=PolicyDocument.model_validate_json(row["document_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            created_by=row["created_by"],
            active=bool(row["active"]),
        )

    # =========================================================================
    # Rate Counter Operations
    # =========================================================================

    def increment_counter(
        self,
        key: str,
        limit: int,
        window_start: int,
        expires_at: int,
    ) -> tuple[bool, int]:
        """
        Atomically increment a counter if it is below the limit.

        The increment is a single conditional UPDATE, so concurrent callers at
        the limit boundary cannot both succeed.

        Returns:
            (incremented, count after the operation)
        """
        with self.transaction():
            try:
                self._conn.execute(
                    """
                    INSERT OR IGNORE INTO rate_counters (key, window_start, count, expires_at)
                    VALUES (?, ?, 0, ?)
                    """,
                    (key, window_start, expires_at),
                )
                cursor = self._conn.execute(
                    "UPDATE rate_counters SET count = count + 1 WHERE key = ? AND count < ?",
                    (key, limit),
                )
                incremented = cursor.rowcount == 1
                row = self._conn.execute(
                    "SELECT count FROM rate_counters WHERE key = ?",
                    (key,),
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageWriteError(
                    operation="increment_counter",
                    underlying_error=str(e),
                ) from e

        return incremented, row["count"]

    def get_counter(self, key: str) -> int:
        """Current value of a counter (0 if it was never created)."""
        rows = self._read(
            "get_counter",
            "SELECT count FROM rate_counters WHERE key = ?",
            (key,),
        )
        return rows[0]["count"] if rows else 0

    def purge_expired_counters(self, now_epoch: int) -> int:
        """Delete counters whose window has ended. Returns rows removed."""
        with self.transaction():
            try:
                cursor = self._conn.execute(
                    "DELETE FROM rate_counters WHERE expires_at <= ?",
                    (now_epoch,),
                )
            except sqlite3.Error as e:
                raise StorageWriteError(
                    operation="purge_expired_counters",
                    underlying_error=str(e),
                ) from e
        return cursor.rowcount

    # =========================================================================
    # Approval Ledger Operations
    # =========================================================================

    def upsert_approval(
        self,
        tool: str,
        entity_id: int | None,
        actor_id: int,
        approved: bool,
        updated_at: datetime,
    ) -> None:
        """Insert or overwrite the approval record for one key."""
        with self.transaction():
            try:
                self._conn.execute(
                    """
                    INSERT INTO approvals (tool, entity_id, actor_id, approved, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (tool, entity_id, actor_id)
                    DO UPDATE SET approved = excluded.approved, updated_at = excluded.updated_at
                    """,
                    (tool, entity_id or 0, actor_id, int(approved), to_iso(updated_at)),
                )
            except sqlite3.Error as e:
                raise StorageWriteError(
                    operation="upsert_approval",
                    underlying_error=str(e),
                ) from e

    def get_approval(
        self,
        tool: str,
        entity_id: int | None,
        actor_id: int,
    ) -> ApprovalRecord | None:
        """Look up the approval record for one key."""
        rows = self._read(
            "get_approval",
            "SELECT * FROM approvals WHERE tool = ? AND entity_id = ? AND actor_id = ?",
            (tool, entity_id or 0, actor_id),
        )
        return self._row_to_approval(rows[0]) if rows else None

    def list_approvals(self, tool: str | None = None) -> list[ApprovalRecord]:
        """All approval records, optionally for one tool, most recent first."""
        if tool is None:
            rows = self._read(
                "list_approvals",
                "SELECT * FROM approvals ORDER BY updated_at DESC",
            )
        else:
            rows = self._read(
                "list_approvals",
                "SELECT * FROM approvals WHERE tool = ? ORDER BY updated_at DESC",
                (tool,),
            )
        return [self._row_to_approval(row) for row in rows]

    def _row_to_approval(self, row: sqlite3.Row) -> ApprovalRecord:
        return ApprovalRecord(
            tool=row["tool"],
            entity_id=row["entity_id"] or None,
            actor_id=row["actor_id"],
            approved=bool(row["approved"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # =========================================================================
    # Audit Log Operations
    # =========================================================================

    def insert_audit_entry(self, row: dict[str, Any]) -> tuple[int, str, str]:
        """
        Append a hash-chained audit row.

        Args:
            row: Column values for AUDIT_HASHED_COLUMNS (data already JSON text)

        Returns:
            (row id, entry hash, previous hash)
        """
        with self.transaction():
            try:
                last = self._conn.execute(
                    "SELECT entry_hash FROM audit_log ORDER BY id DESC LIMIT 1"
                ).fetchone()
                previous_hash = last["entry_hash"] if last else GENESIS_HASH
                entry_hash = compute_entry_hash(previous_hash, row)

                columns = list(AUDIT_HASHED_COLUMNS) + ["entry_hash", "previous_hash"]
                values = [row.get(column) for column in AUDIT_HASHED_COLUMNS]
                values += [entry_hash, previous_hash]
                placeholders = ", ".join("?" for _ in columns)
                cursor = self._conn.execute(
                    f"INSERT INTO audit_log ({', '.join(columns)}) VALUES ({placeholders})",
                    values,
                )
                row_id = cursor.lastrowid
            except sqlite3.Error as e:
                raise StorageWriteError(
                    operation="insert_audit_entry",
                    underlying_error=str(e),
                ) from e

        return row_id, entry_hash, previous_hash

    def get_audit_entry(self, entry_id: int) -> AuditEntry | None:
        """Get one audit entry by id."""
        rows = self._read(
            "get_audit_entry",
            "SELECT * FROM audit_log WHERE id = ?",
            (entry_id,),
        )
        return self._row_to_audit_entry(rows[0]) if rows else None

    def query_audit_entries(
        self,
        filters: AuditFilters,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Filtered page of audit entries, newest first."""
        where, params = self._audit_where(filters)
        rows = self._read(
            "query_audit_entries",
            f"SELECT * FROM audit_log WHERE {where} "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        return [self._row_to_audit_entry(row) for row in rows]

    def count_audit_entries(self, filters: AuditFilters) -> int:
        """Number of entries matching the filters."""
        where, params = self._audit_where(filters)
        rows = self._read(
            "count_audit_entries",
            f"SELECT COUNT(*) AS n FROM audit_log WHERE {where}",
            params,
        )
        return rows[0]["n"]

    def audit_rollup(self, filters: AuditFilters) -> list[sqlite3.Row]:
        """Counts grouped by status, error category and UTC date."""
        where, params = self._audit_where(filters)
        return self._read(
            "audit_rollup",
            f"""
            SELECT status, error_category, substr(created_at, 1, 10) AS date,
                   COUNT(*) AS count
            FROM audit_log
            WHERE {where}
            GROUP BY status, error_category, substr(created_at, 1, 10)
            ORDER BY date DESC
            """,
            params,
        )

    def iter_audit_rows(self) -> list[sqlite3.Row]:
        """Every audit row in insertion order (for chain verification)."""
        return self._read(
            "iter_audit_rows",
            "SELECT * FROM audit_log ORDER BY id ASC",
        )

    def _audit_where(self, filters: AuditFilters) -> tuple[str, list[Any]]:
        """Build the WHERE clause for audit filters."""
        where = ["1=1"]
        params: list[Any] = []

        if filters.action is not None:
            where.append("action = ?")
            params.append(filters.action)
        if filters.actor_id is not None:
            where.append("user_id = ?")
            params.append(filters.actor_id)
        if filters.entity_type is not None:
            where.append("entity_type = ?")
            params.append(filters.entity_type)
        if filters.entity_id is not None:
            where.append("entity_id = ?")
            params.append(filters.entity_id)
        if filters.status is not None:
            where.append("status = ?")
            params.append(filters.status)
        if filters.error_category is not None:
            where.append("error_category = ?")
            params.append(filters.error_category)
        if filters.date_from is not None:
            where.append("created_at >= ?")
            params.append(to_iso(filters.date_from))
        if filters.date_to is not None:
            where.append("created_at <= ?")
            params.append(to_iso(filters.date_to))

        return " AND ".join(where), params

    def _row_to_audit_entry(self, row: sqlite3.Row) -> AuditEntry:
        return AuditEntry(
            id=row["id"],
            action=row["action"],
            actor_id=row["user_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            mode=row["mode"],
            payload=json.loads(row["data"]) if row["data"] else {},
            status=row["status"],
            before_hash=row["before_hash"],
            after_hash=row["after_hash"],
            policy_version=row["policy_version"],
            policy_verdict=row["policy_verdict"],
            policy_reason=row["policy_reason"],
            policy_details=row["policy_details"],
            error_code=row["error_code"],
            error_category=row["error_category"],
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            created_at=datetime.fromisoformat(row["created_at"]),
            entry_hash=row["entry_hash"],
            previous_hash=row["previous_hash"],
        )
