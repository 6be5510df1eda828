"""
SQLite storage for Shoal.

This module provides persistent storage for policies, approval requests and
the audit trail. Everything lives in a single SQLite database file.

Design Principles:
    - Append-only audit: audit_entries rows are never updated or deleted
      (enforced by triggers)
    - Compare-and-swap decisions: an approval leaves PENDING through a
      conditional UPDATE guarded by state and version, so two concurrent
      decisions on the same id can never both succeed
    - Lenient reads: a stored rules payload that is not valid JSON degrades
      to the category's default rules

Tables:
    - policies: Policy configuration records
    - approval_requests: Approval gates and their lifecycle state
    - audit_entries: Governance decisions
"""

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

from shoal.errors import (
    ApprovalConflictError,
    ApprovalNotFoundError,
    StorageConnectionError,
    StorageReadError,
    StorageWriteError,
)
from shoal.schema import (
    ActorType,
    ApprovalRequest,
    ApprovalState,
    AuditEntry,
    Policy,
    PolicyCategory,
)

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

# SQL for creating tables
CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Policies: category-specific rules, JSON encoded
CREATE TABLE IF NOT EXISTS policies (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    name TEXT,
    rules_json TEXT NOT NULL DEFAULT '{}',
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Approval requests: version is bumped on every state write
CREATE TABLE IF NOT EXISTS approval_requests (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    action_type TEXT NOT NULL,
    params_json TEXT NOT NULL DEFAULT '{}',
    state TEXT NOT NULL DEFAULT 'pending',
    requested_at TEXT NOT NULL,
    decided_by TEXT,
    version INTEGER NOT NULL DEFAULT 0
);

-- Audit entries: append-only
CREATE TABLE IF NOT EXISTS audit_entries (
    id TEXT PRIMARY KEY,
    actor_id TEXT NOT NULL,
    actor_type TEXT NOT NULL,
    action TEXT NOT NULL,
    detail TEXT NOT NULL,
    cost_tokens INTEGER NOT NULL DEFAULT 0 CHECK (cost_tokens >= 0),
    created_at TEXT NOT NULL
);

CREATE TRIGGER IF NOT EXISTS audit_entries_no_update
BEFORE UPDATE ON audit_entries BEGIN
    SELECT RAISE(ABORT, 'audit_entries is append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_entries_no_delete
BEFORE DELETE ON audit_entries BEGIN
    SELECT RAISE(ABORT, 'audit_entries is append-only');
END;

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_policies_category ON policies(category, enabled);
CREATE INDEX IF NOT EXISTS idx_approval_requests_state ON approval_requests(state);
CREATE INDEX IF NOT EXISTS idx_audit_entries_created_at ON audit_entries(created_at);
"""


def generate_id() -> str:
    """Generate a unique ID for stored records."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(UTC).isoformat()


def _load_json(raw: str | None, record_id: str) -> Any:
    """Decode a JSON column; malformed content decodes to an empty dict."""
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Malformed JSON in record %s; using defaults", record_id)
        return {}


class ShoalDB:
    """
    SQLite database for Shoal storage.

    Implements PolicyRepository, ApprovalRepository and AuditSink. One
    instance may be shared between threads; connection use is serialised
    by an internal lock.

    Usage:
        db = ShoalDB("shoal.db")
        db.add_policy(PolicyCategory.TOOL_RESTRICTION, {"denyTools": ["rm"]})
        request = db.create("agent-1", "tool_call", {"toolName": "rm"})
        db.update_state_if_pending(request.id, ApprovalState.REJECTED, "user-1")
        db.close()

    Or use as context manager:
        with ShoalDB("shoal.db") as db:
            ...
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file.
                     Will be created if it doesn't exist.
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=5.0,
            )
            self._conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            with self._lock:
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

    def _connection(self) -> sqlite3.Connection:
        """Return the open connection or raise StorageConnectionError."""
        if self._conn is None:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="use",
                message=f"Database connection is closed: {self.db_path}",
            )
        return self._conn

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Hold the connection lock for one committed-or-rolled-back unit."""
        with self._lock:
            conn = self._connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "ShoalDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Policy Operations
    # =========================================================================

    def add_policy(
        self,
        category: PolicyCategory | str,
        rules: dict[str, Any],
        enabled: bool = True,
        name: str | None = None,
    ) -> Policy:
        """
        Store a new policy.

        The policy management surface lives outside Shoal; this exists for
        seeding and tests.

        Returns:
            The stored Policy
        """
        category = PolicyCategory(category)
        policy_id = generate_id()
        now = now_iso()
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO policies (
                        id, category, name, rules_json, enabled, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        policy_id,
                        category.value,
                        name,
                        json.dumps(rules, default=str),
                        int(enabled),
                        now,
                        now,
                    ),
                )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="add_policy",
                underlying_error=str(e),
            ) from e
        return Policy(
            id=policy_id, category=category, rules=rules, enabled=enabled, name=name
        )

    def set_policy_enabled(self, policy_id: str, enabled: bool) -> bool:
        """Enable or disable a policy. Returns False if the id is unknown."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "UPDATE policies SET enabled = ?, updated_at = ? WHERE id = ?",
                    (int(enabled), now_iso(), policy_id),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="set_policy_enabled",
                underlying_error=str(e),
            ) from e

    def list_enabled(self, category: PolicyCategory | str) -> list[Policy]:
        """
        Get every enabled policy of a category.

        Args:
            category: The policy category to load

        Returns:
            List of Policy objects, oldest first
        """
        category = PolicyCategory(category)
        try:
            with self._lock:
                cursor = self._connection().execute(
                    """
                    SELECT * FROM policies
                    WHERE enabled = 1 AND category = ?
                    ORDER BY created_at, id
                    """,
                    (category.value,),
                )
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="list_enabled",
                underlying_error=str(e),
            ) from e
        return [self._row_to_policy(row) for row in rows]

    def list_policies(self) -> list[Policy]:
        """Get all policies, enabled or not."""
        try:
            with self._lock:
                rows = self._connection().execute(
                    "SELECT * FROM policies ORDER BY category, created_at, id"
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="list_policies",
                underlying_error=str(e),
            ) from e
        return [self._row_to_policy(row) for row in rows]

    def _row_to_policy(self, row: sqlite3.Row) -> Policy:
        return Policy(
            id=row["id"],
            category=PolicyCategory(row["category"]),
            rules=_load_json(row["rules_json"], row["id"]),
            enabled=bool(row["enabled"]),
            name=row["name"],
        )

    # =========================================================================
    # Approval Operations
    # =========================================================================

    def create(
        self,
        agent_id: str,
        action_type: str,
        params: dict[str, Any],
    ) -> ApprovalRequest:
        """
        Create a new approval request in state PENDING.

        Args:
            agent_id: Agent requesting the action
            action_type: Kind of action
            params: Action parameters

        Returns:
            The stored ApprovalRequest
        """
        request = ApprovalRequest(
            id=generate_id(),
            agent_id=agent_id,
            action_type=action_type,
            params=params,
            state=ApprovalState.PENDING,
            requested_at=datetime.now(UTC),
        )
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO approval_requests (
                        id, agent_id, action_type, params_json, state,
                        requested_at, decided_by, version
                    ) VALUES (?, ?, ?, ?, ?, ?, NULL, 0)
                    """,
                    (
                        request.id,
                        request.agent_id,
                        request.action_type,
                        json.dumps(request.params, default=str),
                        request.state.value,
                        request.requested_at.isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="create_approval",
                underlying_error=str(e),
            ) from e
        return request

    def get_by_id(self, approval_id: str) -> ApprovalRequest | None:
        """
        Get an approval request by ID.

        Returns:
            ApprovalRequest or None if not found
        """
        try:
            with self._lock:
                row = self._connection().execute(
                    "SELECT * FROM approval_requests WHERE id = ?",
                    (approval_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="get_approval",
                underlying_error=str(e),
            ) from e
        if row is None:
            return None
        return self._row_to_approval(row)

    def update_state_if_pending(
        self,
        approval_id: str,
        new_state: ApprovalState | str,
        decider_id: str | None,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """
        Atomically move a PENDING request to ``new_state``.

        The UPDATE only matches a row that is still PENDING (and, when
        ``expected_version`` is given, still at that version). Zero affected
        rows means another writer got there first.

        Args:
            approval_id: The request to decide
            new_state: Target state
            decider_id: Who decided
            expected_version: Version the caller last observed

        Returns:
            The updated ApprovalRequest

        Raises:
            ApprovalNotFoundError: If the id is unknown
            ApprovalConflictError: If the request is no longer PENDING
        """
        new_state = ApprovalState(new_state)
        sql = """
            UPDATE approval_requests
            SET state = ?, decided_by = ?, version = version + 1
            WHERE id = ? AND state = ?
        """
        params: list[Any] = [
            new_state.value,
            decider_id,
            approval_id,
            ApprovalState.PENDING.value,
        ]
        if expected_version is not None:
            sql += " AND version = ?"
            params.append(expected_version)

        try:
            with self.transaction() as conn:
                cursor = conn.execute(sql, params)
                updated = cursor.rowcount == 1
                row = conn.execute(
                    "SELECT * FROM approval_requests WHERE id = ?",
                    (approval_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="update_state_if_pending",
                underlying_error=str(e),
            ) from e

        if row is None:
            raise ApprovalNotFoundError(approval_id=approval_id)
        if not updated:
            raise ApprovalConflictError(
                approval_id=approval_id,
                current_state=row["state"],
                requested_state=new_state.value,
            )
        return self._row_to_approval(row)

    def list_pending(self, limit: int = 20) -> list[ApprovalRequest]:
        """
        List pending approval requests.

        Args:
            limit: Maximum number of requests to return

        Returns:
            List of ApprovalRequest objects, most recent first
        """
        try:
            with self._lock:
                rows = self._connection().execute(
                    """
                    SELECT * FROM approval_requests
                    WHERE state = ?
                    ORDER BY requested_at DESC, rowid DESC
                    LIMIT ?
                    """,
                    (ApprovalState.PENDING.value, limit),
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="list_pending",
                underlying_error=str(e),
            ) from e
        return [self._row_to_approval(row) for row in rows]

    def _row_to_approval(self, row: sqlite3.Row) -> ApprovalRequest:
        params = _load_json(row["params_json"], row["id"])
        return ApprovalRequest(
            id=row["id"],
            agent_id=row["agent_id"],
            action_type=row["action_type"],
            params=params if isinstance(params, dict) else {},
            state=ApprovalState(row["state"]),
            requested_at=datetime.fromisoformat(row["requested_at"]),
            decided_by=row["decided_by"],
            version=row["version"],
        )

    # =========================================================================
    # Audit Operations
    # =========================================================================

    def append(
        self,
        actor_id: str,
        actor_type: ActorType | str,
        action: str,
        detail: str,
        cost_tokens: int = 0,
    ) -> AuditEntry:
        """
        Append one audit entry.

        Returns:
            The stored AuditEntry
        """
        entry = AuditEntry(
            id=generate_id(),
            actor_id=actor_id,
            actor_type=ActorType(actor_type),
            action=action,
            detail=detail,
            cost_tokens=cost_tokens,
        )
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO audit_entries (
                        id, actor_id, actor_type, action, detail,
                        cost_tokens, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.id,
                        entry.actor_id,
                        entry.actor_type.value,
                        entry.action,
                        entry.detail,
                        entry.cost_tokens,
                        entry.created_at.isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="append_audit",
                underlying_error=str(e),
            ) from e
        return entry

    def list_audit_entries(
        self,
        limit: int = 100,
        action_prefix: str | None = None,
    ) -> list[AuditEntry]:
        """
        List recent audit entries.

        Args:
            limit: Maximum number of entries to return
            action_prefix: Only return actions starting with this prefix

        Returns:
            List of AuditEntry objects, most recent first
        """
        sql = "SELECT * FROM audit_entries"
        params: list[Any] = []
        if action_prefix:
            sql += " WHERE action LIKE ? ESCAPE '\\'"
            escaped = (
                action_prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            )
            params.append(escaped + "%")
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        try:
            with self._lock:
                rows = self._connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="list_audit_entries",
                underlying_error=str(e),
            ) from e
        return [
            AuditEntry(
                id=row["id"],
                actor_id=row["actor_id"],
                actor_type=ActorType(row["actor_type"]),
                action=row["action"],
                detail=row["detail"],
                cost_tokens=row["cost_tokens"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]
