"""
Node Registry: the durable catalogue of nodes, the primary role, and the
append-only audit log of control commands and failover operations.

The primary role is stored as a single row (``primary_slot``) and moved by
compare-and-swap on its version column. Readers derive each node's role from
that row, so no reader can observe two primaries, and once assigned there is
never a window with zero.
"""

import datetime
import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from hft_nodekit.toolkit.core.errors import NodeBusy, NodeNotFound, RegistryConflict
from hft_nodekit.toolkit.core.models import (
    Action, CommandResult, ControlCommand, FailoverOperation, FailoverStage, Node,
    OperationStatus, Role, RunningState, Transport, VerificationResult, utc_now,
)

logger = logging.getLogger(__name__)

_UNSET = object()

SCHEMA = """
CREATE TABLE IF NOT EXISTS nodes (
    id TEXT PRIMARY KEY,
    address TEXT NOT NULL,
    provider TEXT NOT NULL,
    region TEXT,
    running_state TEXT NOT NULL DEFAULT 'unknown',
    consecutive_failures INTEGER NOT NULL DEFAULT 0,
    last_verified_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS primary_slot (
    slot INTEGER PRIMARY KEY CHECK (slot = 1),
    node_id TEXT NOT NULL REFERENCES nodes(id),
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS control_commands (
    id TEXT PRIMARY KEY,
    action TEXT NOT NULL,
    target_node_id TEXT NOT NULL,
    transport_used TEXT,
    result TEXT NOT NULL,
    detail TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_control_commands_node ON control_commands(target_node_id, created_at);

CREATE TRIGGER IF NOT EXISTS control_commands_no_update
BEFORE UPDATE ON control_commands
BEGIN
    SELECT RAISE(ABORT, 'control_commands is append-only');
END;

CREATE TRIGGER IF NOT EXISTS control_commands_no_delete
BEFORE DELETE ON control_commands
BEGIN
    SELECT RAISE(ABORT, 'control_commands is append-only');
END;

CREATE TABLE IF NOT EXISTS failover_operations (
    id TEXT PRIMARY KEY,
    from_node_id TEXT,
    to_node_id TEXT NOT NULL,
    start_bot_after_switch INTEGER NOT NULL,
    status TEXT NOT NULL,
    stages TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS leases (
    key TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    expires_at REAL NOT NULL
);
"""

Listener = Callable[[str, Dict[str, Any]], None]


def _ts(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime.datetime]:
    return datetime.datetime.fromisoformat(value) if value else None


class Registry:
    """SQLite-backed registry. Safe to share between threads."""

    def __init__(self, path: str):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._conn = sqlite3.connect(path, timeout=30, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=10000")
        self._conn.executescript(SCHEMA)
        logger.debug(f"Opened registry at {path}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction (BEGIN IMMEDIATE takes the write lock up front)."""
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    # --- change events ---

    def subscribe(self, listener: Listener) -> None:
        """Register a callback invoked as listener(event, payload) after each commit."""
        self._listeners.append(listener)

    def _emit(self, event: str, **payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception(f"Registry listener failed handling {event}")

    # --- nodes ---

    def _row_to_node(self, row: sqlite3.Row) -> Node:
        return Node(
            id=row["id"],
            address=row["address"],
            provider=row["provider"],
            region=row["region"],
            role=Role(row["role"]),
            running_state=RunningState(row["running_state"]),
            consecutive_failures=row["consecutive_failures"],
            last_verified_at=_parse_ts(row["last_verified_at"]),
        )

    _NODE_SELECT = (
        "SELECT n.*, CASE WHEN p.node_id = n.id THEN 'primary' ELSE 'secondary' END AS role "
        "FROM nodes n LEFT JOIN primary_slot p ON p.slot = 1"
    )

    def add_node(self, node_id: str, address: str, provider: str, region: Optional[str] = None) -> Node:
        with self._transaction() as conn:
            try:
                conn.execute(
                    "INSERT INTO nodes (id, address, provider, region, created_at) VALUES (?, ?, ?, ?, ?)",
                    (node_id, address, provider, region, _ts(utc_now())),
                )
            except sqlite3.IntegrityError as e:
                raise RegistryConflict(f"Node {node_id} is already registered", node_id=node_id) from e
        logger.info(f"Registered node {node_id} ({address}, {provider})")
        self._emit("node-added", node_id=node_id)
        return self.get(node_id)

    def remove_node(self, node_id: str) -> None:
        with self._transaction() as conn:
            row = conn.execute("SELECT node_id FROM primary_slot WHERE slot = 1").fetchone()
            if row and row["node_id"] == node_id:
                raise RegistryConflict(
                    f"Node {node_id} holds the primary role; switch primary before removing it",
                    node_id=node_id,
                )
            cursor = conn.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
            if cursor.rowcount == 0:
                raise NodeNotFound(f"Unknown node: {node_id}", node_id=node_id)
        logger.info(f"Removed node {node_id}")
        self._emit("node-removed", node_id=node_id)

    def get(self, node_id: str) -> Node:
        with self._lock:
            row = self._conn.execute(f"{self._NODE_SELECT} WHERE n.id = ?", (node_id,)).fetchone()
        if row is None:
            raise NodeNotFound(f"Unknown node: {node_id}", node_id=node_id)
        return self._row_to_node(row)

    def list(self) -> List[Node]:
        with self._lock:
            rows = self._conn.execute(f"{self._NODE_SELECT} ORDER BY n.created_at, n.rowid").fetchall()
        return [self._row_to_node(r) for r in rows]

    def primary(self) -> Optional[Node]:
        with self._lock:
            row = self._conn.execute("SELECT node_id FROM primary_slot WHERE slot = 1").fetchone()
        return self.get(row["node_id"]) if row else None

    def set_primary(self, node_id: str, expected_primary: Any = _UNSET) -> Node:
        """
        Move the primary role to ``node_id`` in one compare-and-swap write.

        Args:
            node_id: Node that becomes primary
            expected_primary: If given, the id (or None) the caller believes is
                primary right now; a different value means a concurrent switch

        Raises:
            NodeNotFound: ``node_id`` is not registered
            RegistryConflict: The compare-and-swap lost
        """
        with self._transaction() as conn:
            if conn.execute("SELECT 1 FROM nodes WHERE id = ?", (node_id,)).fetchone() is None:
                raise NodeNotFound(f"Unknown node: {node_id}", node_id=node_id)

            slot = conn.execute("SELECT node_id, version FROM primary_slot WHERE slot = 1").fetchone()
            current = slot["node_id"] if slot else None
            if expected_primary is not _UNSET and current != expected_primary:
                raise RegistryConflict(
                    f"Primary changed concurrently: expected {expected_primary}, found {current}",
                    node_id=node_id,
                )

            if slot is None:
                try:
                    conn.execute("INSERT INTO primary_slot (slot, node_id, version) VALUES (1, ?, 1)", (node_id,))
                except sqlite3.IntegrityError as e:
                    raise RegistryConflict("Primary assigned concurrently", node_id=node_id) from e
            else:
                cursor = conn.execute(
                    "UPDATE primary_slot SET node_id = ?, version = version + 1 WHERE slot = 1 AND version = ?",
                    (node_id, slot["version"]),
                )
                if cursor.rowcount != 1:
                    raise RegistryConflict("Primary assigned concurrently", node_id=node_id)

        logger.info(f"Primary role moved {current or '(none)'} -> {node_id}")
        self._emit("primary-changed", previous=current, current=node_id)
        return self.get(node_id)

    def update_state(self, result: VerificationResult) -> Node:
        """Commit a verification result. The only writer of running_state."""
        if not isinstance(result, VerificationResult):
            raise TypeError("update_state only accepts a VerificationResult")
        with self._transaction() as conn:
            row = conn.execute("SELECT running_state FROM nodes WHERE id = ?", (result.node_id,)).fetchone()
            if row is None:
                raise NodeNotFound(f"Unknown node: {result.node_id}", node_id=result.node_id)
            conn.execute(
                "UPDATE nodes SET running_state = ?, last_verified_at = ?, "
                "consecutive_failures = CASE WHEN ? = 'error' THEN consecutive_failures + 1 ELSE 0 END "
                "WHERE id = ?",
                (result.state.value, _ts(result.checked_at), result.state.value, result.node_id),
            )
        previous = RunningState(row["running_state"])
        if previous != result.state:
            logger.info(f"Node {result.node_id} state {previous.value} -> {result.state.value}")
            self._emit("state-changed", node_id=result.node_id, previous=previous.value, current=result.state.value)
        return self.get(result.node_id)

    def record_health(self, node_id: str, ok: bool) -> int:
        """Reset or bump the consecutive failure counter. Returns the new count."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE nodes SET consecutive_failures = CASE WHEN ? THEN 0 ELSE consecutive_failures + 1 END "
                "WHERE id = ?",
                (1 if ok else 0, node_id),
            )
            if cursor.rowcount == 0:
                raise NodeNotFound(f"Unknown node: {node_id}", node_id=node_id)
            row = conn.execute("SELECT consecutive_failures FROM nodes WHERE id = ?", (node_id,)).fetchone()
        return row["consecutive_failures"]

    # --- audit log ---

    def record_command(self, command: ControlCommand) -> ControlCommand:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO control_commands (id, action, target_node_id, transport_used, result, detail, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    command.id,
                    command.action.value,
                    command.target_node_id,
                    command.transport_used.value if command.transport_used else None,
                    command.result.value,
                    command.detail,
                    _ts(command.created_at),
                ),
            )
        return command

    def commands(self, node_id: Optional[str] = None, limit: int = 50) -> List[ControlCommand]:
        """Most recent commands first."""
        query = "SELECT * FROM control_commands"
        params: List[Any] = []
        if node_id:
            query += " WHERE target_node_id = ?"
            params.append(node_id)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(int(limit))
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [
            ControlCommand(
                id=r["id"],
                action=Action(r["action"]),
                target_node_id=r["target_node_id"],
                transport_used=Transport(r["transport_used"]) if r["transport_used"] else None,
                result=CommandResult(r["result"]),
                detail=r["detail"],
                created_at=_parse_ts(r["created_at"]),
            )
            for r in rows
        ]

    def save_operation(self, operation: FailoverOperation) -> FailoverOperation:
        stages = json.dumps([s.to_dict() for s in operation.stages])
        now = _ts(utc_now())
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO failover_operations "
                "(id, from_node_id, to_node_id, start_bot_after_switch, status, stages, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET status = excluded.status, stages = excluded.stages, "
                "updated_at = excluded.updated_at",
                (
                    operation.id,
                    operation.from_node_id,
                    operation.to_node_id,
                    1 if operation.start_bot_after_switch else 0,
                    operation.status.value,
                    stages,
                    _ts(operation.created_at),
                    now,
                ),
            )
        return operation

    def _row_to_operation(self, row: sqlite3.Row) -> FailoverOperation:
        return FailoverOperation(
            id=row["id"],
            from_node_id=row["from_node_id"],
            to_node_id=row["to_node_id"],
            start_bot_after_switch=bool(row["start_bot_after_switch"]),
            status=OperationStatus(row["status"]),
            stages=[FailoverStage.from_dict(s) for s in json.loads(row["stages"])],
            created_at=_parse_ts(row["created_at"]),
        )

    def get_operation(self, operation_id: str) -> FailoverOperation:
        with self._lock:
            row = self._conn.execute("SELECT * FROM failover_operations WHERE id = ?", (operation_id,)).fetchone()
        if row is None:
            raise KeyError(f"Unknown failover operation: {operation_id}")
        return self._row_to_operation(row)

    def operations(self, limit: int = 20) -> List[FailoverOperation]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM failover_operations ORDER BY created_at DESC, rowid DESC LIMIT ?", (int(limit),)
            ).fetchall()
        return [self._row_to_operation(r) for r in rows]

    # --- single-flight leases ---

    @contextmanager
    def lease(self, key: str, owner: str, ttl: float = 600.0) -> Iterator[None]:
        """
        Hold an exclusive, expiring lease on ``key`` (normally a node id).

        Re-entering with the same owner is allowed and does not release the
        outer hold. An expired lease left by a crashed holder is taken over.

        Raises:
            NodeBusy: Another owner holds a live lease on ``key``
        """
        acquired = False
        now = time.time()
        with self._transaction() as conn:
            row = conn.execute("SELECT owner, expires_at FROM leases WHERE key = ?", (key,)).fetchone()
            if row is None or row["expires_at"] <= now:
                if row is not None:
                    logger.warning(f"Taking over expired lease on {key} from {row['owner']}")
                conn.execute(
                    "INSERT OR REPLACE INTO leases (key, owner, expires_at) VALUES (?, ?, ?)",
                    (key, owner, now + ttl),
                )
                acquired = True
            elif row["owner"] != owner:
                raise NodeBusy(f"A command is already in flight for {key} (held by {row['owner']})", node_id=key)

        try:
            yield
        finally:
            if acquired:
                with self._transaction() as conn:
                    conn.execute("DELETE FROM leases WHERE key = ? AND owner = ?", (key, owner))

    def renew_lease(self, key: str, owner: str, ttl: float = 600.0) -> None:
        """
        Push back the expiry of a lease ``owner`` already holds.

        Raises:
            NodeBusy: The lease was lost (expired and taken over, or never held)
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE leases SET expires_at = ? WHERE key = ? AND owner = ?",
                (time.time() + ttl, key, owner),
            )
            if cursor.rowcount == 0:
                raise NodeBusy(f"Lease on {key} is no longer held by {owner}", node_id=key)
