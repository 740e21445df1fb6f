"""Local agent registry with SQLite backend, plus local port allocation."""

from __future__ import annotations

import logging
import socket
import sqlite3
import threading
from contextlib import closing, contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from runagent.constants import (
    DEFAULT_LOCAL_HOST,
    DEFAULT_LOCAL_PORT,
    MAX_LOCAL_AGENTS,
    PORT_RANGE_END,
    PORT_RANGE_START,
    get_database_path,
)

logger = logging.getLogger(__name__)

_AGENT_COLUMNS = (
    "agent_id, agent_path, host, port, framework, status, deployed_at, last_run, "
    "run_count, success_count, error_count, created_at, updated_at"
)


@dataclass
class AgentRecord:
    """A locally registered agent."""

    agent_id: str
    agent_path: str = ""
    host: str = DEFAULT_LOCAL_HOST
    port: int = DEFAULT_LOCAL_PORT
    framework: str | None = None
    status: str = "deployed"
    deployed_at: str | None = None
    last_run: str | None = None
    run_count: int = 0
    success_count: int = 0
    error_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AddAgentResult:
    """Outcome of registering an agent."""

    success: bool
    message: str = ""
    current_count: int = 0
    allocated_host: str | None = None
    allocated_port: int | None = None
    error: str | None = None
    code: str | None = None

    @property
    def address(self) -> str | None:
        if self.allocated_host is None or self.allocated_port is None:
            return None
        return f"{self.allocated_host}:{self.allocated_port}"


@dataclass
class CapacityInfo:
    """Registry capacity summary."""

    current_count: int
    max_capacity: int
    remaining_slots: int
    is_full: bool
    agents: list[dict[str, Any]] = field(default_factory=list)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalRegistry:
    """Directory of locally running agents, keyed by agent id."""

    def __init__(
        self,
        db_path: Path | str | None = None,
        max_agents: int = MAX_LOCAL_AGENTS,
    ):
        """Initialize the registry.

        Args:
            db_path: Path to SQLite database file
            max_agents: Maximum number of registered agents
        """
        self.db_path = Path(db_path) if db_path else get_database_path()
        self.max_agents = max_agents
        self._lock = threading.Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS agents (
                    agent_id TEXT PRIMARY KEY,
                    agent_path TEXT NOT NULL DEFAULT '',
                    host TEXT NOT NULL DEFAULT '127.0.0.1',
                    port INTEGER NOT NULL DEFAULT 8450,
                    framework TEXT,
                    status TEXT NOT NULL DEFAULT 'deployed',
                    deployed_at TEXT NOT NULL,
                    last_run TEXT,
                    run_count INTEGER NOT NULL DEFAULT 0,
                    success_count INTEGER NOT NULL DEFAULT 0,
                    error_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS agent_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id TEXT NOT NULL,
                    input_data TEXT NOT NULL,
                    output_data TEXT,
                    success INTEGER NOT NULL,
                    error_message TEXT,
                    execution_time REAL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    FOREIGN KEY (agent_id) REFERENCES agents(agent_id) ON DELETE CASCADE
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_agent_runs_agent_id ON agent_runs (agent_id)")
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection that is closed when the block exits."""
        with closing(sqlite3.connect(str(self.db_path), timeout=10.0)) as conn:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn

    def add_agent(
        self,
        agent_id: str,
        agent_path: str = "",
        host: str | None = None,
        port: int | None = None,
        framework: str | None = None,
    ) -> AddAgentResult:
        """Register an agent, allocating an address when none is given."""
        with self._lock, self._connect() as conn:
            count = conn.execute("SELECT COUNT(*) FROM agents").fetchone()[0]
            if count >= self.max_agents:
                return AddAgentResult(
                    success=False,
                    error=f"Maximum {self.max_agents} agents allowed",
                    code="DATABASE_FULL",
                    current_count=count,
                )

            existing = conn.execute("SELECT 1 FROM agents WHERE agent_id = ?", (agent_id,)).fetchone()
            if existing is not None:
                return AddAgentResult(
                    success=False,
                    error=f"Agent {agent_id} is already registered",
                    code="AGENT_EXISTS",
                    current_count=count,
                )

            if host is None or port is None:
                used = [row["port"] for row in conn.execute("SELECT port FROM agents")]
                allocated_host, allocated_port = allocate_address(used)
                host = host or allocated_host
                port = port or allocated_port

            now = _now()
            conn.execute(
                """
                INSERT INTO agents (agent_id, agent_path, host, port, framework, status,
                                    deployed_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 'deployed', ?, ?, ?)
                """,
                (agent_id, agent_path, host, port, framework, now, now, now),
            )
            conn.commit()

        logger.info(f"Registered agent {agent_id} at {host}:{port}")
        return AddAgentResult(
            success=True,
            message=f"Agent {agent_id} added successfully",
            current_count=count + 1,
            allocated_host=host,
            allocated_port=port,
        )

    def get_agent(self, agent_id: str) -> AgentRecord | None:
        """Look up an agent by id.

        Returns:
            The record, or None if the agent is not registered
        """
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_AGENT_COLUMNS} FROM agents WHERE agent_id = ?",
                (agent_id,),
            ).fetchone()
        return AgentRecord(**dict(row)) if row is not None else None

    def list_agents(self) -> list[AgentRecord]:
        """All registered agents, most recently deployed first."""
        with self._connect() as conn:
            rows = conn.execute(f"SELECT {_AGENT_COLUMNS} FROM agents ORDER BY deployed_at DESC").fetchall()
        return [AgentRecord(**dict(row)) for row in rows]

    def update_address(self, agent_id: str, host: str, port: int) -> bool:
        """Point a registered agent at a new address; returns whether it existed."""
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "UPDATE agents SET host = ?, port = ?, updated_at = ? WHERE agent_id = ?",
                (host, port, _now(), agent_id),
            )
            conn.commit()
            updated = cursor.rowcount > 0
        if updated:
            logger.info(f"Moved agent {agent_id} to {host}:{port}")
        return updated

    def remove_agent(self, agent_id: str) -> bool:
        """Unregister an agent; returns whether it existed."""
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM agents WHERE agent_id = ?", (agent_id,))
            conn.commit()
            removed = cursor.rowcount > 0
        if removed:
            logger.info(f"Removed agent {agent_id}")
        return removed

    def record_run(
        self,
        agent_id: str,
        input_data: str,
        success: bool,
        output_data: str | None = None,
        error_message: str | None = None,
        execution_time: float | None = None,
    ) -> None:
        """Record one execution and update the agent's counters."""
        now = _now()
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO agent_runs (agent_id, input_data, output_data, success,
                                        error_message, execution_time, started_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (agent_id, input_data, output_data, int(success), error_message, execution_time, now, now),
            )
            conn.execute(
                """
                UPDATE agents SET
                    run_count = run_count + 1,
                    success_count = success_count + ?,
                    error_count = error_count + ?,
                    last_run = ?,
                    updated_at = ?
                WHERE agent_id = ?
                """,
                (int(success), int(not success), now, now, agent_id),
            )
            conn.commit()

    def capacity_info(self) -> CapacityInfo:
        agents = self.list_agents()
        count = len(agents)
        return CapacityInfo(
            current_count=count,
            max_capacity=self.max_agents,
            remaining_slots=max(self.max_agents - count, 0),
            is_full=count >= self.max_agents,
            agents=[
                {"agent_id": a.agent_id, "host": a.host, "port": a.port, "status": a.status}
                for a in agents
            ],
        )


def lookup_agent(agent_id: str, db_path: Path | str | None = None) -> tuple[str, int] | None:
    """Resolve an agent id to (host, port) from the local registry.

    The database is opened, queried and closed within this call. A missing
    database file means no agents are registered.
    """
    path = Path(db_path) if db_path else get_database_path()
    if not path.exists():
        logger.debug(f"No local registry at {path}")
        return None
    record = LocalRegistry(path).get_agent(agent_id)
    if record is None:
        return None
    return record.host, record.port


# --- Port allocation ---


def is_port_available(host: str, port: int) -> bool:
    """Check whether a TCP port can be bound."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def allocate_address(
    used_ports: list[int] | None = None,
    host: str = DEFAULT_LOCAL_HOST,
) -> tuple[str, int]:
    """Find a free (host, port) in the local port range.

    Raises:
        RuntimeError: no free port in the range
    """
    used = set(used_ports or [])
    for port in range(PORT_RANGE_START, PORT_RANGE_END + 1):
        if port not in used and is_port_available(host, port):
            return host, port
    raise RuntimeError(f"no available ports found in range {PORT_RANGE_START}-{PORT_RANGE_END}")
