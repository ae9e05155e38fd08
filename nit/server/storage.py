"""
Reference Remote Storage

SQLite-backed storage for pinned agent keys and pushed branches.
"""

import sqlite3
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from contextlib import contextmanager

logger = logging.getLogger("nit.server.storage")


class ServerStorage:
    """SQLite storage for the reference remote."""

    def __init__(self, db_path: str = "./data/nit.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _conn(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._conn() as conn:
            conn.executescript("""
                -- Keys pinned on first push of main
                CREATE TABLE IF NOT EXISTS agents (
                    agent_id TEXT PRIMARY KEY,
                    public_key TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                -- Latest pushed card per branch
                CREATE TABLE IF NOT EXISTS branches (
                    agent_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    card_json TEXT NOT NULL,
                    commit_hash TEXT NOT NULL,
                    pushed_at TEXT NOT NULL,
                    PRIMARY KEY (agent_id, name),
                    FOREIGN KEY (agent_id) REFERENCES agents(agent_id) ON DELETE CASCADE
                );
            """)

    # =========================================================================
    # Agents
    # =========================================================================

    def get_agent_key(self, agent_id: str) -> Optional[str]:
        """Pinned public key field for an agent, or None before its first push."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT public_key FROM agents WHERE agent_id = ?", (agent_id,)
            ).fetchone()
        return row["public_key"] if row else None

    def pin_agent_key(self, agent_id: str, public_key: str) -> bool:
        """Pin a key. Returns False if another key got there first."""
        now = datetime.now(timezone.utc).isoformat()
        with self._conn() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO agents (agent_id, public_key, created_at) VALUES (?, ?, ?)",
                (agent_id, public_key, now),
            )
            pinned = cursor.rowcount == 1
        if pinned:
            logger.info(f"Pinned key for agent {agent_id}")
        return pinned

    # =========================================================================
    # Branches
    # =========================================================================

    def put_branch(self, agent_id: str, name: str, card_json: str, commit_hash: str) -> Dict[str, Any]:
        now = datetime.now(timezone.utc).isoformat()
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO branches (agent_id, name, card_json, commit_hash, pushed_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (agent_id, name) DO UPDATE SET
                    card_json = excluded.card_json,
                    commit_hash = excluded.commit_hash,
                    pushed_at = excluded.pushed_at
                """,
                (agent_id, name, card_json, commit_hash, now),
            )
        logger.info(f"Stored {agent_id}/{name} @ {commit_hash[:8]}")
        return {"name": name, "commit_hash": commit_hash, "pushed_at": now}

    def get_branch(self, agent_id: str, name: str) -> Optional[Dict[str, Any]]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM branches WHERE agent_id = ? AND name = ?",
                (agent_id, name),
            ).fetchone()
        return dict(row) if row else None

    def list_branches(self, agent_id: str) -> List[Dict[str, Any]]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT name, commit_hash, pushed_at FROM branches WHERE agent_id = ? ORDER BY name",
                (agent_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def delete_branch(self, agent_id: str, name: str) -> bool:
        with self._conn() as conn:
            cursor = conn.execute(
                "DELETE FROM branches WHERE agent_id = ? AND name = ?",
                (agent_id, name),
            )
            return cursor.rowcount > 0
