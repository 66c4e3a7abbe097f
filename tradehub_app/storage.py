#!/usr/bin/env python3
"""
Trade History Storage for the Trade Hub Controller

Simple SQLite-based log of finished trades. One row per terminal queue
entry, for history queries and per-status counters that survive restarts.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from .models import TradeEntry


# =============================================================================
# Constants
# =============================================================================

# Default database file
DEFAULT_DB_PATH = "trade_history.db"

# Maximum rows to return in a single query
MAX_QUERY_RESULTS = 10000


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class TradeRecord:
    """A single stored trade."""
    id: int
    user_id: str
    trainer_name: str
    payload_name: str
    trade_type: str
    bot_name: Optional[str]
    status: str
    reason: Optional[str]
    queue_time: float
    start_time: Optional[float]
    end_time: Optional[float]


# =============================================================================
# Storage Manager
# =============================================================================

class TradeLog:
    """SQLite-backed trade history."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH, logger: logging.Logger = None):
        """
        Initialize storage.

        Args:
            db_path: Path to SQLite database file.
            logger: Logger instance (creates one if not provided).
        """
        self.db_path = db_path
        self.logger = logger or logging.getLogger("TradeLog")
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    trainer_name TEXT NOT NULL,
                    payload_name TEXT NOT NULL,
                    trade_type TEXT NOT NULL,
                    bot_name TEXT,
                    status TEXT NOT NULL,
                    reason TEXT,
                    queue_time REAL NOT NULL,
                    start_time REAL,
                    end_time REAL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_time
                ON trades(user_id, end_time)
            """)

            conn.commit()

    def record(self, entry: TradeEntry) -> int:
        """
        Store a finished entry.

        Returns:
            Row id of the stored trade.
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO trades (user_id, trainer_name, payload_name, trade_type,
                                    bot_name, status, reason, queue_time, start_time, end_time)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(entry.user_id),
                    entry.trainer_name,
                    entry.payload_name or "",
                    entry.trade_type.value,
                    entry.assigned_bot,
                    entry.status.value,
                    entry.result_reason,
                    entry.queue_time,
                    entry.start_time,
                    entry.end_time,
                ),
            )
            conn.commit()
            return cursor.lastrowid

    def _select(self, where: str, params: tuple, limit: int) -> List[TradeRecord]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                f"""
                SELECT id, user_id, trainer_name, payload_name, trade_type, bot_name,
                       status, reason, queue_time, start_time, end_time
                FROM trades
                {where}
                ORDER BY id DESC
                LIMIT ?
                """,
                params + (min(limit, MAX_QUERY_RESULTS),),
            )
            return [TradeRecord(**dict(row)) for row in cursor]

    def get_recent(self, limit: int = 50) -> List[TradeRecord]:
        """Most recent trades, newest first."""
        return self._select("", (), limit)

    def get_by_user(self, user_id: Union[int, str], limit: int = 50) -> List[TradeRecord]:
        """Trades for one user, newest first."""
        return self._select("WHERE user_id = ?", (str(user_id),), limit)

    def get_counts(self) -> Dict[str, int]:
        """Number of stored trades per status."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT status, COUNT(*) FROM trades GROUP BY status"
            )
            return {row[0]: row[1] for row in cursor}

    def delete_older_than(self, before_timestamp: float) -> int:
        """
        Delete trades that finished before a timestamp.

        Returns:
            Number of trades deleted.
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM trades WHERE end_time < ?",
                (before_timestamp,)
            )
            conn.commit()
            deleted = cursor.rowcount

        if deleted:
            self.logger.info(f"Deleted {deleted} trades from history")
        return deleted
