#!/usr/bin/env python3
"""
Trade Queue for the Trade Hub Controller

Admission control and FIFO ordering for trade requests:
- Bounded number of pending entries
- At most one unfinished entry per user
- Explicit status transitions: pending -> active -> completed/failed/cancelled
- Admission and completion notifications

Every operation runs under one lock, so chat front-ends (threads) and the
device loops (asyncio tasks) can share the queue. Handlers are invoked after
the lock is released.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, List, Optional, Union

from .models import (
    DEFAULT_HISTORY_SIZE,
    DEFAULT_QUEUE_SIZE,
    MAX_EVENT_HANDLERS,
    QueueResult,
    TradeEntry,
    TradeOutcome,
    TradeStatus,
)


class TradeQueue:
    """
    Waiting list of trade entries.

    Live (pending and active) entries are kept in admission order; finished
    entries move to a bounded history.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_QUEUE_SIZE,
        history_size: int = DEFAULT_HISTORY_SIZE,
        logger: logging.Logger = None,
    ):
        """
        Initialize the queue.

        Args:
            max_size: Maximum number of pending entries.
            history_size: Finished entries kept for status queries.
            logger: Logger instance (creates one if not provided).
        """
        if max_size < 1:
            raise ValueError(f"Queue size must be positive: {max_size}")

        self.max_size = max_size
        self.logger = logger or logging.getLogger("TradeQueue")

        self._lock = threading.Lock()
        self._entries: List[TradeEntry] = []
        self._history: Deque[TradeEntry] = deque(maxlen=history_size)

        self._added_handlers: List[Callable[[TradeEntry], None]] = []
        self._completed_handlers: List[Callable[[TradeEntry], None]] = []

    # -------------------------------------------------------------------------
    # Handler Registration
    # -------------------------------------------------------------------------

    def on_added(self, handler: Callable[[TradeEntry], None]) -> bool:
        """Register a handler called with each admitted entry."""
        if len(self._added_handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max added handlers reached")
            return False
        self._added_handlers.append(handler)
        return True

    def on_completed(self, handler: Callable[[TradeEntry], None]) -> bool:
        """Register a handler called once with each entry marked terminal."""
        if len(self._completed_handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max completed handlers reached")
            return False
        self._completed_handlers.append(handler)
        return True

    def _dispatch(self, handlers: List[Callable], entry: TradeEntry):
        for handler in handlers:
            try:
                handler(entry)
            except Exception as e:
                self.logger.error(f"Queue handler error: {e}")

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    def enqueue(self, entry: TradeEntry) -> QueueResult:
        """
        Admit an entry at the back of the queue.

        Returns:
            ALREADY_QUEUED when the user has an unfinished entry, QUEUE_FULL
            when the pending count reached capacity, SUCCESS otherwise.
        """
        with self._lock:
            if any(e.user_id == entry.user_id for e in self._entries):
                return QueueResult.ALREADY_QUEUED

            if self._pending_count() >= self.max_size:
                return QueueResult.QUEUE_FULL

            entry.status = TradeStatus.PENDING
            entry.queue_time = time.time()
            entry.start_time = entry.end_time = None
            entry.assigned_bot = None
            self._entries.append(entry)
            position = self._pending_count()

        self.logger.info(
            f"Queued {entry.trade_type.value} for {entry.trainer_name} "
            f"({entry.user_id}) at position {position}"
        )
        self._dispatch(self._added_handlers, entry)
        return QueueResult.SUCCESS

    def remove(self, user_id: Union[int, str]) -> bool:
        """
        Cancel the user's pending entry.

        Returns:
            False if the user has no pending entry (an active entry cannot
            be cancelled here).
        """
        with self._lock:
            entry = self._find(user_id)
            if entry is None or entry.status != TradeStatus.PENDING:
                return False

            self._entries.remove(entry)
            entry.status = TradeStatus.CANCELLED
            entry.end_time = time.time()
            entry.result_reason = "removed by user"
            self._history.append(entry)

        self.logger.info(f"Removed {entry.trainer_name} ({user_id}) from the queue")
        return True

    def clear(self) -> int:
        """Cancel every pending entry. Returns how many were cancelled."""
        with self._lock:
            pending = [e for e in self._entries if e.status == TradeStatus.PENDING]
            now = time.time()
            for entry in pending:
                self._entries.remove(entry)
                entry.status = TradeStatus.CANCELLED
                entry.end_time = now
                entry.result_reason = "queue cleared"
                self._history.append(entry)

        if pending:
            self.logger.info(f"Cleared {len(pending)} pending entries")
        return len(pending)

    # -------------------------------------------------------------------------
    # Claiming
    # -------------------------------------------------------------------------

    def dequeue_next(self) -> Optional[TradeEntry]:
        """Earliest pending entry, left in place until it is marked active."""
        with self._lock:
            for entry in self._entries:
                if entry.status == TradeStatus.PENDING:
                    return entry
        return None

    def mark_active(self, entry: TradeEntry, bot_name: str) -> bool:
        """
        Claim a pending entry for a device.

        Returns:
            False if the entry is no longer pending (claimed by another
            device or cancelled since it was peeked).
        """
        with self._lock:
            if entry.status != TradeStatus.PENDING or entry not in self._entries:
                return False

            entry.status = TradeStatus.ACTIVE
            entry.start_time = time.time()
            entry.assigned_bot = bot_name

        self.logger.info(f"{bot_name} started {entry.trainer_name} ({entry.user_id})")
        return True

    def mark_terminal(self, entry: TradeEntry, outcome: TradeOutcome) -> bool:
        """
        Record the outcome of an active entry.

        Completion handlers fire exactly once per entry.

        Returns:
            False if the entry was not active.
        """
        with self._lock:
            if entry.status != TradeStatus.ACTIVE:
                return False

            self._entries.remove(entry)
            entry.status = outcome.status
            entry.end_time = time.time()
            entry.result_reason = outcome.reason
            if outcome.extracted is not None:
                entry.extracted = outcome.extracted
            self._history.append(entry)

        self.logger.info(
            f"{entry.assigned_bot} finished {entry.trainer_name} ({entry.user_id}): "
            f"{entry.status.value}" + (f" ({outcome.reason})" if outcome.reason else "")
        )
        self._dispatch(self._completed_handlers, entry)
        return True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def position(self, user_id: Union[int, str]) -> int:
        """1-based rank among pending entries, 0 if the user has none."""
        with self._lock:
            rank = 0
            for entry in self._entries:
                if entry.status != TradeStatus.PENDING:
                    continue
                rank += 1
                if entry.user_id == user_id:
                    return rank
        return 0

    def get(self, user_id: Union[int, str]) -> Optional[TradeEntry]:
        """The user's unfinished entry, if any."""
        with self._lock:
            return self._find(user_id)

    def get_pending(self) -> List[TradeEntry]:
        with self._lock:
            return [e for e in self._entries if e.status == TradeStatus.PENDING]

    def get_active(self) -> List[TradeEntry]:
        with self._lock:
            return [e for e in self._entries if e.status == TradeStatus.ACTIVE]

    def get_history(self, limit: int = 50) -> List[TradeEntry]:
        """Finished entries, newest first."""
        with self._lock:
            return list(reversed(self._history))[:limit]

    @property
    def count(self) -> int:
        """Number of pending entries."""
        with self._lock:
            return self._pending_count()

    def _pending_count(self) -> int:
        return sum(1 for e in self._entries if e.status == TradeStatus.PENDING)

    def _find(self, user_id: Union[int, str]) -> Optional[TradeEntry]:
        for entry in self._entries:
            if entry.user_id == user_id:
                return entry
        return None
