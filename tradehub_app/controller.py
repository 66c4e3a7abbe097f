#!/usr/bin/env python3
"""
Trade Hub Controller

This module acts as the hub for a pool of consoles running trade sessions.
Each console is driven over its own network link; requests from chat and
web front-ends land in a shared waiting list and are served first-come,
first-served by whichever console is idle.

Architecture:
    Front-ends (chat bots, REST API)
        │
        ├── submit / cancel / position
        ▼
    TradeHubController (this module)
        │
        ├── TradeQueue (shared waiting list)
        ├── TradeLog (SQLite history)
        ▼
    TradeBot per console (one asyncio task each)
        │
        ├── TradeExecutor (trade state machine)
        ▼
    LinkClient (TCP text protocol)

Features:
- One loop per console, no two trades on the same console
- Pause/resume of new claims without interrupting running trades
- Explicit reconnect after a link is lost
- Completion and status notifications for front-ends
- REST API served in the same event loop
"""

import asyncio
import logging
import random
import sqlite3
import sys
from typing import Any, Callable, Dict, List, Optional, Union

from .device import TradeBot
from .link import LinkClient
from .models import (
    MAX_BOTS,
    MAX_EVENT_HANDLERS,
    MAX_TRADE_CODE,
    TRADE_CODE_DIGITS,
    BotConfig,
    BotStatus,
    HubConfig,
    QueueResult,
    TradeEntry,
    TradeOutcome,
    TradeStatus,
    TradeType,
)
from .payloads import FolderPayloadResolver, PayloadRef, PayloadResolver
from .storage import TradeLog
from .titles import resolve_title
from .trade_queue import TradeQueue


def generate_trade_code() -> int:
    """Random code with a non-zero leading digit."""
    return random.randint(10 ** (TRADE_CODE_DIGITS - 1), MAX_TRADE_CODE)


class TradeHubController:
    """
    Pool scheduler and front-end façade.

    Owns the waiting list, the registered consoles and their loop tasks.
    All coroutine methods must run on the controller's event loop; the
    synchronous façade methods (submit, cancel, position) may be called from
    any thread.
    """

    def __init__(
        self,
        config: HubConfig,
        resolver: PayloadResolver = None,
        validator: Callable[[TradeEntry], bool] = None,
        storage: TradeLog = None,
    ):
        """
        Initialize the controller.

        Args:
            config: Hub configuration object.
            resolver: Payload resolver (folder resolver from config if not provided).
            validator: Optional admission check; False rejects with NOT_ALLOWED.
            storage: Trade history (created from config if not provided and enabled).
        """
        self.config = config
        self._setup_logging()

        self.logger = logging.getLogger("TradeHub")
        self.running = False
        self.paused = False

        self.queue = TradeQueue(config.max_queue_size, config.history_size)
        self.resolver = resolver or FolderPayloadResolver(config.payload_folder)
        self.validator = validator

        if storage is None and config.storage.enabled:
            storage = TradeLog(config.storage.db_path)
        self.storage = storage

        # Console tracking
        self.bots: Dict[str, TradeBot] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stop_event: Optional[asyncio.Event] = None

        # Event handlers
        self._complete_handlers: List[Callable[[str, str, bool], None]] = []
        self._bot_status_handlers: List[Callable[[str, str], None]] = []

        self.queue.on_completed(self._on_entry_completed)

    def _setup_logging(self):
        """Configure logging."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        handlers = [logging.StreamHandler(sys.stdout)]
        if self.config.log_file:
            handlers.insert(0, logging.FileHandler(self.config.log_file))

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            handlers=handlers,
        )

    # -------------------------------------------------------------------------
    # Event Handlers
    # -------------------------------------------------------------------------

    def _on_entry_completed(self, entry: TradeEntry):
        """Persist a finished entry and notify front-ends."""
        if self.storage is not None:
            try:
                self.storage.record(entry)
            except sqlite3.Error as e:
                self.logger.error(f"Failed to store trade: {e}")

        success = entry.status == TradeStatus.COMPLETED
        for handler in self._complete_handlers:
            try:
                handler(entry.payload_name, entry.trainer_name, success)
            except Exception as e:
                self.logger.error(f"Trade complete handler error: {e}")

    def _on_bot_progress(self, bot_name: str, message: str):
        for handler in self._bot_status_handlers:
            try:
                handler(bot_name, message)
            except Exception as e:
                self.logger.error(f"Bot status handler error: {e}")

    # -------------------------------------------------------------------------
    # Public API - Console Management
    # -------------------------------------------------------------------------

    async def add_bot(self, bot_config: BotConfig, link: LinkClient = None) -> bool:
        """
        Register and connect a console.

        Args:
            bot_config: Console registration.
            link: Link to use (created from bot_config if not provided).

        Returns:
            True if the console was added. A console that fails to connect
            is not added.
        """
        if bot_config.name in self.bots:
            self.logger.warning(f"Bot {bot_config.name} is already registered")
            return False

        if len(self.bots) >= MAX_BOTS:
            self.logger.warning(f"Max bots ({MAX_BOTS}) reached, cannot add {bot_config.name}")
            return False

        try:
            profile = resolve_title(bot_config.title, self.config.titles)
        except (KeyError, ValueError) as e:
            self.logger.error(f"Cannot add {bot_config.name}: {e}")
            return False

        bot = TradeBot(bot_config, profile, self.config.timing, link=link)
        bot.executor.on_progress(self._on_bot_progress)

        if not await bot.connect():
            self.logger.error(f"Failed to connect {bot_config.name}")
            return False

        self.bots[bot.name] = bot
        self.logger.info(f"Bot {bot.name} added (total: {len(self.bots)})")

        if self.running:
            self._start_bot(bot)
        return True

    async def remove_bot(self, name: str) -> bool:
        """Stop a console's loop, cancelling its current trade, and disconnect it."""
        bot = self.bots.pop(name, None)
        if bot is None:
            return False

        bot.stop()
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        await bot.disconnect()
        self.logger.info(f"Bot {name} removed")
        return True

    async def reconnect_bot(self, name: str) -> bool:
        """Reconnect a console whose link was lost."""
        bot = self.bots.get(name)
        if bot is None:
            return False

        if bot.is_busy:
            self.logger.warning(f"Cannot reconnect {name} while a trade is running")
            return False

        if await bot.connect():
            self.logger.info(f"Bot {name} reconnected")
            return True
        return False

    # -------------------------------------------------------------------------
    # Public API - Scheduling
    # -------------------------------------------------------------------------

    def start(self):
        """Start one loop task per registered console."""
        self.running = True
        for bot in self.bots.values():
            self._start_bot(bot)
        self.logger.info(f"Trade hub started with {len(self.bots)} bot(s)")

    async def stop(self):
        """Cancel every console loop and disconnect every link."""
        self.running = False

        for bot in self.bots.values():
            bot.stop()

        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for bot in self.bots.values():
            await bot.disconnect()

        if self._stop_event is not None:
            self._stop_event.set()
        self.logger.info("Trade hub stopped")

    def pause(self):
        """Stop claiming new entries. Running trades finish normally."""
        self.paused = True
        self.logger.info("Queue processing paused")

    def resume(self):
        self.paused = False
        self.logger.info("Queue processing resumed")

    def _start_bot(self, bot: TradeBot):
        task = self._tasks.get(bot.name)
        if task is not None and not task.done():
            return
        self._tasks[bot.name] = asyncio.ensure_future(self._run_bot(bot))

    async def _run_bot(self, bot: TradeBot):
        """Claim and run entries on one console until stopped."""
        timing = self.config.timing
        self.logger.info(f"{bot.name} waiting for trades")

        while self.running:
            if self.paused or bot.is_busy or not bot.is_connected:
                await asyncio.sleep(timing.idle_backoff)
                continue

            entry = self.queue.dequeue_next()
            if entry is None:
                await asyncio.sleep(timing.idle_backoff)
                continue

            if not self.queue.mark_active(entry, bot.name):
                # Another console claimed it first
                await asyncio.sleep(0)
                continue

            try:
                outcome = await bot.process(entry)
            except asyncio.CancelledError:
                self.queue.mark_terminal(entry, TradeOutcome.was_cancelled("bot stopped"))
                raise

            self.queue.mark_terminal(entry, outcome)
            await asyncio.sleep(timing.settle_delay)

    # -------------------------------------------------------------------------
    # Public API - Front-end Façade
    # -------------------------------------------------------------------------

    def submit(
        self,
        user_id: Union[int, str],
        trainer_name: str,
        payload_ref: Optional[PayloadRef],
        trade_code: Optional[int] = None,
        trade_type: TradeType = TradeType.TRADE,
        payload_name: str = None,
    ) -> QueueResult:
        """
        Resolve, validate and enqueue a request.

        Args:
            user_id: Submitter identity; one unfinished entry per user.
            trainer_name: In-game name shown in notifications.
            payload_ref: Payload reference (ignored by kinds that carry none).
            trade_code: Link code to enter (random when None).
            trade_type: Requested operation.
            payload_name: Display name (defaults to the resolved name).

        Returns:
            The admission result.
        """
        payload = None
        name = payload_name

        if trade_type.needs_payload:
            resolved = self.resolver.resolve(payload_ref) if payload_ref is not None else None
            if resolved is None:
                return QueueResult.INVALID_PAYLOAD
            payload = resolved.data
            name = name or resolved.name

        if trade_code is None:
            trade_code = generate_trade_code()
        elif not 0 <= trade_code <= MAX_TRADE_CODE:
            self.logger.warning(f"Rejected trade code {trade_code} from {user_id}")
            return QueueResult.NOT_ALLOWED

        entry = TradeEntry(
            user_id=user_id,
            trainer_name=trainer_name,
            payload=payload,
            payload_name=name or trade_type.value,
            trade_type=trade_type,
            trade_code=trade_code,
        )

        if self.validator is not None:
            try:
                allowed = self.validator(entry)
            except Exception as e:
                self.logger.error(f"Validator error: {e}")
                allowed = False
            if not allowed:
                return QueueResult.NOT_ALLOWED

        return self.queue.enqueue(entry)

    def cancel(self, user_id: Union[int, str]) -> bool:
        """Withdraw the user's pending entry."""
        return self.queue.remove(user_id)

    def position(self, user_id: Union[int, str]) -> int:
        """1-based queue position, 0 if the user has no pending entry."""
        return self.queue.position(user_id)

    def get_entry(self, user_id: Union[int, str]) -> Optional[TradeEntry]:
        return self.queue.get(user_id)

    def list_device_status(self) -> List[BotStatus]:
        return [bot.get_status() for bot in self.bots.values()]

    def on_trade_complete(self, handler: Callable[[str, str, bool], None]) -> bool:
        """Register a handler: handler(payload_name, trainer_name, success)."""
        if len(self._complete_handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max trade complete handlers reached")
            return False
        self._complete_handlers.append(handler)
        return True

    def on_bot_status(self, handler: Callable[[str, str], None]) -> bool:
        """Register a handler for console progress text: handler(bot_name, status_text)."""
        if len(self._bot_status_handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max bot status handlers reached")
            return False
        self._bot_status_handlers.append(handler)
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the queue and all consoles."""
        statuses = self.list_device_status()

        stats = {
            "running": self.running,
            "paused": self.paused,
            "total_bots": len(statuses),
            "connected_bots": sum(1 for s in statuses if s.connected),
            "busy_bots": sum(1 for s in statuses if s.busy),
            "queue_length": self.queue.count,
            "queue_capacity": self.queue.max_size,
            "active_trades": len(self.queue.get_active()),
            "total_trades": sum(s.trade_count for s in statuses),
            "total_failures": sum(s.failure_count for s in statuses),
        }
        if self.storage is not None:
            stats["history"] = self.storage.get_counts()
        return stats

    # -------------------------------------------------------------------------
    # Public API - Run Loop
    # -------------------------------------------------------------------------

    async def initialize(self) -> int:
        """
        Connect every enabled console from the configuration.

        Returns:
            Number of consoles connected.
        """
        self.logger.info("=" * 60)
        self.logger.info("TRADE HUB INITIALIZING")
        self.logger.info(f"Queue capacity: {self.config.max_queue_size}")
        self.logger.info(f"Payload folder: {self.config.payload_folder}")
        self.logger.info("=" * 60)

        connected = 0
        for bot_config in self.config.bots:
            if not bot_config.enabled:
                self.logger.info(f"Skipping disabled bot {bot_config.name}")
                continue
            if await self.add_bot(bot_config):
                connected += 1

        if connected == 0:
            self.logger.warning("No bots connected - requests will wait in the queue")
        return connected

    async def run(self, api: bool = False, api_host: str = None, api_port: int = None):
        """
        Run the hub until stopped.

        Args:
            api: Also serve the REST API in this event loop.
            api_host: Host to bind API server to (uses config if None).
            api_port: Port for API server (uses config if None).
        """
        self._stop_event = asyncio.Event()
        await self.initialize()
        self.start()

        try:
            if api:
                from .api import run_api_server_async

                await run_api_server_async(
                    self,
                    host=api_host or self.config.api.host,
                    port=api_port or self.config.api.port,
                )
            else:
                await self._stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Shutdown the hub."""
        self.logger.info("Shutting down trade hub...")
        await self.stop()
