#!/usr/bin/env python3
"""
Device Sessions for the Trade Hub Controller

This module handles one registered console:
- Link connection management (connect, explicit reconnect, disconnect)
- Running the trade executor for one entry at a time
- Per-device counters and status snapshots
- Stopping an in-flight trade
"""

import asyncio
import logging
import time
from typing import Optional

from .executor import LINK_LOST, UNEXPECTED_ERROR, TradeExecutor
from .link import LinkClient
from .models import (
    BotConfig,
    BotState,
    BotStatus,
    TimingConfig,
    TradeEntry,
    TradeOutcome,
)
from .titles import TitleProfile


class TradeBot:
    """
    A registered device: its link, its executor and its counters.

    The bot owns the link exclusively. ``process`` is only called by the
    controller's loop for this bot, so trades never overlap on one device.
    """

    def __init__(
        self,
        config: BotConfig,
        profile: TitleProfile,
        timing: TimingConfig = None,
        link: LinkClient = None,
        logger: logging.Logger = None,
    ):
        """
        Initialize the device session.

        Args:
            config: Device registration.
            profile: Title profile the device runs.
            timing: Trade timing settings.
            link: Link to use (creates one from config if not provided).
            logger: Logger instance (creates one if not provided).
        """
        self.config = config
        self.profile = profile
        self.timing = timing or TimingConfig()
        self.logger = logger or logging.getLogger(f"Bot.{config.name}")

        self.link = link or LinkClient(
            config.host,
            config.port,
            connect_timeout=self.timing.connect_timeout,
            response_timeout=self.timing.response_timeout,
            logger=logging.getLogger(f"Link.{config.name}"),
        )
        self.executor = TradeExecutor(
            self.link, profile, self.timing, bot_name=config.name, logger=self.logger
        )

        # Statistics
        self.trade_count = 0
        self.failure_count = 0
        self.last_activity: Optional[float] = None
        self.last_trade_time: Optional[float] = None

        self.current_entry: Optional[TradeEntry] = None
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_connected(self) -> bool:
        return self.link.is_connected

    @property
    def is_busy(self) -> bool:
        return self.current_entry is not None

    @property
    def state(self) -> BotState:
        if not self.is_connected:
            return BotState.DISCONNECTED
        return BotState.BUSY if self.is_busy else BotState.IDLE

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> bool:
        """Connect the link. Returns False on failure; no retry."""
        self.logger.info(
            f"Connecting to {self.config.host}:{self.config.port} ({self.profile.display_name})..."
        )
        connected = await self.link.connect()
        if connected:
            self.last_activity = time.time()
        return connected

    async def disconnect(self):
        await self.link.disconnect()

    # -------------------------------------------------------------------------
    # Trading
    # -------------------------------------------------------------------------

    async def process(self, entry: TradeEntry) -> TradeOutcome:
        """
        Run one trade on this device.

        Any exception from the sequence becomes a failed outcome; only task
        cancellation propagates.
        """
        if not self.is_connected:
            self.logger.error("Cannot process trade - not connected")
            self.failure_count += 1
            return TradeOutcome.failed(LINK_LOST)

        self.current_entry = entry
        self._cancel_event = asyncio.Event()
        self.last_activity = time.time()

        try:
            outcome = await self.executor.execute(entry, self._cancel_event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Unhandled executor error: {type(e).__name__}: {e}")
            outcome = TradeOutcome.failed(UNEXPECTED_ERROR)
        finally:
            self.current_entry = None
            self._cancel_event = None
            self.last_activity = time.time()

        if outcome.success:
            self.trade_count += 1
            self.last_trade_time = self.last_activity
        elif not outcome.cancelled:
            self.failure_count += 1
        return outcome

    def stop(self) -> bool:
        """
        Ask the in-flight trade to cancel.

        Returns:
            True if a trade was running.
        """
        if self._cancel_event is None:
            return False
        self.logger.info("Stop requested")
        self._cancel_event.set()
        return True

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_status(self) -> BotStatus:
        entry = self.current_entry
        return BotStatus(
            name=self.name,
            title=self.profile.name,
            state=self.state,
            connected=self.is_connected,
            busy=self.is_busy,
            trade_count=self.trade_count,
            failure_count=self.failure_count,
            last_trade=self.last_trade_time,
            current_trainer=entry.trainer_name if entry else None,
            executor_state=self.executor.state,
        )
