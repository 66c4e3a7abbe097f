#!/usr/bin/env python3
"""
Trade Executor for the Trade Hub Controller

Drives one device through the interactive trade sequence for one queue entry:

    IDLE -> NAVIGATING -> AWAITING_PARTNER -> INJECTING -> CONFIRMING
         -> AWAITING_COMPLETION -> SUCCEEDED / FAILED

Any timeout, link failure, unexpected error or cancellation moves the device
to RECOVERING, which backs out to a neutral menu before the outcome is
reported. The sequence is the same for every title; the TitleProfile supplies
offsets, menu steps and the keypad layout.

Cancellation:
    ``execute`` takes an optional asyncio.Event. It is checked at every step
    and poll boundary and interrupts every timed wait, including button
    holds (whose release is still sent). Observing it yields a cancelled
    outcome. Cancelling the task running ``execute`` also recovers the device
    before the CancelledError propagates.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from .errors import LinkError, SequenceTimeout, TradeCancelled, TradeHubError
from .link import LinkClient
from .models import (
    MAX_EVENT_HANDLERS,
    ExecutorState,
    TimingConfig,
    TradeEntry,
    TradeOutcome,
    TradeType,
)
from .protocol import Button
from .titles import ButtonStep, TitleProfile


# =============================================================================
# Constants
# =============================================================================

PARTNER_NOT_FOUND = "partner not found"
TRADE_NOT_FINISHED = "exchange did not finish"
LINK_LOST = "link lost"
UNEXPECTED_ERROR = "unexpected error"

# Kinds that read the partner's offer instead of sending our own payload
READ_ONLY_TYPES = (TradeType.DUMP, TradeType.SEED_CHECK)


class TradeExecutor:
    """
    Per-device trade state machine.

    One executor serves one entry at a time; the controller never calls
    ``execute`` while a previous call is still running.
    """

    def __init__(
        self,
        link: LinkClient,
        profile: TitleProfile,
        timing: TimingConfig = None,
        bot_name: str = "Bot",
        logger: logging.Logger = None,
    ):
        self.link = link
        self.profile = profile
        self.timing = timing or TimingConfig()
        self.bot_name = bot_name
        self.logger = logger or logging.getLogger(f"Bot.{bot_name}")

        self.state = ExecutorState.IDLE
        self._cancel: asyncio.Event = asyncio.Event()

        self._progress_handlers: List[Callable[[str, str], None]] = []
        self._state_handlers: List[Callable[[ExecutorState, ExecutorState], None]] = []

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def on_progress(self, handler: Callable[[str, str], None]) -> bool:
        """Register a handler for step descriptions: handler(bot_name, message)."""
        if len(self._progress_handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max progress handlers reached")
            return False
        self._progress_handlers.append(handler)
        return True

    def on_state_change(self, handler: Callable[[ExecutorState, ExecutorState], None]) -> bool:
        """Register a handler for state transitions: handler(old, new)."""
        if len(self._state_handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max state handlers reached")
            return False
        self._state_handlers.append(handler)
        return True

    def _set_state(self, state: ExecutorState):
        old_state = self.state
        if old_state == state:
            return
        self.state = state
        self.logger.debug(f"State: {old_state.value} -> {state.value}")

        for handler in self._state_handlers:
            try:
                handler(old_state, state)
            except Exception as e:
                self.logger.error(f"State handler error: {e}")

    def _log(self, message: str):
        self.logger.info(message)
        for handler in self._progress_handlers:
            try:
                handler(self.bot_name, message)
            except Exception as e:
                self.logger.error(f"Progress handler error: {e}")

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def execute(self, entry: TradeEntry, cancel_event: asyncio.Event = None) -> TradeOutcome:
        """
        Run the full trade sequence for one entry.

        Args:
            entry: The active queue entry.
            cancel_event: Set to abandon the trade; the device is recovered
                and a cancelled outcome returned.

        Returns:
            The terminal outcome. Only task cancellation raises.
        """
        self._cancel = cancel_event or asyncio.Event()

        problem = self._check_entry(entry)
        if problem:
            self._log(f"Cannot start {entry.trade_type.value} for {entry.trainer_name}: {problem}")
            self._set_state(ExecutorState.FAILED)
            self._set_state(ExecutorState.IDLE)
            return TradeOutcome.failed(problem)

        try:
            outcome = await self._run_sequence(entry)
        except TradeCancelled:
            self._log("Trade cancelled")
            await self._recover()
            outcome = TradeOutcome.was_cancelled()
        except asyncio.CancelledError:
            self._log("Trade interrupted")
            await self._recover()
            self._set_state(ExecutorState.IDLE)
            raise
        except SequenceTimeout as e:
            self._log(f"Trade failed: {e.reason}")
            await self._recover()
            outcome = TradeOutcome.failed(e.reason)
        except LinkError as e:
            self._log(f"Trade failed: {LINK_LOST}")
            self.logger.error(f"Link error during trade: {e}")
            await self._recover()
            outcome = TradeOutcome.failed(LINK_LOST)
        except Exception as e:
            self._log("Trade failed")
            self.logger.error(f"Trade error: {type(e).__name__}: {e}")
            await self._recover()
            outcome = TradeOutcome.failed(UNEXPECTED_ERROR)

        if outcome.success:
            self._log(f"Trade completed successfully with {entry.trainer_name}!")
        elif not outcome.cancelled:
            self._set_state(ExecutorState.FAILED)
        self._set_state(ExecutorState.IDLE)
        return outcome

    def _check_entry(self, entry: TradeEntry) -> Optional[str]:
        """Reasons an entry cannot be traded on this title, checked before touching the device."""
        try:
            self.profile.code_cells(entry.trade_code)
        except ValueError as e:
            return str(e)

        if entry.trade_type.needs_payload:
            if not entry.payload:
                return "no payload"
            if len(entry.payload) != self.profile.payload_size:
                return "payload size mismatch"
        elif self.profile.partner_payload_offset is None:
            return f"{entry.trade_type.value} is not supported by {self.profile.display_name}"
        return None

    # -------------------------------------------------------------------------
    # Sequence
    # -------------------------------------------------------------------------

    async def _run_sequence(self, entry: TradeEntry) -> TradeOutcome:
        self._log(
            f"Starting {entry.trade_type.value} with {entry.trainer_name}"
            + (f" - Trading {entry.payload_name}" if entry.payload_name else "")
        )

        self._set_state(ExecutorState.NAVIGATING)
        self._log("Opening trade menu...")
        await self._run_steps(self.profile.navigation)
        self._log(f"Entering trade code: {entry.trade_code:0{self.profile.code_digits}d}")
        await self._enter_code(entry.trade_code)

        self._set_state(ExecutorState.AWAITING_PARTNER)
        self._log("Searching for trade partner...")
        await self._check_searching()
        await self._wait_for_flag(
            self.profile.found_value, self.timing.partner_timeout, PARTNER_NOT_FOUND
        )
        partner = await self._read_partner_name()
        self._log(f"Found trade partner: {partner or 'unknown'}")

        self._set_state(ExecutorState.INJECTING)
        if entry.trade_type in READ_ONLY_TYPES:
            extracted = await self._read_partner_offer()
            self._log(f"Read {len(extracted)} bytes from {partner or 'partner'}, leaving trade")
            await self._press_back()
            self._set_state(ExecutorState.SUCCEEDED)
            return TradeOutcome(success=True, partner_name=partner, extracted=extracted)

        self._log("Preparing trade data...")
        await self._inject(entry)

        self._set_state(ExecutorState.CONFIRMING)
        self._log("Confirming trade...")
        await self._run_steps(self.profile.confirm)

        self._set_state(ExecutorState.AWAITING_COMPLETION)
        await self._wait_for_flag(
            self.profile.not_found_value, self.timing.completion_timeout, TRADE_NOT_FINISHED
        )

        self._set_state(ExecutorState.SUCCEEDED)
        return TradeOutcome(success=True, partner_name=partner)

    async def _enter_code(self, code: int):
        """Walk the keypad cursor to each digit's cell, select it, and walk back."""
        move = self.profile.keypad_move_ms
        for row, col in self.profile.code_cells(code):
            for _ in range(row):
                await self._click(Button.DDOWN, move)
            for _ in range(col):
                await self._click(Button.DRIGHT, move)

            await self._click(Button.A, self.profile.keypad_select_ms)

            for _ in range(row):
                await self._click(Button.DUP, move)
            for _ in range(col):
                await self._click(Button.DLEFT, move)

        await self._run_steps((self.profile.code_submit,))

    async def _check_searching(self):
        data = await self.link.read_bytes(self.profile.search_flag_offset, 1)
        if data and data[0] == 0:
            self.logger.warning("Link search flag is not set after code entry")

    async def _wait_for_flag(self, expected: int, timeout: float, reason: str):
        """
        Poll the partner flag every poll_interval until it reads ``expected``.

        Raises:
            SequenceTimeout: with ``reason`` once ``timeout`` seconds have passed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise SequenceTimeout(reason)

            await self._pause(min(self.timing.poll_interval, remaining))
            data = await self.link.read_bytes(self.profile.found_flag_offset, 1)
            self._check_cancel()
            if data and data[0] == expected:
                return

    async def _read_partner_name(self) -> str:
        data = await self.link.read_bytes(
            self.profile.partner_name_offset, self.profile.partner_name_size
        )
        if len(data) % 2:
            data = data[:-1]
        return data.decode("utf-16-le", errors="ignore").split("\x00", 1)[0].strip()

    async def _read_partner_offer(self) -> bytes:
        data = await self.link.read_bytes(
            self.profile.partner_payload_offset, self.profile.payload_size
        )
        self._check_cancel()
        if len(data) != self.profile.payload_size:
            raise TradeHubError("partner offer unavailable")
        return data

    async def _inject(self, entry: TradeEntry):
        if entry.trade_type == TradeType.CLONE:
            payload = await self._read_partner_offer()
        else:
            payload = entry.payload

        await self.link.write_bytes(self.profile.payload_offset, payload)
        await self._pause(self.timing.injection_settle)

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    async def _press_back(self):
        """Back out of the trade screens. Never raises on a dead link."""
        for _ in range(self.timing.recovery_presses):
            try:
                await self.link.click(self.profile.recovery_button)
            except LinkError as e:
                self.logger.warning(f"Back press failed: {e}")
                return
            await asyncio.sleep(self.timing.recovery_delay)

    async def _recover(self):
        self._set_state(ExecutorState.RECOVERING)
        self._log("Returning to overworld...")
        await self._press_back()

    # -------------------------------------------------------------------------
    # Cancellable Primitives
    # -------------------------------------------------------------------------

    def _check_cancel(self):
        if self._cancel.is_set():
            raise TradeCancelled()

    async def _pause(self, seconds: float):
        """Sleep that ends early, raising TradeCancelled, when the cancel event is set."""
        self._check_cancel()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise TradeCancelled()

    async def _click(self, button: Button, delay_ms: int = 500):
        self._check_cancel()
        await self.link.click(button)
        await self._pause(delay_ms / 1000)

    async def _hold(self, button: Button, hold_ms: int, delay_ms: int = 500):
        """Hold a button; a cancel cuts the hold short but the release still goes out."""
        self._check_cancel()
        hold = asyncio.ensure_future(self.link.hold(button, hold_ms))
        waiter = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({hold, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not hold.done():
                hold.cancel()
                await asyncio.wait({hold})

        if hold.cancelled():
            raise TradeCancelled()
        hold.result()
        await self._pause(delay_ms / 1000)

    async def _run_steps(self, steps: Tuple[ButtonStep, ...]):
        for step in steps:
            if step.hold_ms > 0:
                await self._hold(step.button, step.hold_ms, step.delay_ms)
            else:
                await self._click(step.button, step.delay_ms)
