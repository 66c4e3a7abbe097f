#!/usr/bin/env python3
"""Device session tests: counters, status snapshots and stop."""

import asyncio

import pytest

from tradehub_app.device import TradeBot
from tradehub_app.models import BotConfig, BotState, ExecutorState, TradeEntry, TradeStatus

from conftest import FOUND_FLAG_OFFSET, FakeLink, fast_timing, make_profile


def make_bot(flags, **timing) -> TradeBot:
    link = FakeLink({FOUND_FLAG_OFFSET: flags})
    return TradeBot(BotConfig(name="Bot1"), make_profile(), fast_timing(**timing), link=link)


def make_entry() -> TradeEntry:
    return TradeEntry(user_id=1, trainer_name="Ash", payload=b"\x00" * 4,
                      trade_code=1, status=TradeStatus.ACTIVE)


@pytest.mark.asyncio
async def test_process_when_disconnected():
    bot = make_bot([b"\x01"])
    outcome = await bot.process(make_entry())

    assert not outcome.success
    assert outcome.reason == "link lost"
    assert bot.failure_count == 1
    assert bot.state == BotState.DISCONNECTED


@pytest.mark.asyncio
async def test_counters_and_status():
    bot = make_bot([b"\x01", b"\x00", b"\x01", b"\x01"], completion_timeout=0.05)
    assert await bot.connect()

    assert (await bot.process(make_entry())).success
    assert not (await bot.process(make_entry())).success

    status = bot.get_status()
    assert status.trade_count == 1
    assert status.failure_count == 1
    assert status.last_trade is not None
    assert status.state == BotState.IDLE
    assert status.executor_state == ExecutorState.IDLE
    assert status.current_trainer is None


@pytest.mark.asyncio
async def test_stop_cancels_without_counting_failure():
    bot = make_bot([b"\x00"], partner_timeout=5)
    await bot.connect()
    assert bot.stop() is False

    task = asyncio.ensure_future(bot.process(make_entry()))
    while not bot.is_busy:
        await asyncio.sleep(0.005)

    status = bot.get_status()
    assert status.state == BotState.BUSY
    assert status.current_trainer == "Ash"

    assert bot.stop() is True
    outcome = await task

    assert outcome.cancelled
    assert bot.failure_count == 0
    assert bot.trade_count == 0
    assert not bot.is_busy
