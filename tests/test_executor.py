#!/usr/bin/env python3
"""
Trade executor tests.

Every test drives the state machine over a FakeLink with scripted flag
reads and millisecond timings.
"""

import asyncio

import pytest

from tradehub_app.executor import (
    LINK_LOST,
    PARTNER_NOT_FOUND,
    TRADE_NOT_FINISHED,
    TradeExecutor,
)
from tradehub_app.models import ExecutorState, TradeEntry, TradeStatus, TradeType
from tradehub_app.protocol import Button
from tradehub_app.titles import ButtonStep

from conftest import (
    FOUND_FLAG_OFFSET,
    PARTNER_NAME_OFFSET,
    PARTNER_PAYLOAD_OFFSET,
    PAYLOAD_OFFSET,
    FakeLink,
    fast_timing,
    make_profile,
    partner_name,
)

PAYLOAD = b"\x01\x02\x03\x04"


def make_entry(trade_type=TradeType.TRADE, payload=PAYLOAD, code=12345678) -> TradeEntry:
    return TradeEntry(
        user_id=1,
        trainer_name="Ash",
        payload=payload,
        payload_name="Pikachu",
        trade_type=trade_type,
        trade_code=code,
        status=TradeStatus.ACTIVE,
    )


async def make_executor(flags, profile=None, timing=None, reads=None):
    link = FakeLink({FOUND_FLAG_OFFSET: flags, PARTNER_NAME_OFFSET: [partner_name("Gary")], **(reads or {})})
    await link.connect()
    executor = TradeExecutor(link, profile or make_profile(), timing or fast_timing(), bot_name="Bot1")

    states = []
    loop = asyncio.get_running_loop()
    executor.on_state_change(lambda old, new: states.append((loop.time(), new)))
    return link, executor, states


def state_names(states):
    return [s for _, s in states]


# =============================================================================
# Successful Sequences
# =============================================================================

@pytest.mark.asyncio
async def test_successful_trade():
    link, executor, states = await make_executor([b"\x00", b"\x01", b"\x00"])
    progress = []
    executor.on_progress(lambda bot, msg: progress.append((bot, msg)))

    outcome = await executor.execute(make_entry())

    assert outcome.success
    assert not outcome.cancelled
    assert outcome.partner_name == "Gary"
    assert state_names(states) == [
        ExecutorState.NAVIGATING,
        ExecutorState.AWAITING_PARTNER,
        ExecutorState.INJECTING,
        ExecutorState.CONFIRMING,
        ExecutorState.AWAITING_COMPLETION,
        ExecutorState.SUCCEEDED,
        ExecutorState.IDLE,
    ]
    assert ("poke", (PAYLOAD_OFFSET, PAYLOAD)) in [(v, a) for _, v, a in link.commands]
    assert executor.state == ExecutorState.IDLE
    assert all(bot == "Bot1" for bot, _ in progress)
    assert any("Gary" in msg for _, msg in progress)


@pytest.mark.asyncio
async def test_code_entry_walks_keypad():
    link, executor, _ = await make_executor([b"\x01", b"\x00"])
    await executor.execute(make_entry(code=50))

    clicks = link.clicks()
    # Navigation first, code submit last before any read
    assert clicks[:2] == [Button.X, Button.A]

    # Six zeros: down 3, right 1, A, up 3, left 1
    zero = [Button.DDOWN] * 3 + [Button.DRIGHT, Button.A] + [Button.DUP] * 3 + [Button.DLEFT]
    # Digit 5: down 1, right 1, A, up 1, left 1
    five = [Button.DDOWN, Button.DRIGHT, Button.A, Button.DUP, Button.DLEFT]
    code_clicks = clicks[2:2 + 6 * len(zero) + len(five) + len(zero) + 1]
    assert code_clicks == zero * 6 + five + zero + [Button.PLUS]


@pytest.mark.asyncio
async def test_partner_found_on_third_poll():
    interval = 0.05
    timing = fast_timing(poll_interval=interval, partner_timeout=2)
    link, executor, states = await make_executor(
        [b"\x00", b"\x00", b"\x01", b"\x00"], timing=timing
    )

    outcome = await executor.execute(make_entry())
    assert outcome.success

    times = dict((s, t) for t, s in states)
    waited = times[ExecutorState.INJECTING] - times[ExecutorState.AWAITING_PARTNER]
    assert waited >= 3 * interval * 0.9
    assert waited < 3 * interval + 0.5
    # Three partner polls, then completion polls
    partner_polls = [t for t in link.read_times[FOUND_FLAG_OFFSET] if t <= times[ExecutorState.INJECTING]]
    assert len(partner_polls) == 3


@pytest.mark.asyncio
async def test_clone_writes_partner_offer_back():
    offer = b"\xaa\xbb\xcc\xdd"
    link, executor, _ = await make_executor(
        [b"\x01", b"\x00"], reads={PARTNER_PAYLOAD_OFFSET: [offer]}
    )

    outcome = await executor.execute(make_entry(TradeType.CLONE, payload=None))

    assert outcome.success
    assert ("poke", (PAYLOAD_OFFSET, offer)) in [(v, a) for _, v, a in link.commands]


@pytest.mark.asyncio
async def test_dump_reads_offer_and_backs_out():
    offer = b"\x10\x20\x30\x40"
    timing = fast_timing(recovery_presses=3)
    link, executor, states = await make_executor(
        [b"\x01"], timing=timing, reads={PARTNER_PAYLOAD_OFFSET: [offer]}
    )

    outcome = await executor.execute(make_entry(TradeType.DUMP, payload=None))

    assert outcome.success
    assert outcome.extracted == offer
    assert "poke" not in link.verbs()
    assert ExecutorState.CONFIRMING not in state_names(states)
    assert len(link.clicks(Button.B)) == 3


# =============================================================================
# Up-front Rejections
# =============================================================================

@pytest.mark.asyncio
async def test_payload_size_mismatch_touches_nothing():
    link, executor, _ = await make_executor([b"\x01"])

    outcome = await executor.execute(make_entry(payload=b"\x01\x02"))

    assert not outcome.success
    assert outcome.reason == "payload size mismatch"
    assert link.commands == []
    assert executor.state == ExecutorState.IDLE


@pytest.mark.asyncio
async def test_missing_payload():
    link, executor, _ = await make_executor([b"\x01"])
    outcome = await executor.execute(make_entry(payload=None))
    assert outcome.reason == "no payload"


@pytest.mark.asyncio
async def test_clone_unsupported_without_partner_offset():
    link, executor, _ = await make_executor([b"\x01"], profile=make_profile(partner_payload_offset=None))
    outcome = await executor.execute(make_entry(TradeType.CLONE, payload=None))

    assert not outcome.success
    assert "not supported" in outcome.reason
    assert link.commands == []


# =============================================================================
# Failures
# =============================================================================

@pytest.mark.asyncio
async def test_partner_timeout_recovers():
    timing = fast_timing(partner_timeout=0.1, recovery_presses=4)
    link, executor, states = await make_executor([b"\x00"], timing=timing)

    outcome = await executor.execute(make_entry())

    assert not outcome.success
    assert not outcome.cancelled
    assert outcome.reason == PARTNER_NOT_FOUND
    assert state_names(states)[-3:] == [
        ExecutorState.RECOVERING, ExecutorState.FAILED, ExecutorState.IDLE,
    ]
    assert len(link.clicks(Button.B)) == 4
    assert "poke" not in link.verbs()


@pytest.mark.asyncio
async def test_completion_timeout():
    timing = fast_timing(completion_timeout=0.1)
    link, executor, _ = await make_executor([b"\x01"], timing=timing)

    outcome = await executor.execute(make_entry())

    assert not outcome.success
    assert outcome.reason == TRADE_NOT_FINISHED


@pytest.mark.asyncio
async def test_link_lost_during_wait():
    link, executor, states = await make_executor([b"\x00"])
    link.fail_reads = True

    outcome = await executor.execute(make_entry())

    assert not outcome.success
    assert outcome.reason == LINK_LOST
    assert ExecutorState.RECOVERING in state_names(states)
    assert executor.state == ExecutorState.IDLE


@pytest.mark.asyncio
async def test_unexpected_error_becomes_failure(caplog):
    link, executor, _ = await make_executor([b"\x01"])

    async def broken(offset, data, absolute=False):
        raise RuntimeError("write exploded")

    link.write_bytes = broken
    outcome = await executor.execute(make_entry())

    assert not outcome.success
    assert outcome.reason == "unexpected error"
    assert "write exploded" in caplog.text


# =============================================================================
# Cancellation
# =============================================================================

@pytest.mark.asyncio
async def test_cancel_while_awaiting_partner():
    link, executor, states = await make_executor([b"\x00"], timing=fast_timing(partner_timeout=5))
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()

    def on_state(old, new):
        if new == ExecutorState.AWAITING_PARTNER:
            loop.call_later(0.05, cancel.set)

    executor.on_state_change(on_state)
    start = loop.time()
    outcome = await executor.execute(make_entry(), cancel)

    assert outcome.cancelled
    assert not outcome.success
    assert outcome.status == TradeStatus.CANCELLED
    assert loop.time() - start < 1

    names = state_names(states)
    recovering = names.index(ExecutorState.RECOVERING)
    assert names[recovering - 1] == ExecutorState.AWAITING_PARTNER
    assert ExecutorState.FAILED not in names
    assert len(link.clicks(Button.B)) >= 1


@pytest.mark.asyncio
async def test_cancel_before_start():
    link, executor, _ = await make_executor([b"\x01"])
    cancel = asyncio.Event()
    cancel.set()

    outcome = await executor.execute(make_entry(), cancel)

    assert outcome.cancelled
    assert "poke" not in link.verbs()


@pytest.mark.asyncio
async def test_cancel_interrupts_hold_and_releases():
    profile = make_profile(navigation=(ButtonStep(Button.A, 0, hold_ms=5000),))
    link, executor, _ = await make_executor([b"\x01"], profile=profile)
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.call_later(0.05, cancel.set)

    start = loop.time()
    outcome = await executor.execute(make_entry(), cancel)

    assert outcome.cancelled
    assert loop.time() - start < 1
    verbs = [(v, a) for _, v, a in link.commands]
    assert verbs[:2] == [("press", Button.A), ("release", Button.A)]


@pytest.mark.asyncio
async def test_task_cancel_recovers_then_propagates():
    timing = fast_timing(partner_timeout=5, recovery_presses=3)
    link, executor, _ = await make_executor([b"\x00"], timing=timing)

    task = asyncio.ensure_future(executor.execute(make_entry()))
    while executor.state != ExecutorState.AWAITING_PARTNER:
        await asyncio.sleep(0.005)
    await asyncio.sleep(0.02)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(link.clicks(Button.B)) == 3
    assert executor.state == ExecutorState.IDLE
