"""
Shared fixtures for the trade hub tests.

FakeLink stands in for a LinkClient: it records every command with its
event-loop timestamp and answers memory reads from scripted responses.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from tradehub_app.errors import LinkError
from tradehub_app.models import HubConfig, StorageConfig, TimingConfig
from tradehub_app.protocol import Button
from tradehub_app.titles import ButtonStep, TitleProfile


# =============================================================================
# Test Title
# =============================================================================

PAYLOAD_OFFSET = 0x100
PARTNER_NAME_OFFSET = 0x200
SEARCH_FLAG_OFFSET = 0x300
FOUND_FLAG_OFFSET = 0x310
PARTNER_PAYLOAD_OFFSET = 0x400
PAYLOAD_SIZE = 4

TEST_TITLE_CONFIG = {
    "display_name": "Test Title",
    "payload_offset": PAYLOAD_OFFSET,
    "payload_size": PAYLOAD_SIZE,
    "partner_name_offset": PARTNER_NAME_OFFSET,
    "search_flag_offset": SEARCH_FLAG_OFFSET,
    "found_flag_offset": FOUND_FLAG_OFFSET,
    "partner_payload_offset": PARTNER_PAYLOAD_OFFSET,
    "navigation": [["X", 0], ["A", 0]],
    "confirm": [["A", 0]],
    "code_submit": ["PLUS", 0],
    "keypad_move_ms": 0,
    "keypad_select_ms": 0,
}


def make_profile(**overrides) -> TitleProfile:
    values = dict(
        name="test",
        display_name="Test Title",
        payload_offset=PAYLOAD_OFFSET,
        payload_size=PAYLOAD_SIZE,
        partner_name_offset=PARTNER_NAME_OFFSET,
        search_flag_offset=SEARCH_FLAG_OFFSET,
        found_flag_offset=FOUND_FLAG_OFFSET,
        partner_payload_offset=PARTNER_PAYLOAD_OFFSET,
        navigation=(ButtonStep(Button.X, 0), ButtonStep(Button.A, 0)),
        confirm=(ButtonStep(Button.A, 0),),
        keypad_move_ms=0,
        keypad_select_ms=0,
        code_submit=ButtonStep(Button.PLUS, 0),
    )
    values.update(overrides)
    return TitleProfile(**values)


def fast_timing(**overrides) -> TimingConfig:
    values = dict(
        poll_interval=0.01,
        partner_timeout=0.5,
        completion_timeout=0.5,
        injection_settle=0,
        settle_delay=0,
        idle_backoff=0.01,
        recovery_presses=2,
        recovery_delay=0,
        connect_timeout=1,
        response_timeout=1,
    )
    values.update(overrides)
    return TimingConfig(**values)


# =============================================================================
# Fake Link
# =============================================================================

class FakeLink:
    """
    In-memory link.

    ``reads`` maps an offset to a list of responses; each read pops the first
    response until one is left, which then repeats. Unscripted offsets read
    as zeros.
    """

    def __init__(self, reads: Dict[int, List[bytes]] = None, connect_result: bool = True):
        self.reads = {k: list(v) for k, v in (reads or {}).items()}
        self.connect_result = connect_result
        self.connected = False
        self.fail_reads = False
        self.commands: List[Tuple[float, str, object]] = []
        self.read_times: Dict[int, List[float]] = {}

    @property
    def is_connected(self) -> bool:
        return self.connected

    def _record(self, verb: str, arg=None):
        self.commands.append((asyncio.get_running_loop().time(), verb, arg))

    def clicks(self, button: Optional[Button] = None) -> List[Button]:
        return [
            arg for _, verb, arg in self.commands
            if verb == "click" and (button is None or arg == button)
        ]

    def verbs(self) -> List[str]:
        return [verb for _, verb, _ in self.commands]

    async def connect(self) -> bool:
        self.connected = self.connect_result
        return self.connected

    async def disconnect(self):
        self.connected = False

    async def read_bytes(self, offset: int, length: int, absolute: bool = False) -> bytes:
        if not self.connected:
            return b""
        if self.fail_reads:
            self.connected = False
            raise LinkError("Connection closed by device")

        self._record("peek", offset)
        self.read_times.setdefault(offset, []).append(asyncio.get_running_loop().time())
        queue = self.reads.get(offset)
        if not queue:
            return bytes(length)
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def write_bytes(self, offset: int, data: bytes, absolute: bool = False):
        if self.connected:
            self._record("poke", (offset, data))

    async def click(self, button: Button):
        if self.connected:
            self._record("click", button)

    async def press(self, button: Button):
        if self.connected:
            self._record("press", button)

    async def release(self, button: Button):
        if self.connected:
            self._record("release", button)

    async def set_stick(self, stick, x: int, y: int):
        if self.connected:
            self._record("stick", (stick, x, y))

    async def hold(self, button: Button, duration_ms: int):
        await self.press(button)
        try:
            await asyncio.sleep(duration_ms / 1000)
        finally:
            await self.release(button)


def partner_name(name: str, size: int = 26) -> bytes:
    return name.encode("utf-16-le").ljust(size, b"\x00")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def profile() -> TitleProfile:
    return make_profile()


@pytest.fixture
def timing() -> TimingConfig:
    return fast_timing()


@pytest.fixture
def hub_config(tmp_path) -> HubConfig:
    """Hub config with the test title, fast timing and no log file."""
    return HubConfig(
        timing=fast_timing(),
        titles={"test": dict(TEST_TITLE_CONFIG)},
        payload_folder=str(tmp_path),
        storage=StorageConfig(enabled=True, db_path=str(tmp_path / "history.db")),
        log_file="",
    )
