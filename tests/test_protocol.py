#!/usr/bin/env python3
"""Wire format tests: command lines and read response decoding."""

import pytest

from tradehub_app.protocol import (
    MAX_READ_LENGTH,
    Button,
    Command,
    Stick,
    create_button_command,
    create_peek_command,
    create_poke_command,
    create_stick_command,
    decode_hex_response,
    format_address,
)


# =============================================================================
# Command Builders
# =============================================================================

def test_peek_main_command():
    assert create_peek_command(0x46F120E0, 1) == b"peekMain 0x46F120E0 1\r\n"


def test_peek_absolute_command():
    assert create_peek_command(0xABC, 16, absolute=True) == b"peekAbsolute 0xABC 16\r\n"


def test_peek_rejects_bad_lengths():
    with pytest.raises(ValueError):
        create_peek_command(0x100, 0)
    with pytest.raises(ValueError):
        create_peek_command(0x100, MAX_READ_LENGTH + 1)


def test_poke_command_uses_uppercase_hex():
    assert (
        create_poke_command(0x46E4E528, bytes([0x01, 0xAB, 0x00]))
        == b"pokeMain 0x46E4E528 0x01AB00\r\n"
    )


def test_poke_absolute_and_empty_block():
    assert create_poke_command(0x10, b"\xff", absolute=True) == b"pokeAbsolute 0x10 0xFF\r\n"
    with pytest.raises(ValueError):
        create_poke_command(0x10, b"")


def test_button_commands():
    assert create_button_command(Command.CLICK, Button.A) == b"click A\r\n"
    assert create_button_command(Command.PRESS, Button.DDOWN) == b"press DDOWN\r\n"
    assert create_button_command(Command.RELEASE, Button.PLUS) == b"release PLUS\r\n"

    with pytest.raises(ValueError):
        create_button_command(Command.PEEK_MAIN, Button.A)


def test_stick_command_clamps_axes():
    assert create_stick_command(Stick.LEFT, 0, 0) == b"setStick LEFT 0 0\r\n"
    assert create_stick_command(Stick.RIGHT, 40000, -40000) == b"setStick RIGHT 32767 -32768\r\n"


def test_format_address():
    assert format_address(0) == "0x0"
    assert format_address(0x46f12f08) == "0x46F12F08"
    with pytest.raises(ValueError):
        format_address(-1)


# =============================================================================
# Response Parsing
# =============================================================================

def test_decode_hex_response():
    assert decode_hex_response(b"0102FF\r\n") == b"\x01\x02\xff"
    assert decode_hex_response("0a0b") == b"\x0a\x0b"


@pytest.mark.parametrize("line", [b"", b"\r\n", b"ABC\r\n", b"ZZ\r\n", b"\xff\xfe\r\n"])
def test_decode_treats_bad_lines_as_no_data(line):
    assert decode_hex_response(line) == b""
