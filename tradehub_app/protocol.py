#!/usr/bin/env python3
"""
Device Link Protocol

This module defines the line-oriented text protocol spoken between the hub
and a console running a sys-botbase style remote control service.

Protocol Overview:
- One persistent TCP stream per device
- One ASCII command per line, terminated with CRLF
- Only memory reads produce a response line
- All other commands are fire-and-forget

Command Format:
    <verb> <args...>\\r\\n

Memory Commands:
    peekMain 0x<OFFSET> <LENGTH>        Read LENGTH bytes, main-relative
    pokeMain 0x<OFFSET> 0x<HEXDATA>     Write bytes, main-relative
    peekAbsolute 0x<OFFSET> <LENGTH>    Read LENGTH bytes, absolute address
    pokeAbsolute 0x<OFFSET> 0x<HEXDATA> Write bytes, absolute address

Input Commands:
    click <BUTTON>                      Press and release
    press <BUTTON>                      Press and keep down
    release <BUTTON>                    Release
    setStick <LEFT|RIGHT> <X> <Y>       Stick position, signed 16-bit axes

Read Response:
    A single line of hexadecimal digits without separators, two characters
    per byte. An empty or unparsable line means "no data".
"""

from enum import Enum
from typing import Union


# =============================================================================
# Constants
# =============================================================================

# Line terminator for every command
LINE_END = "\r\n"

# Command encoding
ENCODING = "ascii"

# Stick axis bounds (signed 16-bit)
STICK_MIN = -0x8000
STICK_MAX = 0x7FFF

# Largest single read accepted from a device
MAX_READ_LENGTH = 0x10000


# =============================================================================
# Enums
# =============================================================================

class Button(Enum):
    """Controller buttons understood by the remote service."""
    A = "A"
    B = "B"
    X = "X"
    Y = "Y"
    DDOWN = "DDOWN"
    DUP = "DUP"
    DLEFT = "DLEFT"
    DRIGHT = "DRIGHT"
    L = "L"
    R = "R"
    ZL = "ZL"
    ZR = "ZR"
    PLUS = "PLUS"
    MINUS = "MINUS"
    LSTICK = "LSTICK"
    RSTICK = "RSTICK"
    HOME = "HOME"
    CAPTURE = "CAPTURE"


class Stick(Enum):
    """Analog sticks."""
    LEFT = "LEFT"
    RIGHT = "RIGHT"


class Command(Enum):
    """Protocol verbs."""
    PEEK_MAIN = "peekMain"
    POKE_MAIN = "pokeMain"
    PEEK_ABSOLUTE = "peekAbsolute"
    POKE_ABSOLUTE = "pokeAbsolute"
    CLICK = "click"
    PRESS = "press"
    RELEASE = "release"
    SET_STICK = "setStick"


# =============================================================================
# Command Builders
# =============================================================================

def _line(*parts: Union[str, int]) -> bytes:
    return (" ".join(str(p) for p in parts) + LINE_END).encode(ENCODING)


def format_address(offset: int) -> str:
    """Format an address the way the service parses it (0x-prefixed, uppercase)."""
    if offset < 0:
        raise ValueError(f"Negative address: {offset}")
    return f"0x{offset:X}"


def create_peek_command(offset: int, length: int, absolute: bool = False) -> bytes:
    """Create a memory read command."""
    if length <= 0 or length > MAX_READ_LENGTH:
        raise ValueError(f"Invalid read length: {length}")
    verb = Command.PEEK_ABSOLUTE if absolute else Command.PEEK_MAIN
    return _line(verb.value, format_address(offset), length)


def create_poke_command(offset: int, data: bytes, absolute: bool = False) -> bytes:
    """Create a memory write command carrying hex-encoded data."""
    if not data:
        raise ValueError("Cannot write an empty block")
    verb = Command.POKE_ABSOLUTE if absolute else Command.POKE_MAIN
    return _line(verb.value, format_address(offset), "0x" + data.hex().upper())


def create_button_command(verb: Command, button: Button) -> bytes:
    """Create a click/press/release command."""
    if verb not in (Command.CLICK, Command.PRESS, Command.RELEASE):
        raise ValueError(f"Not a button verb: {verb}")
    return _line(verb.value, button.value)


def create_stick_command(stick: Stick, x: int, y: int) -> bytes:
    """Create a stick command, clamping both axes to the signed 16-bit range."""
    x = max(STICK_MIN, min(STICK_MAX, int(x)))
    y = max(STICK_MIN, min(STICK_MAX, int(y)))
    return _line(Command.SET_STICK.value, stick.value, x, y)


# =============================================================================
# Response Parsing
# =============================================================================

def decode_hex_response(line: Union[bytes, str]) -> bytes:
    """
    Decode a read response line.

    Returns:
        Decoded bytes, or b"" for an empty, odd-length or non-hex line.
    """
    if isinstance(line, bytes):
        try:
            line = line.decode(ENCODING)
        except UnicodeDecodeError:
            return b""

    text = line.strip()
    if not text or len(text) % 2:
        return b""

    try:
        return bytes.fromhex(text)
    except ValueError:
        return b""
