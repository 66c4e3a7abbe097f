#!/usr/bin/env python3
"""
Title Profiles for the Trade Hub Controller

Every supported game title is described by a TitleProfile: the memory
offsets the trade sequence reads and writes, and the button sequences that
drive its menus. The executor runs the same state machine for every title
and only consults the profile for these details.

Profiles are immutable. Built-in profiles can be overridden or extended from
the ``titles`` section of the configuration file:

    titles:
      lza:
        partner_payload_offset: 0x46F12F40
        confirm: [["A", 800], ["A", 800], ["A", 1200]]

A title that is not built in must give every offset of the table plus its
navigation and confirm sequences.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from .models import TRADE_CODE_DIGITS
from .protocol import Button


# =============================================================================
# Building Blocks
# =============================================================================

@dataclass(frozen=True)
class ButtonStep:
    """One click (or a hold when hold_ms is set) followed by a pause, in milliseconds."""
    button: Button
    delay_ms: int = 500
    hold_ms: int = 0


def _keypad_grid() -> Dict[int, Tuple[int, int]]:
    """
    Digit to (row, column) on the 3x4 on-screen number pad.

    1-9 fill the first three rows left to right; 0 sits alone in the middle
    of the bottom row.
    """
    grid = {d: ((d - 1) // 3, (d - 1) % 3) for d in range(1, 10)}
    grid[0] = (3, 1)
    return grid


STANDARD_KEYPAD: Mapping[int, Tuple[int, int]] = _keypad_grid()


# =============================================================================
# Title Profile
# =============================================================================

@dataclass(frozen=True)
class TitleProfile:
    """Offset table and menu sequences for one title."""
    name: str
    display_name: str

    # Offset table (main-relative)
    payload_offset: int
    payload_size: int
    partner_name_offset: int
    search_flag_offset: int
    found_flag_offset: int
    partner_name_size: int = 26
    partner_payload_offset: Optional[int] = None

    # Flag sentinels
    found_value: int = 1
    not_found_value: int = 0

    # Menu sequences
    navigation: Tuple[ButtonStep, ...] = ()
    confirm: Tuple[ButtonStep, ...] = ()
    keypad: Mapping[int, Tuple[int, int]] = field(default_factory=lambda: STANDARD_KEYPAD)
    code_digits: int = TRADE_CODE_DIGITS
    keypad_move_ms: int = 100
    keypad_select_ms: int = 200
    code_submit: ButtonStep = ButtonStep(Button.PLUS, 1000)
    recovery_button: Button = Button.B

    def code_cells(self, code: int) -> Tuple[Tuple[int, int], ...]:
        """Keypad cells to visit, in order, for a trade code."""
        digits = str(code).zfill(self.code_digits)
        if len(digits) > self.code_digits or not digits.isdigit():
            raise ValueError(f"Trade code {code} does not fit {self.code_digits} digits")
        return tuple(self.keypad[int(c)] for c in digits)


# =============================================================================
# Built-in Titles
# =============================================================================

LEGENDS_ZA = TitleProfile(
    name="lza",
    display_name="Legends: Z-A",
    payload_offset=0x46E4E528,
    payload_size=344,
    partner_name_offset=0x46F12F08,
    search_flag_offset=0x46F120D8,
    found_flag_offset=0x46F120E0,
    navigation=(
        ButtonStep(Button.X, 1000),
        ButtonStep(Button.DDOWN, 300),
        ButtonStep(Button.DDOWN, 300),
        ButtonStep(Button.A, 1500),
        ButtonStep(Button.A, 1000),
    ),
    confirm=(
        ButtonStep(Button.A, 800),
        ButtonStep(Button.A, 800),
        ButtonStep(Button.A, 1000),
    ),
)

BUILTIN_TITLES: Dict[str, TitleProfile] = {
    LEGENDS_ZA.name: LEGENDS_ZA,
}

# Keys accepted from the configuration file
_INT_FIELDS = (
    "payload_offset",
    "payload_size",
    "partner_name_offset",
    "partner_name_size",
    "partner_payload_offset",
    "search_flag_offset",
    "found_flag_offset",
    "found_value",
    "not_found_value",
    "code_digits",
    "keypad_move_ms",
    "keypad_select_ms",
)
_REQUIRED_FIELDS = (
    "payload_offset",
    "payload_size",
    "partner_name_offset",
    "search_flag_offset",
    "found_flag_offset",
)


def _parse_steps(raw) -> Tuple[ButtonStep, ...]:
    """Parse ``[["X", 1000], "A", {"button": "B", "hold_ms": 2000}]`` into button steps."""
    steps = []
    for item in raw:
        if isinstance(item, str):
            steps.append(ButtonStep(Button[item.upper()]))
        elif isinstance(item, Mapping):
            steps.append(ButtonStep(
                Button[str(item["button"]).upper()],
                int(item.get("delay_ms", 500)),
                int(item.get("hold_ms", 0)),
            ))
        else:
            button, delay = item
            steps.append(ButtonStep(Button[str(button).upper()], int(delay)))
    return tuple(steps)


def _to_int(value: Any) -> int:
    # YAML reads 0x-prefixed numbers as ints, but quoted ones arrive as strings
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def profile_from_dict(name: str, data: Mapping[str, Any], base: TitleProfile = None) -> TitleProfile:
    """
    Build a profile from configuration values.

    Args:
        name: Title key.
        data: Values from the ``titles`` config section.
        base: Built-in profile to override (None for a new title).

    Raises:
        ValueError: If a new title misses a required offset or a value is invalid.
    """
    known = {f.name for f in fields(TitleProfile)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys for title {name}: {sorted(unknown)}")

    values: Dict[str, Any] = {}
    try:
        for key in _INT_FIELDS:
            if data.get(key) is not None:
                values[key] = _to_int(data[key])
        for key in ("navigation", "confirm"):
            if key in data:
                values[key] = _parse_steps(data[key])
        if "code_submit" in data:
            values["code_submit"] = _parse_steps([data["code_submit"]])[0]
        if "recovery_button" in data:
            values["recovery_button"] = Button[str(data["recovery_button"]).upper()]
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for title {name}: {e}") from e

    if "display_name" in data:
        values["display_name"] = str(data["display_name"])

    if base is not None:
        return replace(base, **values)

    missing = [key for key in _REQUIRED_FIELDS if key not in values]
    if missing:
        raise ValueError(f"Title {name} is missing required offsets: {missing}")
    if not values.get("navigation") or not values.get("confirm"):
        raise ValueError(f"Title {name} needs navigation and confirm sequences")

    values.setdefault("display_name", name)
    return TitleProfile(name=name, **values)


def resolve_title(name: str, overrides: Mapping[str, Mapping[str, Any]] = None) -> TitleProfile:
    """
    Look up a title profile, applying configuration overrides.

    Raises:
        KeyError: If the title is neither built in nor configured.
    """
    key = name.lower()
    base = BUILTIN_TITLES.get(key)
    data = (overrides or {}).get(key)

    if data:
        return profile_from_dict(key, data, base)
    if base is None:
        raise KeyError(f"Unknown title: {name}")
    return base
