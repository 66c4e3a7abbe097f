#!/usr/bin/env python3
"""
Payload Resolution for the Trade Hub Controller

Submitters refer to payloads by reference. A resolver turns the reference
into raw bytes before the entry is admitted; a reference that cannot be
resolved is rejected with INVALID_PAYLOAD.

Reference forms understood by FolderPayloadResolver:
    bytes / bytearray     used as-is
    "hex:0A1B..."         inline hex
    "name.bin"            file under the payload folder
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union


# Inline payload prefix
HEX_PREFIX = "hex:"

PayloadRef = Union[bytes, bytearray, str]


@dataclass
class ResolvedPayload:
    """Raw payload bytes and the display name used in notifications."""
    name: str
    data: bytes


class PayloadResolver(Protocol):
    def resolve(self, ref: PayloadRef) -> Optional[ResolvedPayload]:
        ...


class FolderPayloadResolver:
    """Resolves references against a folder of payload files."""

    def __init__(self, folder: str, logger: logging.Logger = None):
        self.folder = Path(folder)
        self.logger = logger or logging.getLogger("Payloads")

    def resolve(self, ref: PayloadRef) -> Optional[ResolvedPayload]:
        if isinstance(ref, (bytes, bytearray)):
            data = bytes(ref)
            return ResolvedPayload(name="custom", data=data) if data else None

        if not isinstance(ref, str) or not ref.strip():
            return None
        ref = ref.strip()

        if ref.lower().startswith(HEX_PREFIX):
            try:
                data = bytes.fromhex(ref[len(HEX_PREFIX):])
            except ValueError:
                self.logger.warning("Invalid inline hex payload")
                return None
            return ResolvedPayload(name="custom", data=data) if data else None

        # Reject anything that escapes the folder
        path = (self.folder / ref).resolve()
        if self.folder.resolve() not in path.parents:
            self.logger.warning(f"Payload reference outside folder: {ref}")
            return None

        if not path.is_file():
            self.logger.warning(f"Payload not found: {ref}")
            return None

        try:
            data = path.read_bytes()
        except OSError as e:
            self.logger.error(f"Failed to read payload {ref}: {e}")
            return None

        return ResolvedPayload(name=path.stem, data=data) if data else None
