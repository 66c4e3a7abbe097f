#!/usr/bin/env python3
"""
Device Link for the Trade Hub Controller

This module owns the TCP stream to one console and exposes the protocol
commands as coroutines:
- Connection management (no internal retries)
- Memory reads and writes
- Button and stick input, including timed holds
"""

import asyncio
import logging
from typing import Optional

from .errors import LinkError
from .protocol import (
    MAX_READ_LENGTH,
    Button,
    Command,
    Stick,
    create_button_command,
    create_peek_command,
    create_poke_command,
    create_stick_command,
    decode_hex_response,
)

# Stream buffer must hold the longest hex response line
READ_LIMIT = MAX_READ_LENGTH * 2 + 16


class LinkClient:
    """
    Request/response client for one device.

    A link is owned by exactly one executor, which issues its commands one
    after another; the client itself does no command interleaving control.
    """

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = 10.0,
        response_timeout: Optional[float] = 10.0,
        logger: logging.Logger = None,
    ):
        """
        Initialize the link.

        Args:
            host: Device IP address or hostname.
            port: Remote control service port.
            connect_timeout: Seconds allowed for the TCP connect.
            response_timeout: Seconds to wait for a read response (None waits forever).
            logger: Logger instance (creates one if not provided).
        """
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.response_timeout = response_timeout
        self.logger = logger or logging.getLogger(f"Link.{host}")

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Open the stream to the device.

        Returns:
            True if connected. Failures are logged and never retried here.
        """
        if self.is_connected:
            await self.disconnect()

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=READ_LIMIT),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            self.logger.error(f"Failed to connect to {self.host}:{self.port}: {e}")
            self._reader = self._writer = None
            return False

        self.logger.info(f"Connected to {self.host}:{self.port}")
        return True

    async def disconnect(self):
        """Close the stream. Safe to call when already closed."""
        writer = self._writer
        self._reader = self._writer = None
        if writer is None:
            return

        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            self.logger.debug(f"Error while closing link: {e}")
        self.logger.info("Disconnected")

    async def _fail(self, message: str, cause: Exception = None):
        await self.disconnect()
        self.logger.error(message)
        raise LinkError(message) from cause

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _send(self, payload: bytes) -> bool:
        """Write one command line and flush it. Returns False when not connected."""
        if not self.is_connected:
            self.logger.debug(f"Not connected, dropping {payload.strip()!r}")
            return False

        try:
            self._writer.write(payload)
            await self._writer.drain()
        except (OSError, RuntimeError) as e:
            await self._fail(f"Transport error while sending: {e}", e)
        return True

    async def _send_uncancellable(self, payload: bytes):
        """
        Send a command that must go out even if the caller is being cancelled.

        A cancellation arriving while the send is in flight is re-raised once
        the command has been written.
        """
        send = asyncio.ensure_future(self._send(payload))
        cancelled = False
        while not send.done():
            try:
                await asyncio.shield(send)
            except asyncio.CancelledError:
                cancelled = True

        try:
            send.result()
        except LinkError as e:
            if not cancelled:
                raise
            self.logger.warning(f"Send failed during cancellation: {e}")
        if cancelled:
            raise asyncio.CancelledError()

    async def _read_line(self) -> bytes:
        try:
            if self.response_timeout is None:
                line = await self._reader.readline()
            else:
                line = await asyncio.wait_for(self._reader.readline(), self.response_timeout)
        except asyncio.TimeoutError as e:
            await self._fail("Timed out waiting for a response", e)
        except (OSError, ValueError) as e:
            await self._fail(f"Transport error while reading: {e}", e)

        if not line and self._reader is not None and self._reader.at_eof():
            await self._fail("Connection closed by device")
        return line

    # -------------------------------------------------------------------------
    # Memory Access
    # -------------------------------------------------------------------------

    async def read_bytes(self, offset: int, length: int, absolute: bool = False) -> bytes:
        """
        Read a block of device memory.

        Returns:
            The decoded bytes; b"" when not connected or when the device sent
            an empty or malformed line. Callers treat b"" as "no data yet".
        """
        if not await self._send(create_peek_command(offset, length, absolute)):
            return b""

        data = decode_hex_response(await self._read_line())
        if len(data) != length:
            self.logger.debug(
                f"Short read at 0x{offset:X}: wanted {length}, got {len(data)}"
            )
        return data

    async def write_bytes(self, offset: int, data: bytes, absolute: bool = False):
        """Write a block of device memory. Only waits for the flush."""
        await self._send(create_poke_command(offset, data, absolute))

    # -------------------------------------------------------------------------
    # Input Simulation
    # -------------------------------------------------------------------------

    async def click(self, button: Button):
        await self._send(create_button_command(Command.CLICK, button))

    async def press(self, button: Button):
        await self._send(create_button_command(Command.PRESS, button))

    async def release(self, button: Button):
        await self._send(create_button_command(Command.RELEASE, button))

    async def set_stick(self, stick: Stick, x: int, y: int):
        await self._send(create_stick_command(stick, x, y))

    async def hold(self, button: Button, duration_ms: int):
        """
        Press a button, wait, then release it.

        The release is sent even when the hold is cancelled mid-wait, so a
        virtual button is never left pressed.
        """
        await self.press(button)
        cancelled = False
        try:
            await asyncio.sleep(duration_ms / 1000)
        except asyncio.CancelledError:
            cancelled = True
            raise
        finally:
            if self.is_connected:
                try:
                    await self._send_uncancellable(
                        create_button_command(Command.RELEASE, button)
                    )
                except LinkError as e:
                    # Cancellation wins over a failed release
                    if not cancelled:
                        raise
                    self.logger.warning(f"Release of {button.name} failed after cancel: {e}")
