"""Serial link to the u-blox module."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Optional

import serial
import serial_asyncio

from .const import (
    BAUDRATE,
    BYTESIZE,
    DTR_TOGGLE_DELAY,
    PARITY,
    READ_CHUNK_SIZE,
    STOPBITS,
)
from .exceptions import TransportFailure

_LOGGER = logging.getLogger(__name__)


@dataclass
class LinkStatistics:
    """Byte counters for one serial link."""

    rx_bytes: int = 0
    tx_bytes: int = 0

    def copy(self) -> "LinkStatistics":
        return LinkStatistics(self.rx_bytes, self.tx_bytes)


class SerialLink:
    """Byte-oriented serial transport with an out-of-band DTR toggle."""

    def __init__(self, serial_port: str, baudrate: int = BAUDRATE) -> None:
        self._serial_port = serial_port
        self._baudrate = baudrate
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self.stats = LinkStatistics()

    @property
    def serial_port(self) -> str:
        return self._serial_port

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    async def open(self) -> None:
        """Open the serial device."""
        try:
            self._reader, self._writer = await serial_asyncio.open_serial_connection(
                url=self._serial_port,
                baudrate=self._baudrate,
                bytesize=BYTESIZE,
                parity=serial.PARITY_NONE if PARITY == "N" else PARITY,
                stopbits=serial.STOPBITS_ONE if STOPBITS == 1 else STOPBITS,
                rtscts=False,
            )
        except serial.SerialException as err:
            raise TransportFailure(f"Failed to open {self._serial_port}: {err}") from err
        # Stale bytes from before the open would desynchronise the decoder
        await self.flush()
        _LOGGER.info("Opened %s at %d baud", self._serial_port, self._baudrate)

    async def read(self) -> bytes:
        """Read whatever bytes are available, blocking until at least one."""
        if self._reader is None:
            raise TransportFailure("Serial link is not open")
        data = await self._reader.read(READ_CHUNK_SIZE)
        self.stats.rx_bytes += len(data)
        return data

    async def write(self, data: bytes) -> None:
        if self._writer is None:
            raise TransportFailure("Serial link is not open")
        self._writer.write(data)
        await self._writer.drain()
        self.stats.tx_bytes += len(data)

    async def toggle_dtr(self) -> None:
        """Pulse DTR low then high; the module treats this as an escape to command mode."""
        port = self._serial()
        port.dtr = False
        await asyncio.sleep(DTR_TOGGLE_DELAY)
        port.dtr = True

    async def flush(self) -> None:
        """Discard anything buffered in either direction."""
        port = self._serial()
        try:
            port.reset_input_buffer()
            port.reset_output_buffer()
        except serial.SerialException as err:
            raise TransportFailure(f"Failed to flush {self._serial_port}: {err}") from err

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            _LOGGER.info("Closed %s", self._serial_port)
        self._reader = None
        self._writer = None

    def _serial(self) -> serial.Serial:
        if self._writer is None:
            raise TransportFailure("Serial link is not open")
        return self._writer.transport.serial  # type: ignore[attr-defined]
