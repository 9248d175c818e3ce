"""Configure pytest to find modules correctly."""
import sys
import os

# Add the project root to sys.path so tests can import ublox_bluetooth
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
from typing import List, Optional, Tuple

import pytest

from ublox_bluetooth.frame import MessageType, encode_edm_payload
from ublox_bluetooth.serial_manager import LinkStatistics


def edm_confirmation(*lines: bytes) -> bytes:
    """An EDM AT confirmation frame carrying ``lines``."""
    return encode_edm_payload(
        MessageType.AT_CONFIRMATION, b"".join(b"\r\n" + line + b"\r\n" for line in lines)
    )


def edm_event(line: bytes) -> bytes:
    """An EDM AT event frame carrying one unsolicited line."""
    return encode_edm_payload(MessageType.AT_EVENT, b"\r\n" + line + b"\r\n")


EDM_OK = edm_confirmation(b"OK")


class FakeLink:
    """In-memory serial link that answers writes from a script."""

    def __init__(self) -> None:
        self.rx: asyncio.Queue = asyncio.Queue()
        self.writes: List[bytes] = []
        self.rules: List[Tuple[bytes, Tuple[bytes, ...]]] = []
        self.stats = LinkStatistics()
        self.dtr_toggles = 0
        self.opened = False
        self.closed = False
        self.write_error: Optional[Exception] = None

    def on_write(self, match: bytes, *responses: bytes) -> None:
        """Feed ``responses`` the first time a write containing ``match`` is seen."""
        self.rules.append((match, responses))

    def feed(self, data: bytes) -> None:
        self.rx.put_nowait(data)

    def fail_read(self, exc: Exception) -> None:
        self.rx.put_nowait(exc)

    def written(self, match: bytes) -> List[bytes]:
        return [data for data in self.writes if match in data]

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def read(self) -> bytes:
        item = await self.rx.get()
        if isinstance(item, Exception):
            raise item
        self.stats.rx_bytes += len(item)
        return item

    async def write(self, data: bytes) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(data)
        self.stats.tx_bytes += len(data)
        for index, (match, responses) in enumerate(self.rules):
            if match in data:
                del self.rules[index]
                for response in responses:
                    self.feed(response)
                break

    async def toggle_dtr(self) -> None:
        self.dtr_toggles += 1


@pytest.fixture
def link() -> FakeLink:
    return FakeLink()
