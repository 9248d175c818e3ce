"""Credit flow controlled bulk download from the recorder."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable, Optional, Union

from .commands import abort_payload, credit_payload, write_characteristic_command
from .const import (
    COMMAND_TIMEOUT,
    COMMAND_VALUE_HANDLE,
    DEFAULT_CREDIT,
    GATT_INDICATION_RESPONSE,
    GATT_NOTIFICATION_RESPONSE,
    OP_ABORT,
)
from .dispatcher import Dispatcher
from .exceptions import CorrelationTimeout, ProtocolMismatch, TransferCountMismatch, UbloxError
from .frame import Frame
from .replies import parse_indication, process_count_reply, split_out_notification

_LOGGER = logging.getLogger(__name__)

_NOTIFICATION = GATT_NOTIFICATION_RESPONSE.encode("ascii")
_INDICATION = GATT_INDICATION_RESPONSE.encode("ascii")
_ABORT = object()

FragmentCallback = Callable[[Optional[bytes], Optional[Exception]], Optional[bool]]


class TransferState(Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class CreditWindow:
    """How many more fragments the peer may send before it needs more credit."""

    def __init__(self, capacity: int = DEFAULT_CREDIT) -> None:
        if capacity < 2:
            raise ValueError("Credit capacity must be at least 2")
        self.capacity = capacity
        self.available = capacity

    @property
    def low_water(self) -> int:
        return self.capacity // 2

    @property
    def needs_replenish(self) -> bool:
        return self.available <= self.low_water

    def consume(self) -> None:
        if self.available > 0:
            self.available -= 1

    def replenish(self) -> int:
        """Restore the window to capacity and return the credit granted."""
        granted = self.capacity - self.available
        self.available = self.capacity
        return granted


@dataclass
class DownloadSession:
    opcode: int
    start_sequence: int = 0
    expected: int = 0
    received: int = 0
    bytes_received: int = 0
    cancelled: bool = False
    state: TransferState = TransferState.IDLE


class BulkTransferEngine:
    """Run one paged download at a time over the dispatcher.

    The request is a GATT write whose indication reply carries the number of
    fragments the recorder is about to send. Fragments arrive as notifications
    and the transfer ends with a second indication for the same op-code.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        credit: int = DEFAULT_CREDIT,
        timeout: float = COMMAND_TIMEOUT,
    ) -> None:
        self._dispatcher = dispatcher
        self._credit = credit
        self._timeout = timeout
        self._queue: Optional[asyncio.Queue] = None
        self._finished = asyncio.Event()
        self._finished.set()
        self.session: Optional[DownloadSession] = None
        dispatcher.add_failure_listener(self.connection_lost)

    @property
    def credit(self) -> int:
        return self._credit

    @property
    def active(self) -> bool:
        return self._queue is not None

    async def download(
        self,
        conn_handle: int,
        payload: bytes,
        on_fragment: FragmentCallback,
        start_sequence: int = 0,
    ) -> DownloadSession:
        """Send ``payload`` and feed every fragment to ``on_fragment``.

        ``on_fragment(data, None)`` is called per fragment and
        ``on_fragment(None, err)`` for fragments that fail validation.
        Returning ``False`` stops the transfer.
        """
        if self._queue is not None:
            raise UbloxError("A download is already running")
        session = DownloadSession(opcode=payload[0], start_sequence=start_sequence)
        self.session = session
        self._queue = asyncio.Queue()
        self._finished.clear()
        unsubscribe = self._dispatcher.register_async_handler(
            self._is_transfer_frame, self._on_frame
        )
        try:
            session.state = TransferState.REQUESTING
            header = await self._dispatcher.send(
                write_characteristic_command(conn_handle, COMMAND_VALUE_HANDLE, payload)
            )
            session.expected = process_count_reply(header, session.opcode, conn_handle)
            _LOGGER.debug(
                "Download 0x%02X from %d: %d fragments expected",
                session.opcode,
                start_sequence,
                session.expected,
            )
            session.state = TransferState.STREAMING
            await self._stream(conn_handle, session, on_fragment)
        except BaseException:
            if session.state is not TransferState.ABORTED:
                session.state = TransferState.FAILED
            raise
        finally:
            unsubscribe()
            self._queue = None
            self._finished.set()
        return session

    async def abort(self) -> None:
        """Ask the running download to abort and wait until it has drained."""
        if self._queue is None or self.session is None:
            return
        self.session.cancelled = True
        self._queue.put_nowait(_ABORT)
        await self._finished.wait()

    def connection_lost(self, exc: Exception) -> None:
        """End the running download with ``exc``."""
        if self._queue is not None:
            self._queue.put_nowait(exc)

    async def _stream(
        self, conn_handle: int, session: DownloadSession, on_fragment: FragmentCallback
    ) -> None:
        window = CreditWindow(self._credit)
        while True:
            item = await self._next()
            if item is _ABORT:
                await self._abort(conn_handle, session)
                return
            if item.startswith(_INDICATION):
                if self._is_trailer(item, session.opcode, conn_handle):
                    break
                continue

            try:
                data = split_out_notification(item, conn_handle)
            except ProtocolMismatch as err:
                _LOGGER.warning("Malformed fragment: %s", err)
                keep_going = on_fragment(None, err)
            else:
                session.bytes_received += len(data)
                keep_going = on_fragment(data, None)
            session.received += 1
            window.consume()

            if keep_going is False:
                session.cancelled = True
                await self._abort(conn_handle, session)
                return
            if window.needs_replenish:
                await self._send_credit(conn_handle, window.replenish())

        if session.received != session.expected:
            raise TransferCountMismatch(session.expected, session.received)
        session.state = TransferState.COMPLETED
        _LOGGER.debug("Download complete, %d fragments", session.received)

    async def _abort(self, conn_handle: int, session: DownloadSession) -> None:
        _LOGGER.info("Aborting download after %d fragments", session.received)
        await self._dispatcher.send(
            write_characteristic_command(
                conn_handle, COMMAND_VALUE_HANDLE, abort_payload(), wait_for_reply=False
            )
        )
        while True:
            item = await self._next()
            if item is _ABORT or not item.startswith(_INDICATION):
                continue
            try:
                opcode, _, _ = parse_indication(item, conn_handle)
            except ProtocolMismatch as err:
                _LOGGER.warning("Ignoring malformed indication while aborting: %s", err)
                continue
            if opcode in (OP_ABORT, session.opcode):
                break
        session.state = TransferState.ABORTED

    async def _send_credit(self, conn_handle: int, credit: int) -> None:
        _LOGGER.debug("Granting %d credits", credit)
        await self._dispatcher.send(
            write_characteristic_command(
                conn_handle, COMMAND_VALUE_HANDLE, credit_payload(credit), wait_for_reply=False
            )
        )

    async def _next(self) -> Union[bytes, object]:
        assert self._queue is not None
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise CorrelationTimeout("download", GATT_NOTIFICATION_RESPONSE, self._timeout) from None
        if isinstance(item, Exception):
            raise item
        return item

    @staticmethod
    def _is_trailer(line: bytes, opcode: int, conn_handle: int) -> bool:
        try:
            reply_op, _, _ = parse_indication(line, conn_handle)
        except ProtocolMismatch as err:
            _LOGGER.warning("Malformed indication during download: %s", err)
            return False
        return reply_op == opcode

    def _is_transfer_frame(self, frame: Frame) -> bool:
        return self._queue is not None and frame.payload.startswith((_NOTIFICATION, _INDICATION))

    def _on_frame(self, frame: Frame) -> None:
        assert self._queue is not None
        self._queue.put_nowait(frame.payload)
