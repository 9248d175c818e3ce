"""Request/response correlation and frame routing for one serial link."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Protocol, Tuple

import serial

from .commands import CmdResp
from .const import (
    COMMAND_TIMEOUT,
    ERROR_MESSAGE,
    ERROR_QUEUE_SIZE,
    OK_MESSAGE,
    READ_RETRY_DELAY,
    REBOOT_RESPONSE,
)
from .exceptions import (
    CorrelationTimeout,
    ProtocolMismatch,
    TransportFailure,
    UnexpectedPayload,
)
from .frame import Frame, FrameDecoder, MessageType
from .mode import LinkMode, ModeController
from .replies import is_async_line

_LOGGER = logging.getLogger(__name__)

Predicate = Callable[[Frame], bool]
Consumer = Callable[[Frame], None]
FailureListener = Callable[[Exception], None]

_OK = OK_MESSAGE.encode("ascii")
_ERROR = ERROR_MESSAGE.encode("ascii")
_STARTUP = REBOOT_RESPONSE.encode("ascii")


class Link(Protocol):
    """The byte transport the dispatcher reads from and writes to."""

    async def read(self) -> bytes: ...

    async def write(self, data: bytes) -> None: ...

    async def toggle_dtr(self) -> None: ...


class PendingRequest:
    """Single-slot rendezvous between a waiting caller and the reader task."""

    def __init__(
        self,
        command: str,
        expected: str,
        wait_for_data: bool,
        future: asyncio.Future,
        allow_empty: bool = False,
    ) -> None:
        self.command = command
        self.expected = expected
        self.wait_for_data = wait_for_data
        self.allow_empty = allow_empty
        self.future = future
        self._prefix = expected.encode("ascii")
        self._data: List[bytes] = []
        self._complete = False

    def matches(self, line: bytes) -> bool:
        if self._prefix:
            return line.startswith(self._prefix)
        return (
            self.wait_for_data
            and line not in (_OK, _ERROR)
            and not is_async_line(line)
        )

    def add_data(self, line: bytes) -> None:
        self._data.append(line)
        if self._complete:
            self._resolve()

    def complete(self) -> None:
        self._complete = True
        if not self.wait_for_data or self._data or self.allow_empty:
            self._resolve()

    def fail(self, exc: Exception) -> None:
        if not self.future.done():
            self.future.set_exception(exc)

    def _resolve(self) -> None:
        if not self.future.done():
            self.future.set_result(b"\r\n".join(self._data))


class Dispatcher:
    """Own the byte stream: one reader task, one pending request, async handlers."""

    def __init__(
        self,
        link: Link,
        timeout: float = COMMAND_TIMEOUT,
        mode: LinkMode = LinkMode.EXTENDED_DATA,
        verbose: bool = False,
    ) -> None:
        self._link = link
        self._timeout = timeout
        self.decoder = FrameDecoder(verbose=verbose)
        self.mode = ModeController(self.decoder, self.write_bytes, link.toggle_dtr, mode)
        self._pending: Optional[PendingRequest] = None
        self._command_lock = asyncio.Lock()
        self._handlers: List[Tuple[Predicate, Consumer]] = []
        self._failure_listeners: List[FailureListener] = []
        self._errors: asyncio.Queue = asyncio.Queue(maxsize=ERROR_QUEUE_SIZE)
        self._start_event = asyncio.Event()
        self._reader_task: Optional[asyncio.Task] = None
        self._failure: Optional[TransportFailure] = None
        self._last_command = ""

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def running(self) -> bool:
        return self._reader_task is not None and not self._reader_task.done()

    @property
    def failure(self) -> Optional[TransportFailure]:
        return self._failure

    @property
    def start_event_received(self) -> bool:
        return self._start_event.is_set()

    async def start(self) -> None:
        """Start the reader task."""
        if self._reader_task:
            return
        self._failure = None
        self._reader_task = asyncio.create_task(self._reader_loop())

    async def close(self) -> None:
        """Stop the reader before failing anything it could still feed."""
        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        self._fail(TransportFailure("Dispatcher closed"))

    def register_async_handler(
        self, predicate: Predicate, consumer: Consumer
    ) -> Callable[[], None]:
        """Route frames matching ``predicate`` to ``consumer``; returns an unsubscribe."""
        entry = (predicate, consumer)
        self._handlers.append(entry)

        def _unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return _unsubscribe

    def add_failure_listener(self, listener: FailureListener) -> Callable[[], None]:
        self._failure_listeners.append(listener)

        def _remove() -> None:
            if listener in self._failure_listeners:
                self._failure_listeners.remove(listener)

        return _remove

    async def write(self, command: str) -> None:
        """Write an AT command encoded for the current link mode."""
        self._last_command = command
        _LOGGER.debug("Sending command: %s", command)
        await self.write_bytes(self.mode.encode(command))

    async def write_bytes(self, data: bytes) -> None:
        self._raise_if_failed()
        try:
            await self._link.write(data)
        except (serial.SerialException, OSError) as err:
            failure = TransportFailure(f"Serial write failed: {err}")
            self._fail(failure)
            raise failure from err

    async def write_and_wait(
        self,
        command: str,
        expected: str = "",
        wait_for_data: bool = False,
        timeout: Optional[float] = None,
        allow_empty: bool = False,
    ) -> bytes:
        """Write a command and wait for its correlated reply.

        With ``wait_for_data`` the reply needs a data line unless ``allow_empty``
        lets a bare OK finish it.
        """
        if timeout is None:
            timeout = self._timeout
        async with self._command_lock:
            self._raise_if_failed()
            pending = PendingRequest(
                command,
                expected,
                wait_for_data,
                asyncio.get_running_loop().create_future(),
                allow_empty,
            )
            self._pending = pending
            try:
                await self.write(command)
                return await asyncio.wait_for(pending.future, timeout=timeout)
            except asyncio.TimeoutError:
                _LOGGER.warning("Timeout waiting for response to %s", command)
                raise CorrelationTimeout(command, expected, timeout) from None
            finally:
                if self._pending is pending:
                    self._pending = None

    async def send(self, command: CmdResp, timeout: Optional[float] = None) -> bytes:
        """``write_and_wait`` for a prepared command/response pair."""
        return await self.write_and_wait(
            command.cmd,
            command.resp,
            command.wait_for_data,
            timeout=timeout,
            allow_empty=command.allow_empty,
        )

    def fail_pending(self, exc: Exception) -> None:
        """Wake the waiting caller with ``exc`` instead of a reply."""
        if self._pending is not None:
            self._pending.fail(exc)

    def expect_start(self) -> None:
        """Forget any earlier start event before a reboot."""
        self._start_event.clear()

    async def wait_for_start(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._start_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise CorrelationTimeout(self._last_command, REBOOT_RESPONSE, timeout) from None

    def drain_errors(self) -> List[Exception]:
        """Return and clear the errors reported by the reader task."""
        errors: List[Exception] = []
        while not self._errors.empty():
            errors.append(self._errors.get_nowait())
        return errors

    def _raise_if_failed(self) -> None:
        if self._failure is not None:
            raise self._failure

    async def _reader_loop(self) -> None:
        try:
            while True:
                try:
                    data = await self._link.read()
                except (serial.SerialException, OSError, TransportFailure) as err:
                    self._fail(TransportFailure(f"Serial read failed: {err}"))
                    return
                if not data:
                    await asyncio.sleep(READ_RETRY_DELAY)
                    continue
                for frame in self.decoder.feed_data(data):
                    self._route(frame)
        except asyncio.CancelledError:
            _LOGGER.debug("Reader task stopped")
            raise

    def _fail(self, failure: TransportFailure) -> None:
        if self._failure is None:
            self._failure = failure
            _LOGGER.error("Serial link failed: %s", failure)
        self.fail_pending(failure)
        for listener in list(self._failure_listeners):
            try:
                listener(failure)
            except Exception:  # a failing listener must not stop the others
                _LOGGER.exception("Failure listener raised")

    def _route(self, frame: Frame) -> None:
        if frame.kind is MessageType.START_EVENT:
            _LOGGER.info("Module start event received")
            self._start_event.set()
            return
        if frame.kind is MessageType.AT_REQUEST:
            self._check_echo(frame.payload)
            return
        if frame.is_text:
            for line in frame.lines():
                self._route_line(Frame(frame.kind, line))
            return
        if not self._dispatch_async(frame):
            _LOGGER.debug("Dropping unhandled %s: %r", frame.kind.name, frame.payload)

    def _route_line(self, frame: Frame) -> None:
        line = frame.payload
        if line.startswith(_STARTUP):
            self._start_event.set()

        pending = self._pending
        if pending is not None and pending.future.done():
            # Resolved but the caller has not run yet; later lines are not its.
            pending = None
        if pending is not None and pending.matches(line):
            pending.add_data(line)
            return
        if line == _OK:
            if pending is not None:
                pending.complete()
            else:
                _LOGGER.debug("OK with no request outstanding")
            return
        if line == _ERROR:
            err = ProtocolMismatch(
                "Module returned ERROR",
                command=pending.command if pending else self._last_command,
                expected=pending.expected if pending else None,
                received=line,
            )
            if pending is not None:
                pending.fail(err)
            else:
                self._report(err)
            return
        if self._dispatch_async(frame):
            return
        if is_async_line(line):
            _LOGGER.debug("Unhandled async message: %r", line)
            return
        self._report(UnexpectedPayload("Unexpected payload", received=line))

    def _dispatch_async(self, frame: Frame) -> bool:
        for predicate, consumer in list(self._handlers):
            if not predicate(frame):
                continue
            try:
                consumer(frame)
            except Exception as err:  # a failing handler must not stop the reader
                _LOGGER.exception("Async handler failed for %r", frame.payload)
                self._report(err)
            return True
        return False

    def _check_echo(self, payload: bytes) -> None:
        echo = payload.strip().decode("ascii", errors="ignore")
        if self._last_command and echo.startswith(self._last_command):
            return
        _LOGGER.debug("Unexpected echo %r", echo)

    def _report(self, err: Exception) -> None:
        _LOGGER.debug("Reporting error: %s", err)
        if self._errors.full():
            dropped = self._errors.get_nowait()
            _LOGGER.warning("Error queue full, dropping %s", dropped)
        self._errors.put_nowait(err)
