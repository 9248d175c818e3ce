"""Exceptions raised by the u-blox Bluetooth driver."""

from __future__ import annotations

from typing import Optional, Union


class UbloxError(Exception):
    """Base class for all driver errors."""


class FramingError(UbloxError):
    """A corrupt or oversized EDM frame was seen on the wire."""


class ProtocolMismatch(UbloxError):
    """A reply did not carry the expected token or structural markers."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        expected: Optional[str] = None,
        received: Optional[Union[bytes, str]] = None,
    ) -> None:
        self.command = command
        self.expected = expected
        self.received = received
        details = []
        if command is not None:
            details.append(f"command={command!r}")
        if expected is not None:
            details.append(f"expected={expected!r}")
        if received is not None:
            details.append(f"received={received!r}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class InvalidMode(ProtocolMismatch):
    """An operation was issued in a link mode that cannot carry it."""


class UnexpectedPayload(ProtocolMismatch):
    """A frame arrived that no request or handler claimed."""


class CorrelationTimeout(UbloxError):
    """No matching reply arrived before the deadline."""

    def __init__(self, command: str, expected: str, timeout: float) -> None:
        self.command = command
        self.expected = expected
        self.timeout = timeout
        super().__init__(
            f"Timeout after {timeout:.2f}s waiting for {expected or 'OK'!r} "
            f"in reply to {command!r}"
        )


class NotConnected(UbloxError):
    """No remote device is connected, or it went away."""


class TransferCountMismatch(UbloxError):
    """The delivered record count disagrees with the promised count."""

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"Expected {expected} records, received {received}")


class TransportFailure(UbloxError):
    """The serial link failed; the connection is unusable."""


class EventDecodeError(UbloxError):
    """A recorder event record is shorter than its declared layout."""
