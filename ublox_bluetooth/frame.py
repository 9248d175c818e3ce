"""Frame decoder and encoders for the u-blox line and Extended Data Mode streams."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import logging
import struct
from typing import List

from .const import (
    EDM_AT_TERMINATOR,
    EDM_HEADER_SIZE,
    EDM_MAX_PAYLOAD,
    EDM_PAYLOAD_OVERHEAD,
    EDM_START_BYTE,
    EDM_STOP_BYTE,
    MIN_LINE_LENGTH,
    NEWLINE,
)
from .exceptions import FramingError

_LOGGER = logging.getLogger(__name__)


class MessageType(IntEnum):
    """EDM message identifiers (second payload byte)."""

    CONNECT_EVENT = 0x11
    DISCONNECT_EVENT = 0x21
    DATA_EVENT = 0x31
    AT_EVENT = 0x41
    AT_REQUEST = 0x44
    AT_CONFIRMATION = 0x45
    RESENT_CONNECT = 0x56
    VENDOR_EVENT = 0x61
    START_EVENT = 0x71


TEXT_MESSAGES = (MessageType.AT_CONFIRMATION, MessageType.AT_EVENT)


@dataclass(frozen=True)
class Frame:
    """One decoded unit of the wire protocol."""

    kind: MessageType
    payload: bytes

    @property
    def is_text(self) -> bool:
        return self.kind in TEXT_MESSAGES

    def lines(self) -> List[bytes]:
        """Split an AT payload into its non-empty lines."""
        return [line.strip() for line in self.payload.splitlines() if line.strip()]


def encode_frame(payload: bytes) -> bytes:
    """Wrap a payload in the EDM start/length/stop envelope."""
    if len(payload) > EDM_MAX_PAYLOAD:
        raise ValueError(f"Payload too large: {len(payload)} > {EDM_MAX_PAYLOAD}")
    return (
        struct.pack(">BH", EDM_START_BYTE, len(payload))
        + payload
        + bytes([EDM_STOP_BYTE])
    )


def encode_edm_payload(kind: MessageType, data: bytes = b"") -> bytes:
    """Build a complete EDM frame for a message type and its data."""
    return encode_frame(bytes([0x00, kind]) + data)


def encode_at_command(command: str) -> bytes:
    """Build the EDM AT request frame carrying a textual command."""
    return encode_edm_payload(
        MessageType.AT_REQUEST,
        command.encode("ascii") + bytes([EDM_AT_TERMINATOR]),
    )


class FrameDecoder:
    """Buffering decoder for chunked line-mode or EDM byte streams."""

    def __init__(self, extended: bool = False, verbose: bool = False) -> None:
        self._buffer = bytearray()
        self._extended = extended
        self.verbose = verbose
        self.framing_errors = 0

    @property
    def extended(self) -> bool:
        return self._extended

    def set_extended(self, extended: bool) -> None:
        """Select the interpretation used for bytes fed from now on."""
        if extended != self._extended:
            _LOGGER.debug("Decoder switching to %s mode", "EDM" if extended else "line")
            self._extended = extended

    def reset(self) -> None:
        self._buffer.clear()

    def feed_data(self, data: bytes) -> List[Frame]:
        """Append data and return any complete frames."""
        if self.verbose:
            _LOGGER.debug("RX %d bytes: %s", len(data), data.hex())
        self._buffer.extend(data)
        if self._extended:
            frames = self._extract_frames()
        else:
            frames = self._extract_lines()
        if self.verbose:
            for frame in frames:
                _LOGGER.debug("RX frame %s: %r", frame.kind.name, frame.payload)
        return frames

    def _extract_lines(self) -> List[Frame]:
        frames: List[Frame] = []
        while True:
            idx = self._buffer.find(NEWLINE)
            if idx == -1:
                break
            raw = bytes(self._buffer[: idx + len(NEWLINE)])
            del self._buffer[: idx + len(NEWLINE)]
            line = raw.strip()
            if len(raw) <= MIN_LINE_LENGTH or not line:
                continue
            if line.startswith(b"AT"):
                frames.append(Frame(MessageType.AT_REQUEST, line))
            else:
                frames.append(Frame(MessageType.AT_CONFIRMATION, line))
        return frames

    def _extract_frames(self) -> List[Frame]:
        frames: List[Frame] = []
        while True:
            start = self._buffer.find(bytes([EDM_START_BYTE]))
            if start == -1:
                if self._buffer:
                    _LOGGER.debug("Discarding %d bytes outside a frame", len(self._buffer))
                self._buffer.clear()
                break
            if start:
                _LOGGER.debug("Discarding %d bytes before start marker", start)
                del self._buffer[:start]
            try:
                frame = self._extract_frame()
            except FramingError as err:
                self.framing_errors += 1
                _LOGGER.warning("Framing error, resynchronising: %s", err)
                del self._buffer[:1]
                continue
            if frame is None:
                break
            frames.append(frame)
        return frames

    def _extract_frame(self) -> Frame | None:
        """Decode the frame at the head of the buffer, or None if incomplete."""
        if len(self._buffer) < EDM_HEADER_SIZE:
            return None
        (length,) = struct.unpack_from(">H", self._buffer, 1)
        if length > EDM_MAX_PAYLOAD:
            raise FramingError(f"Oversized frame: {length} > {EDM_MAX_PAYLOAD}")
        total = length + EDM_PAYLOAD_OVERHEAD
        if len(self._buffer) < total:
            return None
        if self._buffer[total - 1] != EDM_STOP_BYTE:
            raise FramingError(
                f"Bad stop byte 0x{self._buffer[total - 1]:02X} for length {length}"
            )
        payload = bytes(self._buffer[EDM_HEADER_SIZE : total - 1])
        if len(payload) < 2 or payload[0] != 0x00:
            raise FramingError(f"Malformed payload header: {payload[:2].hex()}")
        try:
            kind = MessageType(payload[1])
        except ValueError as err:
            raise FramingError(f"Unknown message type 0x{payload[1]:02X}") from err
        del self._buffer[:total]
        return Frame(kind, payload[2:])
