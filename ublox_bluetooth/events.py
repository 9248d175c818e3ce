"""Decoder for the recorder's binary event log records.

Every record starts with the same header::

    offset  field      type
    0       seqno      uint32 LE
    4       timestamp  uint32 LE   seconds
    8       tag        uint8       event type
    9       length     uint8       payload length n
    10      payload    uint8[n]
    10+n    flag       uint8       non-zero when bulk data follows
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import struct
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Tuple, Union

from .const import (
    EVENT_BOOT,
    EVENT_CONNECTED,
    EVENT_DISCONNECTED,
    EVENT_SENSOR,
    EVENT_TEMPERATURE,
    EVENT_VIBRATION,
    SENSOR_BATTERY_DIVISOR,
    SENSOR_TEMPERATURE_DIVISOR,
)
from .exceptions import EventDecodeError

_LOGGER = logging.getLogger(__name__)

_HEADER = struct.Struct("<IIBB")
PAYLOAD_OFFSET = _HEADER.size
MAC_LENGTH = 6


class VehEventKind(Enum):
    BOOT = "boot"
    SENSOR = "sensor"
    TEMPERATURE = "temperature"
    VIBRATION = "vibration"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    UNHANDLED = "unhandled"


@dataclass(frozen=True)
class EventHeader:
    sequence: int
    timestamp: int
    event_type: int
    data_flag: bool


@dataclass(frozen=True)
class BootEvent:
    reason: int
    software_version: str
    hardware_version: int
    build_number: int


@dataclass(frozen=True)
class SensorEvent:
    temperature: float
    battery_millivolts: float
    other: bytes


@dataclass(frozen=True)
class TemperatureEvent:
    battery: float
    temperature: float
    humidity: float
    soft_device_temperature: float


@dataclass(frozen=True)
class VibrationEvent:
    battery: float
    temperature: float
    odr: float
    gain: float


@dataclass(frozen=True)
class MacEvent:
    mac: str


@dataclass(frozen=True)
class UnhandledEvent:
    raw: bytes


EventDetail = Union[
    BootEvent, SensorEvent, TemperatureEvent, VibrationEvent, MacEvent, UnhandledEvent
]


@dataclass(frozen=True)
class VehEvent:
    """One decoded record: the shared header plus the variant's fields."""

    kind: VehEventKind
    header: EventHeader
    detail: EventDetail

    @property
    def sequence(self) -> int:
        return self.header.sequence

    @property
    def timestamp(self) -> int:
        return self.header.timestamp

    @property
    def data_flag(self) -> bool:
        return self.header.data_flag


Handler = Callable[[bytes, int], EventDetail]


class EventCodec:
    """Decode raw records into :class:`VehEvent` values."""

    def __init__(self) -> None:
        self._handlers: Mapping[int, Tuple[VehEventKind, Handler]] = MappingProxyType(
            {
                EVENT_BOOT: (VehEventKind.BOOT, _boot),
                EVENT_SENSOR: (VehEventKind.SENSOR, _sensor),
                EVENT_TEMPERATURE: (VehEventKind.TEMPERATURE, _temperature),
                EVENT_VIBRATION: (VehEventKind.VIBRATION, _vibration),
                EVENT_CONNECTED: (VehEventKind.CONNECTED, _mac),
                EVENT_DISCONNECTED: (VehEventKind.DISCONNECTED, _mac),
            }
        )

    @property
    def handled_types(self) -> Mapping[int, Tuple[VehEventKind, Handler]]:
        return self._handlers

    def decode(self, raw: bytes) -> VehEvent:
        if len(raw) < PAYLOAD_OFFSET:
            raise EventDecodeError(f"Truncated event header ({len(raw)} bytes)")
        sequence, timestamp, event_type, length = _HEADER.unpack_from(raw)
        end = PAYLOAD_OFFSET + length
        if len(raw) <= end:
            raise EventDecodeError(
                f"Truncated event 0x{event_type:02X}: {length} byte payload, "
                f"{len(raw)} bytes received"
            )
        header = EventHeader(sequence, timestamp, event_type, raw[end] > 0)

        entry = self._handlers.get(event_type)
        if entry is None:
            return VehEvent(VehEventKind.UNHANDLED, header, UnhandledEvent(bytes(raw)))
        kind, handler = entry
        return VehEvent(kind, header, handler(raw, length))


def _require(length: int, minimum: int, name: str) -> None:
    if length < minimum:
        raise EventDecodeError(f"{name} event payload too short: {length} < {minimum}")


def _boot(raw: bytes, length: int) -> BootEvent:
    _require(length, 8, "Boot")
    (reason,) = struct.unpack_from("<I", raw, 10)
    return BootEvent(
        reason=reason,
        software_version=f"{raw[14]}.{raw[15]}",
        hardware_version=raw[16],
        build_number=raw[17],
    )


def _sensor(raw: bytes, length: int) -> SensorEvent:
    _require(length, 4, "Sensor")
    temperature, battery = struct.unpack_from("<HH", raw, 10)
    return SensorEvent(
        temperature=float(temperature // SENSOR_TEMPERATURE_DIVISOR),
        battery_millivolts=float(battery // SENSOR_BATTERY_DIVISOR),
        other=bytes(raw[14 : PAYLOAD_OFFSET + length]),
    )


def _temperature(raw: bytes, length: int) -> TemperatureEvent:
    _require(length, 16, "Temperature")
    return TemperatureEvent(*struct.unpack_from("<ffff", raw, 10))


def _vibration(raw: bytes, length: int) -> VibrationEvent:
    _require(length, 16, "Vibration")
    battery, temperature, odr, gain = struct.unpack_from("<ffff", raw, 10)
    return VibrationEvent(battery, temperature, odr, gain)


def _mac(raw: bytes, length: int) -> MacEvent:
    _require(length, MAC_LENGTH, "Connection")
    end = PAYLOAD_OFFSET + length
    return MacEvent(mac_string(raw[end - MAC_LENGTH : end]))


def mac_string(octets: bytes) -> str:
    """Format little-endian address bytes as ``AA:BB:CC:DD:EE:FF``."""
    return ":".join(f"{b:02X}" for b in reversed(octets))


def encode_event(
    sequence: int,
    timestamp: int,
    event_type: int,
    payload: bytes = b"",
    data_flag: bool = False,
) -> bytes:
    """Build a raw record, the inverse of :meth:`EventCodec.decode`."""
    return _HEADER.pack(sequence, timestamp, event_type, len(payload)) + payload + bytes(
        [1 if data_flag else 0]
    )


def describe(event: VehEvent) -> Optional[str]:
    """Return a one-line summary for logging, or None for unhandled records."""
    if event.kind is VehEventKind.UNHANDLED:
        _LOGGER.debug("Unhandled event type 0x%02X", event.header.event_type)
        return None
    return f"#{event.sequence} {event.kind.value} @{event.timestamp}: {event.detail}"
