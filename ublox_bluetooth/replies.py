"""Parsers for u-blox AT replies and recorder GATT responses."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import struct
from typing import List, Tuple

from .const import (
    ASYNC_PREFIXES,
    COMMAND_VALUE_HANDLE,
    CONNECT_PEER_RESPONSE,
    CONNECT_RESPONSE,
    DATA_VALUE_HANDLE,
    DISCONNECT_RESPONSE,
    DISCOVERY_RESPONSE,
    GATT_INDICATION_RESPONSE,
    GATT_NOTIFICATION_RESPONSE,
    GET_RSSI_RESPONSE,
    LOCAL_NAME_RESPONSE,
    OP_UNLOCK,
    PEER_CONNECTED_RESPONSE,
    PEER_DISCONNECTED_RESPONSE,
    PEER_LIST_RESPONSE,
    READ_CHARACTERISTIC_RESPONSE,
    RS232_SETTINGS_RESPONSE,
    STATUS_OK,
    STATUS_PENDING,
    UNLOCK_SUCCESS,
)
from .exceptions import ProtocolMismatch

_LOGGER = logging.getLogger(__name__)


def is_async_line(line: bytes) -> bool:
    """Return True for unsolicited module lines."""
    text = line.decode("ascii", errors="ignore")
    return text.startswith(ASYNC_PREFIXES)


def hex_to_int(value: str, signed: bool = False) -> int:
    """Decode a little-endian hex field."""
    try:
        return int.from_bytes(bytes.fromhex(value), "little", signed=signed)
    except ValueError as err:
        raise ProtocolMismatch(f"Invalid hex field {value!r}") from err


def hex_to_float32(value: str) -> float:
    try:
        return struct.unpack("<f", bytes.fromhex(value))[0]
    except (ValueError, struct.error) as err:
        raise ProtocolMismatch(f"Invalid float32 field {value!r}") from err


def _text(data: bytes) -> str:
    return data.decode("ascii", errors="ignore")


def _find_reply(data: bytes, prefix: str) -> str:
    """Return the text following ``prefix`` on the first line that carries it."""
    for line in _text(data).splitlines():
        idx = line.find(prefix)
        if idx != -1:
            return line[idx + len(prefix) :].strip()
    raise ProtocolMismatch("Incorrect response", expected=prefix, received=data)


def _split_tokens(data: bytes, prefix: str, minimum: int) -> List[str]:
    tokens = _find_reply(data, prefix).split(",")
    if len(tokens) < minimum:
        raise ProtocolMismatch("Unknown response", expected=prefix, received=data)
    return tokens


def _to_int(value: str, name: str, data: bytes) -> int:
    try:
        return int(value)
    except ValueError as err:
        raise ProtocolMismatch(f"Error extracting {name}", received=data) from err


def is_indication_valid(tokens: List[str], conn_handle: int = 0) -> bool:
    return tokens[0] == str(conn_handle) and tokens[1] == str(COMMAND_VALUE_HANDLE)


def is_notification_valid(tokens: List[str], conn_handle: int = 0) -> bool:
    return tokens[0] == str(conn_handle) and tokens[1] == str(DATA_VALUE_HANDLE)


def parse_indication(data: bytes, conn_handle: int = 0) -> Tuple[int, str, str]:
    """Validate a GATT indication and return (op-code, status, hex body)."""
    tokens = _split_tokens(data, GATT_INDICATION_RESPONSE, 3)
    if not is_indication_valid(tokens, conn_handle):
        raise ProtocolMismatch(
            "Invalid indication markers", expected=f"{conn_handle},{COMMAND_VALUE_HANDLE}",
            received=data,
        )
    body = tokens[2].upper()
    if len(body) < 4:
        raise ProtocolMismatch("Truncated indication", received=data)
    return hex_to_int(body[0:2]), body[2:4], body


def split_out_response(data: bytes, opcode: int, conn_handle: int = 0) -> str:
    """Return the hex body of the indication answering ``opcode``."""
    reply_op, status, body = parse_indication(data, conn_handle)
    if reply_op != opcode or status not in (STATUS_OK, STATUS_PENDING):
        raise ProtocolMismatch(
            "Invalid response", expected=f"{opcode:02X}{STATUS_OK}", received=data
        )
    return body


def split_out_notification(data: bytes, conn_handle: int = 0) -> bytes:
    """Validate a GATT notification and return its decoded payload."""
    tokens = _split_tokens(data, GATT_NOTIFICATION_RESPONSE, 3)
    if not is_notification_valid(tokens, conn_handle):
        raise ProtocolMismatch(
            "Invalid notification markers", expected=f"{conn_handle},{DATA_VALUE_HANDLE}",
            received=data,
        )
    try:
        return bytes.fromhex(tokens[2])
    except ValueError as err:
        raise ProtocolMismatch("Malformed notification hex", received=data) from err


@dataclass
class DiscoveryReply:
    bluetooth_address: str
    rssi: int
    device_name: str
    data_type: int
    data: str
    dongle_index: int = 0


@dataclass
class RS232SettingsReply:
    baudrate: int
    flow_control: int
    data_bits: int
    stop_bits: int
    parity: int
    change_after_confirm: int = 0


@dataclass
class ConnectionReply:
    handle: int
    type: int
    bluetooth_address: str


@dataclass
class ConnectedPeer:
    peer_handle: int
    type: int
    profile: int
    mac_address: str
    frame_size: int


@dataclass
class PeerListEntry:
    peer_handle: int
    protocol: str
    local_address: str
    remote_address: str


@dataclass
class VersionReply:
    software_version: int
    hardware_version: int


@dataclass
class ConfigReply:
    """Recorder configuration block."""

    advertising_interval: int
    sample_time: int
    state: int
    accel_settings: int
    spare_one: int
    temperature_offset: int

    def to_bytes(self) -> bytes:
        return struct.pack(
            "<HHHBBb",
            self.advertising_interval,
            self.sample_time,
            self.state,
            self.accel_settings,
            self.spare_one,
            self.temperature_offset,
        )


@dataclass
class RecorderInfoReply:
    sequence_number: int
    records_count: int


@dataclass
class RecorderMetaReply:
    time: int
    sequence: int
    bytes: int
    sample_rate: float
    temperature: int
    battery_voltage: int
    voltage_in: int


@dataclass
class SettingReply:
    setting: int
    value: int


def new_discovery_reply(line: str) -> DiscoveryReply:
    """Parse one ``addr,rssi,name,type,data`` discovery record."""
    tokens = line.split(",")
    if len(tokens) < 5:
        raise ProtocolMismatch("Not enough tokens in discovery reply", received=line.encode())
    return DiscoveryReply(
        bluetooth_address=tokens[0],
        rssi=_to_int(tokens[1], "RSSI", line.encode()),
        device_name=tokens[2].strip('"'),
        data_type=_to_int(tokens[3], "DataType", line.encode()),
        data=tokens[4],
    )


def process_discovery_reply(data: bytes) -> List[DiscoveryReply]:
    """Parse every discovery record in a reply, skipping malformed ones."""
    discovered: List[DiscoveryReply] = []
    for line in _text(data).splitlines():
        if not line.startswith(DISCOVERY_RESPONSE):
            continue
        try:
            discovered.append(new_discovery_reply(line[len(DISCOVERY_RESPONSE) :]))
        except ProtocolMismatch as err:
            _LOGGER.debug("Skipping discovery record: %s", err)
    return discovered


def process_rs232_settings_reply(data: bytes) -> RS232SettingsReply:
    tokens = _split_tokens(data, RS232_SETTINGS_RESPONSE, 5)
    values = [_to_int(t, "RS232 setting", data) for t in tokens]
    return RS232SettingsReply(*values[:6])


def process_local_name_reply(data: bytes) -> str:
    return _find_reply(data, LOCAL_NAME_RESPONSE).strip('"')


def process_serial_number_reply(data: bytes) -> str:
    lines = _text(data).splitlines()
    if lines:
        return lines[0].strip().strip('"')
    return "Unknown"


def new_connection_reply(data: bytes) -> ConnectionReply:
    tokens = _split_tokens(data, CONNECT_RESPONSE, 3)
    return ConnectionReply(
        handle=_to_int(tokens[0], "Handle", data),
        type=_to_int(tokens[1], "Type", data),
        bluetooth_address=tokens[2],
    )


def process_disconnect_reply(data: bytes) -> int:
    """Return the handle reported by a disconnect event."""
    tokens = _split_tokens(data, DISCONNECT_RESPONSE, 1)
    return _to_int(tokens[0], "Handle", data)


def process_rssi_reply(data: bytes) -> int:
    tokens = _split_tokens(data, GET_RSSI_RESPONSE, 1)
    return _to_int(tokens[0], "RSSI", data)


def process_peer_list_reply(data: bytes) -> List[PeerListEntry]:
    peers: List[PeerListEntry] = []
    for line in _text(data).splitlines():
        if not line.startswith(PEER_LIST_RESPONSE):
            continue
        tokens = line[len(PEER_LIST_RESPONSE) :].split(",")
        if len(tokens) < 4:
            _LOGGER.debug("Skipping peer record: %s", line)
            continue
        peers.append(
            PeerListEntry(
                peer_handle=_to_int(tokens[0], "PeerHandle", data),
                protocol=tokens[1],
                local_address=tokens[2],
                remote_address=tokens[3],
            )
        )
    return peers


def process_connect_peer_reply(data: bytes) -> int:
    tokens = _split_tokens(data, CONNECT_PEER_RESPONSE, 1)
    return _to_int(tokens[0], "PeerHandle", data)


def new_connected_peer_reply(data: bytes) -> ConnectedPeer:
    tokens = _split_tokens(data, PEER_CONNECTED_RESPONSE, 5)
    return ConnectedPeer(
        peer_handle=_to_int(tokens[0], "PeerHandle", data),
        type=_to_int(tokens[1], "Type", data),
        profile=_to_int(tokens[2], "Profile", data),
        mac_address=tokens[3],
        frame_size=_to_int(tokens[4], "FrameSize", data),
    )


def process_peer_disconnected_reply(peer_handle: int, data: bytes) -> None:
    tokens = _split_tokens(data, PEER_DISCONNECTED_RESPONSE, 1)
    if _to_int(tokens[0], "PeerHandle", data) != peer_handle:
        raise ProtocolMismatch(
            "Peer handle mismatch", expected=str(peer_handle), received=data
        )


def process_read_characteristic_reply(data: bytes) -> bytes:
    tokens = _split_tokens(data, READ_CHARACTERISTIC_RESPONSE, 3)
    try:
        return bytes.fromhex(tokens[2])
    except ValueError as err:
        raise ProtocolMismatch("Malformed characteristic hex", received=data) from err


# Recorder replies: ``<op:2><status:2><fields...>``


def process_unlock_reply(data: bytes, conn_handle: int = 0) -> bool:
    return split_out_response(data, OP_UNLOCK, conn_handle) == UNLOCK_SUCCESS


def new_version_reply(data: bytes, opcode: int, conn_handle: int = 0) -> VersionReply:
    t = split_out_response(data, opcode, conn_handle)
    return VersionReply(
        software_version=hex_to_int(t[4:8]),
        hardware_version=hex_to_int(t[8:12]),
    )


def new_config_reply(data: bytes, opcode: int, conn_handle: int = 0) -> ConfigReply:
    t = split_out_response(data, opcode, conn_handle)
    return ConfigReply(
        advertising_interval=hex_to_int(t[4:8]),
        sample_time=hex_to_int(t[8:12]),
        state=hex_to_int(t[12:16]),
        accel_settings=hex_to_int(t[16:18]),
        spare_one=hex_to_int(t[18:20]),
        temperature_offset=hex_to_int(t[20:22], signed=True),
    )


def new_recorder_info_reply(
    data: bytes, opcode: int, conn_handle: int = 0
) -> RecorderInfoReply:
    t = split_out_response(data, opcode, conn_handle)
    return RecorderInfoReply(
        sequence_number=hex_to_int(t[4:12]),
        records_count=hex_to_int(t[12:20]),
    )


def new_recorder_meta_reply(
    data: bytes, opcode: int, conn_handle: int = 0
) -> RecorderMetaReply:
    t = split_out_response(data, opcode, conn_handle)
    return RecorderMetaReply(
        time=hex_to_int(t[4:12]),
        sequence=hex_to_int(t[12:20]),
        bytes=hex_to_int(t[20:24]) * 4,
        sample_rate=hex_to_float32(t[24:32]),
        temperature=hex_to_int(t[32:36]),
        battery_voltage=hex_to_int(t[36:40]),
        voltage_in=hex_to_int(t[40:44]),
    )


def new_setting_reply(data: bytes, opcode: int, conn_handle: int = 0) -> SettingReply:
    t = split_out_response(data, opcode, conn_handle)
    return SettingReply(setting=hex_to_int(t[4:6]), value=hex_to_int(t[6:14]))


def process_time_reply(data: bytes, opcode: int, conn_handle: int = 0) -> int:
    return hex_to_int(split_out_response(data, opcode, conn_handle)[4:12])


def process_count_reply(data: bytes, opcode: int, conn_handle: int = 0) -> int:
    """Return the record count announced by a bulk transfer header."""
    return hex_to_int(split_out_response(data, opcode, conn_handle)[4:8])


def process_rssi_indication(data: bytes, opcode: int, conn_handle: int = 0) -> int:
    return hex_to_int(split_out_response(data, opcode, conn_handle)[4:6], signed=True)


def process_echo_reply(data: bytes, opcode: int, conn_handle: int = 0) -> bytes:
    body = split_out_response(data, opcode, conn_handle)[4:]
    try:
        return bytes.fromhex(body)
    except ValueError as err:
        raise ProtocolMismatch("Malformed echo hex", received=data) from err


def process_status_reply(data: bytes, opcode: int, conn_handle: int = 0) -> str:
    return split_out_response(data, opcode, conn_handle)[2:4]
