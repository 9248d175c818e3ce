"""AT command builders and recorder application payloads.

The commands are described in the u-blox u-connect AT commands manual
(UBX-14044127). Each builder returns the command text together with the
response prefix the dispatcher should wait for.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
import struct

from .const import (
    AT,
    BLE_CONFIGURATION,
    BLE_ROLE,
    CONNECT,
    CONNECT_PEER,
    CONNECT_PEER_RESPONSE,
    CONNECT_RESPONSE,
    DISCONNECT,
    DISCONNECT_PEER,
    DISCONNECT_RESPONSE,
    DISCOVERY,
    DISCOVERY_RESPONSE,
    ECHO_OFF,
    FACTORY_RESET,
    GATT_INDICATION_RESPONSE,
    GET_RSSI,
    GET_RSSI_RESPONSE,
    LOCAL_NAME,
    LOCAL_NAME_RESPONSE,
    MODULE_START_MODE,
    MODULE_START_MODE_RESPONSE,
    OP_ABORT,
    OP_CREDIT,
    OP_ECHO,
    OP_ERASE,
    OP_GET_SETTING,
    OP_GET_TIME,
    OP_QUERY_RECORDER_META,
    OP_READ_CONFIG,
    OP_READ_RECORDER,
    OP_READ_RECORDER_DATA,
    OP_REBOOT,
    OP_RECORDER_INFO,
    OP_RSSI,
    OP_SET_SETTING,
    OP_SET_TIME,
    OP_UNLOCK,
    OP_VERSION,
    OP_WRITE_CONFIG,
    OP_WRITE_MESSAGE,
    PEER_DISCONNECTED_RESPONSE,
    PEER_LIST,
    PEER_LIST_RESPONSE,
    POWER_OFF,
    READ_CHARACTERISTIC,
    READ_CHARACTERISTIC_RESPONSE,
    REBOOT_RESPONSE,
    RS232_SETTINGS,
    RS232_SETTINGS_RESPONSE,
    SERIAL_NUMBER,
    STORE_CONFIG,
    WATCHDOG_SETTINGS,
    WRITE_CHARACTERISTIC,
    WRITE_CHARACTERISTIC_CONFIG,
)


@dataclass(frozen=True)
class CmdResp:
    """An AT command and the reply it should be correlated with."""

    cmd: str
    resp: str = ""
    wait_for_data: bool = False
    # OK ends the reply even when no data line arrived (list queries)
    allow_empty: bool = False


class StartMode(IntEnum):
    """Module start modes for AT+UMSM."""

    COMMAND = 0x00
    DATA = 0x01
    EXTENDED_DATA = 0x02
    PPP = 0x03


def at_command() -> CmdResp:
    return CmdResp(AT)


def echo_off_command() -> CmdResp:
    return CmdResp(ECHO_OFF)


def store_config_command() -> CmdResp:
    """Persist configuration; takes effect after the next reboot."""
    return CmdResp(STORE_CONFIG)


def reboot_command() -> CmdResp:
    return CmdResp(f"AT{POWER_OFF}", REBOOT_RESPONSE)


def factory_reset_command() -> CmdResp:
    return CmdResp(f"AT{FACTORY_RESET}")


def module_start_command(mode: StartMode) -> CmdResp:
    return CmdResp(f"AT{MODULE_START_MODE}={int(mode)}", MODULE_START_MODE_RESPONSE)


def rs232_settings_command(settings: str = "") -> CmdResp:
    """Query the UART settings, or set them when ``settings`` is given."""
    if not settings:
        return CmdResp(f"AT{RS232_SETTINGS}?", RS232_SETTINGS_RESPONSE, True)
    return CmdResp(f"AT{RS232_SETTINGS}={settings}")


def watchdog_command(setting_type: int, value: int) -> CmdResp:
    return CmdResp(f"AT{WATCHDOG_SETTINGS}={setting_type},{value}")


def serial_number_command() -> CmdResp:
    return CmdResp(f"AT{SERIAL_NUMBER}", "", True)


def local_name_command() -> CmdResp:
    return CmdResp(f"AT{LOCAL_NAME}?", LOCAL_NAME_RESPONSE, True)


def discovery_command(scan_ms: int = 0) -> CmdResp:
    # 4 = active scan of all devices, 1 = no duplicates filtering
    if scan_ms:
        return CmdResp(f"AT{DISCOVERY}=4,1,{scan_ms}", DISCOVERY_RESPONSE, True, True)
    return CmdResp(f"AT{DISCOVERY}=4,1", DISCOVERY_RESPONSE, True, True)


def ble_role_command(role: int) -> CmdResp:
    return CmdResp(f"AT{BLE_ROLE}={role}")


def ble_config_command(param: int, value: int) -> CmdResp:
    return CmdResp(f"AT{BLE_CONFIGURATION}={param},{value}")


def rssi_command(address: str) -> CmdResp:
    return CmdResp(f"AT{GET_RSSI}={address}", GET_RSSI_RESPONSE, True)


def peer_list_command() -> CmdResp:
    return CmdResp(f"AT{PEER_LIST}?", PEER_LIST_RESPONSE, True, True)


def connect_command(address: str) -> CmdResp:
    return CmdResp(f"AT{CONNECT}={address}", CONNECT_RESPONSE, True)


def disconnect_command(handle: int) -> CmdResp:
    return CmdResp(f"AT{DISCONNECT}={handle}", DISCONNECT_RESPONSE, True)


def connect_peer_command(url: str) -> CmdResp:
    return CmdResp(f"AT{CONNECT_PEER}={url}", CONNECT_PEER_RESPONSE, True)


def disconnect_peer_command(peer_handle: int) -> CmdResp:
    return CmdResp(f"AT{DISCONNECT_PEER}={peer_handle}", PEER_DISCONNECTED_RESPONSE, True)


def write_characteristic_config_command(
    conn_handle: int, desc_handle: int, config: int
) -> CmdResp:
    return CmdResp(f"AT{WRITE_CHARACTERISTIC_CONFIG}={conn_handle},{desc_handle},{config}")


def read_characteristic_command(conn_handle: int, value_handle: int) -> CmdResp:
    return CmdResp(
        f"AT{READ_CHARACTERISTIC}={conn_handle},{value_handle}",
        READ_CHARACTERISTIC_RESPONSE,
        True,
    )


def write_characteristic_command(
    conn_handle: int, value_handle: int, payload: bytes, wait_for_reply: bool = True
) -> CmdResp:
    """GATT write of a recorder payload; replies arrive as an indication."""
    cmd = f"AT{WRITE_CHARACTERISTIC}={conn_handle},{value_handle},{payload.hex().upper()}"
    if wait_for_reply:
        return CmdResp(cmd, GATT_INDICATION_RESPONSE, True)
    return CmdResp(cmd)


# Recorder application payloads.  Multi-byte fields are little-endian.


def unlock_payload(password: bytes) -> bytes:
    return bytes([OP_UNLOCK]) + password


def version_payload() -> bytes:
    return bytes([OP_VERSION])


def get_time_payload() -> bytes:
    return bytes([OP_GET_TIME])


def set_time_payload(timestamp: int) -> bytes:
    return struct.pack("<BI", OP_SET_TIME, timestamp)


def read_config_payload() -> bytes:
    return bytes([OP_READ_CONFIG])


def write_config_payload(config: bytes) -> bytes:
    return bytes([OP_WRITE_CONFIG]) + config


def abort_payload() -> bytes:
    return bytes([OP_ABORT])


def echo_payload(data: bytes) -> bytes:
    return bytes([OP_ECHO]) + data


def set_setting_payload(setting: int, value: int) -> bytes:
    return struct.pack("<BBI", OP_SET_SETTING, setting, value)


def get_setting_payload(setting: int) -> bytes:
    return struct.pack("<BB", OP_GET_SETTING, setting)


def credit_payload(credit: int) -> bytes:
    return struct.pack("<BB", OP_CREDIT, credit)


def erase_payload() -> bytes:
    return bytes([OP_ERASE])


def reboot_payload() -> bytes:
    return bytes([OP_REBOOT])


def write_message_payload(message: str) -> bytes:
    return bytes([OP_WRITE_MESSAGE]) + message.encode("utf-8")


def recorder_info_payload() -> bytes:
    return bytes([OP_RECORDER_INFO])


def read_recorder_payload(start_sequence: int, credit: int) -> bytes:
    return struct.pack("<BIB", OP_READ_RECORDER, start_sequence, credit)


def query_recorder_meta_payload(sequence: int) -> bytes:
    return struct.pack("<BI", OP_QUERY_RECORDER_META, sequence)


def read_recorder_data_payload(sequence: int, credit: int) -> bytes:
    return struct.pack("<BIB", OP_READ_RECORDER_DATA, sequence, credit)


def rssi_payload() -> bytes:
    return bytes([OP_RSSI])
