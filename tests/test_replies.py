import pytest

from ublox_bluetooth.const import (
    OP_ECHO,
    OP_GET_TIME,
    OP_QUERY_RECORDER_META,
    OP_READ_CONFIG,
    OP_READ_RECORDER,
    OP_RECORDER_INFO,
    OP_RSSI,
    OP_VERSION,
)
from ublox_bluetooth.exceptions import ProtocolMismatch
from ublox_bluetooth.replies import (
    hex_to_int,
    is_async_line,
    new_config_reply,
    new_connection_reply,
    new_recorder_info_reply,
    new_recorder_meta_reply,
    new_version_reply,
    process_count_reply,
    process_discovery_reply,
    process_disconnect_reply,
    process_echo_reply,
    process_local_name_reply,
    process_peer_list_reply,
    process_rs232_settings_reply,
    process_rssi_indication,
    process_serial_number_reply,
    process_time_reply,
    process_unlock_reply,
    split_out_notification,
    split_out_response,
)


def indication(body: str, conn_handle: int = 0) -> bytes:
    return f"+UUBTGI:{conn_handle},13,{body}".encode("ascii")


def test_hex_to_int_is_little_endian() -> None:
    assert hex_to_int("E803") == 1000
    assert hex_to_int("C4", signed=True) == -60
    with pytest.raises(ProtocolMismatch):
        hex_to_int("XYZ")


def test_is_async_line() -> None:
    assert is_async_line(b"+UUBTGN:0,16,00")
    assert is_async_line(b"+STARTUP")
    assert not is_async_line(b"+UBTLN:\"name\"")


def test_unlock_reply() -> None:
    assert process_unlock_reply(indication("0000"))
    assert not process_unlock_reply(indication("0001"))


def test_response_validation() -> None:
    with pytest.raises(ProtocolMismatch):
        split_out_response(indication("0102"), OP_VERSION)
    with pytest.raises(ProtocolMismatch):
        split_out_response(indication("0200"), OP_VERSION)
    with pytest.raises(ProtocolMismatch):
        split_out_response(indication("0100", conn_handle=1), OP_VERSION, 0)
    with pytest.raises(ProtocolMismatch):
        split_out_response(b"+UUBTGN:0,16,0100", OP_VERSION)
    assert split_out_response(indication("0100", conn_handle=2), OP_VERSION, 2) == "0100"


def test_version_reply() -> None:
    reply = new_version_reply(indication("01000A000300"), OP_VERSION)
    assert (reply.software_version, reply.hardware_version) == (10, 3)


def test_config_reply_round_trip() -> None:
    body = "0300E8033C0001000200FE"
    config = new_config_reply(indication(body), OP_READ_CONFIG)
    assert config.advertising_interval == 1000
    assert config.sample_time == 60
    assert config.state == 1
    assert config.accel_settings == 2
    assert config.temperature_offset == -2
    assert config.to_bytes() == bytes.fromhex(body[4:])


def test_recorder_info_reply() -> None:
    reply = new_recorder_info_reply(indication("20000500000010000000"), OP_RECORDER_INFO)
    assert (reply.sequence_number, reply.records_count) == (5, 16)


def test_recorder_meta_reply() -> None:
    body = "2200" + "01000000" + "02000000" + "0300" + "0000C03F" + "1900" + "740E" + "0000"
    meta = new_recorder_meta_reply(indication(body), OP_QUERY_RECORDER_META)
    assert meta.time == 1
    assert meta.sequence == 2
    assert meta.bytes == 12
    assert meta.sample_rate == 1.5
    assert meta.temperature == 25
    assert meta.battery_voltage == 3700
    assert meta.voltage_in == 0


def test_small_recorder_replies() -> None:
    assert process_time_reply(indication("020040420F00"), OP_GET_TIME) == 1000000
    assert process_rssi_indication(indication("2400C4"), OP_RSSI) == -60
    assert process_echo_reply(indication("0B00DEADBEEF"), OP_ECHO) == b"\xde\xad\xbe\xef"
    assert process_count_reply(indication("21000A00"), OP_READ_RECORDER) == 10


def test_notification_payload() -> None:
    assert split_out_notification(b"+UUBTGN:0,16,0102FF") == b"\x01\x02\xff"
    with pytest.raises(ProtocolMismatch):
        split_out_notification(b"+UUBTGN:0,13,0102")
    with pytest.raises(ProtocolMismatch):
        split_out_notification(b"+UUBTGN:0,16,0G")


def test_discovery_reply_skips_malformed_records() -> None:
    data = b'+UBTD:D4CA6EB91DC5p,-67,"RECORDER",2,0201\r\n+UBTD:broken\r\n'
    found = process_discovery_reply(data)
    assert len(found) == 1
    assert found[0].bluetooth_address == "D4CA6EB91DC5p"
    assert found[0].rssi == -67
    assert found[0].device_name == "RECORDER"


def test_connection_and_disconnect_replies() -> None:
    reply = new_connection_reply(b"+UUBTACLC:0,0,D4CA6EB91DC5p")
    assert (reply.handle, reply.type, reply.bluetooth_address) == (0, 0, "D4CA6EB91DC5p")
    assert process_disconnect_reply(b"+UUBTACLD:3") == 3
    with pytest.raises(ProtocolMismatch):
        process_disconnect_reply(b"+UUBTACLD:x")


def test_module_replies() -> None:
    settings = process_rs232_settings_reply(b"+UMRS:115200,1,8,1,1,1")
    assert settings.baudrate == 115200
    assert settings.change_after_confirm == 1
    assert process_local_name_reply(b'+UBTLN:"RECORDER"') == "RECORDER"
    assert process_serial_number_reply(b'"0123456789"') == "0123456789"
    assert process_serial_number_reply(b"") == "Unknown"


def test_peer_list_reply() -> None:
    data = b"+UDLP:0,sps,D4CA6EB91DC5p,CCF957967A0Ep\r\n+UDLP:1\r\n"
    peers = process_peer_list_reply(data)
    assert [peer.peer_handle for peer in peers] == [0]
    assert peers[0].protocol == "sps"
