import asyncio

import pytest
import serial

from conftest import EDM_OK, edm_confirmation, edm_event
from ublox_bluetooth.dispatcher import Dispatcher
from ublox_bluetooth.exceptions import (
    CorrelationTimeout,
    ProtocolMismatch,
    TransportFailure,
    UnexpectedPayload,
)
from ublox_bluetooth.frame import MessageType, encode_at_command, encode_edm_payload
from ublox_bluetooth.mode import LinkMode


async def _settle() -> None:
    await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_write_and_wait_returns_on_ok(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0)
    await dispatcher.start()
    link.on_write(b"AT\r", EDM_OK)
    try:
        result = await dispatcher.write_and_wait("AT")
    finally:
        await dispatcher.close()
    assert result == b""
    assert link.writes == [encode_at_command("AT")]


@pytest.mark.asyncio
async def test_write_and_wait_collects_prefixed_data(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0)
    await dispatcher.start()
    link.on_write(b"AT+UBTLN?", edm_confirmation(b'+UBTLN:"RECORDER"', b"OK"))
    try:
        result = await dispatcher.write_and_wait("AT+UBTLN?", "+UBTLN:", True)
    finally:
        await dispatcher.close()
    assert result == b'+UBTLN:"RECORDER"'


@pytest.mark.asyncio
async def test_data_arriving_after_ok_resolves_request(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0)
    await dispatcher.start()
    link.on_write(
        b"AT+UBTACLC=",
        EDM_OK,
        edm_event(b"+UUBTACLC:0,0,D4CA6EB91DC5p"),
    )
    try:
        result = await dispatcher.write_and_wait(
            "AT+UBTACLC=D4CA6EB91DC5p", "+UUBTACLC:", True
        )
    finally:
        await dispatcher.close()
    assert result == b"+UUBTACLC:0,0,D4CA6EB91DC5p"


@pytest.mark.asyncio
async def test_timeout_leaves_link_usable(link) -> None:
    dispatcher = Dispatcher(link, timeout=0.05)
    await dispatcher.start()
    try:
        with pytest.raises(CorrelationTimeout) as err:
            await dispatcher.write_and_wait("AT+CGSN", "", True)
        assert err.value.command == "AT+CGSN"

        link.on_write(b"AT\r", EDM_OK)
        assert await dispatcher.write_and_wait("AT", timeout=1.0) == b""
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_error_reply_fails_request(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0)
    await dispatcher.start()
    link.on_write(b"AT+UFACTORY", edm_confirmation(b"ERROR"))
    try:
        with pytest.raises(ProtocolMismatch) as err:
            await dispatcher.write_and_wait("AT+UFACTORY")
    finally:
        await dispatcher.close()
    assert err.value.command == "AT+UFACTORY"


@pytest.mark.asyncio
async def test_unsolicited_lines_reach_handler_not_request(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0)
    seen = []
    dispatcher.register_async_handler(
        lambda frame: frame.payload.startswith(b"+UUBTGN:"),
        lambda frame: seen.append(frame.payload),
    )
    await dispatcher.start()
    link.on_write(b"AT\r", edm_event(b"+UUBTGN:0,16,0102"), EDM_OK)
    try:
        assert await dispatcher.write_and_wait("AT") == b""
    finally:
        await dispatcher.close()
    assert seen == [b"+UUBTGN:0,16,0102"]


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery(link) -> None:
    dispatcher = Dispatcher(link)
    seen = []
    unsubscribe = dispatcher.register_async_handler(lambda frame: True, seen.append)
    await dispatcher.start()
    try:
        link.feed(encode_edm_payload(MessageType.DATA_EVENT, b"\x00\x01"))
        await _settle()
        unsubscribe()
        link.feed(encode_edm_payload(MessageType.DATA_EVENT, b"\x00\x02"))
        await _settle()
    finally:
        await dispatcher.close()
    assert [frame.payload for frame in seen] == [b"\x00\x01"]


@pytest.mark.asyncio
async def test_unclaimed_payload_goes_to_error_sink(link) -> None:
    dispatcher = Dispatcher(link)
    await dispatcher.start()
    try:
        link.feed(edm_event(b"+UUBTACLD:3"))
        link.feed(edm_confirmation(b"garbage"))
        await _settle()
    finally:
        await dispatcher.close()
    errors = dispatcher.drain_errors()
    assert len(errors) == 1
    assert isinstance(errors[0], UnexpectedPayload)
    assert dispatcher.drain_errors() == []


@pytest.mark.asyncio
async def test_failing_handler_is_reported_and_reader_survives(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0)

    def _boom(frame) -> None:
        raise ValueError("handler failed")

    dispatcher.register_async_handler(
        lambda frame: frame.payload.startswith(b"+UUBTGI:"), _boom
    )
    await dispatcher.start()
    link.feed(edm_event(b"+UUBTGI:0,13,0100"))
    link.on_write(b"AT\r", EDM_OK)
    try:
        await _settle()
        assert await dispatcher.write_and_wait("AT") == b""
    finally:
        await dispatcher.close()
    errors = dispatcher.drain_errors()
    assert [type(err) for err in errors] == [ValueError]


@pytest.mark.asyncio
async def test_start_event(link) -> None:
    dispatcher = Dispatcher(link)
    await dispatcher.start()
    try:
        dispatcher.expect_start()
        assert not dispatcher.start_event_received
        link.feed(encode_edm_payload(MessageType.START_EVENT))
        await dispatcher.wait_for_start(1.0)
        assert dispatcher.start_event_received
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_startup_line_in_command_mode(link) -> None:
    dispatcher = Dispatcher(link, mode=LinkMode.COMMAND)
    await dispatcher.start()
    try:
        link.feed(b"\r\n+STARTUP\r\n")
        await dispatcher.wait_for_start(1.0)
    finally:
        await dispatcher.close()
    assert dispatcher.drain_errors() == []


@pytest.mark.asyncio
async def test_command_mode_writes_plain_text(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0, mode=LinkMode.COMMAND)
    await dispatcher.start()
    link.on_write(b"AT+CGSN", b"AT+CGSN\r\n", b'"0123456789"\r\n', b"OK\r\n")
    try:
        result = await dispatcher.write_and_wait("AT+CGSN", "", True)
    finally:
        await dispatcher.close()
    assert link.writes == [b"AT+CGSN\r\n"]
    assert result == b'"0123456789"'


@pytest.mark.asyncio
async def test_read_failure_fails_pending_and_future_calls(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0)
    failures = []
    dispatcher.add_failure_listener(failures.append)
    await dispatcher.start()
    link.on_write(b"AT\r")
    task = asyncio.create_task(dispatcher.write_and_wait("AT"))
    await _settle()
    link.fail_read(serial.SerialException("device unplugged"))
    with pytest.raises(TransportFailure):
        await task
    with pytest.raises(TransportFailure):
        await dispatcher.write_and_wait("AT")
    assert len(failures) == 1
    assert not dispatcher.running
    await dispatcher.close()


@pytest.mark.asyncio
async def test_write_failure_is_transport_failure(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0)
    await dispatcher.start()
    link.write_error = OSError("write failed")
    try:
        with pytest.raises(TransportFailure):
            await dispatcher.write_and_wait("AT")
        assert dispatcher.failure is not None
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_close_wakes_pending_request(link) -> None:
    dispatcher = Dispatcher(link, timeout=5.0)
    await dispatcher.start()
    task = asyncio.create_task(dispatcher.write_and_wait("AT"))
    await _settle()
    await dispatcher.close()
    with pytest.raises(TransportFailure):
        await task


@pytest.mark.asyncio
async def test_allow_empty_resolves_on_bare_ok(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0)
    await dispatcher.start()
    link.on_write(b"AT+UDLP?", EDM_OK)
    try:
        result = await dispatcher.write_and_wait(
            "AT+UDLP?", "+UDLP:", True, allow_empty=True
        )
    finally:
        await dispatcher.close()
    assert result == b""


@pytest.mark.asyncio
async def test_failing_failure_listener_does_not_stop_others(link) -> None:
    dispatcher = Dispatcher(link, timeout=1.0)
    seen = []

    def _broken(exc: Exception) -> None:
        raise RuntimeError("listener failed")

    dispatcher.add_failure_listener(_broken)
    dispatcher.add_failure_listener(seen.append)
    await dispatcher.start()
    link.on_write(b"AT\r")
    task = asyncio.create_task(dispatcher.write_and_wait("AT"))
    await _settle()
    link.fail_read(serial.SerialException("device unplugged"))
    with pytest.raises(TransportFailure):
        await task
    assert len(seen) == 1
    assert isinstance(seen[0], TransportFailure)
    await dispatcher.close()
