"""Driver API for a u-blox module talking to a remote recorder."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import Callable, Dict, List, Optional, Protocol

from . import commands
from .commands import CmdResp, StartMode
from .config import DriverConfig
from .const import (
    AT_RETRY_ATTEMPTS,
    AT_RETRY_BACKOFF,
    AT_RETRY_MAX_BACKOFF,
    BLE_CENTRAL,
    COMMAND_CCCD_HANDLE,
    COMMAND_TIMEOUT,
    COMMAND_VALUE_HANDLE,
    CONNECTION_TIMEOUT,
    CREATE_CONNECTION_TIMEOUT,
    DATA_CCCD_HANDLE,
    DEFAULT_CREDIT,
    DISCONNECT_RESPONSE,
    DISCONNECT_RESET_TYPE,
    DISCONNECT_RESET_VALUE,
    INACTIVITY_TIMEOUT_TYPE,
    INACTIVITY_TIMEOUT_VALUE,
    INDICATIONS_ENABLED,
    MAX_CONNECTION_INTERVAL,
    MAX_CONNECTION_INTERVAL_VALUE,
    NOTIFICATIONS_ENABLED,
    OP_ECHO,
    OP_ERASE,
    OP_GET_SETTING,
    OP_GET_TIME,
    OP_QUERY_RECORDER_META,
    OP_READ_CONFIG,
    OP_REBOOT,
    OP_RECORDER_INFO,
    OP_RSSI,
    OP_SET_SETTING,
    OP_SET_TIME,
    OP_VERSION,
    OP_WRITE_CONFIG,
    OP_WRITE_MESSAGE,
    PEER_CONNECTED_RESPONSE,
    STARTUP_TIMEOUT,
)
from .dispatcher import Dispatcher, Link
from .events import EventCodec, VehEvent
from .exceptions import (
    CorrelationTimeout,
    NotConnected,
    ProtocolMismatch,
    UbloxError,
)
from .frame import Frame
from .mode import LinkMode
from .replies import (
    ConfigReply,
    ConnectedPeer,
    ConnectionReply,
    DiscoveryReply,
    PeerListEntry,
    RecorderInfoReply,
    RecorderMetaReply,
    RS232SettingsReply,
    SettingReply,
    VersionReply,
    new_config_reply,
    new_connected_peer_reply,
    new_connection_reply,
    new_recorder_info_reply,
    new_recorder_meta_reply,
    new_setting_reply,
    new_version_reply,
    process_connect_peer_reply,
    process_disconnect_reply,
    process_discovery_reply,
    process_echo_reply,
    process_local_name_reply,
    process_peer_disconnected_reply,
    process_peer_list_reply,
    process_read_characteristic_reply,
    process_rs232_settings_reply,
    process_rssi_indication,
    process_rssi_reply,
    process_serial_number_reply,
    process_status_reply,
    process_time_reply,
    process_unlock_reply,
)
from .serial_manager import LinkStatistics, SerialLink
from .transfer import BulkTransferEngine, DownloadSession

_LOGGER = logging.getLogger(__name__)

_DISCONNECT = DISCONNECT_RESPONSE.encode("ascii")
_PEER_CONNECTED = PEER_CONNECTED_RESPONSE.encode("ascii")

DisconnectCallback = Callable[[], None]
EventCallback = Callable[[Optional[VehEvent], Optional[Exception]], Optional[bool]]


class DriverLink(Link, Protocol):
    """A dispatcher link that can also be opened, closed and measured."""

    stats: LinkStatistics

    async def open(self) -> None: ...

    async def close(self) -> None: ...


@dataclass
class SensorCommsStatistics:
    """Traffic exchanged with one remote device, accumulated per connection."""

    total_bytes_rx: int = 0
    total_bytes_tx: int = 0
    total_connections: int = 0
    connections_failed: int = 0
    time_communicating: float = 0.0

    def delta(self, initial: "SensorCommsStatistics") -> "SensorCommsStatistics":
        return SensorCommsStatistics(
            total_bytes_rx=self.total_bytes_rx - initial.total_bytes_rx,
            total_bytes_tx=self.total_bytes_tx - initial.total_bytes_tx,
            total_connections=self.total_connections - initial.total_connections,
            connections_failed=self.connections_failed - initial.connections_failed,
            time_communicating=self.time_communicating - initial.time_communicating,
        )


@dataclass
class _Session:
    mac: str
    started: float
    stats: LinkStatistics


class UbloxBluetooth:
    """Command a u-blox module and the recorder connected through it."""

    def __init__(
        self,
        link: DriverLink,
        timeout: float = COMMAND_TIMEOUT,
        credit: int = DEFAULT_CREDIT,
        start_mode: LinkMode = LinkMode.EXTENDED_DATA,
        connection_timeout: float = CONNECTION_TIMEOUT,
        verbose: bool = False,
    ) -> None:
        self._link = link
        self._timeout = timeout
        self._start_mode = start_mode
        self._connection_timeout = connection_timeout
        self._dispatcher = Dispatcher(link, timeout, start_mode, verbose)
        self._engine = BulkTransferEngine(self._dispatcher, credit, timeout)
        self._codec = EventCodec()
        self._connection: Optional[ConnectionReply] = None
        self._on_disconnect: Optional[DisconnectCallback] = None
        self._disconnecting = False
        self._session: Optional[_Session] = None
        self.comms_stats: Dict[str, SensorCommsStatistics] = {}
        self._dispatcher.register_async_handler(self._is_disconnect, self._handle_disconnect)
        self._dispatcher.add_failure_listener(self._handle_link_failure)

    @classmethod
    def from_config(cls, config: DriverConfig) -> "UbloxBluetooth":
        """Build a driver on a :class:`SerialLink` from validated settings."""
        return cls(
            SerialLink(config.serial_port, config.baudrate),
            timeout=config.timeout,
            credit=config.credit,
            start_mode=config.start_mode,
            connection_timeout=config.connection_timeout,
            verbose=config.verbose,
        )

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def engine(self) -> BulkTransferEngine:
        return self._engine

    @property
    def mode(self) -> LinkMode:
        return self._dispatcher.mode.mode

    @property
    def connection(self) -> Optional[ConnectionReply]:
        return self._connection

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def open(self) -> None:
        """Open the link and start reading."""
        await self._link.open()
        await self._dispatcher.start()

    async def close(self) -> None:
        """Stop the reader, then release the link."""
        await self._dispatcher.close()
        await self._link.close()

    def errors(self) -> List[Exception]:
        """Return errors raised by unsolicited traffic since the last call."""
        return self._dispatcher.drain_errors()

    async def _send(self, command: CmdResp, timeout: Optional[float] = None) -> bytes:
        self._dispatcher.mode.require(LinkMode.COMMAND, LinkMode.EXTENDED_DATA)
        return await self._dispatcher.send(command, timeout)

    # Module (AT) commands

    async def at_command(self) -> None:
        """Plain ``AT``, used as a liveness check."""
        await self._send(commands.at_command())

    async def multiple_at_commands(self, attempts: int = AT_RETRY_ATTEMPTS) -> None:
        """Retry ``AT`` until the module answers, backing off between attempts."""
        backoff = AT_RETRY_BACKOFF
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                await self.at_command()
                return
            except (CorrelationTimeout, ProtocolMismatch) as err:
                last_error = err
                _LOGGER.debug("AT attempt %d/%d failed: %s", attempt, attempts, err)
            jitter = random.uniform(0.0, backoff / 2)
            await asyncio.sleep(min(backoff + jitter, AT_RETRY_MAX_BACKOFF))
            backoff = min(backoff * 2, AT_RETRY_MAX_BACKOFF)
        raise UbloxError(f"No AT response after {attempts} attempts") from last_error

    async def echo_off(self) -> None:
        await self._send(commands.echo_off_command())

    async def reboot_ublox(self, timeout: float = STARTUP_TIMEOUT) -> None:
        """Power cycle the module and wait for its start-up message."""
        self._dispatcher.mode.require(LinkMode.COMMAND, LinkMode.EXTENDED_DATA)
        self._dispatcher.expect_start()
        await self._dispatcher.write(commands.reboot_command().cmd)
        self._module_restarted()
        await self._dispatcher.wait_for_start(timeout)

    async def reset_ublox(self, wait: bool = True, timeout: float = STARTUP_TIMEOUT) -> None:
        """Reset the module through DTR, optionally waiting until it is ready."""
        self._dispatcher.expect_start()
        await self._link.toggle_dtr()
        self._module_restarted()
        if wait:
            await self._dispatcher.wait_for_start(timeout)

    async def get_serial_number(self) -> str:
        return process_serial_number_reply(await self._send(commands.serial_number_command()))

    async def get_local_name(self) -> str:
        return process_local_name_reply(await self._send(commands.local_name_command()))

    async def configure_ublox(self, connection_timeout: Optional[float] = None) -> None:
        """Central role, connection interval and connect timeout, then persist."""
        if connection_timeout is None:
            connection_timeout = self._connection_timeout
        await self._send(commands.ble_role_command(BLE_CENTRAL))
        await self._send(
            commands.ble_config_command(MAX_CONNECTION_INTERVAL, MAX_CONNECTION_INTERVAL_VALUE)
        )
        await self._send(
            commands.ble_config_command(
                CREATE_CONNECTION_TIMEOUT, int(connection_timeout * 1000)
            )
        )
        await self._send(commands.store_config_command())

    async def set_module_start_mode(self, mode: StartMode) -> None:
        await self._send(commands.module_start_command(mode))
        await self._send(commands.store_config_command())

    async def get_rs232_settings(self) -> RS232SettingsReply:
        return process_rs232_settings_reply(await self._send(commands.rs232_settings_command()))

    async def set_rs232_baudrate(self, baudrate: int) -> None:
        # baud, flow control, data bits, stop bits, parity, change after confirm
        await self._send(commands.rs232_settings_command(f"{baudrate},1,8,1,1,0"))

    async def set_watchdog_configuration(self) -> None:
        await self._watchdog_configuration(INACTIVITY_TIMEOUT_VALUE, DISCONNECT_RESET_VALUE)

    async def reset_watchdog_configuration(self) -> None:
        await self._watchdog_configuration(0, 0)

    async def _watchdog_configuration(self, inactivity: int, disconnect_reset: int) -> None:
        await self._send(commands.watchdog_command(INACTIVITY_TIMEOUT_TYPE, inactivity))
        await self._send(commands.watchdog_command(DISCONNECT_RESET_TYPE, disconnect_reset))

    async def factory_reset(self) -> None:
        await self._send(commands.factory_reset_command())

    async def discovery(self, scan_ms: int = 0) -> List[DiscoveryReply]:
        """Scan for advertising devices."""
        timeout = self._timeout + scan_ms / 1000
        data = await self._send(commands.discovery_command(scan_ms), timeout)
        return process_discovery_reply(data)

    async def get_rssi(self, address: str) -> int:
        return process_rssi_reply(await self._send(commands.rssi_command(address)))

    async def peer_list(self) -> List[PeerListEntry]:
        return process_peer_list_reply(await self._send(commands.peer_list_command()))

    # Mode switching

    async def enter_data_mode(self) -> None:
        await self._dispatcher.mode.enter_data_mode()

    async def enter_extended_data_mode(self) -> None:
        await self._dispatcher.mode.enter_extended_data_mode()

    async def enter_command_mode(self) -> None:
        await self._dispatcher.mode.enter_command_mode()

    # Connection handling

    async def connect_to_device(
        self, address: str, on_disconnect: Optional[DisconnectCallback] = None
    ) -> ConnectionReply:
        """Open a BLE connection to ``address``."""
        if self._connection is not None:
            raise UbloxError(f"Already connected to {self._connection.bluetooth_address}")
        started = time.monotonic()
        initial = self._link_stats()
        try:
            reply = new_connection_reply(await self._send(commands.connect_command(address)))
            # Flushes a spurious disconnect some module firmware emits after connecting
            await self.at_command()
        except UbloxError:
            stats = self._stats_for(address)
            stats.total_connections += 1
            stats.connections_failed += 1
            raise
        _LOGGER.info("Connected to %s (handle %d)", address, reply.handle)
        self._connection = reply
        self._on_disconnect = on_disconnect
        self._disconnecting = False
        self._session = _Session(address, started, initial)
        return reply

    async def disconnect_from_device(self) -> None:
        connection = self._require_connection()
        if self._disconnecting:
            raise UbloxError("Disconnect already in progress")
        self._disconnecting = True
        try:
            data = await self._send(commands.disconnect_command(connection.handle))
            handle = process_disconnect_reply(data)
            if handle != connection.handle:
                raise ProtocolMismatch(
                    "Incorrect disconnect reply", expected=str(connection.handle), received=data
                )
        finally:
            self._disconnecting = False
        _LOGGER.info("Disconnected from %s", connection.bluetooth_address)
        self._connection_ended()

    async def enable_indications(self) -> None:
        handle = self._require_connection().handle
        await self._send(
            commands.write_characteristic_config_command(
                handle, COMMAND_CCCD_HANDLE, INDICATIONS_ENABLED
            )
        )

    async def enable_notifications(self) -> None:
        handle = self._require_connection().handle
        await self._send(
            commands.write_characteristic_config_command(
                handle, DATA_CCCD_HANDLE, NOTIFICATIONS_ENABLED
            )
        )

    async def read_characteristic(self) -> bytes:
        handle = self._require_connection().handle
        data = await self._send(commands.read_characteristic_command(handle, COMMAND_VALUE_HANDLE))
        return process_read_characteristic_reply(data)

    # Serial port service

    async def connect_device_sps(self, mac_address: str) -> int:
        """Open an SPS peer to ``mac_address`` and return the peer handle."""
        loop = asyncio.get_running_loop()
        connected: asyncio.Future = loop.create_future()

        def _on_peer(frame: Frame) -> None:
            if not connected.done():
                connected.set_result(new_connected_peer_reply(frame.payload))

        unsubscribe = self._dispatcher.register_async_handler(
            lambda frame: frame.payload.startswith(_PEER_CONNECTED), _on_peer
        )
        try:
            data = await self._send(commands.connect_peer_command(f"sps://{mac_address}"))
            handle = process_connect_peer_reply(data)
            try:
                peer: ConnectedPeer = await asyncio.wait_for(connected, self._timeout)
            except asyncio.TimeoutError:
                raise CorrelationTimeout(
                    "sps connect", PEER_CONNECTED_RESPONSE, self._timeout
                ) from None
        finally:
            unsubscribe()
        if peer.peer_handle != handle:
            raise ProtocolMismatch(
                "Peer handles do not match",
                expected=str(handle),
                received=str(peer.peer_handle),
            )
        return handle

    async def disconnect_device_sps(self, peer_handle: int) -> None:
        await self.enter_command_mode()
        data = await self._send(commands.disconnect_peer_command(peer_handle))
        process_peer_disconnected_reply(peer_handle, data)

    async def write_sps(self, data: bytes) -> None:
        self._dispatcher.mode.require(LinkMode.DATA)
        await self._dispatcher.write_bytes(data)

    # Recorder commands

    async def unlock_device(self, password: bytes) -> bool:
        handle = self._require_connection().handle
        return process_unlock_reply(
            await self._device_command(commands.unlock_payload(password)), handle
        )

    async def get_version(self) -> VersionReply:
        data = await self._device_command(commands.version_payload())
        return new_version_reply(data, OP_VERSION, self._handle())

    async def get_time(self) -> int:
        data = await self._device_command(commands.get_time_payload())
        return process_time_reply(data, OP_GET_TIME, self._handle())

    async def set_time(self, timestamp: int) -> None:
        data = await self._device_command(commands.set_time_payload(timestamp))
        process_status_reply(data, OP_SET_TIME, self._handle())

    async def read_config(self) -> ConfigReply:
        data = await self._device_command(commands.read_config_payload())
        return new_config_reply(data, OP_READ_CONFIG, self._handle())

    async def write_config(self, config: ConfigReply) -> None:
        data = await self._device_command(commands.write_config_payload(config.to_bytes()))
        process_status_reply(data, OP_WRITE_CONFIG, self._handle())

    async def echo(self, payload: bytes) -> bytes:
        data = await self._device_command(commands.echo_payload(payload))
        return process_echo_reply(data, OP_ECHO, self._handle())

    async def set_setting(self, setting: int, value: int) -> None:
        data = await self._device_command(commands.set_setting_payload(setting, value))
        process_status_reply(data, OP_SET_SETTING, self._handle())

    async def get_setting(self, setting: int) -> SettingReply:
        data = await self._device_command(commands.get_setting_payload(setting))
        return new_setting_reply(data, OP_GET_SETTING, self._handle())

    async def send_credits(self, credit: int) -> None:
        await self._device_command(commands.credit_payload(credit), wait_for_reply=False)

    async def erase_recorder(self) -> None:
        data = await self._device_command(commands.erase_payload())
        process_status_reply(data, OP_ERASE, self._handle())

    async def reboot_recorder(self) -> None:
        data = await self._device_command(commands.reboot_payload())
        process_status_reply(data, OP_REBOOT, self._handle())

    async def write_message(self, message: str) -> None:
        data = await self._device_command(commands.write_message_payload(message))
        process_status_reply(data, OP_WRITE_MESSAGE, self._handle())

    async def recorder_info(self) -> RecorderInfoReply:
        data = await self._device_command(commands.recorder_info_payload())
        return new_recorder_info_reply(data, OP_RECORDER_INFO, self._handle())

    async def query_recorder_meta(self, sequence: int) -> RecorderMetaReply:
        data = await self._device_command(commands.query_recorder_meta_payload(sequence))
        return new_recorder_meta_reply(data, OP_QUERY_RECORDER_META, self._handle())

    async def get_recorder_rssi(self) -> int:
        data = await self._device_command(commands.rssi_payload())
        return process_rssi_indication(data, OP_RSSI, self._handle())

    async def abort_event_log_read(self) -> None:
        """Abort the running download, or tell the recorder to stop sending."""
        if self._engine.active:
            await self._engine.abort()
            return
        await self._device_command(commands.abort_payload(), wait_for_reply=False)

    async def download_event_log(
        self, start_sequence: int, on_event: EventCallback
    ) -> DownloadSession:
        """Stream decoded event records from ``start_sequence`` to ``on_event``.

        ``on_event(event, None)`` per record, ``on_event(None, err)`` when a
        fragment cannot be decoded. Returning ``False`` aborts the download.
        """
        handle = self._require_connection().handle

        def _on_fragment(data: Optional[bytes], err: Optional[Exception]) -> Optional[bool]:
            if err is not None or data is None:
                return on_event(None, err)
            try:
                event = self._codec.decode(data)
            except UbloxError as decode_err:
                _LOGGER.warning("Undecodable event record: %s", decode_err)
                return on_event(None, decode_err)
            return on_event(event, None)

        return await self._engine.download(
            handle,
            commands.read_recorder_payload(start_sequence, self._engine.credit),
            _on_fragment,
            start_sequence,
        )

    async def read_recorder_data(self, sequence: int) -> bytes:
        """Download the bulk data attached to event ``sequence``."""
        handle = self._require_connection().handle
        chunks: List[bytes] = []
        failures: List[Exception] = []

        def _on_fragment(data: Optional[bytes], err: Optional[Exception]) -> bool:
            if err is not None:
                failures.append(err)
            elif data is not None:
                chunks.append(data)
            return True

        await self._engine.download(
            handle,
            commands.read_recorder_data_payload(sequence, self._engine.credit),
            _on_fragment,
            sequence,
        )
        if failures:
            raise failures[0]
        return b"".join(chunks)

    # Statistics

    def get_device_comms_stats(self, mac: str) -> SensorCommsStatistics:
        try:
            return self.comms_stats[mac]
        except KeyError:
            raise UbloxError(f"No statistics for device {mac}") from None

    def get_sensor_comms_stats_delta(
        self, mac: str, initial: SensorCommsStatistics
    ) -> SensorCommsStatistics:
        return self.get_device_comms_stats(mac).delta(initial)

    # Internals

    async def _device_command(self, payload: bytes, wait_for_reply: bool = True) -> bytes:
        handle = self._require_connection().handle
        return await self._send(
            commands.write_characteristic_command(
                handle, COMMAND_VALUE_HANDLE, payload, wait_for_reply
            )
        )

    def _require_connection(self) -> ConnectionReply:
        if self._connection is None:
            raise NotConnected("No device connected")
        return self._connection

    def _handle(self) -> int:
        return self._require_connection().handle

    def _module_restarted(self) -> None:
        self._dispatcher.mode.assume(self._start_mode)
        if self._connection is not None:
            self._connection_ended(NotConnected("Module restarted"))

    def _link_stats(self) -> LinkStatistics:
        return self._link.stats.copy()

    def _stats_for(self, mac: str) -> SensorCommsStatistics:
        return self.comms_stats.setdefault(mac, SensorCommsStatistics())

    def _connection_ended(self, exc: Optional[Exception] = None) -> None:
        session = self._session
        if session is not None:
            current = self._link_stats()
            stats = self._stats_for(session.mac)
            stats.total_connections += 1
            stats.total_bytes_rx += current.rx_bytes - session.stats.rx_bytes
            stats.total_bytes_tx += current.tx_bytes - session.stats.tx_bytes
            stats.time_communicating += time.monotonic() - session.started
            if exc is not None:
                stats.connections_failed += 1
        callback = self._on_disconnect
        self._connection = None
        self._on_disconnect = None
        self._session = None
        if exc is None:
            return
        self._dispatcher.fail_pending(exc)
        self._engine.connection_lost(exc)
        if callback is not None:
            callback()

    @staticmethod
    def _is_disconnect(frame: Frame) -> bool:
        return frame.payload.startswith(_DISCONNECT)

    def _handle_disconnect(self, frame: Frame) -> None:
        handle = process_disconnect_reply(frame.payload)
        if self._connection is None or handle != self._connection.handle:
            _LOGGER.debug("Disconnect for unknown handle %d", handle)
            return
        if self._disconnecting:
            return
        _LOGGER.warning(
            "Unexpected disconnect from %s", self._connection.bluetooth_address
        )
        self._connection_ended(NotConnected("Device disconnected"))

    def _handle_link_failure(self, exc: Exception) -> None:
        if self._connection is not None:
            self._connection_ended(exc)
