"""Asyncio driver for u-blox Bluetooth modules and the recorders behind them."""

from .bluetooth import SensorCommsStatistics, UbloxBluetooth
from .config import CONFIG_SCHEMA, DriverConfig, load_config
from .dispatcher import Dispatcher
from .events import EventCodec, VehEvent, VehEventKind
from .exceptions import (
    CorrelationTimeout,
    EventDecodeError,
    FramingError,
    InvalidMode,
    NotConnected,
    ProtocolMismatch,
    TransferCountMismatch,
    TransportFailure,
    UbloxError,
    UnexpectedPayload,
)
from .frame import Frame, FrameDecoder, MessageType
from .mode import LinkMode, ModeController
from .serial_manager import SerialLink
from .transfer import BulkTransferEngine, CreditWindow, DownloadSession, TransferState

__version__ = "0.1.0"

__all__ = [
    "BulkTransferEngine",
    "CONFIG_SCHEMA",
    "CorrelationTimeout",
    "CreditWindow",
    "Dispatcher",
    "DownloadSession",
    "DriverConfig",
    "EventCodec",
    "EventDecodeError",
    "Frame",
    "FrameDecoder",
    "FramingError",
    "InvalidMode",
    "LinkMode",
    "MessageType",
    "ModeController",
    "NotConnected",
    "ProtocolMismatch",
    "SensorCommsStatistics",
    "SerialLink",
    "TransferCountMismatch",
    "TransferState",
    "TransportFailure",
    "UbloxBluetooth",
    "UbloxError",
    "UnexpectedPayload",
    "VehEvent",
    "VehEventKind",
    "load_config",
]
