"""Constants for the u-blox Bluetooth recorder driver."""

from typing import Final

# Configuration keys
CONF_SERIAL_PORT: Final = "serial_port"
CONF_BAUDRATE: Final = "baudrate"
CONF_TIMEOUT: Final = "timeout"
CONF_CREDIT: Final = "credit"
CONF_START_MODE: Final = "start_mode"
CONF_CONNECTION_TIMEOUT: Final = "connection_timeout"
CONF_VERBOSE: Final = "verbose"

DEFAULT_SERIAL_PORT: Final = "/dev/ttyUSB0"

# Serial connection settings
BAUDRATE: Final = 115200
SUPPORTED_BAUDRATES: Final = (115200, 230400, 460800, 921600, 1000000)
BYTESIZE: Final = 8
PARITY: Final = "N"
STOPBITS: Final = 1
READ_CHUNK_SIZE: Final = 4096
READ_RETRY_DELAY: Final = 0.01
DTR_TOGGLE_DELAY: Final = 0.1

# Timeouts (seconds)
COMMAND_TIMEOUT: Final = 10.0
CONNECTION_TIMEOUT: Final = 5.0
STARTUP_TIMEOUT: Final = 4.0
MODE_SWITCH_DELAY: Final = 0.05

# Caller-level retry for liveness checks
AT_RETRY_ATTEMPTS: Final = 5
AT_RETRY_BACKOFF: Final = 0.05
AT_RETRY_MAX_BACKOFF: Final = 1.0

# Extended Data Mode framing
EDM_START_BYTE: Final = 0xAA
EDM_STOP_BYTE: Final = 0x55
EDM_HEADER_SIZE: Final = 3
EDM_PAYLOAD_OVERHEAD: Final = 4
EDM_MAX_PAYLOAD: Final = 0x0FFF
EDM_AT_TERMINATOR: Final = 0x0D

# Line mode framing
NEWLINE: Final = b"\r\n"
MIN_LINE_LENGTH: Final = 2

# AT command strings
AT: Final = "AT"
ECHO_OFF: Final = "ATE0"
STORE_CONFIG: Final = "AT&W"
ENTER_DATA_MODE: Final = "ATO1"
ENTER_EXTENDED_DATA_MODE: Final = "ATO2"
POWER_OFF: Final = "+CPWROFF"
FACTORY_RESET: Final = "+UFACTORY"
MODULE_START_MODE: Final = "+UMSM"
RS232_SETTINGS: Final = "+UMRS"
WATCHDOG_SETTINGS: Final = "+UMWDS"
SERIAL_NUMBER: Final = "+CGSN"
LOCAL_NAME: Final = "+UBTLN"
DISCOVERY: Final = "+UBTD"
BLE_ROLE: Final = "+UBTLE"
BLE_CONFIGURATION: Final = "+UBTLECFG"
CONNECT: Final = "+UBTACLC"
DISCONNECT: Final = "+UBTACLD"
WRITE_CHARACTERISTIC: Final = "+UBTGW"
WRITE_CHARACTERISTIC_CONFIG: Final = "+UBTGWC"
READ_CHARACTERISTIC: Final = "+UBTGR"
GET_RSSI: Final = "+UBTRSS"
PEER_LIST: Final = "+UDLP"
CONNECT_PEER: Final = "+UDCP"
DISCONNECT_PEER: Final = "+UDCPC"

# Response prefixes
OK_MESSAGE: Final = "OK"
ERROR_MESSAGE: Final = "ERROR"
REBOOT_RESPONSE: Final = "+STARTUP"
RS232_SETTINGS_RESPONSE: Final = "+UMRS:"
MODULE_START_MODE_RESPONSE: Final = "+UMSM:"
LOCAL_NAME_RESPONSE: Final = "+UBTLN:"
DISCOVERY_RESPONSE: Final = "+UBTD:"
CONNECT_RESPONSE: Final = "+UUBTACLC:"
DISCONNECT_RESPONSE: Final = "+UUBTACLD:"
READ_CHARACTERISTIC_RESPONSE: Final = "+UBTGR:"
GET_RSSI_RESPONSE: Final = "+UBTRSS:"
PEER_LIST_RESPONSE: Final = "+UDLP:"
CONNECT_PEER_RESPONSE: Final = "+UDCP:"
PEER_CONNECTED_RESPONSE: Final = "+UUDPC:"
PEER_DISCONNECTED_RESPONSE: Final = "+UUDPD:"
GATT_INDICATION_RESPONSE: Final = "+UUBTGI:"
GATT_NOTIFICATION_RESPONSE: Final = "+UUBTGN:"
BLE_PHY_UPDATE_RESPONSE: Final = "+UUBTLEPHYU:"

# Unsolicited lines that are never a reply to a pending request
ASYNC_PREFIXES: Final = (
    GATT_NOTIFICATION_RESPONSE,
    GATT_INDICATION_RESPONSE,
    CONNECT_RESPONSE,
    DISCONNECT_RESPONSE,
    PEER_CONNECTED_RESPONSE,
    PEER_DISCONNECTED_RESPONSE,
    BLE_PHY_UPDATE_RESPONSE,
    REBOOT_RESPONSE,
)

# BLE role / configuration values
BLE_CENTRAL: Final = 1
MAX_CONNECTION_INTERVAL: Final = 5
CREATE_CONNECTION_TIMEOUT: Final = 6
MAX_CONNECTION_INTERVAL_VALUE: Final = 40

# Watchdog settings
INACTIVITY_TIMEOUT_TYPE: Final = 1
INACTIVITY_TIMEOUT_VALUE: Final = 6000
DISCONNECT_RESET_TYPE: Final = 2
DISCONNECT_RESET_VALUE: Final = 1

# Recorder GATT handles
COMMAND_VALUE_HANDLE: Final = 13
COMMAND_CCCD_HANDLE: Final = 14
DATA_VALUE_HANDLE: Final = 16
DATA_CCCD_HANDLE: Final = 17
INDICATIONS_ENABLED: Final = 2
NOTIFICATIONS_ENABLED: Final = 1

# Device application op-codes
OP_UNLOCK: Final = 0x00
OP_VERSION: Final = 0x01
OP_GET_TIME: Final = 0x02
OP_READ_CONFIG: Final = 0x03
OP_WRITE_CONFIG: Final = 0x04
OP_SET_TIME: Final = 0x07
OP_ABORT: Final = 0x09
OP_ECHO: Final = 0x0B
OP_SET_SETTING: Final = 0x0D
OP_GET_SETTING: Final = 0x0E
OP_CREDIT: Final = 0x11
OP_ERASE: Final = 0x12
OP_REBOOT: Final = 0x13
OP_WRITE_MESSAGE: Final = 0x14
OP_RECORDER_INFO: Final = 0x20
OP_READ_RECORDER: Final = 0x21
OP_QUERY_RECORDER_META: Final = 0x22
OP_READ_RECORDER_DATA: Final = 0x23
OP_RSSI: Final = 0x24

# Reply status codes
STATUS_OK: Final = "00"
STATUS_PENDING: Final = "01"
UNLOCK_SUCCESS: Final = "0000"

# Flow control
DEFAULT_CREDIT: Final = 16

# Recorder event types
EVENT_BOOT: Final = 0x00
EVENT_SENSOR: Final = 0x02
EVENT_MESSAGE: Final = 0x0D
EVENT_VIBRATION: Final = 0x17
EVENT_TEMPERATURE: Final = 0x64
EVENT_CONNECTED: Final = 0xC0
EVENT_DISCONNECTED: Final = 0xD0
EVENT_ERROR: Final = 0xFF

# Sensor scaling
SENSOR_TEMPERATURE_DIVISOR: Final = 4
SENSOR_BATTERY_DIVISOR: Final = 1000

# Error sink
ERROR_QUEUE_SIZE: Final = 64
