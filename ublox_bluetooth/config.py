"""Driver configuration schema."""

from dataclasses import dataclass
import logging
import os
import re
from typing import Any, Dict

import voluptuous as vol

from .const import (
    BAUDRATE,
    COMMAND_TIMEOUT,
    CONF_BAUDRATE,
    CONF_CONNECTION_TIMEOUT,
    CONF_CREDIT,
    CONF_SERIAL_PORT,
    CONF_START_MODE,
    CONF_TIMEOUT,
    CONF_VERBOSE,
    CONNECTION_TIMEOUT,
    DEFAULT_CREDIT,
    DEFAULT_SERIAL_PORT,
    SUPPORTED_BAUDRATES,
)
from .mode import LinkMode

_LOGGER = logging.getLogger(__name__)


def validate_serial_port(port: str) -> str:
    """Validate a serial device path, COM port or pyserial URL."""
    port = vol.Coerce(str)(port).strip()
    # On Linux/Mac the device node has to exist
    if port.startswith("/dev/"):
        if os.path.exists(port):
            return port
        raise vol.Invalid(f"serial device {port} does not exist")
    if re.match(r"^COM\d+$", port, re.IGNORECASE):
        return port
    # Serial URLs (socket://, loop://, rfc2217://)
    if "://" in port:
        return port
    raise vol.Invalid(f"invalid serial port {port!r}")


CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_SERIAL_PORT): validate_serial_port,
        vol.Optional(CONF_BAUDRATE, default=BAUDRATE): vol.All(
            vol.Coerce(int), vol.In(SUPPORTED_BAUDRATES)
        ),
        vol.Optional(CONF_TIMEOUT, default=COMMAND_TIMEOUT): vol.All(
            vol.Coerce(float), vol.Range(min=0.1, max=300)
        ),
        vol.Optional(CONF_CONNECTION_TIMEOUT, default=CONNECTION_TIMEOUT): vol.All(
            vol.Coerce(float), vol.Range(min=0.1, max=60)
        ),
        vol.Optional(CONF_CREDIT, default=DEFAULT_CREDIT): vol.All(
            vol.Coerce(int), vol.Range(min=2, max=255)
        ),
        vol.Optional(CONF_START_MODE, default=LinkMode.EXTENDED_DATA.value): vol.All(
            vol.Lower, vol.In([mode.value for mode in LinkMode])
        ),
        vol.Optional(CONF_VERBOSE, default=False): vol.Boolean(),
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass(frozen=True)
class DriverConfig:
    """Validated driver settings."""

    serial_port: str = DEFAULT_SERIAL_PORT
    baudrate: int = BAUDRATE
    timeout: float = COMMAND_TIMEOUT
    connection_timeout: float = CONNECTION_TIMEOUT
    credit: int = DEFAULT_CREDIT
    start_mode: LinkMode = LinkMode.EXTENDED_DATA
    verbose: bool = False


def load_config(data: Dict[str, Any]) -> DriverConfig:
    """Validate ``data`` and build a :class:`DriverConfig`.

    Raises ``vol.Invalid`` (usually ``vol.MultipleInvalid``) on bad input.
    """
    conf = CONFIG_SCHEMA(dict(data))
    _LOGGER.debug("Loaded configuration: %s", conf)
    return DriverConfig(
        serial_port=conf[CONF_SERIAL_PORT],
        baudrate=conf[CONF_BAUDRATE],
        timeout=conf[CONF_TIMEOUT],
        connection_timeout=conf[CONF_CONNECTION_TIMEOUT],
        credit=conf[CONF_CREDIT],
        start_mode=LinkMode(conf[CONF_START_MODE]),
        verbose=conf[CONF_VERBOSE],
    )
