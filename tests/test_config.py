import pytest
import voluptuous as vol

from ublox_bluetooth.config import CONFIG_SCHEMA, load_config, validate_serial_port
from ublox_bluetooth.const import BAUDRATE, DEFAULT_CREDIT
from ublox_bluetooth.mode import LinkMode


def test_defaults() -> None:
    config = load_config({"serial_port": "loop://"})
    assert config.serial_port == "loop://"
    assert config.baudrate == BAUDRATE
    assert config.credit == DEFAULT_CREDIT
    assert config.start_mode is LinkMode.EXTENDED_DATA
    assert config.verbose is False


def test_values_are_coerced() -> None:
    config = load_config(
        {
            "serial_port": "COM3",
            "baudrate": "921600",
            "timeout": "2.5",
            "credit": 8,
            "start_mode": "COMMAND",
            "verbose": "yes",
            "unused": 1,
        }
    )
    assert config.baudrate == 921600
    assert config.timeout == 2.5
    assert config.credit == 8
    assert config.start_mode is LinkMode.COMMAND
    assert config.verbose is True


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"serial_port": "not a port"},
        {"serial_port": "/dev/does-not-exist-ublox"},
        {"serial_port": "loop://", "baudrate": 9601},
        {"serial_port": "loop://", "credit": 1},
        {"serial_port": "loop://", "start_mode": "turbo"},
        {"serial_port": "loop://", "timeout": 0},
    ],
)
def test_invalid_config_rejected(data) -> None:
    with pytest.raises(vol.Invalid):
        load_config(data)


def test_validate_serial_port() -> None:
    assert validate_serial_port(" socket://localhost:7777 ") == "socket://localhost:7777"
    assert validate_serial_port("com12") == "com12"
    with pytest.raises(vol.Invalid):
        validate_serial_port("ttyUSB0")


def test_schema_drops_unknown_keys() -> None:
    assert "unused" not in CONFIG_SCHEMA({"serial_port": "loop://", "unused": 1})
