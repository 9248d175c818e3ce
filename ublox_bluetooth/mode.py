"""Link mode state machine for the u-blox module."""

from __future__ import annotations

import asyncio
from enum import Enum
import logging
from typing import Awaitable, Callable

from .const import ENTER_DATA_MODE, ENTER_EXTENDED_DATA_MODE, MODE_SWITCH_DELAY, NEWLINE
from .exceptions import InvalidMode
from .frame import FrameDecoder, encode_at_command

_LOGGER = logging.getLogger(__name__)


class LinkMode(Enum):
    """Modes the module's serial interface can be in."""

    COMMAND = "command"
    DATA = "data"
    EXTENDED_DATA = "extended_data"


class ModeController:
    """Track the link mode and perform the mode-switch handshakes.

    Switching latency: the u-connect AT manual asks for 50 ms of silence after
    a mode change before data is transmitted, so every transition sleeps for
    ``MODE_SWITCH_DELAY`` before returning.
    """

    def __init__(
        self,
        decoder: FrameDecoder,
        write_bytes: Callable[[bytes], Awaitable[None]],
        toggle_dtr: Callable[[], Awaitable[None]],
        mode: LinkMode = LinkMode.EXTENDED_DATA,
        switch_delay: float = MODE_SWITCH_DELAY,
    ) -> None:
        self._decoder = decoder
        self._write_bytes = write_bytes
        self._toggle_dtr = toggle_dtr
        self._switch_delay = switch_delay
        self._mode = mode
        self._decoder.set_extended(mode is LinkMode.EXTENDED_DATA)

    @property
    def mode(self) -> LinkMode:
        return self._mode

    def encode(self, command: str) -> bytes:
        """Render an AT command for the current mode."""
        if self._mode is LinkMode.EXTENDED_DATA:
            return encode_at_command(command)
        return command.encode("ascii") + NEWLINE

    def require(self, *modes: LinkMode) -> None:
        """Reject operations that the current mode cannot carry."""
        if self._mode not in modes:
            raise InvalidMode(
                f"Operation needs {'/'.join(m.value for m in modes)} mode, "
                f"link is in {self._mode.value} mode"
            )

    async def enter_data_mode(self) -> None:
        """Send ATO1 to switch the module to transparent Data mode.

        The module stops EDM framing in Data mode, so from here on the decoder
        splits the stream on line endings rather than keeping EDM framing on.
        """
        await self._write_bytes(self.encode(ENTER_DATA_MODE))
        self._set_mode(LinkMode.DATA)
        await asyncio.sleep(self._switch_delay)

    async def enter_extended_data_mode(self) -> None:
        """Send ATO2 to switch the module to Extended Data Mode."""
        await self._write_bytes(self.encode(ENTER_EXTENDED_DATA_MODE))
        self._set_mode(LinkMode.EXTENDED_DATA)
        await asyncio.sleep(self._switch_delay)

    async def enter_command_mode(self) -> None:
        """Return to Command mode by toggling DTR."""
        await self._toggle_dtr()
        self._set_mode(LinkMode.COMMAND)
        await asyncio.sleep(self._switch_delay)

    def assume(self, mode: LinkMode) -> None:
        """Record a mode the module entered on its own, e.g. after a reboot."""
        self._set_mode(mode)

    def _set_mode(self, mode: LinkMode) -> None:
        _LOGGER.debug("Link mode %s -> %s", self._mode.value, mode.value)
        self._mode = mode
        self._decoder.set_extended(mode is LinkMode.EXTENDED_DATA)
