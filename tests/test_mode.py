import pytest

from ublox_bluetooth.exceptions import InvalidMode
from ublox_bluetooth.frame import FrameDecoder, encode_at_command
from ublox_bluetooth.mode import LinkMode, ModeController


class _Recorder:
    def __init__(self) -> None:
        self.writes = []
        self.toggles = 0

    async def write(self, data: bytes) -> None:
        self.writes.append(data)

    async def toggle(self) -> None:
        self.toggles += 1


def _controller(mode: LinkMode = LinkMode.COMMAND):
    decoder = FrameDecoder()
    recorder = _Recorder()
    controller = ModeController(
        decoder, recorder.write, recorder.toggle, mode, switch_delay=0
    )
    return controller, decoder, recorder


def test_initial_mode_selects_decoder_interpretation() -> None:
    _, decoder, _ = _controller(LinkMode.EXTENDED_DATA)
    assert decoder.extended
    _, decoder, _ = _controller(LinkMode.COMMAND)
    assert not decoder.extended


def test_encode_follows_mode() -> None:
    controller, _, _ = _controller(LinkMode.COMMAND)
    assert controller.encode("AT") == b"AT\r\n"
    controller, _, _ = _controller(LinkMode.EXTENDED_DATA)
    assert controller.encode("AT") == encode_at_command("AT")


@pytest.mark.asyncio
async def test_enter_extended_data_mode_from_command() -> None:
    controller, decoder, recorder = _controller(LinkMode.COMMAND)
    await controller.enter_extended_data_mode()
    assert recorder.writes == [b"ATO2\r\n"]
    assert controller.mode is LinkMode.EXTENDED_DATA
    assert decoder.extended


@pytest.mark.asyncio
async def test_enter_data_mode_uses_line_decoding() -> None:
    controller, decoder, recorder = _controller(LinkMode.EXTENDED_DATA)
    await controller.enter_data_mode()
    assert recorder.writes == [encode_at_command("ATO1")]
    assert controller.mode is LinkMode.DATA
    assert not decoder.extended


@pytest.mark.asyncio
async def test_enter_command_mode_toggles_dtr_without_writing() -> None:
    controller, decoder, recorder = _controller(LinkMode.EXTENDED_DATA)
    await controller.enter_command_mode()
    assert recorder.writes == []
    assert recorder.toggles == 1
    assert controller.mode is LinkMode.COMMAND
    assert not decoder.extended


def test_require_rejects_other_modes() -> None:
    controller, _, _ = _controller(LinkMode.DATA)
    controller.require(LinkMode.DATA)
    with pytest.raises(InvalidMode):
        controller.require(LinkMode.COMMAND, LinkMode.EXTENDED_DATA)


def test_assume_records_mode_without_io() -> None:
    controller, decoder, recorder = _controller(LinkMode.COMMAND)
    controller.assume(LinkMode.EXTENDED_DATA)
    assert controller.mode is LinkMode.EXTENDED_DATA
    assert decoder.extended
    assert recorder.writes == []
