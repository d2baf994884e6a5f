import asyncio
import struct

import pytest

from batterylow.indicator import BatteryIndicator
from batterylow.modules.polybar import Polybar
from batterylow.session import BatteryDevice, DeviceState, DeviceType


@pytest.fixture
def runtime_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))
    return tmp_path / "polybar"


def indicator_at(percentage, present=True):
    indicator = BatteryIndicator()
    indicator.device = BatteryDevice(
        id="/org/freedesktop/UPower/devices/DisplayDevice",
        state=DeviceState.DISCHARGING,
        percentage=percentage,
        is_present=present,
        is_power_supply=True,
        device_type=DeviceType.BATTERY,
    )
    indicator.sync()
    return indicator


def test_format_maps_icons_and_rounds_the_percentage(runtime_dir):
    polybar = Polybar("battery", icons={"battery-level-30-symbolic": "BAT"})

    assert polybar.format("battery-level-30-symbolic", 33.5) == "BAT 34%"
    assert polybar.format("battery-level-20-symbolic", 27.4) == "battery-level-20-symbolic 27%"
    assert polybar.format("battery-missing-symbolic", None) == "battery-missing-symbolic"


async def test_render_writes_the_module_file(runtime_dir):
    polybar = Polybar("battery")

    await polybar.render(indicator_at(34.0))

    assert runtime_dir.joinpath("battery").read_text("utf-8") == "battery-level-30-symbolic 34%"


async def test_render_without_battery_shows_no_percentage(runtime_dir):
    polybar = Polybar("battery")

    await polybar.render(indicator_at(34.0, present=False))

    assert runtime_dir.joinpath("battery").read_text("utf-8") == "battery-missing-symbolic"


async def test_content_is_sent_to_every_bar_socket(runtime_dir):
    runtime_dir.mkdir(mode=0o700)
    received = []

    async def handle(reader, writer):
        header = await reader.readexactly(13)
        length = struct.unpack("=I", header[8:12])[0]
        received.append((header, await reader.readexactly(length)))
        writer.close()
        await writer.wait_closed()

    server = await asyncio.start_unix_server(handle, path=str(runtime_dir / "1234.sock"))
    try:
        await Polybar("battery").set_module_content("battery-level-10-symbolic 9%")
    finally:
        server.close()
        await server.wait_closed()

    [(header, payload)] = received
    assert header[:7] == b"polyipc"
    assert header[7] == 0
    assert header[12] == 2
    assert payload == b"#battery.send.battery-level-10-symbolic 9%"
    assert struct.unpack("=I", header[8:12])[0] == len(payload)
