from types import SimpleNamespace

import pytest
from dbus_next.constants import BusType, MessageType

from batterylow.utils.dbus_client import DBusClient, DBusClientError, Variant, unwrap_variants


class FakeBus:
    def __init__(self, reply_type=MessageType.METHOD_RETURN, body=None):
        self.handlers = []
        self.calls = []
        self.reply_type = reply_type
        self.body = body if body is not None else []

    def add_message_handler(self, handler):
        self.handlers.append(handler)

    def remove_message_handler(self, handler):
        self.handlers.remove(handler)

    async def call(self, message):
        self.calls.append((message.member, message.body))
        return SimpleNamespace(
            message_type=self.reply_type,
            body=self.body,
            error_name="org.freedesktop.DBus.Error.AccessDenied",
        )

    def dispatch(self, **fields):
        message = SimpleNamespace(message_type=MessageType.SIGNAL, **fields)
        for handler in list(self.handlers):
            handler(message)


def client_with(bus):
    client = DBusClient(BusType.SYSTEM)
    client.bus = bus
    return client


def test_unwrap_variants():
    assert unwrap_variants({"Percentage": Variant("d", 42.0), "Plain": 1}) == {
        "Percentage": 42.0,
        "Plain": 1,
    }


async def test_call_method_unwraps_single_values():
    client = client_with(FakeBus(body=[["/org/freedesktop/UPower/devices/battery_BAT0"]]))

    paths = await client.call_method(
        "org.freedesktop.UPower",
        "/org/freedesktop/UPower",
        "org.freedesktop.UPower",
        "EnumerateDevices",
        "",
        [],
    )

    assert paths == ["/org/freedesktop/UPower/devices/battery_BAT0"]


async def test_call_method_raises_on_error_replies():
    client = client_with(FakeBus(reply_type=MessageType.ERROR))

    with pytest.raises(DBusClientError, match="AccessDenied"):
        await client.call_method(
            "org.freedesktop.UPower",
            "/org/freedesktop/UPower",
            "org.freedesktop.UPower",
            "EnumerateDevices",
            "",
            [],
        )


async def test_signal_receiver_filters_and_can_be_removed():
    bus = FakeBus()
    client = client_with(bus)
    received = []

    receiver = await client.add_signal_receiver(
        callback=lambda *body, **_: received.append(body),
        signal_name="PropertiesChanged",
        dbus_interface="org.freedesktop.DBus.Properties",
        path="/org/freedesktop/UPower/devices/battery_BAT0",
    )
    assert receiver
    assert bus.calls[0][0] == "AddMatch"
    assert "path='/org/freedesktop/UPower/devices/battery_BAT0'" in bus.calls[0][1][0]

    signal = {
        "member": "PropertiesChanged",
        "interface": "org.freedesktop.DBus.Properties",
        "body": ["org.freedesktop.UPower.Device", {}, []],
    }
    bus.dispatch(path="/org/freedesktop/UPower/devices/battery_BAT1", **signal)
    bus.dispatch(path="/org/freedesktop/UPower/devices/battery_BAT0", **signal)
    assert received == [("org.freedesktop.UPower.Device", {}, [])]

    await receiver.remove()
    bus.dispatch(path="/org/freedesktop/UPower/devices/battery_BAT0", **signal)
    assert len(received) == 1
    assert bus.calls[-1][0] == "RemoveMatch"
    assert bus.handlers == []


async def test_failed_subscription_returns_none():
    client = client_with(FakeBus(reply_type=MessageType.ERROR))

    receiver = await client.add_signal_receiver(
        callback=lambda *_, **__: None, signal_name="DeviceAdded"
    )

    assert receiver is None
