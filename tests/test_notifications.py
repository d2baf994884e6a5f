import pytest

from batterylow.errors import BatteryLowError
from batterylow.modules.notifications import (
    NOTIFICATIONS_BUS_NAME,
    Hint,
    Notification,
    NotificationSource,
    NotificationTray,
    Notify,
    Urgency,
)

from .fakes import FakeSubscription


class FakeSessionBus:
    def __init__(self):
        self.calls = []
        self.receivers = []

    async def call_method(self, **kwargs):
        self.calls.append(kwargs)
        return 7

    async def add_signal_receiver(self, callback, **kwargs):
        subscription = FakeSubscription()
        self.receivers.append((callback, kwargs, subscription))
        return subscription


@pytest.fixture
def bus():
    return FakeSessionBus()


@pytest.fixture
def tray(bus):
    return NotificationTray(Notify(bus))


@pytest.mark.parametrize(
    "urgency, wire, expire",
    [
        (Urgency.LOW, 0, -1),
        (Urgency.NORMAL, 1, -1),
        (Urgency.HIGH, 1, 0),
        (Urgency.CRITICAL, 2, 0),
    ],
)
def test_urgency_maps_onto_the_freedesktop_levels(urgency, wire, expire):
    assert Urgency(urgency).to_wire() == wire
    assert urgency.expire_time_ms() == expire
    name, variant = Hint.Urgency(urgency).to_value()
    assert name == "urgency"
    assert variant.signature == "y"
    assert variant.value == wire


async def test_notify_sends_the_freedesktop_call(bus):
    notification_id = await Notify(bus).send(
        "Low Battery — 28%", "BAT0 is low.", icon="battery-caution-symbolic", app_name="app"
    )

    assert notification_id == 7
    [call] = bus.calls
    assert call["member"] == "Notify"
    assert call["signature"] == "susssasa{sv}i"
    assert call["body"] == [
        "app",
        0,
        "battery-caution-symbolic",
        "Low Battery — 28%",
        "BAT0 is low.",
        [],
        {},
        -1,
    ]


async def test_source_shows_notifications_through_the_tray(tray, bus):
    source = NotificationSource("Battery Low Notifier", "battery-caution-symbolic")
    tray.add(source)

    await source.add_notification(
        Notification(source, "Critical Battery — 9%", urgency=Urgency.CRITICAL, resident=True)
    )

    body = bus.calls[0]["body"]
    assert body[0] == "Battery Low Notifier"
    assert body[6]["resident"].value is True
    assert body[6]["transient"].value is False
    assert body[7] == 0


async def test_destroyed_source_refuses_notifications(tray):
    source = NotificationSource("Battery Low Notifier", "battery-caution-symbolic")
    tray.add(source)
    destroyed = []
    source.connect_destroy(destroyed.append)

    source.destroy()
    source.destroy()

    assert destroyed == [source]
    assert tray.sources == []
    with pytest.raises(BatteryLowError):
        await source.add_notification(Notification(source, "Low Battery — 28%"))


async def test_daemon_leaving_the_bus_destroys_sources(tray, bus):
    source = NotificationSource("Battery Low Notifier", "battery-caution-symbolic")
    tray.add(source)
    await tray.watch()
    [(callback, kwargs, _)] = bus.receivers
    assert kwargs["arg0"] == NOTIFICATIONS_BUS_NAME

    # A new owner taking over is not a reason to drop anything
    callback(NOTIFICATIONS_BUS_NAME, "", ":1.42", dbus_message=None)
    assert tray.sources == [source]

    callback(NOTIFICATIONS_BUS_NAME, ":1.42", "", dbus_message=None)
    assert tray.sources == []
    assert source.destroyed


async def test_unwatch_drops_the_subscription_and_sources(tray, bus):
    source = NotificationSource("Battery Low Notifier", "battery-caution-symbolic")
    tray.add(source)
    await tray.watch()

    await tray.unwatch()

    assert bus.receivers[0][2].removed
    assert source.destroyed
