import asyncio

import pytest

from batterylow.policy import Severity
from batterylow.registry import DeviceRegistry
from batterylow.utils.dbus_client import DBusClientError

BAT0 = "/org/freedesktop/UPower/devices/battery_BAT0"
BAT1 = "/org/freedesktop/UPower/devices/battery_BAT1"
AC = "/org/freedesktop/UPower/devices/line_power_AC"


class Scheduler:
    """Collects the coroutines the registry hands to the event loop"""

    def __init__(self):
        self.tasks = []

    def __call__(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self.tasks.append(task)
        return task

    async def drain(self):
        while self.tasks:
            await self.tasks.pop(0)


@pytest.fixture
def scheduler():
    return Scheduler()


@pytest.fixture
def registry(power, settings, dispatcher, scheduler):
    return DeviceRegistry(power, settings, dispatcher, scheduler)


async def test_discharge_session_end_to_end(registry, power, dispatcher, scheduler):
    power.add(BAT0, State=2, Percentage=45.0)
    await registry.add_device(BAT0)
    assert dispatcher.sent == []

    steps = [
        ({"State": 2, "Percentage": 28.0}, [(Severity.LOW, 28, "BAT0")]),
        ({"Percentage": 9.0}, [(Severity.CRITICAL, 9, "BAT0")]),
        ({"Percentage": 5.0}, []),
        ({"State": 1, "Percentage": 50.0}, []),
        ({"State": 2, "Percentage": 8.0}, [(Severity.CRITICAL, 8, "BAT0")]),
    ]
    for changed, expected in steps:
        dispatcher.sent.clear()
        power.emit(BAT0, **changed)
        await scheduler.drain()
        assert dispatcher.sent == expected, changed


async def test_device_already_below_threshold_is_notified_when_added(registry, power, dispatcher):
    power.add(BAT0, Percentage=7.0)

    await registry.add_device(BAT0)

    assert dispatcher.sent == [(Severity.CRITICAL, 7, "BAT0")]


async def test_non_batteries_are_skipped(registry, power):
    power.add(AC, Type=1, PowerSupply=True)
    power.add(BAT1, IsPresent=False)

    await registry.add_device(AC)
    await registry.add_device(BAT1)

    assert len(registry) == 0
    assert power.subscriptions == []


async def test_devices_with_missing_attributes_are_skipped(registry, power):
    power.add(BAT0)
    del power.devices[BAT0]["Percentage"]

    await registry.add_device(BAT0)

    assert BAT0 not in registry


async def test_transport_failure_skips_the_device(registry, power):
    async def failing(_device_path):
        raise DBusClientError("Unable to connect to dbus.")

    power.get_device_properties = failing

    await registry.add_device(BAT0)

    assert len(registry) == 0


async def test_adding_twice_tracks_once(registry, power):
    power.add(BAT0)

    await registry.add_device(BAT0)
    await registry.add_device(BAT0)

    assert len(registry) == 1
    assert len(power.subscriptions) == 1


async def test_concurrent_adds_track_once(registry, power):
    power.add(BAT0)

    # Signal and enumeration racing each other
    await asyncio.gather(registry.add_device(BAT0), registry.add_device(BAT0))

    assert len(registry) == 1
    assert len(power.subscriptions) == 1


async def test_removed_while_being_added_is_dropped(registry, power):
    power.add(BAT0)

    await asyncio.gather(registry.add_device(BAT0), registry.remove_device(BAT0))

    assert BAT0 not in registry
    assert all(subscription.removed for subscription in power.subscriptions)


async def test_remove_unsubscribes(registry, power):
    power.add(BAT0)
    await registry.add_device(BAT0)

    await registry.remove_device(BAT0)

    assert BAT0 not in registry
    assert power.subscriptions[0].removed


async def test_removing_an_untracked_device_is_a_noop(registry):
    await registry.remove_device(BAT1)
    assert len(registry) == 0


async def test_irrelevant_property_changes_are_ignored(registry, power, settings, dispatcher):
    power.add(BAT0, Percentage=25.0)
    settings.values["low-threshold"] = 20
    await registry.add_device(BAT0)
    assert dispatcher.sent == []

    # Thresholds are read on every evaluation, but this change does not trigger one
    settings.values["low-threshold"] = 30
    await registry.property_changed(BAT0, {"TimeToEmpty": 3600})
    assert dispatcher.sent == []

    await registry.property_changed(BAT0, {"Percentage": 25.0})
    assert dispatcher.sent == [(Severity.LOW, 25, "BAT0")]


async def test_failed_dispatch_is_retried_on_next_change(registry, power, dispatcher):
    power.add(BAT0, Percentage=9.0)
    dispatcher.failures = 1

    await registry.add_device(BAT0)
    assert dispatcher.sent == []
    assert registry.sessions[BAT0].device.last_notified_level == Severity.NONE

    await registry.property_changed(BAT0, {"Percentage": 8.5})
    assert dispatcher.sent == [(Severity.CRITICAL, 9, "BAT0")]


async def test_each_device_has_its_own_session(registry, power, dispatcher):
    power.add(BAT0, Percentage=25.0)
    power.add(BAT1, Percentage=50.0)
    await registry.add_device(BAT0)
    await registry.add_device(BAT1)

    await registry.property_changed(BAT1, {"Percentage": 29.0})
    await registry.property_changed(BAT0, {"Percentage": 24.0})

    assert dispatcher.sent == [(Severity.LOW, 25, "BAT0"), (Severity.LOW, 29, "BAT1")]


async def test_destroy_drops_everything_and_ignores_late_adds(registry, power):
    power.add(BAT0)
    power.add(BAT1)
    await registry.add_device(BAT0)

    await registry.destroy()
    await registry.add_device(BAT1)

    assert len(registry) == 0
    assert power.subscriptions[0].removed
    assert len(power.subscriptions) == 1
