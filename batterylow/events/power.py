# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import logging
from ..dispatcher import NotificationDispatcher
from ..event_listening import EventListener
from ..registry import DeviceRegistry
from ..utils.dbus_client import DBusClientError, SignalReceiver, SystemDBusClient, unwrap_variants

logger = logging.getLogger(__name__)

UPOWER_BUS_NAME = "org.freedesktop.UPower"
UPOWER_OBJECT_PATH = "/org/freedesktop/UPower"
UPOWER_INTERFACE = "org.freedesktop.UPower"
UPOWER_DEVICE_INTERFACE = "org.freedesktop.UPower.Device"
DISPLAY_DEVICE_PATH = "/org/freedesktop/UPower/devices/DisplayDevice"


class UPowerClient:
    """
    Thin client for the UPower daemon on the system bus.

    See: https://upower.freedesktop.org/docs/UPower.html
    See: https://upower.freedesktop.org/docs/Device.html
    """

    def __init__(self, dbus_client: SystemDBusClient = None):
        self.dbus = dbus_client or SystemDBusClient()

    async def connect(self):
        await self.dbus.connect()

    async def disconnect(self):
        await self.dbus.disconnect()

    async def enumerate_devices(self) -> list[str]:
        """Object paths of every power device UPower knows about"""
        return list(
            await self.dbus.call_method(
                destination=UPOWER_BUS_NAME,
                path=UPOWER_OBJECT_PATH,
                interface=UPOWER_INTERFACE,
                member="EnumerateDevices",
                signature="",
                body=[],
            )
            or []
        )

    async def get_device_properties(self, device_path: str) -> dict:
        """
        Every property of a device, such as Type, State, Percentage, IsPresent, PowerSupply and
        NativePath
        """
        return await self.dbus.get_all_properties(
            UPOWER_BUS_NAME, device_path, UPOWER_DEVICE_INTERFACE
        )

    async def on_device_added(self, callback: callable) -> SignalReceiver | None:
        """Call `callback(device_path)` when UPower adds a device"""
        return await self.dbus.add_signal_receiver(
            callback=lambda device_path, **_: callback(device_path),
            signal_name="DeviceAdded",
            dbus_interface=UPOWER_INTERFACE,
            path=UPOWER_OBJECT_PATH,
        )

    async def on_device_removed(self, callback: callable) -> SignalReceiver | None:
        """Call `callback(device_path)` when UPower removes a device"""
        return await self.dbus.add_signal_receiver(
            callback=lambda device_path, **_: callback(device_path),
            signal_name="DeviceRemoved",
            dbus_interface=UPOWER_INTERFACE,
            path=UPOWER_OBJECT_PATH,
        )

    async def watch_device(self, device_path: str, callback: callable) -> SignalReceiver | None:
        """
        Call `callback(changed)` with the changed device properties (name to plain value) every
        time UPower reports a change on that device
        """

        def property_changed(interface, changed, _invalidated, **_):
            if interface != UPOWER_DEVICE_INTERFACE:
                return
            callback(unwrap_variants(changed))

        return await self.dbus.add_signal_receiver(
            callback=property_changed,
            signal_name="PropertiesChanged",
            dbus_interface="org.freedesktop.DBus.Properties",
            path=device_path,
        )


class BatteryMonitor(EventListener):
    """
    Watches every battery UPower exposes and notifies once the charge falls to the low and
    critical thresholds, once per level for each discharge.
    """

    settings = None
    tray = None
    upower: UPowerClient = None

    def __init__(self, event_watcher):
        super().__init__(event_watcher)
        self.registry = None
        self.dispatcher = None
        self.receivers = []

    async def start(self):
        self.upower = self.upower or UPowerClient()
        self.dispatcher = NotificationDispatcher(self.tray, self.settings)
        self.registry = DeviceRegistry(
            self.upower, self.settings, self.dispatcher, self.run_coro
        )

        try:
            await self.upower.connect()
        except DBusClientError as err:
            logger.error("Unable to reach UPower, no battery will be monitored: %s", err)
            return

        registry = self.registry
        for subscribe, handler in [
            (self.upower.on_device_added, registry.add_device),
            (self.upower.on_device_removed, registry.remove_device),
        ]:
            receiver = await subscribe(
                lambda path, handler=handler: self.run_coro(handler(path))
            )
            if not receiver:
                logger.warning("Could not subscribe to UPower device signals.")
            else:
                self.receivers.append(receiver)

        # Signals are already wired, so devices showing up while we enumerate are not missed.
        # Both feeds go through the same idempotent `add_device`.
        self.run_coro(self.enumerate(registry))

    async def enumerate(self, registry: DeviceRegistry):
        """
        Add all devices present at startup
        """
        try:
            device_paths = await self.upower.enumerate_devices()
        except DBusClientError as err:
            logger.error("EnumerateDevices failed: %s", err)
            return

        for device_path in device_paths:
            # Shut down in the meantime, the registry discards it anyway
            if not registry.alive:
                return
            await registry.add_device(device_path)

    async def stop(self):
        for receiver in self.receivers:
            await receiver.remove()
        self.receivers.clear()

        if self.registry:
            await self.registry.destroy()
            self.registry = None

        if self.dispatcher:
            self.dispatcher.destroy()
            self.dispatcher = None

        if self.upower:
            await self.upower.disconnect()
