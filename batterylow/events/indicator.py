# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import logging
from ..event_listening import EventListener
from ..errors import BatteryLowError, MalformedDeviceError
from ..indicator import BatteryIndicator, IconHook
from ..modules.polybar import Polybar
from ..session import BatteryDevice
from .power import DISPLAY_DEVICE_PATH, UPowerClient

logger = logging.getLogger(__name__)


class DisplayDeviceIndicator(EventListener):
    """
    Keeps the primary battery indicator in sync with UPower's DisplayDevice, the composite battery
    that represents the whole system, and hooks its icon selection so the warning colours follow
    our thresholds.

    The icon is rendered to Polybar when the `polybar-module` setting is set.
    """

    settings = None
    upower: UPowerClient = None

    def __init__(self, event_watcher):
        super().__init__(event_watcher)
        self.indicator = BatteryIndicator()
        self.hook = None
        self.receiver = None
        self.output = None

    def locate_indicator(self) -> BatteryIndicator | None:
        """The indicator, but only once it has a device to show"""
        return self.indicator if self.indicator.device else None

    async def start(self):
        self.upower = self.upower or UPowerClient()
        self.hook = IconHook(self.locate_indicator, self.settings)

        polybar_module = self.settings.get_string("polybar-module")
        if polybar_module:
            self.output = Polybar(polybar_module)
            self.indicator.connect_changed(self.render)

        try:
            props = await self.upower.get_device_properties(DISPLAY_DEVICE_PATH)
            self.indicator.device = BatteryDevice.from_properties(DISPLAY_DEVICE_PATH, props)
        except BatteryLowError as err:
            logger.warning("Unable to read the UPower display device: %s", err)
            return

        self.receiver = await self.upower.watch_device(
            DISPLAY_DEVICE_PATH, self.display_device_changed
        )
        if not self.receiver:
            logger.warning("Could not subscribe to display device changes.")

        self.indicator.sync()
        if self.settings.get_boolean("icon-hook"):
            self.hook.install()

        self.settings.connect_changed(self.setting_changed)

    def display_device_changed(self, changed: dict):
        if not self.indicator.device:
            return

        try:
            self.indicator.device.update(changed)
        except MalformedDeviceError as err:
            logger.warning("Ignoring display device change: %s", err)
            return
        self.indicator.sync()

    def setting_changed(self, key: str):
        """Apply new thresholds right away, and toggle the hook when asked to"""
        if key == "icon-hook":
            enabled = self.settings.get_boolean("icon-hook")
            if enabled and not self.hook.hooked:
                self.hook.install()
            elif not enabled and self.hook.hooked:
                self.hook.uninstall()
        elif key in ("low-threshold", "critical-threshold"):
            self.indicator.sync()

    def render(self, indicator: BatteryIndicator):
        self.run_coro(self.output.render(indicator))

    async def stop(self):
        if self.hook:
            self.hook.uninstall()

        if self.receiver:
            await self.receiver.remove()
            self.receiver = None

        if self.upower:
            await self.upower.disconnect()
