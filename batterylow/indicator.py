# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

"""
The primary battery indicator and the hook that aligns its icon with our thresholds.

The indicator does not hard-code how it picks its icon, it delegates that to whatever
`IconSelector` sits in its `icon_selector` slot. By default that's the `HostDefaultSelector`, which
mimics what the desktop does: snap the percentage down to a multiple of ten. The `IconHook` swaps
that slot for a `ThresholdAwareSelector` and back.

Without the hook, a battery at 29% gets an amber `battery-level-20` icon even if the low threshold
is set to 15%. With it, the amber icons only show up once the charge is actually low.
"""

import logging
from .policy import decide_icon_fill_bucket, natural_fill_level
from .session import BatteryDevice, DeviceState, round_percentage

logger = logging.getLogger(__name__)


def fill_icon_name(fill_level: int, suffix: str = "") -> str:
    """Symbolic battery icon name for a fill level, e.g. `battery-level-30-symbolic`"""
    return f"battery-level-{fill_level}{suffix}-symbolic"


class IconSelector:  # pylint: disable=too-few-public-methods
    """
    Strategy that picks the icon of a `BatteryIndicator`, by calling `indicator.set_icon()`.
    """

    def select(self, indicator: "BatteryIndicator"):
        raise NotImplementedError


class HostDefaultSelector(IconSelector):  # pylint: disable=too-few-public-methods
    """The icon the desktop would show by itself"""

    def select(self, indicator: "BatteryIndicator"):
        device = indicator.device
        if not device or not device.is_present:
            indicator.set_icon("battery-missing-symbolic")
            return

        if device.state == DeviceState.FULLY_CHARGED:
            indicator.set_icon(fill_icon_name(100, "-charged"))
        elif device.state == DeviceState.CHARGING:
            indicator.set_icon(fill_icon_name(natural_fill_level(device.percentage), "-charging"))
        else:
            indicator.set_icon(fill_icon_name(natural_fill_level(device.percentage)))


class ThresholdAwareSelector(IconSelector):  # pylint: disable=too-few-public-methods
    """
    Runs the wrapped selector, then overrides its pick while discharging so that the warning
    colours match the low and critical thresholds.
    """

    def __init__(self, original: IconSelector, settings):
        self.original = original
        self.settings = settings

    def select(self, indicator: "BatteryIndicator"):
        # Let the desktop do its normal work first
        self.original.select(indicator)

        device = indicator.device
        if not device or not device.is_present:
            return
        if device.state != DeviceState.DISCHARGING:
            return

        natural = natural_fill_level(device.percentage)
        target = decide_icon_fill_bucket(
            device.percentage,
            self.settings.get_int("low-threshold"),
            self.settings.get_int("critical-threshold"),
        )

        if target != natural:
            indicator.set_icon(fill_icon_name(target))


class BatteryIndicator:
    """
    Battery indicator of the status bar. It shows the aggregate battery of the system and renders
    through the callbacks registered with `connect_changed()`.
    """

    def __init__(self):
        self.device: BatteryDevice | None = None
        self.icon_name = "battery-missing-symbolic"
        self.icon_selector: IconSelector = HostDefaultSelector()
        self.changed_callbacks = []
        self.published = None

    def connect_changed(self, callback: callable):
        """Call `callback(indicator)` whenever the icon or the shown percentage changes"""
        self.changed_callbacks.append(callback)

    def set_icon(self, icon_name: str):
        self.icon_name = icon_name

    @property
    def shown_percentage(self) -> int | None:
        """The rounded percentage next to the icon, None without a battery"""
        if not self.device or not self.device.is_present:
            return None
        return round_percentage(self.device.percentage)

    def sync(self):
        """Pick the icon again for the current device state"""
        self.icon_selector.select(self)

        status = (self.icon_name, self.shown_percentage)
        if status == self.published:
            return
        self.published = status

        logger.debug("Battery indicator changed to %s (%s%%)", *status)
        for callback in self.changed_callbacks:
            callback(self)

class IconHook:
    """
    Swaps the selector of the primary battery indicator for a `ThresholdAwareSelector`, and
    restores the captured one on `uninstall()`.

    Installing twice without uninstalling in between would wrap the wrapper, so callers must make
    sure to install only once.
    """

    def __init__(self, locate_indicator: callable, settings):
        self.locate_indicator = locate_indicator
        self.settings = settings
        self.indicator = None
        self.original_selector = None

    @property
    def hooked(self) -> bool:
        return self.indicator is not None

    def install(self) -> bool:
        """
        Hook into the indicator, if there is one. Returns whether the hook is in place.
        """
        indicator = self.locate_indicator()
        if not indicator:
            logger.warning("Could not hook battery indicator, no indicator was found")
            return False

        self.indicator = indicator
        self.original_selector = indicator.icon_selector
        indicator.icon_selector = ThresholdAwareSelector(self.original_selector, self.settings)

        # Apply right away so the icon reflects the current thresholds
        indicator.sync()
        return True

    def uninstall(self):
        """
        Put the original selector back and let it render the natural icon. Safe to call when not
        hooked. Errors while re-rendering are ignored, the teardown must go through.
        """
        indicator = self.indicator
        if indicator and self.original_selector:
            indicator.icon_selector = self.original_selector
            try:
                indicator.sync()
            except Exception:  # pylint: disable=broad-except
                logger.debug("Failed to restore the battery icon", exc_info=True)

        self.indicator = None
        self.original_selector = None
