# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import NamedTuple, Optional
from .errors import MalformedDeviceError
from .policy import Severity, decide_severity

logger = logging.getLogger(__name__)

# Only these UPower properties can change the outcome of an evaluation
EVALUATED_PROPERTIES = frozenset({"Percentage", "State"})


class DeviceType(IntEnum):
    """
    UPower device kind.
    See: https://upower.freedesktop.org/docs/Device.html#Device:Type
    """

    UNKNOWN = 0
    LINE_POWER = 1
    BATTERY = 2
    UPS = 3
    MONITOR = 4
    MOUSE = 5
    KEYBOARD = 6
    PDA = 7
    PHONE = 8

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN


class DeviceState(IntEnum):
    """
    UPower battery state.
    See: https://upower.freedesktop.org/docs/Device.html#Device:State
    """

    UNKNOWN = 0
    CHARGING = 1
    DISCHARGING = 2
    EMPTY = 3
    FULLY_CHARGED = 4
    PENDING_CHARGE = 5
    PENDING_DISCHARGE = 6

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN


# Entering any of these states ends the discharge session. PENDING_DISCHARGE and UNKNOWN are
# ambiguous and leave the session memory alone.
CHARGING_STATES = frozenset(
    {DeviceState.CHARGING, DeviceState.FULLY_CHARGED, DeviceState.PENDING_CHARGE}
)


@dataclass
class ThresholdConfig:
    """Notification thresholds, in percent"""

    low_threshold: int
    critical_threshold: int

    @classmethod
    def from_settings(cls, settings) -> "ThresholdConfig":
        """
        Read the current thresholds. This is called on every evaluation so edits to the settings
        file apply without a restart.
        """
        return cls(
            low_threshold=settings.get_int("low-threshold"),
            critical_threshold=settings.get_int("critical-threshold"),
        )


class NotificationIntent(NamedTuple):
    """What the dispatcher should tell the user about a device"""

    level: Severity
    percentage: int
    device_label: str


def round_percentage(percentage: float) -> int:
    """Round half up, so 27.5% reads as 28%"""
    return math.floor(percentage + 0.5)


@dataclass
class BatteryDevice:  # pylint: disable=too-many-instance-attributes
    """
    A snapshot of a UPower device, plus the level we have already notified about during the
    current discharge session.
    """

    id: str
    state: DeviceState = DeviceState.UNKNOWN
    percentage: float = 0.0
    is_present: bool = False
    is_power_supply: bool = False
    device_type: DeviceType = DeviceType.UNKNOWN
    native_path: str = ""
    last_notified_level: Severity = Severity.NONE

    @classmethod
    def from_properties(cls, device_id: str, props: dict) -> "BatteryDevice":
        """
        Build a device out of the UPower property names and their (already unwrapped) values.
        """
        try:
            return cls(
                id=device_id,
                device_type=DeviceType(int(props["Type"])),
                state=DeviceState(int(props["State"])),
                percentage=float(props["Percentage"]),
                is_present=bool(props["IsPresent"]),
                is_power_supply=bool(props["PowerSupply"]),
                native_path=str(props.get("NativePath") or ""),
            )
        except (KeyError, TypeError, ValueError) as err:
            raise MalformedDeviceError(
                f"Device {device_id} has missing or malformed attributes"
            ) from err

    @property
    def native_label(self) -> str:
        """Short name for the battery, such as `BAT0`"""
        if self.native_path:
            return self.native_path.split("/")[-1] or "Battery"
        return "Battery"

    def is_genuine_battery(self) -> bool:
        """Whether this is a present battery that powers the system (not a mouse or a UPS)"""
        return (
            self.device_type == DeviceType.BATTERY
            and self.is_present
            and self.is_power_supply
        )

    def update(self, changed: dict) -> bool:
        """
        Apply a property change payload. Returns whether any property relevant for the evaluation
        was part of it.
        """
        # Nothing is applied unless the whole payload parses
        try:
            state = DeviceState(int(changed["State"])) if "State" in changed else self.state
            percentage = (
                float(changed["Percentage"]) if "Percentage" in changed else self.percentage
            )
        except (TypeError, ValueError) as err:
            raise MalformedDeviceError(f"Device {self.id} reported a malformed change") from err

        self.state = state
        self.percentage = percentage
        if "IsPresent" in changed:
            self.is_present = bool(changed["IsPresent"])
        if "NativePath" in changed:
            self.native_path = str(changed["NativePath"] or "")

        return not EVALUATED_PROPERTIES.isdisjoint(changed)


def evaluate(device: BatteryDevice, config: ThresholdConfig) -> Optional[NotificationIntent]:
    """
    Decide whether the device deserves a notification right now.

    This only reads the session memory, except for the reset when the device starts charging.
    Recording the notified level is up to the caller, after the notification went out.
    """
    if device.state != DeviceState.DISCHARGING:
        if device.state in CHARGING_STATES:
            device.last_notified_level = Severity.NONE
        return None

    wanted = decide_severity(
        device.percentage, config.low_threshold, config.critical_threshold
    )

    # Going back above the thresholds is silent, and does not reset the session either
    if wanted == Severity.NONE:
        return None

    # Already notified at this level or higher during this discharge session
    if device.last_notified_level >= wanted:
        return None

    return NotificationIntent(
        level=wanted,
        percentage=round_percentage(device.percentage),
        device_label=device.native_label,
    )


@dataclass
class DeviceSession:
    """
    Everything the registry keeps for a tracked battery: the device itself, its property change
    subscription and a lock so evaluations of the same device never interleave while one of them
    waits for the notification to go out.
    """

    device: BatteryDevice
    subscription: any = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def refresh(self, config: ThresholdConfig, dispatcher, changed: dict = None):
        """
        Optionally apply a property change, then evaluate the device and notify if needed.

        The notification is sent first and recorded after, so that if the dispatcher raises the
        memory stays as it was and the next property change retries.
        """
        async with self.lock:
            if changed is not None:
                self.device.update(changed)

            intent = evaluate(self.device, config)
            if not intent:
                return None

            logger.debug(
                "Battery %s at %s%%, notifying %s",
                self.device.id,
                intent.percentage,
                intent.level.name,
            )
            await dispatcher.notify(intent.level, intent.percentage, intent.device_label)
            self.device.last_notified_level = intent.level
            return intent
