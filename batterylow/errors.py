# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

class BatteryLowError(Exception):
    """
    Base exception used for all module-based errors. When run inside the loop it will be logged but
    the application will still be running.
    """


class BatteryLowFatalError(BatteryLowError):
    """
    This exception is, as the name implies, fatal, therefore will stop the application when raised.
    """


class MalformedDeviceError(BatteryLowError):
    """
    Raised when a power device does not expose the attributes we need to track it as a battery.
    """


class SettingsError(BatteryLowError):
    """
    Raised when the settings file can't be read or parsed.
    """
