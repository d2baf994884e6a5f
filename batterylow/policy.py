# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

"""
Threshold policy shared by the notifier and the battery icon.

Both functions are pure and take the thresholds as they come from the settings file. Nothing here
validates them: if the critical threshold is set above the low one, the low branch just becomes
unreachable for some percentages.
"""

import math
from enum import IntEnum

# Highest fill level that the Adwaita icon theme renders with the amber (warning) colour.
# battery-level-20-symbolic and below are amber, battery-level-30-symbolic and above are neutral.
AMBER_FILL_LEVEL = 20

# Fill level used for the deep amber (critical) icons
CRITICAL_FILL_LEVEL = 10


class Severity(IntEnum):
    """How bad the current charge is, ordered from harmless to critical"""

    NONE = 0
    LOW = 1
    CRITICAL = 2


def decide_severity(percentage: float, low_threshold: int, critical_threshold: int) -> Severity:
    """
    Classify a charge percentage. Ties resolve toward the more severe level.
    """
    if percentage <= critical_threshold:
        return Severity.CRITICAL
    if percentage <= low_threshold:
        return Severity.LOW
    return Severity.NONE


def natural_fill_level(percentage: float) -> int:
    """
    The icon fill level the desktop would pick by itself: the percentage snapped down to the
    nearest multiple of ten.
    """
    return 10 * math.floor(percentage / 10)


def decide_icon_fill_bucket(
    percentage: float, low_threshold: int, critical_threshold: int
) -> int:
    """
    Remap the natural fill level so the icon colour agrees with our own thresholds:

    - at or below the critical threshold, clamp to the deep amber range (<= 10)
    - at or below the low threshold, clamp to the amber range (<= 20)
    - above both, but with a natural level that would already be amber, raise it to 30

    This is only meaningful while discharging, callers must check that themselves. When the
    returned value equals `natural_fill_level(percentage)` there is nothing to override.
    Below 10% the critical clamp keeps the natural level, so the result can be 0.
    """
    natural = natural_fill_level(percentage)

    if percentage <= critical_threshold:
        return min(natural, CRITICAL_FILL_LEVEL)
    if percentage <= low_threshold:
        return min(natural, AMBER_FILL_LEVEL)
    if natural <= AMBER_FILL_LEVEL:
        return AMBER_FILL_LEVEL + 10
    return natural
