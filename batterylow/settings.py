# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import asyncio
import json
import logging
import os
from pathlib import Path
from inotify_simple import INotify, flags as INotifyFlags
from .errors import SettingsError

logger = logging.getLogger(__name__)

DEFAULTS = {
    "low-threshold": 20,
    "critical-threshold": 10,
    "sticky-notifications": True,
    # Whether the status bar icon colour follows our thresholds
    "icon-hook": True,
    # Polybar `custom/ipc` module showing the battery icon. Empty disables the output.
    "polybar-module": "",
}


def default_settings_path() -> Path:
    """Where the settings file lives unless told otherwise"""
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "batterylow" / "settings.json"


class Settings:
    """
    Live settings store backed by a JSON file.

    Values are read on demand with the typed getters, so whoever reads them always sees the last
    saved version of the file. Once `watch()` is called the file is reloaded as soon as it's
    written, and the callbacks registered with `connect_changed()` receive the name of every key
    whose value has changed.

    Usage:
        settings = Settings("~/.config/batterylow/settings.json")
        settings.load()
        settings.get_int("low-threshold")
    """

    def __init__(self, path: str | Path = None):
        self.path = Path(path).expanduser() if path else default_settings_path()
        self.values = dict(DEFAULTS)
        self.changed_callbacks = []
        self.inotify = None

    def get_int(self, key: str) -> int:
        return int(self.values[key])

    def get_boolean(self, key: str) -> bool:
        return bool(self.values[key])

    def get_string(self, key: str) -> str:
        return str(self.values[key] or "")

    def connect_changed(self, callback: callable):
        """Call `callback(key)` for every key changed by a reload"""
        self.changed_callbacks.append(callback)

    def read(self) -> dict:
        """
        Read the settings file merged over the defaults. A missing file just means defaults.
        """
        try:
            raw = json.loads(self.path.read_text("utf-8"))
        except FileNotFoundError:
            return dict(DEFAULTS)
        except (OSError, ValueError) as err:
            raise SettingsError(f"Unable to read settings from '{self.path}'") from err

        if not isinstance(raw, dict):
            raise SettingsError(f"Settings file '{self.path}' must hold a JSON object")

        unknown = set(raw) - set(DEFAULTS)
        if unknown:
            logger.warning("Ignoring unknown settings: %s", ", ".join(sorted(unknown)))

        for key, value in raw.items():
            # bool is an int subclass, `true` must not pass for a threshold
            expected = type(DEFAULTS.get(key, value))
            if type(value) is not expected:  # pylint: disable=unidiomatic-typecheck
                raise SettingsError(f"Setting '{key}' must be of type {expected.__name__}")

        values = dict(DEFAULTS)
        values.update({key: value for key, value in raw.items() if key in DEFAULTS})
        return values

    def load(self) -> list[str]:
        """
        (Re)load the settings file and returns the keys that changed. If the file can't be parsed,
        the current values are kept.
        """
        try:
            values = self.read()
        except SettingsError as err:
            logger.error("%s, keeping the current settings", err)
            return []

        changed = [key for key, value in values.items() if self.values.get(key) != value]
        self.values = values
        self.validate()

        for key in changed:
            for callback in self.changed_callbacks:
                callback(key)

        return changed

    def validate(self):
        """
        Warn about nonsensical thresholds. They are used as they are anyway.
        """
        low = self.get_int("low-threshold")
        critical = self.get_int("critical-threshold")

        if critical >= low:
            logger.warning(
                "Critical threshold (%s%%) should be lower than the low threshold (%s%%)",
                critical,
                low,
            )
        for name, value in (("low-threshold", low), ("critical-threshold", critical)):
            if not 1 <= value <= 99:
                logger.warning("Setting %s should be between 1 and 99, got %s", name, value)

    def file_changed(self):
        """
        Callback for the inotify file descriptor being readable
        """
        events = self.inotify.read(timeout=0)
        if any(event.name == self.path.name for event in events):
            logger.debug("Settings file %s changed, reloading", self.path)
            self.load()

    def watch(self):
        """
        Watch the settings directory for writes and renames (editors usually save by renaming a
        temporary file) and reload whenever our file is touched.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self.inotify = INotify()
        self.inotify.add_watch(
            self.path.parent,
            INotifyFlags.CLOSE_WRITE | INotifyFlags.MOVED_TO,
        )
        asyncio.get_running_loop().add_reader(self.inotify.fileno(), self.file_changed)

    def unwatch(self):
        """Stop watching the settings file"""
        if not self.inotify:
            return

        asyncio.get_running_loop().remove_reader(self.inotify.fileno())
        self.inotify.close()
        self.inotify = None
