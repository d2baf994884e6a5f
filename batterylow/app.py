# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import logging
from .errors import BatteryLowFatalError
from .event_listening import EventWatcher, EventListener
from .events.indicator import DisplayDeviceIndicator
from .events.power import BatteryMonitor
from .modules.notifications import NotificationTray
from .settings import Settings
from .utils.dbus_client import DBusClientError

logger = logging.getLogger(__name__)


class SessionServices(EventListener):
    """
    Services shared by the other listeners: live settings reload and the notification tray. It is
    started first and stopped last.
    """

    settings: Settings = None
    tray: NotificationTray = None

    async def start(self):
        try:
            await self.tray.notify.dbus_client.connect()
        except DBusClientError as err:
            raise BatteryLowFatalError("No session bus, notifications can't be shown") from err

        try:
            self.settings.watch()
        except OSError as err:
            logger.warning("Unable to watch the settings file, changes need a restart: %s", err)
        await self.tray.watch()

    async def stop(self):
        self.settings.unwatch()
        await self.tray.unwatch()
        await self.tray.notify.dbus_client.disconnect()


class App:
    """
    Orchestrate the application functionality into a single unit.

    Instantiate then hit `start()` to have it running.
    """
    def __init__(self, config_file: str, verbose: bool = False):
        self.settings = Settings(config_file)
        self.event_watcher = None
        self.verbose = verbose

    def setup_logging(self):
        """
        Setup the global application logging
        """
        log_level = "DEBUG" if self.verbose else "INFO"
        log_format = "[%(levelname)s] [%(filename)s:%(funcName)s():L%(lineno)d] %(message)s"
        logging.basicConfig(level = log_level, format = log_format)

    def create_listeners(self):
        """
        Register the listeners in the order they must start
        """
        tray = NotificationTray()
        self.event_watcher.add_listener(SessionServices, settings=self.settings, tray=tray)
        self.event_watcher.add_listener(BatteryMonitor, settings=self.settings, tray=tray)
        self.event_watcher.add_listener(DisplayDeviceIndicator, settings=self.settings)

    def start(self) -> int:
        """
        Instantiate all required application classes then run it

        It will stop gracefully when receiving a SIGINT or SIGTERM
        """
        self.setup_logging()
        self.settings.load()
        self.event_watcher = EventWatcher()
        self.create_listeners()
        return self.event_watcher.run()
