# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import logging
from enum import Enum, IntEnum
from ..errors import BatteryLowError
from ..utils.dbus_client import SessionDBusClient, Variant

logger = logging.getLogger(__name__)

NOTIFICATIONS_BUS_NAME = "org.freedesktop.Notifications"


class Urgency(IntEnum):
    """
    How pressing a notification is. The freedesktop spec only has three levels, so HIGH is sent
    over as NORMAL, but without an expiration timeout.

    See:
    https://specifications.freedesktop.org/notification-spec/notification-spec-latest.html#urgency-levels
    """

    LOW = 0
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3

    def to_wire(self) -> int:
        """The urgency byte as defined by the notification spec"""
        return {
            Urgency.LOW: 0,
            Urgency.NORMAL: 1,
            Urgency.HIGH: 1,
            Urgency.CRITICAL: 2,
        }[self]

    def expire_time_ms(self) -> int:
        """-1 lets the server decide, 0 means the notification never expires"""
        return 0 if self >= Urgency.HIGH else -1


class Category(Enum):
    """
    Notifications optional type indicator, as described by
    https://specifications.freedesktop.org/notification-spec/notification-spec-latest.html#categories
    """

    DEVICE = "device"


class HintABC:  # pylint: disable=too-few-public-methods
    """
    Hints are a way to provide extra data to a notification server that the server may be able to
    make use of.

    Usage:
    hints = [Hint.Resident(True), Hint.Urgency(Urgency.LOW)]
    """

    name: str
    signature: str

    def __init__(self, value: any):
        self.value = value

    def raw_value(self) -> any:
        """The plain value to be wrapped in the Variant"""
        return self.value

    def to_value(self):
        """
        Transform the hint object into a value to be transmitted to the notification server
        """
        return [self.name, Variant(self.signature, self.raw_value())]


# pylint: disable=too-few-public-methods
class Hint:
    """
    Namespace for the hints we send
    """

    class Category(HintABC):
        """
        The type of notification this is.
        """

        name = "category"
        signature = "s"

        def raw_value(self):
            return self.value.value

    class DesktopEntry(HintABC):
        """
        The name of the desktop filename representing the calling program.
        """

        name = "desktop-entry"
        signature = "s"

    class Resident(HintABC):
        """
        The server will not automatically remove the notification when an action has been
        invoked. The notification will remain resident in the server until it is explicitly removed
        by the user or by the sender.
        """

        name = "resident"
        signature = "b"

    class Transient(HintABC):
        """
        When set the server will treat the notification as transient and by-pass the server's
        persistence capability, if it should exist.
        """

        name = "transient"
        signature = "b"

    class Urgency(HintABC):
        """
        The urgency level.

        Usage: Hint.Urgency(Urgency.LOW)
        """

        name = "urgency"
        signature = "y"

        def raw_value(self):
            return Urgency(self.value).to_wire()


class Notify:
    """
    Send desktop notifications according to the Freedesktop spec.
    See: https://specifications.freedesktop.org/notification-spec/notification-spec-latest.html
    """

    def __init__(self, dbus_client=None):
        self.dbus_client = dbus_client or SessionDBusClient()

    # pylint: disable-next=too-many-arguments
    async def send(
        self,
        summary: str,
        body: str = "",
        icon: str = "",
        expire_time_ms: int = -1,
        app_name: str = __name__,
        replaces_id: int = 0,
        hints: list[HintABC] = None,
    ) -> int:
        """
        Send the notification to the Desktop Notifications Daemon via DBus, returning its id
        """
        if hints:
            hints = dict([hint.to_value() for hint in hints])
        else:
            hints = {}

        params = [
            app_name,
            replaces_id,
            icon,
            summary,
            body,
            [],
            hints,
            expire_time_ms,
        ]

        return await self.dbus_client.call_method(
            destination=NOTIFICATIONS_BUS_NAME,
            interface="org.freedesktop.Notifications",
            path="/org/freedesktop/Notifications",
            member="Notify",
            signature="susssasa{sv}i",
            body=params,
        )

    # Make this object callable by invoking send
    __call__ = send


class NotificationSource:
    """
    The application identity notifications are shown under. It lives until it's destroyed, either
    by its owner or by the tray, and tells whoever is interested through `connect_destroy()`.
    """

    def __init__(self, title: str, icon_name: str):
        self.title = title
        self.icon_name = icon_name
        self.tray = None
        self.destroyed = False
        self.destroy_callbacks = []

    def connect_destroy(self, callback: callable):
        """Call `callback(source)` once this source is destroyed"""
        self.destroy_callbacks.append(callback)

    def destroy(self):
        """
        Detach from the tray and notify the destroy listeners. Destroying twice is a no-op.
        """
        if self.destroyed:
            return
        self.destroyed = True

        if self.tray:
            self.tray.remove(self)

        for callback in self.destroy_callbacks:
            callback(self)
        self.destroy_callbacks.clear()

    async def add_notification(self, notification: "Notification") -> int:
        """Show a notification under this source"""
        if self.destroyed or not self.tray:
            raise BatteryLowError(f"Notification source '{self.title}' is not in the tray")
        return await self.tray.show(notification)


class Notification:  # pylint: disable=too-few-public-methods
    """A single notification, bound to its source"""

    # pylint: disable-next=too-many-arguments
    def __init__(
        self,
        source: NotificationSource,
        title: str,
        body: str = "",
        icon_name: str = "",
        urgency: Urgency = Urgency.NORMAL,
        is_transient: bool = False,
        resident: bool = False,
    ):
        self.source = source
        self.title = title
        self.body = body
        self.icon_name = icon_name
        self.urgency = urgency
        self.is_transient = is_transient
        self.resident = resident

    def hints(self) -> list[HintABC]:
        """Hints describing this notification to the server"""
        return [
            Hint.Urgency(self.urgency),
            Hint.Category(Category.DEVICE),
            Hint.Transient(self.is_transient),
            Hint.Resident(self.resident),
            Hint.DesktopEntry("batterylow"),
        ]


class NotificationTray:
    """
    Keeps the notification sources in use and delivers their notifications through `Notify`.

    When the notification daemon leaves the session bus (it crashed, or got replaced by a different
    one) all sources are destroyed, so their owners create fresh ones on next use.
    """

    def __init__(self, notify: Notify = None):
        self.notify = notify or Notify()
        self.sources = []
        self.owner_watch = None

    def add(self, source: NotificationSource):
        """Register a source so it can show notifications"""
        source.tray = self
        self.sources.append(source)

    def remove(self, source: NotificationSource):
        """Forget about a source. Use `source.destroy()` to also notify its owner."""
        if source in self.sources:
            self.sources.remove(source)
        source.tray = None

    def clear(self):
        """Destroy every source"""
        for source in list(self.sources):
            source.destroy()

    async def show(self, notification: Notification) -> int:
        """Deliver a notification to the daemon. DBus failures propagate to the caller."""
        logger.info("Notifying: %s", notification.title)
        return await self.notify.send(
            summary=notification.title,
            body=notification.body,
            icon=notification.icon_name,
            expire_time_ms=notification.urgency.expire_time_ms(),
            app_name=notification.source.title,
            hints=notification.hints(),
        )

    async def watch(self):
        """
        Subscribe to the notification daemon leaving the bus. Not being able to subscribe is not
        fatal, sources just won't be recycled.
        """

        def name_owner_changed(name, _old_owner, new_owner, **_):
            if name == NOTIFICATIONS_BUS_NAME and not new_owner:
                logger.info("Notification daemon left the bus, dropping sources")
                self.clear()

        self.owner_watch = await self.notify.dbus_client.add_signal_receiver(
            callback=name_owner_changed,
            signal_name="NameOwnerChanged",
            dbus_interface="org.freedesktop.DBus",
            arg0=NOTIFICATIONS_BUS_NAME,
        )

        if not self.owner_watch:
            logger.warning("Could not subscribe to NameOwnerChanged signal.")

    async def unwatch(self):
        """Drop the daemon watch and every source"""
        if self.owner_watch:
            await self.owner_watch.remove()
            self.owner_watch = None
        self.clear()
