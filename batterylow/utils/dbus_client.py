# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0 AND MIT

import logging
from contextlib import suppress

# pylint: disable-next=unused-import
from dbus_next import Message, Variant
from dbus_next.aio import MessageBus
from dbus_next.constants import BusType, MessageType
from ..errors import BatteryLowError

logger = logging.getLogger(__package__)


class DBusClientError(BatteryLowError):
    """
    Base error class for DBus related exceptions
    """


def unwrap_variants(values: dict) -> dict:
    """
    Turn a `a{sv}` dictionary as received from dbus-next into plain Python values
    """
    return {
        key: value.value if isinstance(value, Variant) else value
        for key, value in values.items()
    }


class SignalReceiver:
    """
    A live signal subscription. Call `remove()` to stop receiving it.
    """

    def __init__(self, client: "DBusClient", rule: str, handler: callable):
        self.client = client
        self.rule = rule
        self.handler = handler
        self.removed = False

    async def remove(self):
        """
        Stops delivering the signal to the callback right away, then drops the match rule on the
        bus daemon. Failures to drop the rule are not relevant anymore at this point.
        """
        if self.removed:
            return
        self.removed = True

        if self.client.bus:
            self.client.bus.remove_message_handler(self.handler)

        with suppress(DBusClientError):
            await self.client.call_method(
                "org.freedesktop.DBus",
                "/org/freedesktop/DBus",
                "org.freedesktop.DBus",
                "RemoveMatch",
                "s",
                self.rule,
            )


class DBusClient:
    """
    Base DBus client class
    """

    def __init__(self, bus_type: BusType):
        self.bus_type = bus_type
        self.bus = None

    async def connect(self) -> None:
        """
        Connects to DBus allowing this instance to call methods
        """
        if self.bus:
            return

        try:
            self.bus = await MessageBus(bus_type=self.bus_type).connect()
        except Exception as err:
            raise DBusClientError("Unable to connect to dbus.") from err

    async def disconnect(self) -> None:
        """
        Disconnects from an existing DBus connection.
        """
        if self.bus:
            self.bus.disconnect()
            self.bus = None

    # pylint: disable-next=too-many-arguments
    async def add_signal_receiver(
        self,
        callback: callable,
        signal_name: str | None = None,
        dbus_interface: str | None = None,
        bus_name: str | None = None,
        path: str | None = None,
        arg0: str | None = None,
    ) -> SignalReceiver | None:
        """
        Helper function which aims to recreate python-dbus's add_signal_receiver
        method in dbus_next with asyncio calls.
        Returns the subscription if successful, otherwise None.

        Unlike the match rule on the bus daemon, the local handler does not filter on the sender
        since signals come from the unique name of the service, not its well-known one.
        """
        match_args = {
            "type": "signal",
            "sender": bus_name,
            "member": signal_name,
            "path": path,
            "interface": dbus_interface,
            "arg0": arg0,
        }

        rule = ",".join(f"{k}='{v}'" for k, v in match_args.items() if v)

        try:
            await self.call_method(
                "org.freedesktop.DBus",
                "/org/freedesktop/DBus",
                "org.freedesktop.DBus",
                "AddMatch",
                "s",
                rule,
            )
        except DBusClientError:
            # Check if message sent successfully
            logger.warning("Unable to add watch for DBus events (%s)", rule)
            return None

        def message_handler(message):
            if message.message_type != MessageType.SIGNAL:
                return
            if signal_name and message.member != signal_name:
                return
            if dbus_interface and message.interface != dbus_interface:
                return
            if path and message.path != path:
                return
            if arg0 and (not message.body or message.body[0] != arg0):
                return

            callback(*message.body, dbus_message=message)

        self.bus.add_message_handler(message_handler)
        return SignalReceiver(self, rule, message_handler)

    # pylint: disable-next=too-many-arguments
    async def call_method(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str,
        body: any,
    ) -> any:
        """
        Calls any available DBus method and return its value
        """
        msg = await self._send_dbus_message(
            MessageType.METHOD_CALL,
            destination,
            interface,
            path,
            member,
            signature,
            body,
        )

        if msg is None:
            raise DBusClientError(f"No reply from {destination} calling {member}")
        if msg.message_type != MessageType.METHOD_RETURN:
            raise DBusClientError(f"Unable to call method on dbus: {msg.error_name}")

        match len(msg.body):
            case 0:
                return None
            case 1:
                return msg.body[0]
            case _:
                return msg.body

    async def get_all_properties(self, destination: str, path: str, interface: str) -> dict:
        """
        Fetch every property of an object interface, already unwrapped from their Variants
        """
        props = await self.call_method(
            destination=destination,
            path=path,
            interface="org.freedesktop.DBus.Properties",
            member="GetAll",
            signature="s",
            body=[interface],
        )
        return unwrap_variants(props or {})

    # pylint: disable-next=too-many-arguments
    async def _send_dbus_message(
        self,
        message_type: MessageType,
        destination: str | None,
        interface: str | None,
        path: str | None,
        member: str | None,
        signature: str,
        body: any,
    ) -> Message | None:
        """
        Private method to send messages to dbus via dbus_next.
        Returns the reply message.
        """

        if isinstance(body, str):
            body = [body]

        await self.connect()

        try:
            # Ignore types here: dbus-next has default values of `None` for certain
            # parameters but the signature is `str` so passing `None` results in an
            # error in mypy.
            return await self.bus.call(
                Message(
                    message_type=message_type,
                    destination=destination,  # type: ignore
                    interface=interface,  # type: ignore
                    path=path,  # type: ignore
                    member=member,  # type: ignore
                    signature=signature,
                    body=body,
                )
            )
        except Exception as err:
            raise DBusClientError(f"Failed to send {member} to {destination}") from err


class SessionDBusClient(DBusClient):
    """
    Session DBus client
    """

    def __init__(self):
        super().__init__(BusType.SESSION)


class SystemDBusClient(DBusClient):
    """
    System DBus client
    """

    def __init__(self):
        super().__init__(BusType.SYSTEM)
