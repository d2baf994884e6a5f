# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import logging
from .errors import BatteryLowError
from .session import (
    EVALUATED_PROPERTIES,
    BatteryDevice,
    DeviceSession,
    ThresholdConfig,
)

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """
    Owns one `DeviceSession` per monitored battery, keyed by its UPower object path.

    The registry is fed by the power service events (device added, removed and property changes)
    as well as by the initial device enumeration, which may run at the same time. Adding a device
    that is already tracked, or already being added, is a no-op so both feeds can overlap.
    """

    def __init__(self, power_service, settings, dispatcher, run_coro: callable):
        self.power_service = power_service
        self.settings = settings
        self.dispatcher = dispatcher
        self.run_coro = run_coro
        self.sessions: dict[str, DeviceSession] = {}
        self.pending = set()
        self.alive = True

    def __contains__(self, device_id: str) -> bool:
        return device_id in self.sessions

    def __len__(self) -> int:
        return len(self.sessions)

    async def add_device(self, device_id: str):
        """
        Start tracking a device, provided it's a genuine battery, then evaluate it right away so
        that a battery that shows up already below a threshold is notified.
        """
        if not self.alive or device_id in self.sessions or device_id in self.pending:
            return

        self.pending.add(device_id)
        try:
            session = await self._create_session(device_id)
        finally:
            # Only still pending if nobody removed it while we were talking to the bus
            still_wanted = self.alive and device_id in self.pending
            self.pending.discard(device_id)

        if not session:
            return
        if not still_wanted:
            if session.subscription:
                await session.subscription.remove()
            return

        self.sessions[device_id] = session
        logger.info("Monitoring battery: %s", device_id)
        await self._refresh(session)

    async def _create_session(self, device_id: str) -> DeviceSession | None:
        """
        Read the device and subscribe to its changes. Returns None for anything that is not a
        battery we can monitor.
        """
        try:
            props = await self.power_service.get_device_properties(device_id)
            device = BatteryDevice.from_properties(device_id, props)
        except BatteryLowError as err:
            logger.warning("Skipping device %s: %s", device_id, err)
            return None

        if not device.is_genuine_battery():
            logger.info("Skipping non-battery device: %s", device_id)
            return None

        def properties_changed(changed: dict):
            self.run_coro(self.property_changed(device_id, changed))

        subscription = await self.power_service.watch_device(device_id, properties_changed)
        if not subscription:
            logger.warning("Could not subscribe to changes of %s, skipping it", device_id)
            return None

        return DeviceSession(device, subscription)

    async def remove_device(self, device_id: str):
        """Stop tracking a device. Unknown devices are ignored."""
        self.pending.discard(device_id)
        session = self.sessions.pop(device_id, None)
        if not session:
            return

        if session.subscription:
            await session.subscription.remove()
        logger.info("Stopped monitoring: %s", device_id)

    async def property_changed(self, device_id: str, changed: dict):
        """
        React to a property change of a tracked device. Only Percentage and State matter here.
        """
        session = self.sessions.get(device_id)
        if not session or EVALUATED_PROPERTIES.isdisjoint(changed):
            return

        await self._refresh(session, changed)

    async def evaluate(self, device_id: str):
        """Run an evaluation pass over a tracked device"""
        session = self.sessions.get(device_id)
        if session:
            await self._refresh(session)

    async def _refresh(self, session: DeviceSession, changed: dict = None):
        # Thresholds are read again on every pass, so edits apply without a restart
        config = ThresholdConfig.from_settings(self.settings)
        try:
            await session.refresh(config, self.dispatcher, changed)
        except BatteryLowError as err:
            logger.warning(
                "Failed to refresh %s, will retry on the next change: %s",
                session.device.id,
                err,
            )

    async def destroy(self):
        """
        Unsubscribe from every device and forget them. Anything still in flight, such as the
        initial enumeration, is discarded once it completes.
        """
        self.alive = False
        self.pending.clear()

        sessions = list(self.sessions.values())
        self.sessions.clear()
        for session in sessions:
            if session.subscription:
                await session.subscription.remove()
