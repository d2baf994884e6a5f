# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import logging
from .policy import Severity
from .modules.notifications import (
    Notification,
    NotificationSource,
    NotificationTray,
    Urgency,
)

logger = logging.getLogger(__name__)

SOURCE_TITLE = "Battery Low Notifier"
SOURCE_ICON = "battery-caution-symbolic"


class NotificationDispatcher:
    """
    Turns a severity level into a user notification. All batteries share the same notification
    source, which is created on first use and recreated if the tray destroys it.
    """

    def __init__(self, tray: NotificationTray, settings):
        self.tray = tray
        self.settings = settings
        self.source = None

    def get_or_create_source(self) -> NotificationSource:
        """
        Returns the notification source, creating and registering it if there's none alive
        """
        if not self.source:
            source = NotificationSource(title=SOURCE_TITLE, icon_name=SOURCE_ICON)
            source.connect_destroy(self._source_destroyed)
            self.tray.add(source)
            self.source = source
        return self.source

    def _source_destroyed(self, source: NotificationSource):
        if source is self.source:
            self.source = None

    def build(self, level: Severity, percentage: int, device_label: str) -> Notification:
        """
        Build the notification for the given level. When sticky notifications are enabled, the
        urgency is always critical so that the banner stays until dismissed.
        """
        if level == Severity.CRITICAL:
            title = f"Critical Battery — {percentage}%"
            body = f"{device_label} is critically low. Plug in your charger immediately."
            icon_name = "battery-empty-symbolic"
            urgency = Urgency.CRITICAL
        else:
            title = f"Low Battery — {percentage}%"
            body = f"{device_label} is low. Consider plugging in your charger soon."
            icon_name = "battery-caution-symbolic"
            urgency = Urgency.HIGH

        if self.settings.get_boolean("sticky-notifications"):
            urgency = Urgency.CRITICAL

        return Notification(
            source=self.get_or_create_source(),
            title=title,
            body=body,
            icon_name=icon_name,
            urgency=urgency,
            is_transient=False,
            resident=True,
        )

    async def notify(self, level: Severity, percentage: int, device_label: str):
        """
        Send the notification. Any delivery failure is raised to the caller.
        """
        notification = self.build(level, percentage, device_label)
        await notification.source.add_notification(notification)

    def destroy(self):
        """Tear down the shared source"""
        if self.source:
            self.source.destroy()
            self.source = None
