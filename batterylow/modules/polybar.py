# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import asyncio
import os
import glob
import struct
import logging
from contextlib import suppress
from pathlib import Path
from ..errors import BatteryLowError
from ..session import round_percentage

logger = logging.getLogger(__name__)


class Polybar:
    """
    Renders the battery indicator into a Polybar module, using the IPC functionality available on
    Polybar >= 3.5.

    On the Polybar config file, the module must be a `custom/ipc` one, reading the file we keep up
    to date so that the value survives a Polybar restart:

    ```ini
    [module/battery]
    type = custom/ipc
    hook-0 = cat $XDG_RUNTIME_DIR/polybar/battery 2> /dev/null
    initial = 1
    ```

    The content is the icon name followed by the percentage, e.g. `battery-level-30-symbolic 34%`.
    Use `icons` to map icon names to glyphs of your font instead.
    """

    def __init__(self, module: str, icons: dict = None):
        self.module = module
        self.icons = icons or {}
        self.runtime_dir = Path(os.getenv("XDG_RUNTIME_DIR", "/tmp")) / "polybar"

    def format(self, icon_name: str, percentage: float | None) -> str:
        """Text shown on the bar for a given icon"""
        content = self.icons.get(icon_name, icon_name)
        if percentage is None:
            return content
        return f"{content} {round_percentage(percentage)}%"

    async def render(self, indicator):
        """Show the current indicator icon on Polybar"""
        device = indicator.device
        percentage = device.percentage if device and device.is_present else None
        await self.set_module_content(self.format(indicator.icon_name, percentage))

    async def set_module_content(self, content: str):
        await self._write_module_content(content)
        await self._ipc_action(f"#{self.module}.send.{content}")

    async def _write_module_content(self, content: str):
        """
        Set the value of the content statically so that when polybar restarts it can pick up the
        value previously set
        """
        def sync_io():
            self.runtime_dir.mkdir(mode=0o700, exist_ok=True)
            self.runtime_dir.joinpath(self.module).write_text(content, encoding="utf-8")

        await asyncio.get_running_loop().run_in_executor(None, sync_io)

    async def _ipc_action(self, cmd: str):
        """
        Replicates the behavior of polybar-msg action
        """
        payload = bytes(cmd, "utf-8")
        ipc_version = 0
        msg_type = 2
        data = (
            b"polyipc" # magic
            + struct.pack("=BIB", ipc_version, len(payload), msg_type) # version, length, type
            + payload
        )

        for name in glob.glob(f"{self.runtime_dir}/*.sock"):
            try:
                with suppress(ConnectionError):
                    reader, writer = await asyncio.open_unix_connection(name)

                    writer.write(data)
                    await writer.drain()
                    logger.debug("polybar action sent to socket %s: %s", name, payload)

                    await reader.read()
                    writer.close()
                    await writer.wait_closed()
            except Exception as err:
                raise BatteryLowError(f"Failed to connect to unix socket {name}") from err
