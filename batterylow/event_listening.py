# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import asyncio
import logging
import signal
import gc
from typing import Coroutine
from .errors import BatteryLowFatalError

logger = logging.getLogger(__name__)


class EventListener:
    """
    This is the base class for every class that is supposed to listen for a specific kind of
    systematic action and then reacts to it.

    For instance, the BatteryMonitor listens for UPower devices being added, removed or changing
    their charge, and reacts by notifying the user when the battery is running low.

    Listeners are started by the EventWatcher, in the order they were given, and stopped in the
    reverse order when the application is shutting down.
    """

    def __init__(self, event_watcher: "EventWatcher"):
        self.event_watcher = event_watcher

    def name(self) -> str:
        """
        Full name of this class to help identifying it on logs
        """
        return ".".join([self.__class__.__module__, self.__class__.__name__])

    def run_coro(self, coro: Coroutine) -> asyncio.Task:
        """
        Adds a coroutine to the main event loop. It has a similar behavior than what you would
        expect from `asyncio.run()` - but it instead uses the same event loop the application is on.
        """
        return self.event_watcher.run_coro(coro)

    async def start(self):
        """
        Executes the primary action for this EventListener. It is executed right after the loop
        starts. Usually, it is meant to start some sort of system listener and react to it.
        """

    async def stop(self):
        """
        Undo everything `start()` did. It must not raise, even if `start()` failed midway.
        """


class EventWatcher:
    """
    This is the main application object, it is responsible for starting the EventListeners and
    running an infinite event loop so that async functions can be executed on, until a signal
    asks it to stop.
    """

    def __init__(self):
        self.listeners = []
        self.loop = None
        self.tasks = set()
        self.stopping = False
        self.exit_code = 0

    def add_listener(self, klass: type, **attributes) -> EventListener:
        """
        Instantiate an EventListener bound to this watcher, setting the given attributes on it
        """
        listener = klass(self)
        for attribute, value in attributes.items():
            setattr(listener, attribute, value)

        self.listeners.append(listener)
        return listener

    def stop(self):
        """
        Gracefully stops the event loop, letting every listener tear down first
        """
        if self.stopping:
            return
        self.stopping = True
        self.loop.create_task(self.shutdown())

    async def shutdown(self):
        """
        Stop all listeners in reverse order, cancel whatever is still running and stop the loop
        """
        for listener in reversed(self.listeners):
            try:
                await listener.stop()
            except Exception:  # pylint: disable=broad-except
                logger.exception("Failure while stopping listener %s", listener.name())
            else:
                logger.info("Listener %s stopped", listener.name())

        for task in self.tasks:
            task.cancel()

        self.loop.stop()

    # pylint: disable-next=unused-argument
    def exception_handler(self, loop: asyncio.AbstractEventLoop, context: dict):
        """
        Default exception handler for every EventListener event loop.
        """
        if "exception" not in context:
            logger.warning(context.get("message"))
            return

        exception = context["exception"]
        logger.error(
            "Unhandled error: %s", context.get("message"), exc_info=exception
        )

        if isinstance(exception, BatteryLowFatalError):
            self.exit_code = 1
            self.stop()

    def run_coro(self, coro: Coroutine) -> asyncio.Task:
        """
        As recommended by Python docs, add the coroutine to a set before adding it to the loop. This
        creates a strong reference and prevents it being garbage-collected before it is done.

        See: https://docs.python.org/3/library/asyncio-task.html#asyncio.create_task
        See: https://stackoverflow.com/a/62520369
        See: https://bugs.python.org/issue21163
        """
        task = self.loop.create_task(coro)

        # Add it to the set, creating a strong reference
        self.tasks.add(task)
        # But then ensure we clear its reference after it's finished
        task.add_done_callback(self.tasks.discard)

        return task

    async def start_listener(self, listener: EventListener):
        """
        Encapsulate the initialization of the listener so a failing one is logged and left inactive
        instead of bringing the whole application down.
        """
        try:
            await listener.start()
        except BatteryLowFatalError as err:
            logger.error("Listener %s can't run: %s", listener.name(), err)
            self.exit_code = 1
            self.stop()
        except Exception:  # pylint: disable=broad-except
            logger.exception(
                "Failure while initializing listener %s, it will stay inactive",
                listener.name(),
            )
        else:
            logger.info("Listener %s started", listener.name())

    async def start_listeners(self):
        """
        Start the listeners one after the other, in the order they were added
        """
        for listener in self.listeners:
            if self.stopping:
                return
            await self.start_listener(listener)

    def run(self) -> int:
        """
        Adds all event listeners to the event loop and start it. Returns the exit code.
        """
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self.loop.set_exception_handler(self.exception_handler)

        if len(self.listeners) == 0:
            logger.warning("No event listeners enabled. Exiting...")
            return self.exit_code

        # Add signal handlers
        for sig in [signal.SIGINT, signal.SIGTERM]:
            self.loop.add_signal_handler(sig, self.stop)

        self.run_coro(self.start_listeners())

        # Run GC just to cleanup objects before starting
        gc.collect()

        # Then make sure we run until we hit `stop()`
        try:
            self.loop.run_forever()
        finally:
            self.loop.close()

        return self.exit_code
