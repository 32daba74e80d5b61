import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from ._internal import create_task

log = logging.getLogger(__name__)

EventHandlerCallback = Callable[[Any], None | Awaitable[None]]


class RealtimeEventHandler:
    """
    Basic publish/subscribe event handling, inherited by :class:`.RealtimeAPI` and :class:`.RealtimeClient`.

    Listeners registered with :meth:`on` run on every dispatch of their event; listeners registered with
    :meth:`on_next` run on the next dispatch only. Listeners may be sync or async functions; async listeners are
    scheduled on the running event loop and are not awaited by :meth:`dispatch`.
    """

    def __init__(self):
        self.event_handlers: dict[str, list[EventHandlerCallback]] = {}
        self.next_event_handlers: dict[str, list[EventHandlerCallback]] = {}

    def clear_event_handlers(self) -> bool:
        """Remove every persistent and one-shot listener."""
        self.event_handlers = {}
        self.next_event_handlers = {}
        return True

    def on(self, event_name: str, callback: EventHandlerCallback) -> EventHandlerCallback:
        """
        Listen to every dispatch of *event_name*. Listeners run in the order they were added.

        Returns the callback so this can be used as a decorator.
        """
        _check_event_name(event_name)
        self.event_handlers.setdefault(event_name, []).append(callback)
        log.debug(f"Handler registered for event: {event_name}")
        return callback

    def on_next(self, event_name: str, callback: EventHandlerCallback) -> EventHandlerCallback:
        """Listen to the next dispatch of *event_name* only."""
        _check_event_name(event_name)
        self.next_event_handlers.setdefault(event_name, []).append(callback)
        log.debug(f"Next-event handler registered for event: {event_name}")
        return callback

    def off(self, event_name: str, callback: EventHandlerCallback | None = None) -> bool:
        """
        Stop listening to *event_name*. If *callback* is not given, remove all the listeners for the event.

        Removing a callback that is not registered does nothing.
        """
        _remove_handler(self.event_handlers, event_name, callback)
        return True

    def off_next(self, event_name: str, callback: EventHandlerCallback | None = None) -> bool:
        """Like :meth:`off`, for listeners added with :meth:`on_next`."""
        _remove_handler(self.next_event_handlers, event_name, callback)
        return True

    async def wait_for_next(self, event_name: str, timeout: float | None = None) -> Any | None:
        """
        Wait for the next dispatch of *event_name* and return its payload.

        :param timeout: How long to wait, in seconds. If the event is not dispatched in time, return None.
        """
        future = asyncio.get_running_loop().create_future()

        def handler(event):
            if not future.done():
                future.set_result(event)

        self.on_next(event_name, handler)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            log.debug(f"Timed out after {timeout}s waiting for event: {event_name}")
            return None
        finally:
            self.off_next(event_name, handler)

    def dispatch(self, event_name: str, event: Any) -> bool:
        """
        Call all the listeners of *event_name* with *event*: persistent listeners first, then next-event listeners,
        each in the order they were added. Both lists are taken, and the next-event listeners cleared, before any
        listener runs, so listeners added during a dispatch wait for the next one.

        An exception in one listener is logged and does not stop the others.
        """
        handlers = list(self.event_handlers.get(event_name, []))
        next_handlers = self.next_event_handlers.pop(event_name, [])
        for handler in handlers:
            _call_handler(event_name, handler, event)
        for handler in next_handlers:
            _call_handler(event_name, handler, event)
        return True


def _check_event_name(event_name: str):
    if not isinstance(event_name, str) or not event_name:
        raise ValueError(f"Event name must be a non-empty string, got {event_name!r}")


def _remove_handler(registry: dict[str, list], event_name: str, callback):
    if callback is None:
        registry.pop(event_name, None)
        return
    handlers = registry.get(event_name, [])
    try:
        handlers.remove(callback)
    except ValueError:
        log.debug(f"Could not turn off listener {callback!r} for {event_name!r}: not found as a listener")
        return
    if not handlers:
        del registry[event_name]


def _call_handler(event_name: str, handler: EventHandlerCallback, event):
    # noinspection PyBroadException
    try:
        result = handler(event)
    except Exception:
        log.exception(f"Error in handler for event {event_name!r}:")
        return
    if inspect.isawaitable(result):
        try:
            create_task(result, name=f"handler:{event_name}")
        except RuntimeError:
            # no running event loop to schedule the listener on
            if inspect.iscoroutine(result):
                result.close()
            log.exception(f"Could not schedule async handler for event {event_name!r}:")
