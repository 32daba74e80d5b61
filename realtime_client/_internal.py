import asyncio
import functools
import inspect
import logging
import random
from types import MappingProxyType
from typing import Any, Callable, Mapping

log = logging.getLogger(__name__)

# base58; no 0/O/I/l
ID_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def event_processor(event_type: str, registry: dict[str, Callable]) -> Callable[[Callable], Callable]:
    """Registers the wrapped function as the processor of *event_type* in *registry*.

    >>> processors = {}
    >>> @event_processor("response.created", processors)
    ... def process(state, event):
    ...     ...
    >>> processors["response.created"] is process
    True
    """

    def wrapper(f: Callable):
        if event_type in registry:
            raise ValueError(f"Processor for event type {event_type!r} is already defined!")
        f.__realtime_event_type__ = event_type
        registry[event_type] = f
        return f

    return wrapper


def freeze(registry: dict[str, Callable]) -> Mapping[str, Callable]:
    """Return a read-only view of a processor registry."""
    return MappingProxyType(dict(registry))


def server_event_handler(*event_types: str) -> Callable[[Callable], Callable]:
    """Annotates the wrapped method with the types of server event it handles.

    >>> class Foo:
    ...     @server_event_handler("session.created")
    ...     def handle(self, event):
    ...         ...
    >>> Foo.handle.__realtime_event_handler__
    ('session.created',)
    """

    def wrapper(f: Callable):
        f.__realtime_event_handler__ = event_types
        return f

    return wrapper


def get_server_event_handlers(inst) -> dict[str, Callable]:
    """Get a mapping of all type -> handler on this instance."""
    handlers = {}
    for name, member in inspect.getmembers(type(inst), predicate=inspect.isfunction):
        for event_type in getattr(member, "__realtime_event_handler__", ()):
            if event_type in handlers:
                raise ValueError(f"Handler for event type {event_type!r} is already defined!")
            handlers[event_type] = getattr(inst, name)
    return handlers


def ensure_async(f, run_sync_in_executor=False):
    """
    Ensure the callable is an async function (or wrapped in one).

    If *run_sync_in_executor* is True and *f* is sync, the returned async function will be run in an executor.
    Otherwise, it will be run on the main event loop (be sure it's not blocking!).
    """
    if f is None:

        async def f(*_, **__):
            pass

    elif not inspect.iscoroutinefunction(f):
        original = f

        if run_sync_in_executor:

            @functools.wraps(original)
            async def f(*args, **kwargs):
                inner = functools.partial(original, *args, **kwargs)
                return await asyncio.get_running_loop().run_in_executor(None, inner)

        else:

            @functools.wraps(original)
            async def f(*args, **kwargs):
                result = original(*args, **kwargs)
                if inspect.isawaitable(result):
                    return await result
                return result

    return f


_global_bg_tasks = set()


def create_task(coro, name: str | None = None) -> asyncio.Task:
    """Helper with bookkeeping to prevent errant GCs. Exceptions raised by the task are logged."""
    task = asyncio.ensure_future(coro, loop=asyncio.get_running_loop())
    if name is not None:
        task.set_name(name)
    _global_bg_tasks.add(task)
    task.add_done_callback(_global_bg_tasks.discard)
    task.add_done_callback(_log_task_exception)
    return task


def _log_task_exception(task: asyncio.Task):
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.exception(f"Exception in background task {task.get_name()!r}:", exc_info=exc)


def generate_id(prefix: str = "", length: int = 21) -> str:
    """
    Create a random ID for events and items.
    The ID is *prefix* followed by random base58 characters, *length* characters long in total.
    """
    if length < len(prefix):
        raise ValueError(f"ID length {length} is shorter than its prefix {prefix!r}")
    random_part = "".join(random.choice(ID_ALPHABET) for _ in range(length - len(prefix)))
    return f"{prefix}{random_part}"


def describe(value: Any) -> str:
    """Short, log-safe description of an event payload."""
    text = repr(value)
    if len(text) > 200:
        return f"{text[:200]}... ({len(text)} chars)"
    return text
