# services/events.py
from typing import Callable

from pyee.base import EventEmitter


def subscribe(emitter: EventEmitter, event: str, handler: Callable) -> Callable[[], None]:
    """
    Register `handler` for `event` on a pyee emitter and return its disposer.

    The disposer may be called any number of times, including after the emitter
    dropped its listeners on its own (aiortc tracks do that once they end).

    Args:
        emitter (EventEmitter): Emitter to subscribe to (aiortc tracks, connections, signaling).
        event (str): Event name.
        handler (Callable): Listener to register.

    Returns:
        Callable[[], None]: Function that removes the listener.
    """
    emitter.on(event, handler)

    def dispose() -> None:
        if handler in emitter.listeners(event):
            emitter.remove_listener(event, handler)

    return dispose
