"""
Lightweight Event System for Extensibility

Provides a simple event emitter pattern for post-commit hooks.
Handlers never break the emitter: their exceptions are logged and dropped,
so a failing listener cannot fail the write that announced the event.
"""
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

# Event registry: event_name -> list of handlers
_event_handlers: Dict[str, List[Callable]] = {}


def subscribe(event_name: str, handler: Callable):
    """
    Subscribe a handler function to an event.

    Subscribing the same handler twice is a no-op.

    Args:
        event_name: Name of the event (e.g., 'activity.completed')
        handler: Function to call when event fires
    """
    handlers = _event_handlers.setdefault(event_name, [])
    if handler in handlers:
        return handler

    handlers.append(handler)
    logger.debug(f"Subscribed handler to event: {event_name}")
    return handler


def unsubscribe(event_name: str, handler: Callable) -> None:
    handlers = _event_handlers.get(event_name, [])
    if handler in handlers:
        handlers.remove(handler)


def emit(event_name: str, **kwargs):
    """
    Emit an event, calling all subscribed handlers.

    Args:
        event_name: Name of the event
        **kwargs: Event data passed to handlers

    Example:
        emit('activity.completed', db=db, user_id=user_id, activity_id=activity.id)
    """
    if event_name not in _event_handlers:
        return

    for handler in list(_event_handlers[event_name]):
        try:
            handler(**kwargs)
        except Exception as e:
            logger.error(f"Error in event handler for {event_name}: {e}", exc_info=True)


# Common event names
EVENT_ACTIVITY_COMPLETED = 'activity.completed'
EVENT_ACTIVITY_UNCOMPLETED = 'activity.uncompleted'
