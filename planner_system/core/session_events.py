#!/usr/bin/env python3
"""
session_events.py - Event bus for the realtime collaboration session

Handlers subscribe by event name (a SessionEventType or any inbound message
type string) and receive a SessionEvent. Delivery is synchronous and in
registration order; a handler that raises is logged and skipped so the rest
still run.

Usage:
    bus = SessionEventBus()
    bus.on(SessionEventType.CONNECTED, lambda event: print(event.data))
    bus.emit("connected", {"userId": "u1", "projectId": "p1"})
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from planner_datashapes import utc_now
from planner_errors import ErrorCategory, ErrorHandler, ErrorSeverity, report_error

logger = logging.getLogger(__name__)


class SessionEventType(Enum):
    """Known event names. Inbound messages with other types pass through as strings."""
    # Connection lifecycle
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"

    # Presence
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    CURSOR_MOVED = "cursor_moved"
    TYPING_STATUS = "typing_status"

    # Content
    ITEM_UPDATED = "item_updated"
    COMMENT_ADDED = "comment_added"
    COMMENT_UPDATED = "comment_updated"
    COMMENT_DELETED = "comment_deleted"
    REACTION_ADDED = "reaction_added"
    THREAD_RESOLVED = "thread_resolved"


EventName = Union[SessionEventType, str]
EventHandler = Callable[["SessionEvent"], Any]


def event_key(name: EventName) -> str:
    return name.value if isinstance(name, SessionEventType) else str(name)


@dataclass
class SessionEvent:
    """One delivered event."""
    type: str
    data: Any
    sequence: int
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def known_type(self) -> Optional[SessionEventType]:
        try:
            return SessionEventType(self.type)
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "data": self.data,
        }


class SessionEventBus:
    """Name-keyed listener lists with synchronous delivery"""

    def __init__(self, error_handler: Optional[ErrorHandler] = None):
        self._sequence = 0
        self._listeners: Dict[str, List[EventHandler]] = {}
        self.error_handler = error_handler

    def on(self, name: EventName, handler: EventHandler) -> None:
        """Register handler; the same handler may be registered more than once."""
        self._listeners.setdefault(event_key(name), []).append(handler)

    def off(self, name: EventName, handler: EventHandler) -> bool:
        """Remove the first registration of handler. Returns False if it wasn't registered."""
        handlers = self._listeners.get(event_key(name))
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def listener_count(self, name: Optional[EventName] = None) -> int:
        if name is None:
            return sum(len(handlers) for handlers in self._listeners.values())
        return len(self._listeners.get(event_key(name), []))

    def emit(self, name: EventName, data: Any = None) -> SessionEvent:
        self._sequence += 1
        event = SessionEvent(type=event_key(name), data=data if data is not None else {}, sequence=self._sequence)

        # Snapshot so handlers can subscribe/unsubscribe while being notified
        for handler in list(self._listeners.get(event.type, [])):
            try:
                handler(event)
            except Exception as e:
                report_error(
                    self.error_handler, logger, e,
                    ErrorCategory.EVENT_HANDLER, ErrorSeverity.LOW_DEBUG,
                    context=f"handler for '{event.type}' raised",
                    operation="emit",
                )

        return event
