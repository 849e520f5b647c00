"""
Event bus for session notifications.

The session controller publishes phase changes, streaming progress and
turn bookkeeping here; front ends subscribe to render. Each session owns
its bus, so there is no module-level instance.

Usage:
    bus = EventBus()
    bus.on(EventType.STREAM_PROGRESS, lambda event: print(event.data["display"]))
    session = GameSession(content, store, bus=bus)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable


logger = logging.getLogger(__name__)


class EventType(Enum):
    """Session events that can be published."""

    # Phase machine
    PHASE_CHANGED = "phase.changed"
    ACTION_REJECTED = "action.rejected"

    # Streaming
    STREAM_STARTED = "stream.started"
    STREAM_PROGRESS = "stream.progress"
    STREAM_COMPLETED = "stream.completed"

    # Turns
    QUESTION_READY = "question.ready"
    TURN_RECORDED = "turn.recorded"
    LEVELS_CHANGED = "levels.changed"
    BANKRUPTCY = "levels.bankruptcy"
    FALLBACK_USED = "content.fallback"
    IMAGE_ATTACHED = "turn.image_attached"

    # Persistence
    SESSION_SAVED = "session.saved"
    SESSION_CLEARED = "session.cleared"


@dataclass
class GameEvent:
    """
    Event payload for the event bus.

    Attributes:
        type: The event type (from EventType enum)
        data: Event-specific payload as dict
        epoch: Request epoch current when the event was emitted
        timestamp: When the event was emitted
    """

    type: EventType
    data: dict = field(default_factory=dict)
    epoch: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"[{self.type.value}] {self.data}"


EventHandler = Callable[[GameEvent], None]


class EventBus:
    """
    Synchronous event bus.

    Listeners are called immediately on emit(). A listener that raises is
    logged and skipped so the remaining listeners still run.
    """

    def __init__(self, history_limit: int = 100):
        self._listeners: dict[EventType, list[EventHandler]] = {}
        self._history: list[GameEvent] = []
        self._history_limit = history_limit

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe to an event type."""
        handlers = self._listeners.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        """Unsubscribe from an event type."""
        if event_type in self._listeners and handler in self._listeners[event_type]:
            self._listeners[event_type].remove(handler)

    def emit(self, event_type: EventType, epoch: int = 0, **data) -> GameEvent:
        """
        Emit an event to all subscribers.

        Returns:
            The emitted GameEvent (for chaining/testing)
        """
        event = GameEvent(type=event_type, data=data, epoch=epoch)

        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]

        for handler in list(self._listeners.get(event_type, [])):
            try:
                handler(event)
            except Exception:
                logger.exception("Error in handler for %s", event_type.value)

        return event

    def clear(self) -> None:
        """Clear all listeners."""
        self._listeners.clear()

    def get_history(self, event_type: EventType | None = None) -> list[GameEvent]:
        """Recent events, optionally filtered by type."""
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]

    def listener_count(self, event_type: EventType) -> int:
        return len(self._listeners.get(event_type, []))
