"""Event system for the cepform engine.

This module provides the event record and the event emitter used for audit
logging and for notifying the rendering layer. Field updates, lookup
lifecycle changes, validation passes and submit outcomes each emit a typed
FormEvent. User-facing notifications (toasts) are FormEvents of type
``notification`` whose payload carries ``level`` and ``message``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import json
import logging
import uuid

from .types import EventType, NotificationLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormEvent:
    """A single event in a form editing session.

    Attributes:
        event_id: Unique event identifier (e.g., "evt_01H8...")
        type: Event type from EventType enum
        form_id: ID of the editing session this event relates to
        ts: UTC timestamp when the event occurred
        payload: Optional event-specific data (changed field, request id, messages)

    Examples:
        >>> event = FormEvent(
        ...     event_id="evt_001",
        ...     type=EventType.FIELD_UPDATED,
        ...     form_id="form_001",
        ...     ts=datetime.now(timezone.utc),
        ...     payload={"field": "name"},
        ... )
        >>> event.type
        <EventType.FIELD_UPDATED: 'field.updated'>
    """
    event_id: str
    type: EventType
    form_id: str
    ts: datetime
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        # Accept the string form of the event type
        if isinstance(self.type, str) and not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType(self.type))

    @classmethod
    def create(
        cls,
        type: EventType,
        form_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> "FormEvent":
        """Build an event with a fresh id and the current UTC time."""
        return cls(
            event_id=f"evt_{uuid.uuid4().hex[:16]}",
            type=type,
            form_id=form_id,
            ts=datetime.now(timezone.utc),
            payload=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization.

        Returns:
            Dictionary with all event fields. Timestamp is an ISO 8601 string.
        """
        result: Dict[str, Any] = {
            "eventId": self.event_id,
            "type": self.type.value,
            "formId": self.form_id,
            "ts": self.ts.isoformat(),
        }
        if self.payload is not None:
            result["payload"] = self.payload
        return result

    def to_jsonl(self) -> str:
        """Single-line JSON, suitable for appending to a JSONL audit log."""
        return json.dumps(self.to_dict(), separators=(',', ':'), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormEvent":
        """Create FormEvent from dictionary (camelCase keys)."""
        ts = datetime.fromisoformat(data["ts"].replace('Z', '+00:00'))
        return cls(
            event_id=data["eventId"],
            type=EventType(data["type"]),
            form_id=data["formId"],
            ts=ts,
            payload=data.get("payload"),
        )


EventListener = Callable[[FormEvent], None]
"""Type alias for event listener callbacks.

Listeners are called synchronously when events are emitted.
"""


class EventEmitter:
    """Observer registry that dispatches FormEvents to listeners.

    Features:
    - Type-specific subscriptions
    - Wildcard subscriptions (listen to all events)
    - Synchronous dispatch in registration order
    - Error isolation: a failing listener is logged and the others still run

    Examples:
        >>> emitter = EventEmitter()
        >>> seen = []
        >>> emitter.on(EventType.NOTIFICATION, seen.append)
        >>> emitter.notify("form_1", NotificationLevel.SUCCESS, "Salvo com sucesso!")
        >>> seen[0].payload
        {'level': 'success', 'message': 'Salvo com sucesso!'}
    """

    def __init__(self):
        self._listeners: Dict[EventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []

    def on(self, event_type: EventType, listener: EventListener) -> None:
        """Subscribe to a specific event type."""
        self._listeners.setdefault(event_type, []).append(listener)

    def on_any(self, listener: EventListener) -> None:
        """Subscribe to all event types."""
        self._any_listeners.append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        """Unsubscribe from a specific event type. Unknown listeners are ignored."""
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: EventListener) -> None:
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, event: FormEvent) -> None:
        """Dispatch an event: type-specific listeners first, then wildcard ones."""
        listeners = list(self._listeners.get(event.type, [])) + list(self._any_listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener %r failed on %s", listener, event.type.value)

    def notify(self, form_id: str, level: NotificationLevel, message: str) -> None:
        """Emit a user-facing notification."""
        self.emit(
            FormEvent.create(
                EventType.NOTIFICATION,
                form_id,
                {"level": level.value, "message": message},
            )
        )

    def clear(self) -> None:
        """Remove all event listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        """Count registered listeners, for one type or (with None) in total."""
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return len(self._any_listeners) + sum(len(l) for l in self._listeners.values())


__all__ = [
    "FormEvent",
    "EventType",
    "EventListener",
    "EventEmitter",
]
