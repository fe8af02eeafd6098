from typing import Any, Callable, Dict, List
from datetime import datetime
from fastapi import Request
import logging
import threading

logger = logging.getLogger(__name__)

# Booking lifecycle topics
BOOKING_CREATED = "booking.created"
BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_CHECKED_IN = "booking.checked_in"

Handler = Callable[[str, Dict[str, Any]], None]

class EventChannel:
    """In-process publish/subscribe channel passed explicitly to the services that publish on it"""

    def __init__(self):
        self._subscriptions: Dict[str, List[Handler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Register a handler for a topic; "*" receives every topic"""
        with self._lock:
            self._subscriptions.setdefault(topic, []).append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._subscriptions.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        """Deliver to subscribers; handler failures are logged and never reach the publisher"""
        with self._lock:
            handlers = list(self._subscriptions.get(topic, [])) + list(self._subscriptions.get("*", []))

        message = dict(payload, topic=topic, timestamp=datetime.now().isoformat())
        delivered = 0
        for handler in handlers:
            try:
                handler(topic, message)
                delivered += 1
            except Exception:
                logger.exception("Event handler %r failed for topic %s", handler, topic)
        return delivered

def get_event_channel(request: Request) -> EventChannel:
    """Dependency: the channel owned by the running application"""
    return request.app.state.events
