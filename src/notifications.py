from abc import ABC, abstractmethod
from typing import Any, Dict
import logging

logger = logging.getLogger(__name__)

class Notifier(ABC):
    """Outbound passenger notifications (SMS / e-mail gateway)"""

    @abstractmethod
    def send_booking_confirmation(self, phone: str, details: Dict[str, Any]) -> None:
        pass

class LoggingNotifier(Notifier):
    """Default notifier: records the message instead of delivering it"""

    def send_booking_confirmation(self, phone: str, details: Dict[str, Any]) -> None:
        logger.info(
            "Booking confirmation for %s: booking %s, seat %s, departs %s %s",
            phone,
            details.get("booking_id"),
            details.get("seat_number"),
            details.get("departure_date"),
            details.get("departure_time")
        )
