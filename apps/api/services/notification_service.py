import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional
from pydantic import BaseModel
from models.doubt import DoubtStatus

logger = logging.getLogger(__name__)


class TransitionEvent(BaseModel):
    """A committed status change, published after the store accepted it"""
    doubt_id: str
    course_id: str
    from_status: DoubtStatus
    to_status: DoubtStatus
    cause: str
    timestamp: datetime

    @property
    def audience(self) -> str:
        return self.to_status.audience


TransitionListener = Callable[[TransitionEvent], Awaitable[None]]


async def log_transition(event: TransitionEvent):
    logger.info(
        f"Doubt {event.doubt_id} ({event.course_id}) {event.from_status.value} -> "
        f"{event.to_status.value}: {event.cause}")


class NotificationDispatcher:
    """Fans committed transitions out to listeners; delivery is up to them"""

    def __init__(self, listeners: Optional[List[TransitionListener]] = None):
        self._listeners: List[TransitionListener] = list(listeners or [])

    def subscribe(self, listener: TransitionListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: TransitionListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def publish(self, event: TransitionEvent):
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                # Listener failures never propagate to the committed transition
                logger.error(f"Notification listener {listener!r} failed for doubt {event.doubt_id}: {e}")


# Global instance
notification_dispatcher = NotificationDispatcher([log_transition])
