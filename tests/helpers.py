import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from services.ai_answer_service import AnswerProvider
from services.doubt_store import MemoryDoubtStore
from services.notification_service import TransitionEvent

START = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock so dwell timers can be crossed instantly"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def set_minutes_after_start(self, minutes: float):
        self.now = START + timedelta(minutes=minutes)


class FakeAnswerProvider(AnswerProvider):

    def __init__(self, answer: str = "", error: Optional[Exception] = None):
        self._answer = answer
        self._error = error
        self.questions: List[str] = []

    async def answer(self, question: str) -> str:
        self.questions.append(question)
        if self._error:
            raise self._error
        return self._answer


class RecordingListener:
    """Transition listener that remembers every event it receives"""

    def __init__(self):
        self.events: List[TransitionEvent] = []

    async def __call__(self, event: TransitionEvent):
        self.events.append(event)


class YieldingStore(MemoryDoubtStore):
    """Hands control back to the event loop between reading and returning.

    Concurrent sweeps then really do read the same snapshot before either of
    them writes, which is what the conditional update has to cope with.
    """

    async def list_non_resolved(self, course_id=None):
        doubts = await super().list_non_resolved(course_id)
        await asyncio.sleep(0.01)
        return doubts
