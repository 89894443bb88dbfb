"""
Doubt lifecycle service.

Every status change, whether requested by a student, triggered by a professor
reply or decided by the escalation sweep, goes through `apply_transition`,
which commits it as a conditional update guarded on the status the caller
observed.
"""
import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from config import settings
from models.doubt import (
    AI_REPLIER,
    ESCALATION_LADDER,
    Author,
    Doubt,
    DoubtStatus,
    Replier,
    ReplierRole,
    Reply,
    TransitionPatch,
    TransitionRecord,
    utc_now,
)
from services.ai_answer_service import AnswerProvider
from services.doubt_store import DoubtStore, UpdateOutcome, call_store
from services.escalation_policy import (
    CAUSE_PROFESSOR_REPLY,
    CAUSE_STUDENT_ESCALATED,
    CAUSE_STUDENT_SOLVED,
    DwellTimes,
    as_utc,
    is_legal_transition,
    parse_status,
)
from services.notification_service import NotificationDispatcher, TransitionEvent
from utils.error_handler import (
    DoubtNotFoundError,
    InvalidTransitionError,
    NotDoubtOwnerError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

INSIGHT_PREVIEW_WORDS = 7
INSIGHT_PREVIEW_CHARS = 50


def topic_preview(content: str) -> str:
    """Short label for an untagged doubt: its first seven words"""
    preview = " ".join(content.split()[:INSIGHT_PREVIEW_WORDS])
    if len(content) > INSIGHT_PREVIEW_CHARS:
        preview += "..."
    return preview


class DoubtService:
    """Ask, answer, reply, resolve and escalate-on-demand for doubts"""

    def __init__(
        self,
        store: DoubtStore,
        answer_provider: AnswerProvider,
        dispatcher: Optional[NotificationDispatcher] = None,
        dwell: Optional[DwellTimes] = None,
        clock: Clock = utc_now,
        store_timeout: Optional[float] = None,
        answer_timeout: Optional[float] = None,
    ):
        self.store = store
        self.answer_provider = answer_provider
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.dwell = dwell or settings.get_dwell_times()
        self.clock = clock
        self.store_timeout = store_timeout or settings.store_timeout_seconds
        self.answer_timeout = answer_timeout or settings.ollama_timeout

    async def _call(self, awaitable: Awaitable, operation: str):
        return await call_store(awaitable, self.store_timeout, operation)

    # ============ Transition primitive ============

    async def apply_transition(
        self,
        doubt: Doubt,
        target: DoubtStatus,
        cause: str,
        reply: Optional[Reply] = None,
    ) -> UpdateOutcome:
        """
        Commit `doubt.status -> target` only if the store still holds `doubt.status`.

        Returns CONFLICT, without raising, when another writer moved the doubt
        first. Publishes a TransitionEvent for every applied transition.
        """
        current = parse_status(doubt.status)
        if current is None or not is_legal_transition(current, target):
            raise InvalidTransitionError(doubt.id, doubt.status, f"move to {target.value}")

        record = TransitionRecord(status=target, timestamp=self.clock(), note=cause)
        patch = TransitionPatch(status=target, record=record, reply=reply)
        outcome = await self._call(self.store.update(doubt.id, current, patch), "update")

        if outcome is UpdateOutcome.APPLIED:
            await self.dispatcher.publish(TransitionEvent(
                doubt_id=doubt.id,
                course_id=doubt.course_id,
                from_status=current,
                to_status=target,
                cause=cause,
                timestamp=record.timestamp,
            ))
        elif outcome is UpdateOutcome.CONFLICT:
            logger.debug(f"Doubt {doubt.id} already moved past {current.value}; skipping {target.value}")
        return outcome

    # ============ Lifecycle operations ============

    async def _safe_answer(self, question: str) -> str:
        try:
            answer = await asyncio.wait_for(
                self.answer_provider.answer(question), timeout=self.answer_timeout)
            return (answer or "").strip()
        except asyncio.TimeoutError:
            logger.warning("AI answer provider timed out; doubt will be created without an answer")
        except Exception as e:
            logger.warning(f"AI answer provider failed: {e}")
        return ""

    async def ask(
        self,
        content: str,
        asked_by: Author,
        course_id: str = "general",
        tags: Optional[List[str]] = None,
    ) -> Doubt:
        """Create a doubt in the AI tier, answered by the AI provider when it can"""
        now = self.clock()
        ai_answer = await self._safe_answer(content)

        doubt = Doubt.new(
            content=content,
            asked_by=asked_by,
            course_id=course_id,
            tags=tags,
            ai_answer=ai_answer or None,
            now=now,
        )
        if ai_answer:
            doubt.replies.append(Reply(
                content=ai_answer,
                replied_by=AI_REPLIER,
                created_at=now,
                is_ai=True,
            ))

        doubt_id = await self._call(self.store.create(doubt), "create")
        logger.info(f"Doubt {doubt_id} asked in course {course_id} (AI answer: {'yes' if ai_answer else 'no'})")
        return doubt.model_copy(update={"id": doubt_id})

    async def fetch(self, doubt_id: str) -> Doubt:
        doubt = await self._call(self.store.get(doubt_id), "get")
        if doubt is None:
            raise DoubtNotFoundError(doubt_id)
        return doubt

    async def _student_action(
        self,
        doubt_id: str,
        user_id: str,
        target: DoubtStatus,
        cause: str,
        action: str,
        satisfied: Callable[[DoubtStatus], bool],
    ) -> Doubt:
        doubt = await self.fetch(doubt_id)
        if not doubt.is_owned_by(user_id):
            raise NotDoubtOwnerError(doubt_id, user_id)
        if doubt.status != DoubtStatus.AI:
            raise InvalidTransitionError(doubt_id, doubt.status, action)

        outcome = await self.apply_transition(doubt, target, cause)
        if outcome is UpdateOutcome.NOT_FOUND:
            raise DoubtNotFoundError(doubt_id)

        latest = await self.fetch(doubt_id)
        if outcome is UpdateOutcome.CONFLICT and not satisfied(latest.status):
            raise InvalidTransitionError(doubt_id, latest.status, action)
        return latest

    async def mark_solved(self, doubt_id: str, user_id: str) -> Doubt:
        """Owner accepts the AI answer"""
        return await self._student_action(
            doubt_id, user_id, DoubtStatus.RESOLVED, CAUSE_STUDENT_SOLVED, "mark solved",
            satisfied=lambda status: status == DoubtStatus.RESOLVED,
        )

    async def mark_still_confused(self, doubt_id: str, user_id: str) -> Doubt:
        """Owner rejects the AI answer and opens the doubt to the forum now"""
        return await self._student_action(
            doubt_id, user_id, DoubtStatus.OPEN, CAUSE_STUDENT_ESCALATED, "mark still confused",
            satisfied=lambda status: status != DoubtStatus.RESOLVED,
        )

    async def reply(self, doubt_id: str, content: str, replied_by: Replier) -> Doubt:
        """
        Append a reply. A professor reply on an unresolved doubt is accepted and
        resolves the doubt in the same conditional write; any other reply, or
        any reply to a resolved doubt, is appended without touching the status.
        """
        reply = Reply(content=content, replied_by=replied_by, created_at=self.clock())

        # Each conflict means the status moved forward, so the ladder bounds the retries
        for _ in range(len(ESCALATION_LADDER)):
            doubt = await self.fetch(doubt_id)
            status = parse_status(doubt.status)

            if replied_by.role == ReplierRole.PROFESSOR and status is not None and not status.is_terminal:
                accepted = reply.model_copy(update={"is_accepted": True})
                outcome = await self.apply_transition(
                    doubt, DoubtStatus.RESOLVED, CAUSE_PROFESSOR_REPLY, reply=accepted)
                if outcome is UpdateOutcome.CONFLICT:
                    continue
            else:
                outcome = await self._call(self.store.append_reply(doubt_id, reply), "append reply")

            if outcome is UpdateOutcome.NOT_FOUND:
                raise DoubtNotFoundError(doubt_id)
            return await self.fetch(doubt_id)

        raise StoreUnavailableError(f"Reply to doubt {doubt_id} kept conflicting with other writers", doubt_id)

    async def _increment(self, doubt_id: str, counter: str) -> Doubt:
        outcome = await self._call(self.store.increment(doubt_id, counter), f"increment {counter}")
        if outcome is UpdateOutcome.NOT_FOUND:
            raise DoubtNotFoundError(doubt_id)
        return await self.fetch(doubt_id)

    async def record_view(self, doubt_id: str) -> Doubt:
        return await self._increment(doubt_id, "views")

    async def vote(self, doubt_id: str) -> Doubt:
        return await self._increment(doubt_id, "votes")

    # ============ Listings ============

    async def list_doubts(
        self,
        course_id: Optional[str] = None,
        status: Optional[DoubtStatus] = None,
        limit: Optional[int] = None,
    ) -> List[Doubt]:
        return await self._call(self.store.list(course_id=course_id, status=status, limit=limit), "list")

    async def list_active(self, course_id: Optional[str] = None) -> List[Doubt]:
        """Non-resolved doubts, the sweep's working set"""
        return await self._call(self.store.list_non_resolved(course_id), "list non-resolved")

    async def professor_queue(self, course_id: str, include_lower_tiers: bool = False) -> List[Doubt]:
        """Doubts waiting on faculty, longest-waiting first"""
        statuses = {DoubtStatus.PROFESSOR_VISIBLE}
        if include_lower_tiers:
            statuses |= {DoubtStatus.OPEN, DoubtStatus.SENIOR_VISIBLE}

        doubts = [d for d in await self.list_active(course_id) if d.status in statuses]
        doubts.sort(key=lambda d: as_utc(d.last_status_change_at))
        return doubts

    async def confusion_insights(self, course_id: str, top: int = 10) -> List[Dict[str, object]]:
        """Most asked-about topics in a course, by tag or by question preview"""
        counts: Counter = Counter()
        for doubt in await self.list_doubts(course_id=course_id):
            if doubt.tags:
                counts.update(doubt.tags)
            elif doubt.content:
                counts[topic_preview(doubt.content)] += 1

        return [{"topic": topic, "count": count} for topic, count in counts.most_common(top)]
