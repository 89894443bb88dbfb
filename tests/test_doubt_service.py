# tests/test_doubt_service.py

import asyncio

import pytest

from tests.helpers import FakeAnswerProvider
from models.doubt import DoubtStatus, Replier, ReplierRole
from services.doubt_service import DoubtService, topic_preview
from services.escalation_policy import CAUSE_STUDENT_ESCALATED, CAUSE_STUDENT_SOLVED
from services.notification_service import NotificationDispatcher
from utils.error_handler import DoubtNotFoundError, InvalidTransitionError, NotDoubtOwnerError

PROFESSOR = Replier(name="Dr. Rao", user_id="prof-1", role=ReplierRole.PROFESSOR)
OTHER_PROFESSOR = Replier(name="Dr. Iyer", user_id="prof-2", role=ReplierRole.PROFESSOR)
PEER = Replier(name="Ben", user_id="student-2", role=ReplierRole.STUDENT)
SENIOR = Replier(name="Chitra", user_id="senior-1", role=ReplierRole.SENIOR)


def test_ask_creates_ai_tier_doubt_with_ai_answer(service, provider, student, clock):
    doubt = asyncio.run(service.ask("How does photosynthesis work?", student, "bio101", ["plants"]))

    assert doubt.id
    assert doubt.status == DoubtStatus.AI
    assert doubt.ai_answer == "Photosynthesis turns light into chemical energy."
    assert doubt.created_at == clock.now
    assert [h.status for h in doubt.history] == [DoubtStatus.AI]
    assert doubt.last_status_change_at == doubt.history[-1].timestamp
    assert doubt.replies[0].is_ai and not doubt.replies[0].is_accepted
    assert provider.questions == ["How does photosynthesis work?"]


def test_ask_survives_ai_provider_failure(store, clock, dwell, student):
    service = DoubtService(
        store=store,
        answer_provider=FakeAnswerProvider(error=RuntimeError("model offline")),
        dwell=dwell,
        clock=clock,
    )

    async def scenario():
        doubt = await service.ask("What is a monad?", student)
        return await service.fetch(doubt.id)

    stored = asyncio.run(scenario())

    assert stored.status == DoubtStatus.AI
    assert stored.ai_answer is None
    assert stored.replies == []


def test_mark_solved_by_owner_resolves(service, student, listener):
    async def scenario():
        doubt = await service.ask("Q?", student)
        return await service.mark_solved(doubt.id, student.user_id)

    doubt = asyncio.run(scenario())

    assert doubt.status == DoubtStatus.RESOLVED
    assert doubt.resolved
    assert doubt.history[-1].note == CAUSE_STUDENT_SOLVED
    assert [(e.from_status, e.to_status) for e in listener.events] == [
        (DoubtStatus.AI, DoubtStatus.RESOLVED)]


def test_mark_solved_by_non_owner_is_rejected(service, student):
    async def scenario():
        doubt = await service.ask("Q?", student)
        with pytest.raises(NotDoubtOwnerError):
            await service.mark_solved(doubt.id, "someone-else")
        return await service.fetch(doubt.id)

    doubt = asyncio.run(scenario())

    assert doubt.status == DoubtStatus.AI
    assert len(doubt.history) == 1


def test_still_confused_opens_immediately_and_restarts_clock(service, student, clock):
    async def scenario():
        doubt = await service.ask("Q?", student)
        clock.advance(minutes=10)
        return await service.mark_still_confused(doubt.id, student.user_id)

    doubt = asyncio.run(scenario())

    assert doubt.status == DoubtStatus.OPEN
    assert doubt.history[-1].note == CAUSE_STUDENT_ESCALATED
    assert doubt.last_status_change_at == clock.now


def test_student_actions_only_valid_in_ai_tier(service, student):
    async def scenario():
        doubt = await service.ask("Q?", student)
        await service.mark_still_confused(doubt.id, student.user_id)
        with pytest.raises(InvalidTransitionError) as rejected:
            await service.mark_solved(doubt.id, student.user_id)
        with pytest.raises(InvalidTransitionError):
            await service.mark_still_confused(doubt.id, student.user_id)
        return await service.fetch(doubt.id), rejected.value

    doubt, error = asyncio.run(scenario())

    assert error.current_status == "OPEN"
    assert error.message.endswith("while it is OPEN")
    assert [h.status for h in doubt.history] == [DoubtStatus.AI, DoubtStatus.OPEN]


def test_unknown_doubt_raises_not_found(service):
    with pytest.raises(DoubtNotFoundError):
        asyncio.run(service.fetch("nope"))
    with pytest.raises(DoubtNotFoundError):
        asyncio.run(service.reply("nope", "hi", PEER))


@pytest.mark.parametrize("replier", [PEER, SENIOR])
def test_non_professor_reply_never_changes_status(service, student, replier):
    async def scenario():
        doubt = await service.ask("Q?", student)
        await service.mark_still_confused(doubt.id, student.user_id)
        return await service.reply(doubt.id, "I think it's X", replier)

    doubt = asyncio.run(scenario())

    assert doubt.status == DoubtStatus.OPEN
    assert doubt.replies[-1].content == "I think it's X"
    assert not doubt.replies[-1].is_accepted


def test_professor_reply_resolves_from_any_open_tier(service, student):
    async def scenario():
        doubt = await service.ask("Q?", student)
        return await service.reply(doubt.id, "Here is the answer.", PROFESSOR)

    doubt = asyncio.run(scenario())

    assert doubt.status == DoubtStatus.RESOLVED
    assert doubt.replies[-1].is_accepted
    assert doubt.replies[-1].replied_by.role == ReplierRole.PROFESSOR
    assert [h.status for h in doubt.history] == [DoubtStatus.AI, DoubtStatus.RESOLVED]


def test_reply_after_resolution_is_courtesy_only(service, student):
    async def scenario():
        doubt = await service.ask("Q?", student)
        await service.mark_solved(doubt.id, student.user_id)
        return await service.reply(doubt.id, "Also see chapter 4.", PROFESSOR)

    doubt = asyncio.run(scenario())

    assert doubt.status == DoubtStatus.RESOLVED
    assert not doubt.replies[-1].is_accepted
    assert len(doubt.history) == 2


def test_racing_professor_replies_resolve_once(service, student, listener):
    async def scenario():
        doubt = await service.ask("Q?", student)
        await service.mark_still_confused(doubt.id, student.user_id)
        await asyncio.gather(
            service.reply(doubt.id, "Answer one", PROFESSOR),
            service.reply(doubt.id, "Answer two", OTHER_PROFESSOR),
        )
        return await service.fetch(doubt.id)

    doubt = asyncio.run(scenario())

    professor_replies = [r for r in doubt.replies if r.replied_by.role == ReplierRole.PROFESSOR]
    assert len(professor_replies) == 2
    assert sum(r.is_accepted for r in doubt.replies) == 1
    assert [h.status for h in doubt.history].count(DoubtStatus.RESOLVED) == 1
    assert [e.to_status for e in listener.events].count(DoubtStatus.RESOLVED) == 1


def test_views_and_votes(service, student):
    async def scenario():
        doubt = await service.ask("Q?", student)
        await service.record_view(doubt.id)
        await service.record_view(doubt.id)
        return await service.vote(doubt.id)

    doubt = asyncio.run(scenario())

    assert (doubt.views, doubt.votes) == (2, 1)


def test_professor_queue_oldest_escalation_first(service, store, student, clock):
    async def scenario():
        first = await service.ask("First?", student, "cs101")
        second = await service.ask("Second?", student, "cs101")
        other_course = await service.ask("Elsewhere?", student, "cs999")
        for doubt in (second, first, other_course):
            clock.advance(minutes=1)
            current = await service.fetch(doubt.id)
            await service.apply_transition(current, DoubtStatus.OPEN, "test")
            current = await service.fetch(doubt.id)
            await service.apply_transition(current, DoubtStatus.SENIOR_VISIBLE, "test")
            current = await service.fetch(doubt.id)
            await service.apply_transition(current, DoubtStatus.PROFESSOR_VISIBLE, "test")
        lower = await service.ask("Still open?", student, "cs101")
        await service.mark_still_confused(lower.id, student.user_id)
        return (
            first.id, second.id, lower.id,
            await service.professor_queue("cs101"),
            await service.professor_queue("cs101", include_lower_tiers=True),
        )

    first_id, second_id, lower_id, queue, wide_queue = asyncio.run(scenario())

    assert [d.id for d in queue] == [second_id, first_id]
    assert [d.id for d in wide_queue] == [second_id, first_id, lower_id]


def test_confusion_insights_count_tags_and_previews(service, student):
    long_question = "Why does the derivative of sine equal cosine in every single case?"

    async def scenario():
        await service.ask("Limits?", student, "math", ["calculus", "limits"])
        await service.ask("Chain rule?", student, "math", ["calculus"])
        await service.ask(long_question, student, "math")
        await service.ask("Unrelated", student, "history", ["calculus"])
        return await service.confusion_insights("math")

    insights = asyncio.run(scenario())

    assert insights[0] == {"topic": "calculus", "count": 2}
    topics = {i["topic"]: i["count"] for i in insights}
    assert topics["limits"] == 1
    assert topics[topic_preview(long_question)] == 1
    assert topic_preview(long_question) == "Why does the derivative of sine equal..."


def test_apply_transition_rejects_regression(service, student):
    async def scenario():
        doubt = await service.ask("Q?", student)
        await service.mark_still_confused(doubt.id, student.user_id)
        current = await service.fetch(doubt.id)
        with pytest.raises(InvalidTransitionError):
            await service.apply_transition(current, DoubtStatus.AI, "rewind")

    asyncio.run(scenario())


def test_listener_failure_does_not_block_transition(store, provider, clock, dwell, student):
    async def broken_listener(event):
        raise RuntimeError("push service down")

    service = DoubtService(store, provider, NotificationDispatcher([broken_listener]), dwell, clock)

    async def scenario():
        doubt = await service.ask("Q?", student)
        return await service.mark_solved(doubt.id, student.user_id)

    assert asyncio.run(scenario()).status == DoubtStatus.RESOLVED
