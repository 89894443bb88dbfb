"""
Escalation policy for doubts.

Pure decision logic: given a doubt and the current time, decide whether a
transition is due and to which tier. Nothing in this module touches the store;
the scheduler and the lifecycle service commit the decisions.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Set
import logging

from models.doubt import Doubt, DoubtStatus, ReplierRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DwellTimes:
    """How long a doubt may sit in a tier before the sweep escalates it"""
    open: timedelta = timedelta(minutes=30)
    senior: timedelta = timedelta(minutes=30)
    professor: timedelta = timedelta(hours=2)

    def for_status(self, status: DoubtStatus) -> Optional[timedelta]:
        return {
            DoubtStatus.AI: self.open,
            DoubtStatus.OPEN: self.senior,
            DoubtStatus.SENIOR_VISIBLE: self.professor,
        }.get(status)


# Timer-driven exits. Every status is listed; None means no timer exit.
TIMER_TRANSITIONS: Dict[DoubtStatus, Optional[DoubtStatus]] = {
    DoubtStatus.AI: DoubtStatus.OPEN,
    DoubtStatus.OPEN: DoubtStatus.SENIOR_VISIBLE,
    DoubtStatus.SENIOR_VISIBLE: DoubtStatus.PROFESSOR_VISIBLE,
    DoubtStatus.PROFESSOR_VISIBLE: None,
    DoubtStatus.RESOLVED: None,
}

# Event-driven exits (student actions and professor replies).
EVENT_TRANSITIONS: Dict[DoubtStatus, Set[DoubtStatus]] = {
    DoubtStatus.AI: {DoubtStatus.OPEN, DoubtStatus.RESOLVED},
    DoubtStatus.OPEN: {DoubtStatus.RESOLVED},
    DoubtStatus.SENIOR_VISIBLE: {DoubtStatus.RESOLVED},
    DoubtStatus.PROFESSOR_VISIBLE: {DoubtStatus.RESOLVED},
    DoubtStatus.RESOLVED: set(),
}

CAUSE_PROFESSOR_REPLY = "Professor reply accepted"
CAUSE_STUDENT_SOLVED = "Student confirmed AI answer"
CAUSE_STUDENT_ESCALATED = "Student escalated"


@dataclass(frozen=True)
class EscalationDecision:
    """Outcome of evaluating one doubt: either a no-op or a single transition"""
    evaluated_status: Optional[DoubtStatus]
    target: Optional[DoubtStatus] = None
    cause: str = ""
    diagnostic: Optional[str] = field(default=None, compare=False)

    @property
    def is_transition(self) -> bool:
        return self.target is not None


def no_op(evaluated_status: Optional[DoubtStatus], diagnostic: str = None) -> EscalationDecision:
    return EscalationDecision(evaluated_status=evaluated_status, diagnostic=diagnostic)


def transition_to(evaluated_status: DoubtStatus, target: DoubtStatus, cause: str) -> EscalationDecision:
    return EscalationDecision(evaluated_status=evaluated_status, target=target, cause=cause)


def is_legal_transition(current: DoubtStatus, target: DoubtStatus) -> bool:
    """Forward one tier, or straight to RESOLVED from any open tier"""
    if current.is_terminal:
        return False
    return target is TIMER_TRANSITIONS[current] or target in EVENT_TRANSITIONS[current]


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps from the store as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_status(raw) -> Optional[DoubtStatus]:
    try:
        return DoubtStatus(raw)
    except ValueError:
        return None


def has_professor_reply(doubt: Doubt) -> bool:
    return any(
        reply.is_accepted or reply.replied_by.role == ReplierRole.PROFESSOR
        for reply in doubt.replies
    )


def next_escalation_at(doubt: Doubt, dwell: DwellTimes) -> Optional[datetime]:
    """When the sweep will next escalate this doubt, if it has a timer exit"""
    status = parse_status(doubt.status)
    if status is None or TIMER_TRANSITIONS[status] is None:
        return None
    return as_utc(doubt.last_status_change_at) + dwell.for_status(status)


def evaluate(doubt: Doubt, now: datetime, dwell: DwellTimes = DwellTimes()) -> EscalationDecision:
    """
    Decide the next transition for a doubt.

    A professor reply on an unresolved doubt wins over any due timer. Timers
    are measured from the last status change, and at most one tier is
    advanced per evaluation.
    """
    status = parse_status(doubt.status)
    if status is None:
        diagnostic = f"Doubt {doubt.id} has unknown status {doubt.status!r}"
        logger.warning(diagnostic)
        return no_op(None, diagnostic)

    if status.is_terminal:
        return no_op(status)

    if has_professor_reply(doubt):
        return transition_to(status, DoubtStatus.RESOLVED, CAUSE_PROFESSOR_REPLY)

    target = TIMER_TRANSITIONS[status]
    if target is None:
        return no_op(status)

    dwell_time = dwell.for_status(status)
    elapsed = as_utc(now) - as_utc(doubt.last_status_change_at)
    if elapsed < dwell_time:
        return no_op(status)

    minutes = int(dwell_time.total_seconds() // 60)
    return transition_to(
        status, target, f"No resolution within {minutes} min, escalated to {target.value}")
