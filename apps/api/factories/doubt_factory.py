from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel
from models.doubt import Author, Doubt, DoubtStatus, Reply, TransitionRecord
from services.escalation_policy import DwellTimes, next_escalation_at


class DoubtResponse(BaseModel):
    """Response model for doubts"""
    id: str
    content: str
    course_id: str
    asked_by: Author
    status: DoubtStatus
    audience: str
    resolved: bool
    ai_answer: Optional[str] = None
    replies: List[Reply]
    votes: int
    views: int
    tags: List[str]
    history: List[TransitionRecord]
    last_status_change_at: datetime
    accepted_reply_id: Optional[str] = None
    next_escalation_at: Optional[datetime] = None
    created_at: datetime


class DoubtListResponse(BaseModel):
    doubts: List[DoubtResponse]
    total: int


class DoubtResponseFactory:
    """Factory for creating consistent doubt responses"""

    @staticmethod
    def create_response(doubt: Doubt, dwell: DwellTimes) -> DoubtResponse:
        """Create a standard doubt response"""
        accepted = doubt.accepted_reply()
        return DoubtResponse(
            id=doubt.id,
            content=doubt.content,
            course_id=doubt.course_id,
            asked_by=doubt.asked_by,
            status=doubt.status,
            audience=doubt.status.audience,
            resolved=doubt.resolved,
            ai_answer=doubt.ai_answer,
            replies=doubt.replies,
            accepted_reply_id=accepted.id if accepted else None,
            votes=doubt.votes,
            views=doubt.views,
            tags=doubt.tags,
            history=doubt.history,
            last_status_change_at=doubt.last_status_change_at,
            next_escalation_at=next_escalation_at(doubt, dwell),
            created_at=doubt.created_at,
        )

    @staticmethod
    def create_list_response(doubts: List[Doubt], dwell: DwellTimes) -> DoubtListResponse:
        return DoubtListResponse(
            doubts=[DoubtResponseFactory.create_response(d, dwell) for d in doubts],
            total=len(doubts),
        )

