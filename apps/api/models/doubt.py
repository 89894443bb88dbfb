from beanie import Document
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
from bson import ObjectId


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DoubtStatus(str, Enum):
    """Escalation tiers, in ladder order"""
    AI = "AI"
    OPEN = "OPEN"
    SENIOR_VISIBLE = "SENIOR_VISIBLE"
    PROFESSOR_VISIBLE = "PROFESSOR_VISIBLE"
    RESOLVED = "RESOLVED"

    @property
    def level(self) -> int:
        return ESCALATION_LADDER.index(self)

    @property
    def audience(self) -> str:
        return STATUS_AUDIENCE[self]

    @property
    def is_terminal(self) -> bool:
        return self is DoubtStatus.RESOLVED


ESCALATION_LADDER = [
    DoubtStatus.AI,
    DoubtStatus.OPEN,
    DoubtStatus.SENIOR_VISIBLE,
    DoubtStatus.PROFESSOR_VISIBLE,
    DoubtStatus.RESOLVED,
]

# Who the doubt is surfaced to at each tier
STATUS_AUDIENCE = {
    DoubtStatus.AI: "ai",
    DoubtStatus.OPEN: "everyone",
    DoubtStatus.SENIOR_VISIBLE: "seniors",
    DoubtStatus.PROFESSOR_VISIBLE: "professor",
    DoubtStatus.RESOLVED: "everyone",
}


class ReplierRole(str, Enum):
    STUDENT = "STUDENT"
    SENIOR = "SENIOR"
    PROFESSOR = "PROFESSOR"
    AI = "AI"


class Author(BaseModel):
    """Identity claimed by the caller (the auth layer owns verification)"""
    name: str
    user_id: str


class Replier(Author):
    role: ReplierRole = ReplierRole.STUDENT


AI_REPLIER = Replier(name="Campus AI", user_id="ai-bot", role=ReplierRole.AI)


class Reply(BaseModel):
    """Reply posted on a doubt. Immutable once appended."""
    id: str = Field(default_factory=lambda: str(ObjectId()))
    content: str
    replied_by: Replier
    created_at: datetime = Field(default_factory=utc_now)
    is_ai: bool = False
    is_accepted: bool = False


class TransitionRecord(BaseModel):
    """One audit trail entry per accepted status transition"""
    status: DoubtStatus
    timestamp: datetime
    note: str


class TransitionPatch(BaseModel):
    """Payload of a conditional status update.

    The store applies all of it or none of it: the new status, one history
    entry, the dwell-time anchor and, when present, a reply appended in the
    same write.
    """
    status: DoubtStatus
    record: TransitionRecord
    reply: Optional[Reply] = None


class Doubt(BaseModel):
    """Student question tracked through the escalation ladder"""
    id: Optional[str] = None
    content: str
    course_id: str = "general"
    asked_by: Author
    status: DoubtStatus = DoubtStatus.AI
    ai_answer: Optional[str] = None
    replies: List[Reply] = Field(default_factory=list)
    votes: int = 0
    views: int = 0
    tags: List[str] = Field(default_factory=list)
    history: List[TransitionRecord] = Field(default_factory=list)
    resolved: bool = False
    last_status_change_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def new(
        cls,
        content: str,
        asked_by: Author,
        course_id: str = "general",
        tags: Optional[List[str]] = None,
        ai_answer: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Doubt":
        """Build a freshly asked doubt in the AI tier with its first history entry"""
        created_at = now or utc_now()
        return cls(
            content=content,
            course_id=course_id,
            asked_by=asked_by,
            status=DoubtStatus.AI,
            ai_answer=ai_answer,
            tags=tags or [],
            history=[TransitionRecord(
                status=DoubtStatus.AI,
                timestamp=created_at,
                note="AI generated answer" if ai_answer else "Awaiting AI answer",
            )],
            last_status_change_at=created_at,
            created_at=created_at,
        )

    def accepted_reply(self) -> Optional[Reply]:
        return next((r for r in self.replies if r.is_accepted), None)

    def is_owned_by(self, user_id: str) -> bool:
        return self.asked_by.user_id == user_id


class DoubtDocument(Document):
    """MongoDB persistence model for a doubt"""
    content: str
    course_id: str = "general"
    asked_by: Author
    status: DoubtStatus = DoubtStatus.AI
    ai_answer: Optional[str] = None
    replies: List[Reply] = Field(default_factory=list)
    votes: int = 0
    views: int = 0
    tags: List[str] = Field(default_factory=list)
    history: List[TransitionRecord] = Field(default_factory=list)
    resolved: bool = False
    last_status_change_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "doubts"
        indexes = [
            "course_id",
            "status",
            "resolved",
            "created_at",
        ]

    @classmethod
    def from_doubt(cls, doubt: Doubt) -> "DoubtDocument":
        return cls(**doubt.model_dump(exclude={"id"}))
