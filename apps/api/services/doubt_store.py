"""
Doubt store implementations.

The store is the only shared mutable resource in the escalation system. It is
never locked exclusively: every status change is a conditional update that
only commits if the stored status still equals the status the caller observed.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional

from bson import ObjectId
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from database import ping_database
from models.doubt import Doubt, DoubtDocument, DoubtStatus, Reply, TransitionPatch, TransitionRecord
from services.escalation_policy import parse_status
from utils.error_handler import StoreUnavailableError

logger = logging.getLogger(__name__)

COUNTER_FIELDS = ("votes", "views")


class UpdateOutcome(str, Enum):
    APPLIED = "applied"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class DoubtStore(ABC):
    """Storage contract consumed by the lifecycle service and the scheduler"""

    @abstractmethod
    async def create(self, doubt: Doubt) -> str:
        ...

    @abstractmethod
    async def get(self, doubt_id: str) -> Optional[Doubt]:
        ...

    @abstractmethod
    async def list_non_resolved(self, course_id: Optional[str] = None) -> List[Doubt]:
        """Active set for the sweep. Undecodable records are skipped."""

    @abstractmethod
    async def list(
        self,
        course_id: Optional[str] = None,
        status: Optional[DoubtStatus] = None,
        limit: Optional[int] = None,
    ) -> List[Doubt]:
        """Newest first"""

    @abstractmethod
    async def update(self, doubt_id: str, expected_status: DoubtStatus, patch: TransitionPatch) -> UpdateOutcome:
        """Apply a transition only if the stored status equals expected_status"""

    @abstractmethod
    async def append_reply(self, doubt_id: str, reply: Reply) -> UpdateOutcome:
        ...

    @abstractmethod
    async def increment(self, doubt_id: str, counter: str, amount: int = 1) -> UpdateOutcome:
        ...

    async def ping(self) -> Dict[str, Any]:
        return {"status": "connected", "store": type(self).__name__}


async def call_store(awaitable: Awaitable, timeout: float, operation: str):
    """Run a store call with a bounded timeout, surfacing failures as StoreUnavailableError"""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StoreUnavailableError(f"Doubt store timed out during {operation}") from e
    except (PyMongoError, OSError) as e:
        raise StoreUnavailableError(f"Doubt store failed during {operation}: {e}") from e


def _check_counter(counter: str, amount: int):
    if counter not in COUNTER_FIELDS:
        raise ValueError(f"Unknown counter: {counter}")
    if amount < 1:
        raise ValueError("Counters only move upwards")


class MemoryDoubtStore(DoubtStore):
    """In-process store for local development without MongoDB and for tests"""

    def __init__(self):
        self._doubts: Dict[str, Doubt] = {}
        self._lock = asyncio.Lock()

    async def create(self, doubt: Doubt) -> str:
        async with self._lock:
            doubt_id = str(ObjectId())
            self._doubts[doubt_id] = doubt.model_copy(update={"id": doubt_id}, deep=True)
            return doubt_id

    async def get(self, doubt_id: str) -> Optional[Doubt]:
        doubt = self._doubts.get(doubt_id)
        return doubt.model_copy(deep=True) if doubt else None

    async def list_non_resolved(self, course_id: Optional[str] = None) -> List[Doubt]:
        return [
            doubt.model_copy(deep=True)
            for doubt in self._doubts.values()
            if not doubt.resolved and (course_id is None or doubt.course_id == course_id)
        ]

    async def list(self, course_id=None, status=None, limit=None) -> List[Doubt]:
        doubts = [
            doubt for doubt in self._doubts.values()
            if (course_id is None or doubt.course_id == course_id)
            and (status is None or doubt.status == status)
        ]
        doubts.sort(key=lambda d: d.created_at, reverse=True)
        if limit:
            doubts = doubts[:limit]
        return [doubt.model_copy(deep=True) for doubt in doubts]

    async def update(self, doubt_id: str, expected_status: DoubtStatus, patch: TransitionPatch) -> UpdateOutcome:
        async with self._lock:
            doubt = self._doubts.get(doubt_id)
            if doubt is None:
                return UpdateOutcome.NOT_FOUND
            if doubt.status != expected_status:
                return UpdateOutcome.CONFLICT

            replies = doubt.replies + [patch.reply] if patch.reply else doubt.replies
            self._doubts[doubt_id] = doubt.model_copy(update={
                "status": patch.status,
                "resolved": patch.status.is_terminal,
                "last_status_change_at": patch.record.timestamp,
                "history": doubt.history + [patch.record],
                "replies": list(replies),
            }, deep=True)
            return UpdateOutcome.APPLIED

    async def append_reply(self, doubt_id: str, reply: Reply) -> UpdateOutcome:
        async with self._lock:
            doubt = self._doubts.get(doubt_id)
            if doubt is None:
                return UpdateOutcome.NOT_FOUND
            self._doubts[doubt_id] = doubt.model_copy(
                update={"replies": doubt.replies + [reply]}, deep=True)
            return UpdateOutcome.APPLIED

    async def increment(self, doubt_id: str, counter: str, amount: int = 1) -> UpdateOutcome:
        _check_counter(counter, amount)
        async with self._lock:
            doubt = self._doubts.get(doubt_id)
            if doubt is None:
                return UpdateOutcome.NOT_FOUND
            self._doubts[doubt_id] = doubt.model_copy(
                update={counter: getattr(doubt, counter) + amount})
            return UpdateOutcome.APPLIED


def _record_to_bson(record: TransitionRecord) -> dict:
    return {"status": record.status.value, "timestamp": record.timestamp, "note": record.note}


def _reply_to_bson(reply: Reply) -> dict:
    data = reply.model_dump()
    data["replied_by"]["role"] = reply.replied_by.role.value
    return data


class MongoDoubtStore(DoubtStore):
    """Doubt store backed by the beanie `doubts` collection"""

    @staticmethod
    def _collection():
        return DoubtDocument.get_motor_collection()

    @staticmethod
    def _object_id(doubt_id: str) -> Optional[ObjectId]:
        return ObjectId(doubt_id) if ObjectId.is_valid(doubt_id) else None

    @staticmethod
    def _decode(raw: dict, keep_unknown_status: bool = False) -> Optional[Doubt]:
        """Build a Doubt from a stored record, or None if it cannot be read.

        With keep_unknown_status an unrecognised status is carried through
        as the raw value so the escalation policy can report it.
        """
        data = {**raw, "id": str(raw["_id"])}
        status = data.get("status")
        unknown = keep_unknown_status and parse_status(status) is None
        if unknown:
            data["status"] = DoubtStatus.AI.value
        try:
            doubt = Doubt.model_validate(data)
            return doubt.model_copy(update={"status": status}) if unknown else doubt
        except ValidationError as e:
            logger.warning(f"Skipping undecodable doubt {raw.get('_id')}: {e}")
            return None

    async def create(self, doubt: Doubt) -> str:
        document = DoubtDocument.from_doubt(doubt)
        await document.insert()
        return str(document.id)

    async def get(self, doubt_id: str) -> Optional[Doubt]:
        oid = self._object_id(doubt_id)
        if oid is None:
            return None
        raw = await self._collection().find_one({"_id": oid})
        return self._decode(raw) if raw else None

    async def list_non_resolved(self, course_id: Optional[str] = None) -> List[Doubt]:
        query: Dict[str, Any] = {"resolved": False}
        if course_id:
            query["course_id"] = course_id

        doubts = []
        async for raw in self._collection().find(query):
            doubt = self._decode(raw, keep_unknown_status=True)
            if doubt is not None:
                doubts.append(doubt)
        return doubts

    async def list(self, course_id=None, status=None, limit=None) -> List[Doubt]:
        query: Dict[str, Any] = {}
        if course_id:
            query["course_id"] = course_id
        if status:
            query["status"] = DoubtStatus(status).value

        cursor = self._collection().find(query).sort("created_at", -1)
        if limit:
            cursor = cursor.limit(limit)

        doubts = []
        async for raw in cursor:
            doubt = self._decode(raw)
            if doubt is not None:
                doubts.append(doubt)
        return doubts

    async def _missing_outcome(self, oid: ObjectId) -> UpdateOutcome:
        exists = await self._collection().count_documents({"_id": oid}, limit=1)
        return UpdateOutcome.CONFLICT if exists else UpdateOutcome.NOT_FOUND

    async def update(self, doubt_id: str, expected_status: DoubtStatus, patch: TransitionPatch) -> UpdateOutcome:
        oid = self._object_id(doubt_id)
        if oid is None:
            return UpdateOutcome.NOT_FOUND

        push = {"history": _record_to_bson(patch.record)}
        if patch.reply:
            push["replies"] = _reply_to_bson(patch.reply)

        result = await self._collection().update_one(
            {"_id": oid, "status": expected_status.value},
            {
                "$set": {
                    "status": patch.status.value,
                    "resolved": patch.status.is_terminal,
                    "last_status_change_at": patch.record.timestamp,
                },
                "$push": push,
            },
        )
        if result.matched_count:
            return UpdateOutcome.APPLIED
        return await self._missing_outcome(oid)

    async def append_reply(self, doubt_id: str, reply: Reply) -> UpdateOutcome:
        oid = self._object_id(doubt_id)
        if oid is None:
            return UpdateOutcome.NOT_FOUND

        result = await self._collection().update_one(
            {"_id": oid}, {"$push": {"replies": _reply_to_bson(reply)}})
        return UpdateOutcome.APPLIED if result.matched_count else UpdateOutcome.NOT_FOUND

    async def increment(self, doubt_id: str, counter: str, amount: int = 1) -> UpdateOutcome:
        _check_counter(counter, amount)
        oid = self._object_id(doubt_id)
        if oid is None:
            return UpdateOutcome.NOT_FOUND

        result = await self._collection().update_one({"_id": oid}, {"$inc": {counter: amount}})
        return UpdateOutcome.APPLIED if result.matched_count else UpdateOutcome.NOT_FOUND

    async def ping(self) -> Dict[str, Any]:
        return await ping_database()
