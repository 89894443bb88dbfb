from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from typing import List, Optional
import logging

from factories.doubt_factory import DoubtListResponse, DoubtResponse, DoubtResponseFactory
from models.doubt import Author, DoubtStatus, Replier, ReplierRole
from services.doubt_service import DoubtService
from services.escalation_scheduler import EscalationScheduler
from utils.error_handler import DoubtServiceError, ErrorHandler

logger = logging.getLogger(__name__)
router = APIRouter()


class AskDoubtRequest(BaseModel):
    """Request model for asking a doubt"""
    content: str = Field(..., min_length=1, description="The question being asked")
    course_id: str = Field("general", description="Course the doubt belongs to")
    tags: List[str] = Field(default_factory=list)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class OwnerActionRequest(BaseModel):
    """Identity of the student acting on their own doubt"""
    user_id: str = Field(..., min_length=1)


class ReplyRequest(BaseModel):
    """Request model for replying to a doubt"""
    content: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    role: ReplierRole = ReplierRole.STUDENT


class InsightResponse(BaseModel):
    topic: str
    count: int


def get_doubt_service(request: Request) -> DoubtService:
    return request.app.state.doubt_service


def get_escalation_scheduler(request: Request) -> EscalationScheduler:
    return request.app.state.escalation_scheduler


def _respond(service: DoubtService, doubt) -> DoubtResponse:
    return DoubtResponseFactory.create_response(doubt, service.dwell)


@router.post("/", response_model=DoubtResponse, status_code=201)
async def ask_doubt(request: AskDoubtRequest, service: DoubtService = Depends(get_doubt_service)):
    """Ask a doubt; the AI tier answers it straight away when it can"""
    try:
        doubt = await service.ask(
            content=request.content.strip(),
            asked_by=Author(name=request.name, user_id=request.user_id),
            course_id=request.course_id,
            tags=request.tags,
        )
        return _respond(service, doubt)
    except DoubtServiceError as e:
        raise ErrorHandler.to_http_exception(e)


@router.get("/", response_model=DoubtListResponse)
async def list_doubts(
    course_id: Optional[str] = Query(None),
    status: Optional[DoubtStatus] = Query(None),
    limit: Optional[int] = Query(100, ge=1, le=500),
    service: DoubtService = Depends(get_doubt_service),
):
    """List doubts, newest first"""
    try:
        doubts = await service.list_doubts(course_id=course_id, status=status, limit=limit)
        return DoubtResponseFactory.create_list_response(doubts, service.dwell)
    except DoubtServiceError as e:
        raise ErrorHandler.to_http_exception(e)


@router.get("/professor/{course_id}", response_model=DoubtListResponse)
async def get_professor_queue(
    course_id: str,
    include_lower_tiers: bool = Query(False),
    service: DoubtService = Depends(get_doubt_service),
):
    """Doubts escalated to faculty for a course, longest-waiting first"""
    try:
        doubts = await service.professor_queue(course_id, include_lower_tiers=include_lower_tiers)
        return DoubtResponseFactory.create_list_response(doubts, service.dwell)
    except DoubtServiceError as e:
        raise ErrorHandler.to_http_exception(e)


@router.get("/insights/{course_id}", response_model=List[InsightResponse])
async def get_confusion_insights(course_id: str, service: DoubtService = Depends(get_doubt_service)):
    """Top topics students are confused about in a course"""
    try:
        return await service.confusion_insights(course_id)
    except DoubtServiceError as e:
        raise ErrorHandler.to_http_exception(e)


@router.post("/escalations/sweep")
async def run_escalation_sweep(scheduler: EscalationScheduler = Depends(get_escalation_scheduler)):
    """Run one escalation sweep now"""
    report = await scheduler.sweep()
    if report is None:
        raise HTTPException(status_code=409, detail="An escalation sweep is already running")
    return report.to_dict()


@router.get("/{doubt_id}", response_model=DoubtResponse)
async def get_doubt(doubt_id: str, service: DoubtService = Depends(get_doubt_service)):
    """Get a doubt with its replies and full status history"""
    try:
        return _respond(service, await service.fetch(doubt_id))
    except DoubtServiceError as e:
        raise ErrorHandler.to_http_exception(e)


@router.post("/{doubt_id}/solved", response_model=DoubtResponse)
async def mark_solved(doubt_id: str, request: OwnerActionRequest,
                      service: DoubtService = Depends(get_doubt_service)):
    """The asker accepts the AI answer"""
    try:
        return _respond(service, await service.mark_solved(doubt_id, request.user_id))
    except DoubtServiceError as e:
        raise ErrorHandler.to_http_exception(e)


@router.post("/{doubt_id}/confused", response_model=DoubtResponse)
async def mark_still_confused(doubt_id: str, request: OwnerActionRequest,
                              service: DoubtService = Depends(get_doubt_service)):
    """The asker wants more than the AI answer; opens the doubt to everyone"""
    try:
        return _respond(service, await service.mark_still_confused(doubt_id, request.user_id))
    except DoubtServiceError as e:
        raise ErrorHandler.to_http_exception(e)


@router.post("/{doubt_id}/replies", response_model=DoubtResponse)
async def reply_to_doubt(doubt_id: str, request: ReplyRequest,
                         service: DoubtService = Depends(get_doubt_service)):
    """Reply to a doubt. A professor reply resolves it."""
    if request.role == ReplierRole.AI:
        raise HTTPException(status_code=400, detail="AI replies are only posted when a doubt is asked")
    try:
        replier = Replier(name=request.name, user_id=request.user_id, role=request.role)
        doubt = await service.reply(doubt_id, request.content.strip(), replier)
        return _respond(service, doubt)
    except DoubtServiceError as e:
        raise ErrorHandler.to_http_exception(e)


@router.post("/{doubt_id}/views", response_model=DoubtResponse)
async def record_view(doubt_id: str, service: DoubtService = Depends(get_doubt_service)):
    try:
        return _respond(service, await service.record_view(doubt_id))
    except DoubtServiceError as e:
        raise ErrorHandler.to_http_exception(e)


@router.post("/{doubt_id}/votes", response_model=DoubtResponse)
async def vote(doubt_id: str, service: DoubtService = Depends(get_doubt_service)):
    try:
        return _respond(service, await service.vote(doubt_id))
    except DoubtServiceError as e:
        raise ErrorHandler.to_http_exception(e)
