from fastapi import APIRouter, Request
from config import settings

router = APIRouter()


@router.get("/")
async def health(request: Request):
    """Service, store and escalation scheduler status"""
    service = request.app.state.doubt_service
    scheduler = request.app.state.escalation_scheduler
    last_report = scheduler.last_report

    return {
        "status": "healthy",
        "version": settings.app_version,
        "store": await service.store.ping(),
        "scheduler": {
            "running": scheduler.is_running,
            "interval_seconds": scheduler.interval_seconds,
            "last_sweep": last_report.to_dict() if last_report else None,
        },
    }
