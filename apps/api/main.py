from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import logging
from contextlib import asynccontextmanager

from config import settings
from database import connect_to_mongo, close_mongo_connection
from services.ai_answer_service import answer_provider
from services.doubt_service import DoubtService
from services.doubt_store import MemoryDoubtStore, MongoDoubtStore
from services.escalation_scheduler import EscalationScheduler
from services.notification_service import notification_dispatcher
from routers.doubts import router as doubts_router
from routers.health import router as health_router

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_doubt_service(db_connected: bool) -> DoubtService:
    if db_connected:
        store = MongoDoubtStore()
    else:
        logger.warning("Using in-memory doubt store - doubts will not survive a restart")
        store = MemoryDoubtStore()

    return DoubtService(
        store=store,
        answer_provider=answer_provider,
        dispatcher=notification_dispatcher,
        dwell=settings.get_dwell_times(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Container mode: {settings.is_container()}")

    # Connect to MongoDB
    db_connected = await connect_to_mongo()
    if not db_connected:
        logger.warning(
            "Failed to connect to MongoDB - some features may not work")

    service = build_doubt_service(db_connected)
    scheduler = EscalationScheduler(service, settings.escalation_interval_seconds)
    app.state.doubt_service = service
    app.state.escalation_scheduler = scheduler

    if settings.escalation_scheduler_enabled:
        scheduler.start()
    else:
        logger.info("Escalation scheduler disabled; sweeps run on demand only")

    yield

    # Shutdown
    await scheduler.stop()
    await close_mongo_connection()
    logger.info("Application shutdown complete")

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Campus doubt forum with timed escalation from AI to professors",
    lifespan=lifespan
)

logger.info(f"Configuring CORS with origins: {settings.cors_origins}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "status": "running"
    }


app.include_router(health_router, prefix="/api/health", tags=["health"])
app.include_router(doubts_router, prefix="/api/doubts", tags=["doubts"])


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="info"
    )
