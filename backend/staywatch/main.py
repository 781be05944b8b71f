from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from staywatch.api import alerts, deals, health, insights, search, status
from staywatch.config import get_settings
from staywatch.database import Base, engine, ensure_data_dir
from staywatch.scheduler import start_scheduler, stop_scheduler
from staywatch.scrapers.pipeline import ExtractionPipeline
from staywatch.scrapers.session_pool import BrowserSessionPool
from staywatch.services.monitoring_service import MonitoringService
from staywatch.utils.version import get_version
import staywatch.models  # noqa: F401  (registers every table on Base.metadata)

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting StayWatch {get_version()}")

    if settings.database_url.startswith("sqlite"):
        logger.info("SQLite detected - creating tables if needed")
        ensure_data_dir()
        Base.metadata.create_all(bind=engine)

    pool = BrowserSessionPool()
    pipeline = ExtractionPipeline(pool)
    app.state.pipeline = pipeline

    if settings.scheduler_enabled:
        try:
            await start_scheduler(MonitoringService(pipeline))
            logger.info("✅ Scheduler and workers started")
        except Exception as e:
            logger.error(f"❌ Scheduler startup failed: {e}")
    else:
        logger.info("Scheduler disabled")

    yield

    logger.info("🛑 Shutting down StayWatch")
    try:
        await stop_scheduler()
        await pool.close()
        logger.info("✅ Workers stopped, browser closed")
    except Exception as e:
        logger.error(f"❌ Shutdown error: {e}")


app = FastAPI(
    title="StayWatch",
    description="Holiday-park price monitor: provider extraction and price insights",
    version=get_version().lstrip("v"),
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "PATCH"],
    allow_headers=["*"],
)

app.include_router(search.router, prefix="/search", tags=["search"])
app.include_router(insights.router, prefix="/insights", tags=["insights"])
app.include_router(alerts.router, prefix="/alerts", tags=["alerts"])
app.include_router(deals.router, prefix="/deals", tags=["deals"])
app.include_router(status.router, tags=["status"])
app.include_router(health.router, tags=["health"])


@app.get("/ping")
async def ping():
    """Simple ping endpoint for health checks."""
    return {"status": "ok"}
