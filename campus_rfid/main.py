"""
Campus RFID Backend API
Main FastAPI application entry point.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import time

from campus_rfid import __version__
from campus_rfid.config import settings
from campus_rfid.database import init_db, close_db
from campus_rfid.services.broadcast_service import close_event_fanout

# Import routers
from campus_rfid.api.rfid import router as rfid_router
from campus_rfid.api.mess import router as mess_router
from campus_rfid.api.attendance import router as attendance_router
from campus_rfid.api.security import router as security_router
from campus_rfid.api.gamification import router as gamification_router
from campus_rfid.api.notifications import router as notifications_router
from campus_rfid.api.system import router as system_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting Campus RFID Backend...")
    await init_db()
    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down Campus RFID Backend...")
    await close_event_fanout()
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.API_TITLE,
    description="""
    ## Badge-scan pipeline for a university campus

    #### 📡 RFID Scans
    - Subject resolution against the campus directory
    - Append-only scan log and location history

    #### 🎓 Attendance
    - Automatic records from classroom entries (late after 10 minutes)
    - Instructor marking and corrections

    #### 🛡️ Security
    - Rule-based alerts (late-night main gate exits)
    - Review workflow: pending, reviewed, resolved

    #### 🏆 Gamification
    - Points, levels 1-11 and weekly badges
    - Leaderboards

    #### 🍽️ Mess
    - Dining swipes with discounts

    #### 📺 Live Dashboards
    - Location updates over Redis pub/sub
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add request processing time to response headers."""
    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = str(time.time() - start_time)
    return response


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.APP_DEBUG else "An unexpected error occurred"
        }
    )


# Include routers
app.include_router(rfid_router)
app.include_router(mess_router)
app.include_router(attendance_router)
app.include_router(security_router)
app.include_router(gamification_router)
app.include_router(notifications_router)
app.include_router(system_router)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.API_TITLE,
        "version": __version__,
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }


# Ready endpoint for k8s probes
@app.get("/ready", tags=["Health"])
async def ready():
    """Readiness probe endpoint."""
    return {"status": "ready"}


# Live endpoint for k8s probes
@app.get("/live", tags=["Health"])
async def live():
    """Liveness probe endpoint."""
    return {"status": "alive"}
