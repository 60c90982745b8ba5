from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

import structlog

from app.config import APP_NAME, APP_VERSION, DEBUG, FRONTEND_URL, SCHEDULER_ENABLED
from app.core.container import build_services
from app.core.errors import ArenaError
from app.core.events import EventBus
from app.core.logging import configure_logging
from app.core.scheduler import get_scheduler_status, setup_scheduler, start_scheduler, stop_scheduler
from app.database import Database
from app.routes.challenge.challenge_routes import router as challenge_router
from app.routes.challenge.project_routes import router as project_router
from app.routes.gamification.profile_routes import router as profile_router
from app.utils.response import arena_error_response, validation_error_response

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for the application"""
    # Startup
    configure_logging()
    await Database.connect_db()

    bus = EventBus()
    app.state.services = build_services(Database.get_db(), bus)
    await bus.start()

    if SCHEDULER_ENABLED:
        setup_scheduler(app.state.services)
        start_scheduler()

    yield
    # Shutdown
    stop_scheduler()
    await bus.stop()
    await Database.close_db()


app = FastAPI(
    title=APP_NAME,
    version=APP_VERSION,
    description="CodeArena API: challenges, submissions, voting and achievements",
    lifespan=lifespan
)

# CORS middleware
# In development, allow all origins for easier testing
cors_origins = [
    FRONTEND_URL,
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins if not DEBUG else ["*"],
    allow_credentials=not DEBUG,  # Can't use credentials with wildcard origin
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ArenaError)
async def handle_arena_error(request: Request, exc: ArenaError):
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message)
    return arena_error_response(exc)


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    errors = {
        ".".join(str(part) for part in err["loc"]): err["msg"]
        for err in exc.errors()
    }
    return validation_error_response("Validation error", errors)


# Include routers with /api prefix
app.include_router(challenge_router, prefix="/api")
app.include_router(project_router, prefix="/api")
app.include_router(profile_router, prefix="/api")


@app.get("/")
async def read_root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {APP_NAME} API",
        "version": APP_VERSION,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.get("/health/scheduler")
async def scheduler_health():
    """Scheduler jobs and their last results"""
    return get_scheduler_status()
