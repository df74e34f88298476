import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import models  # noqa: F401 - register models with Base
from .config import INPROCESS_SCHEDULER_ENABLED, REMINDER_SWEEP_MINUTES, WAITLIST_SWEEP_MINUTES
from .database import Base, SessionLocal, engine
from .domain.credits.router import router as credits_router
from .domain.membership.router import router as membership_router
from .domain.scheduling.router import router as appointments_router
from .domain.users.router import router as users_router
from .domain.waitlist.router import router as waitlist_router
from .domain.waitlist.service import run_waitlist_sweep
from .errors import OperationFailedError, StudioError
from .scheduler import RecurringTask
from .services.notification_service import close_notification_queue, get_notification_queue
from .services.reminder_service import run_reminder_sweep
from .shared.clock import get_clock

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


async def _waitlist_tick():
    db = SessionLocal()
    try:
        await run_waitlist_sweep(db, get_notification_queue(), get_clock())
    finally:
        db.close()


async def _reminder_tick():
    db = SessionLocal()
    try:
        await run_reminder_sweep(db, get_notification_queue(), get_clock())
    finally:
        db.close()


def build_recurring_tasks() -> list[RecurringTask]:
    return [
        RecurringTask("waitlist-sweep", WAITLIST_SWEEP_MINUTES * 60, _waitlist_tick),
        RecurringTask("reminder-sweep", REMINDER_SWEEP_MINUTES * 60, _reminder_tick),
    ]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Several API workers may race on first boot
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    tasks = build_recurring_tasks() if INPROCESS_SCHEDULER_ENABLED else []
    for task in tasks:
        task.start()
    if tasks:
        logger.info("In-process scheduler enabled for waitlist and reminder sweeps")

    yield

    for task in tasks:
        await task.stop()
    await close_notification_queue()
    logger.info("Application shutting down...")


app = FastAPI(title="Studio Booking API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(StudioError)
async def studio_error_handler(request: Request, exc: StudioError):
    """Business-rule failures become a status code plus a machine-readable code"""
    if isinstance(exc, OperationFailedError):
        logger.error(f"{request.method} {request.url.path} - {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} - {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={
                    "detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry the raised exception object, which is not JSON serializable
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return errors


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


# CORS Configuration
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(appointments_router)
app.include_router(waitlist_router)
app.include_router(credits_router)
app.include_router(membership_router)
app.include_router(users_router)


@app.get("/")
def root():
    return {"message": "Studio Booking API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
