import asyncio
import os

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from funnelbot.config import settings
from funnelbot.database import SessionLocal, init_db
from funnelbot.errors import AppError
from funnelbot.logging_config import get_logger, setup_logging
from funnelbot.routers import admin, billing, jobs, message, payments
from funnelbot.services.scheduler_service import process_due_messages

setup_logging(settings.log_level)

app = FastAPI(
    title="Funnelbot API",
    description="Multi-tenant chat funnel engine",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(message.router)
app.include_router(payments.router)
app.include_router(billing.router)
app.include_router(jobs.router)
app.include_router(admin.router)

logger = get_logger("main")
worker_logger = get_logger("scheduled_worker")
_scheduled_worker_task: asyncio.Task | None = None


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(exc.message, extra={"context": {"path": request.url.path, "details": exc.details}})
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder({"success": False, "error": exc.message, "details": exc.details}),
    )


def _is_scheduled_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.scheduled_worker_enabled


def _run_scheduled_batch() -> dict[str, int]:
    db = SessionLocal()
    try:
        return process_due_messages(db)
    finally:
        db.close()


async def _scheduled_worker_loop() -> None:
    interval_seconds = max(settings.scheduled_worker_interval_seconds, 0.1)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            results = await asyncio.to_thread(_run_scheduled_batch)
            if results["claimed"]:
                worker_logger.info("Scheduled worker processed", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error(
                "Scheduled worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_scheduled_worker() -> None:
    global _scheduled_worker_task
    init_db()
    if not _is_scheduled_worker_enabled():
        return
    if _scheduled_worker_task is None or _scheduled_worker_task.done():
        _scheduled_worker_task = asyncio.create_task(_scheduled_worker_loop())
        worker_logger.info("Scheduled worker started")


@app.on_event("shutdown")
async def stop_scheduled_worker() -> None:
    global _scheduled_worker_task
    if _scheduled_worker_task is None:
        return
    _scheduled_worker_task.cancel()
    try:
        await _scheduled_worker_task
    except asyncio.CancelledError:
        pass
    _scheduled_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}
