# app/main.py
import os
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db
from .deps import get_container
from .errors import AdmissionError, RateLimited
from .jobs.scheduler import start_scheduler

# Routers
from .routers.appointments import router as appointments_router
from .routers.waitlist import router as waitlist_router
from .routers.otp import router as otp_router
from .routers.admin import router as admin_router

# ──────────────────────────────────────────────────────────────────────────────
# LOGGING
# Controla niveles con variables de entorno:
#   LOG_LEVEL, SQLA_LOG_LEVEL, UVICORN_LOG_LEVEL
# ──────────────────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logging.getLogger("sqlalchemy.engine").setLevel(
    getattr(logging, os.getenv("SQLA_LOG_LEVEL", "WARNING"), logging.WARNING)
)
logging.getLogger("uvicorn.error").setLevel(
    getattr(logging, os.getenv("UVICORN_LOG_LEVEL", "INFO"), logging.INFO)
)
logging.getLogger("apscheduler").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# FastAPI App
# ──────────────────────────────────────────────────────────────────────────────
app = FastAPI(title=settings.APP_NAME)

app.include_router(appointments_router)
app.include_router(waitlist_router)
app.include_router(otp_router)
app.include_router(admin_router, prefix="/admin")  # ← el admin.py NO repite /admin

# ──────────────────────────────────────────────────────────────────────────────
# Errores de negocio → JSON con código estable
# ──────────────────────────────────────────────────────────────────────────────
@app.exception_handler(AdmissionError)
async def admission_error_handler(request: Request, exc: AdmissionError):
    if exc.retryable:
        logger.warning("%s %s → %s (reintentable)", request.method, request.url.path, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.code, "detail": str(exc), "retryable": exc.retryable},
    )

@app.exception_handler(RateLimited)
async def rate_limited_handler(request: Request, exc: RateLimited):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "ok": False,
            "error": exc.code,
            "detail": str(exc),
            "reset_time": exc.reset_time.isoformat(),
            "retryable": True,
        },
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )

# ──────────────────────────────────────────────────────────────────────────────
# Ciclo de vida
# ──────────────────────────────────────────────────────────────────────────────
_scheduler = None

@app.on_event("startup")
def on_startup():
    global _scheduler
    if settings.STORE_BACKEND == "sql":
        init_db()
    if settings.SCHEDULER_ENABLED:
        _scheduler = start_scheduler(get_container().jobs)
    logger.info("Startup completo: %s (%s)", settings.APP_NAME, settings.ENV)

@app.on_event("shutdown")
def on_shutdown():
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None

@app.get("/")
def root():
    return {"ok": True, "app": settings.APP_NAME, "env": settings.ENV}
