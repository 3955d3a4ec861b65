# app/routers/admin.py
from __future__ import annotations
from fastapi import APIRouter, Depends, Header, HTTPException
from datetime import datetime, timezone

from ..config import settings
from ..deps import Container, get_container
from .. import schemas

router = APIRouter(tags=["admin"])

# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def _require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    expected = (settings.ADMIN_TOKEN or "").strip()
    provided = (x_admin_token or "").strip()
    if not expected:
        raise HTTPException(status_code=403, detail="ADMIN_TOKEN no configurado")
    if provided != expected:
        raise HTTPException(status_code=401, detail="Token inválido")

# ──────────────────────────────────────────────────────────────────────────────
# Básicos
# (recuerda: main.py monta este router con prefix="/admin")
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/health", dependencies=[Depends(_require_admin)])
def admin_health(c: Container = Depends(get_container)):
    return {
        "ok": True,
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "store_backend": settings.STORE_BACKEND,
        "notification_failures": c.controller.notification_failures + c.sweeper.notification_failures,
        "ts": datetime.now(timezone.utc).isoformat(),
    }

# ──────────────────────────────────────────────────────────────────────────────
# Lista de espera
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/waitlist/stats", response_model=schemas.WaitlistStats, dependencies=[Depends(_require_admin)])
def admin_waitlist_stats(c: Container = Depends(get_container)):
    return schemas.WaitlistStats(**c.queue.stats())

@router.post("/waitlist/sweep", response_model=schemas.SweepResponse, dependencies=[Depends(_require_admin)])
def admin_waitlist_sweep(c: Container = Depends(get_container)):
    """Disparo manual del mismo barrido que corre el scheduler."""
    return schemas.SweepResponse(removed=c.sweeper.sweep())

# ──────────────────────────────────────────────────────────────────────────────
# Rate limit / notificaciones
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/rate-limits/stats", dependencies=[Depends(_require_admin)])
def admin_rate_limit_stats(c: Container = Depends(get_container)):
    return {"ok": True, **c.limiter.stats()}

@router.get("/notifications/stats", dependencies=[Depends(_require_admin)])
def admin_notification_stats(c: Container = Depends(get_container)):
    return {"ok": True, **c.delivery_log.stats()}

@router.get("/notifications/history/{student_id}", dependencies=[Depends(_require_admin)])
def admin_notification_history(student_id: str, c: Container = Depends(get_container)):
    items = [
        {
            "kind": r.kind,
            "status": r.status,
            "error": r.error,
            "body": r.body,
            "created_at": r.created_at.isoformat(),
        }
        for r in c.delivery_log.history(student_id)
    ]
    return {"ok": True, "student_id": student_id, "items": items}
