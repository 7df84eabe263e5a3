"""
Security event and session memory endpoints
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..auth.permissions import Permission
from ..auth.session import SecureSession
from ..core.exceptions import ValidationError
from ..core.logging import get_logger
from ..security.audit import Severity
from .dependencies import Authorize, Services, get_services

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["system"])


class MemoryActionRequest(BaseModel):
    action: str


@router.get("/security/events")
async def security_events(
    limit: int = Query(default=100, ge=1, le=1000),
    severity: Optional[Severity] = Query(default=None),
    user_id: Optional[str] = Query(default=None),
    session: SecureSession = Depends(Authorize(Permission.VIEW_SECURITY_LOGS, csrf=False)),
    services: Services = Depends(get_services),
):
    if user_id:
        events = services.sessions.get_user_security_events(user_id, limit=limit)
        if severity is not None:
            events = [e for e in events if e.severity == severity]
    else:
        events = services.sessions.get_security_events(limit=limit, severity=severity)
    return {"events": [event.to_dict() for event in events], "total": len(events)}


@router.get("/system/memory")
async def memory_stats(
    session: SecureSession = Depends(Authorize(Permission.ADMIN_API_ACCESS, csrf=False)),
    services: Services = Depends(get_services),
):
    return {
        "memory": services.sessions.get_memory_stats(),
        "under_pressure": services.sessions.is_under_memory_pressure(),
        "rate_limit_entries": await services.rate_limiter.store.size(),
    }


@router.post("/system/memory")
async def memory_action(
    payload: MemoryActionRequest,
    session: SecureSession = Depends(Authorize(Permission.ADMIN_API_ACCESS)),
    services: Services = Depends(get_services),
):
    if payload.action == "cleanup":
        removed = services.sessions.cleanup_expired_sessions()
        removed["rate_limit_entries"] = await services.rate_limiter.sweep()
    elif payload.action == "force-cleanup":
        removed = services.sessions.force_cleanup_all()
        await services.rate_limiter.clear()
    else:
        raise ValidationError(
            "Invalid action",
            details={"valid_actions": ["cleanup", "force-cleanup"]},
        )

    logger.warning(
        f"Memory action {payload.action} run by {session.user_id}",
        extra={"user_id": session.user_id},
    )
    return {
        "success": True,
        "action": payload.action,
        "removed": removed,
        "memory": services.sessions.get_memory_stats(),
    }
