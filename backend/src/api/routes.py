import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.src.api.auth import get_current_user, require_admin
from backend.src.api.database import get_db
from backend.src.contracts.errors import AlertEngineError
from backend.src.contracts.models import PassResult, User, WebNotificationRead
from backend.src.notifications.repository import NotificationRepository
from backend.src.scheduler.scheduler import AlertScheduler

logger = structlog.get_logger(__name__)

limiter = Limiter(key_func=get_remote_address)

router = APIRouter()


# ── Request / Response schemas ────────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str
    db: str
    redis: str


class MarkAllReadResponse(BaseModel):
    updated: int


# ── Dependencies ──────────────────────────────────────────────────────────────


def get_scheduler(request: Request) -> AlertScheduler:
    scheduler: AlertScheduler | None = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Alert scheduler not running",
        )
    return scheduler


def get_redis(request: Request) -> aioredis.Redis | None:
    return getattr(request.app.state, "redis", None)


# ── Admin routes ──────────────────────────────────────────────────────────────


@router.post("/api/admin/alert-pass")
@limiter.limit("6/minute")
async def trigger_alert_pass(
    request: Request,
    admin: User = Depends(require_admin),
    scheduler: AlertScheduler = Depends(get_scheduler),
) -> PassResult:
    logger.info("alert_pass_requested", admin_id=admin.id)
    try:
        result = await scheduler.trigger_now()
    except AlertEngineError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc

    if result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An alert pass is already running",
        )
    return result


# ── Notification inbox ────────────────────────────────────────────────────────


@router.get("/api/notifications")
async def list_notifications(
    include_read: bool = False,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[WebNotificationRead]:
    repo = NotificationRepository(session)
    rows = await repo.list_for_user(current_user.id, include_read=include_read)
    return [row.to_schema() for row in rows]


@router.post("/api/notifications/read-all")
async def mark_all_notifications_read(
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MarkAllReadResponse:
    repo = NotificationRepository(session)
    updated = await repo.mark_all_as_read(current_user.id)
    return MarkAllReadResponse(updated=updated)


@router.post("/api/notifications/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_notification_read(
    notification_id: int,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    repo = NotificationRepository(session)
    if not await repo.mark_as_read(notification_id, current_user.id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )


# ── Health ────────────────────────────────────────────────────────────────────


@router.get("/health")
async def health_check(
    session: AsyncSession = Depends(get_db),
    redis_client: aioredis.Redis | None = Depends(get_redis),
) -> HealthResponse:
    db_status = "ok"
    redis_status = "ok"

    try:
        await session.execute(text("SELECT 1"))
    except Exception:  # noqa: BLE001
        logger.warning("health_db_unreachable", exc_info=True)
        db_status = "error"

    if redis_client is None:
        redis_status = "error"
    else:
        try:
            await redis_client.ping()
        except Exception:  # noqa: BLE001
            logger.warning("health_redis_unreachable", exc_info=True)
            redis_status = "error"

    overall = "ok" if db_status == "ok" and redis_status == "ok" else "degraded"

    return HealthResponse(
        status=overall,
        db=db_status,
        redis=redis_status,
    )
