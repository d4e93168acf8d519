# app/api/health.py

from fastapi import APIRouter, Depends

from app.api.deps import get_document_service, get_worker_manager
from app.core.config import settings
from app.core.redis import redis_client
from app.notifications.dispatcher import notification_dispatcher
from app.services.document_service import DocumentService
from app.workers import WorkerManager

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "ok"}


@router.get("/health/detailed")
async def detailed_health_check(
    service: DocumentService = Depends(get_document_service),
    manager: WorkerManager = Depends(get_worker_manager),
):
    """Detailed health check including store, Redis and bot status"""

    health = {
        "status": "ok",
        "services": {},
        "channels": notification_dispatcher.channels,
        "bots": {info.worker_type: info.status.value for info in manager.get_all_status()},
    }

    # Check document store
    try:
        version = await service.store.get_version()
        health["services"]["store"] = f"ok (version {version})"
    except Exception as e:
        health["services"]["store"] = f"error: {str(e)}"
        health["status"] = "degraded"

    # Check Redis (only when sessions live there)
    if settings.SESSION_BACKEND == "redis":
        try:
            await redis_client.ping()
            health["services"]["redis"] = "connected"
        except Exception as e:
            health["services"]["redis"] = f"error: {str(e)}"
            health["status"] = "degraded"

    return health
