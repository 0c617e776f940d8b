"""
Health Check Endpoint
"""
import logging

from fastapi import APIRouter, Depends

from salescaller.api.v1.dependencies import get_container
from salescaller.container import Container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(container: Container = Depends(get_container)):
    """
    Health check endpoint.

    Returns the store backend, the active providers and per-lane queue
    counts. A Redis failure degrades the status instead of erroring.
    """
    health = {
        "status": "healthy",
        "store": container.store.name,
        "providers": {
            "calling": container.call_provider.name,
            "payment": container.payment_provider.name,
            "messaging": container.messaging_provider.name,
        },
    }

    try:
        health["queues"] = await container.queue.get_all_stats()
    except Exception as e:
        logger.error(f"Queue health check failed: {e}")
        health["status"] = "degraded"
        health["queues"] = f"error: {str(e)}"

    return health
