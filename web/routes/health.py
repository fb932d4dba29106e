"""Health check and Prometheus export endpoints."""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST

from otpgate import __version__
from otpgate.utils.prometheus_metrics import get_metrics

router = APIRouter(tags=["health"])


async def check_database(request: Request) -> Dict[str, Any]:
    """
    Check database connectivity.

    Returns:
        Component status dictionary
    """
    db = getattr(request.app.state, "db", None)
    if db is None:
        return {"status": "unhealthy", "error": "not connected"}
    healthy = await db.health_check()
    return {"status": "healthy" if healthy else "unhealthy"}


@router.get("/health")
async def health_check(request: Request, response: Response) -> Dict[str, Any]:
    """
    Health check endpoint for monitoring and container orchestration.

    Returns 503 when the database is unreachable or the services are not
    running yet.
    """
    database = await check_database(request)
    container = getattr(request.app.state, "container", None)

    healthy = database["status"] == "healthy" and container is not None
    if not healthy:
        response.status_code = 503

    return {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "components": {
            "database": database,
            "sessions": container.get_status() if container is not None else None,
        },
    }


@router.get("/health/live")
async def liveness_probe() -> Dict[str, str]:
    """Liveness probe; always 200 while the process serves requests."""
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics() -> Response:
    """Prometheus metrics in text exposition format."""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)
