# billing_engine/routes/health.py
"""Health and metrics endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from .. import __version__
from ..core.config import settings
from ..database import get_db, ping
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.health import HealthResponse

router = APIRouter(tags=["health"])
metrics_router = APIRouter(tags=["monitoring"])


@router.get("/health", response_model=HealthResponse)
def health_check(response: Response, db: Session = Depends(get_db)) -> HealthResponse:
    """Liveness plus a database round-trip; 503 when the database is unreachable."""
    database_ok = ping(db)
    if not database_ok:
        response.status_code = 503
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        service="billing-engine",
        version=__version__,
        environment=settings.environment,
        database="ok" if database_ok else "unreachable",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@metrics_router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
