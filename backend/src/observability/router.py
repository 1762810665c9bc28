"""Observability endpoints: Prometheus metrics, health and readiness."""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from database import get_db
from .health import (
    check_database_health,
    check_link_integrity,
    get_overall_health,
    HealthStatus,
)

router = APIRouter(tags=["Observability"])


@router.get("/metrics", include_in_schema=False)
def metrics():
    """Expose Prometheus metrics in text exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/health", summary="Health check endpoint")
def health_check(db: Session = Depends(get_db)):
    """Database connectivity plus link integrity.

    Returns 200 when healthy or degraded, 503 when unhealthy.
    """
    components = {"database": check_database_health(db)}
    if components["database"].status == HealthStatus.HEALTHY:
        components["link_integrity"] = check_link_integrity(db)

    overall_status = get_overall_health(components)
    response_data = {
        "status": overall_status.value,
        "components": {
            name: {
                "status": comp.status.value,
                "message": comp.message,
                "latency_ms": comp.latency_ms,
            }
            for name, comp in components.items()
        },
    }
    status_code = 200 if overall_status != HealthStatus.UNHEALTHY else 503
    return JSONResponse(content=response_data, status_code=status_code)


@router.get("/ready", summary="Readiness check endpoint")
def readiness_check(db: Session = Depends(get_db)):
    """Ready as soon as the database answers."""
    db_health = check_database_health(db)
    if db_health.status == HealthStatus.HEALTHY:
        return {"status": "ready", "message": "Application is ready to serve traffic"}
    return JSONResponse(content={"status": "not_ready", "message": db_health.message}, status_code=503)
