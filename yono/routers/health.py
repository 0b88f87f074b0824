"""
Health Check Endpoints

- /health       - Liveness (process is up)
- /health/ready - Readiness (row store answers)
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
import time

from ..config import settings
from ..services.container import Services
from ..services.data_store import StoreError
from ..utils.dependencies import get_services

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def liveness():
    return {
        "status": "ok",
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness(services: Services = Depends(get_services)):
    start = time.time()
    try:
        await services.store.select_many("bookings", limit=1)
    except StoreError as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "store": settings.data_store_backend, "error": str(e)[:100]},
        )
    return {
        "status": "ready",
        "store": settings.data_store_backend,
        "latency_ms": round((time.time() - start) * 1000, 2),
    }
