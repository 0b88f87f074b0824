from fastapi import APIRouter, Depends, Request
import logging

from ..services.container import Services
from ..utils.dependencies import get_services, require_internal_token
from ..utils.rate_limiter import get_rate_limit, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/internal", tags=["Internal"])


@router.api_route("/automation/retry", methods=["GET", "POST"], dependencies=[Depends(require_internal_token)])
@limiter.limit(get_rate_limit("automation_retry"))
async def run_automation_retry(
    request: Request,
    services: Services = Depends(get_services),
):
    """Cron entry point: re-drive eligible automation failures once"""
    summary = await services.retry_worker.run_once()
    return summary.to_dict()
