"""
shipwatch metrics endpoint

GET /v1/metrics returns the update cycle metrics in the Prometheus text
format. Uses the same bearer token as the update trigger.
"""

from fastapi import APIRouter, Depends, Response

from api.update_routes import get_scheduler, require_api_token
from updates.metrics import METRICS_CONTENT_TYPE
from updates.scheduler import UpdateScheduler

router = APIRouter(prefix="/v1", tags=["metrics"])


@router.get("/metrics", dependencies=[Depends(require_api_token)])
async def get_metrics(scheduler: UpdateScheduler = Depends(get_scheduler)):
    """Prometheus scrape target"""
    return Response(content=scheduler.metrics.render(), media_type=METRICS_CONTENT_TYPE)
