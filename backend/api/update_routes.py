"""
shipwatch HTTP update trigger

POST /v1/update runs an update cycle on demand. Optional `image` query
parameters (repeated or comma separated) narrow the cycle to containers
using those images.

SECURITY:
- Requires Authorization: Bearer <SHIPWATCH_HTTP_API_TOKEN>
- Shares the scheduler's lock, so a request waits for a running cycle
"""

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel

from updates.filters import filter_by_image
from updates.scheduler import UpdateScheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1", tags=["update"])

API_VERSION = "v1"


class UpdateSummary(BaseModel):
    scanned: int
    updated: int
    failed: int


class UpdateTiming(BaseModel):
    duration_ms: int


class UpdateResponse(BaseModel):
    """Result of a triggered update cycle"""
    summary: UpdateSummary
    timing: UpdateTiming
    timestamp: str
    api_version: str = API_VERSION
    error: Optional[str] = None


def get_scheduler(request: Request) -> UpdateScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Update scheduler is not running")
    return scheduler


async def require_api_token(request: Request, authorization: str = Header(None)):
    """
    Validate the bearer token.

    Raises:
        HTTPException: 401 if the header is missing or the token does not match
    """
    expected = getattr(request.app.state, "api_token", "")
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
        if expected and secrets.compare_digest(token, expected):
            return
    else:
        logger.warning("Missing or malformed Authorization header on update request")

    raise HTTPException(status_code=401, detail="Not authenticated - provide a valid API token")


def _parse_images(images: Optional[List[str]]) -> List[str]:
    parsed: List[str] = []
    for value in images or []:
        parsed.extend(part.strip() for part in value.split(",") if part.strip())
    return parsed


@router.post("/update", response_model=UpdateResponse, dependencies=[Depends(require_api_token)])
async def trigger_update(
    image: Optional[List[str]] = Query(None),
    scheduler: UpdateScheduler = Depends(get_scheduler)
):
    """
    Run one update cycle now.

    Returns:
        Summary counts and the cycle duration
    """
    images = _parse_images(image)
    start = time.monotonic()

    if images:
        logger.info(f"Update triggered via HTTP API for images: {', '.join(images)}")
        narrowed = filter_by_image(images, scheduler.params.filter)
        result = await scheduler.run_filtered_cycle(filter=narrowed)
    else:
        logger.info("Update triggered via HTTP API")
        result = await scheduler.run_cycle()

    duration_ms = int((time.monotonic() - start) * 1000)
    report = result.report

    return UpdateResponse(
        summary=UpdateSummary(
            scanned=len(report.scanned) if report else 0,
            updated=len(report.updated) if report else 0,
            failed=len(report.failed) if report else 0,
        ),
        timing=UpdateTiming(duration_ms=duration_ms),
        timestamp=datetime.now(timezone.utc).isoformat(),
        error=str(result.error) if result.error else None,
    )
