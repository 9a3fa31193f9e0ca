"""Abandoned cart recovery admin endpoints."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from app.core.auth import require_staff
from app.core.database import get_db
from app.core.errors import CommerceError, to_http_exception
from app.schemas.recovery import (
    CampaignResponse,
    CampaignUpdate,
    JourneyListItem,
    JourneyTimelineResponse,
    MaintenanceSummary,
    ProcessRequest,
    ProcessSummary,
    RecoveryInsightsResponse,
)
from app.services.campaign_service import CampaignSettings, RecoveryCampaignService
from app.services.journey_service import RecoveryJourneyService
from app.services.recovery_scheduler import RecoveryScheduler, get_recovery_scheduler

router = APIRouter()


@router.get(
    "/campaign",
    response_model=CampaignResponse,
    summary="Get recovery campaign",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def get_campaign(
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> CampaignSettings:
    return RecoveryCampaignService(db).get_campaign()


@router.put(
    "/campaign",
    response_model=CampaignResponse,
    summary="Update recovery campaign",
    responses={
        400: {"description": "Invalid campaign settings"},
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def update_campaign(
    data: CampaignUpdate,
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> CampaignSettings:
    """Update campaign settings and realign active journeys to them."""
    try:
        return RecoveryCampaignService(db).update_campaign(data.model_dump(exclude_unset=True))
    except CommerceError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/process",
    response_model=ProcessSummary,
    summary="Run a recovery pass now",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def process_recovery(
    data: ProcessRequest | None = None,
    _staff_id: UUID = Depends(require_staff),
    scheduler: RecoveryScheduler = Depends(get_recovery_scheduler),
) -> ProcessSummary:
    """Process due journeys immediately and return the pass counters."""
    data = data or ProcessRequest()
    stats = await scheduler.run_recovery_pass(limit=data.limit, max_batches=data.max_batches)
    return ProcessSummary(**stats.to_dict())


@router.post(
    "/maintenance",
    response_model=MaintenanceSummary,
    summary="Run the maintenance sweep now",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def run_maintenance(
    _staff_id: UUID = Depends(require_staff),
    scheduler: RecoveryScheduler = Depends(get_recovery_scheduler),
) -> MaintenanceSummary:
    """Promote quiet carts and close finished journeys."""
    return await scheduler.run_maintenance_pass()


@router.get(
    "/journeys",
    response_model=list[JourneyListItem],
    summary="List recovery journeys",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def list_journeys(
    response: Response,
    status: str = Query(default="all"),
    search: str = Query(default="", max_length=100),
    sort_by: str = Query(default="newest"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> list[dict[str, Any]]:
    """List journeys with status, search and sort options."""
    rows, total = RecoveryJourneyService(db).list_journeys(
        status=status, search=search, sort_by=sort_by, limit=limit, offset=offset
    )
    response.headers["X-Total-Count"] = str(total)
    return rows


@router.get(
    "/journeys/{journey_id}",
    response_model=JourneyTimelineResponse,
    summary="Get journey timeline",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "Journey not found"},
    },
)
async def get_journey_timeline(
    journey_id: UUID,
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> dict[str, Any]:
    """Get a journey with its attempts and discounts."""
    try:
        return RecoveryJourneyService(db).get_timeline(journey_id)
    except CommerceError as exc:
        raise to_http_exception(exc) from exc


@router.get(
    "/insights",
    response_model=RecoveryInsightsResponse,
    summary="Recovery insights",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def recovery_insights(
    days: int = Query(default=30, ge=1, le=365),
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> dict[str, Any]:
    return RecoveryJourneyService(db).get_insights(days)
