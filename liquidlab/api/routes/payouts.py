"""
Payout administration routes.
"""

from fastapi import APIRouter, Depends, Path, Query

import structlog

from liquidlab.api.dependencies import get_container, require_admin
from liquidlab.api.schemas.common import SuccessResponse, create_success_response
from liquidlab.api.schemas.revenue import PayoutRecordResponse
from liquidlab.services.container import ServiceContainer

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get(
    "/platforms/{platform_id}/history",
    response_model=SuccessResponse,
    summary="Payout History",
    description="Payout records for a platform, newest first"
)
async def get_payout_history(
    platform_id: int = Path(..., ge=1),
    limit: int = Query(50, ge=1, le=500),
    container: ServiceContainer = Depends(get_container)
):
    await container.registry.get_platform(platform_id)
    records = await container.payouts.payout_history(platform_id, limit=limit)
    return create_success_response(
        data=[PayoutRecordResponse.model_validate(r).model_dump(mode="json") for r in records]
    )


@router.get(
    "/readiness",
    response_model=SuccessResponse,
    summary="Payout Readiness",
    description="Unclaimed and undistributed fees, amounts owed and executor balance"
)
async def get_payout_readiness(container: ServiceContainer = Depends(get_container)):
    return create_success_response(data=await container.payouts.readiness())


@router.post(
    "/prepare",
    response_model=SuccessResponse,
    summary="Prepare Payouts",
    description="Create pending payout records for closed windows"
)
async def prepare_payouts(container: ServiceContainer = Depends(get_container)):
    counts = await container.payouts.prepare_payouts()
    logger.info("Manual payout preparation", **counts)
    return create_success_response(data=counts, message=f"{counts['created']} payout(s) prepared")


@router.post(
    "/execute",
    response_model=SuccessResponse,
    summary="Execute Payouts",
    description="Hand pending payouts to the payout executor"
)
async def execute_payouts(container: ServiceContainer = Depends(get_container)):
    counts = await container.payouts.execute_pending()
    return create_success_response(
        data=counts,
        message=f"{counts['completed']} completed, {counts['failed']} failed"
    )
