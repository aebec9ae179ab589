"""
Fee lifecycle routes (claim from the venue, distribute to platforms).
"""

from fastapi import APIRouter, Depends, Path

import structlog

from liquidlab.api.dependencies import get_container, require_admin
from liquidlab.api.schemas.common import SuccessResponse, create_success_response
from liquidlab.api.schemas.revenue import (
    ClaimFeesRequest,
    DistributeFeesRequest,
    FeeStatusUpdateRequest,
    FeeTransactionResponse,
)
from liquidlab.core.exceptions import ValidationError
from liquidlab.services.container import ServiceContainer
from liquidlab.utils.time import to_naive_utc

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


def _check_range(start, end):
    if start > end:
        raise ValidationError("start_date must not be after end_date")


@router.post(
    "/claim",
    response_model=SuccessResponse,
    summary="Mark Fees Claimed",
    description="Mark pending fees created in a date range as claimed"
)
async def claim_fees(request: ClaimFeesRequest, container: ServiceContainer = Depends(get_container)):
    start, end = to_naive_utc(request.start_date), to_naive_utc(request.end_date)
    _check_range(start, end)
    updated = await container.ledger.mark_claimed(start, end, request.claim_tx_hash)
    return create_success_response(
        data={"fees_updated": updated, "claim_tx_hash": request.claim_tx_hash},
        message=f"{updated} fee(s) marked as claimed"
    )


@router.post(
    "/distribute",
    response_model=SuccessResponse,
    summary="Mark Fees Distributed",
    description="Mark a platform's claimed fees in a date range as distributed"
)
async def distribute_fees(request: DistributeFeesRequest, container: ServiceContainer = Depends(get_container)):
    start, end = to_naive_utc(request.start_date), to_naive_utc(request.end_date)
    _check_range(start, end)
    await container.registry.get_platform(request.platform_id)
    updated = await container.ledger.mark_distributed(request.platform_id, start, end)
    return create_success_response(
        data={"platform_id": request.platform_id, "fees_updated": updated},
        message=f"{updated} fee(s) marked as distributed"
    )


@router.post(
    "/{fee_id}/status",
    response_model=SuccessResponse,
    summary="Update Fee Status",
    description="Move one fee transaction to a new status"
)
async def update_fee_status(
    request: FeeStatusUpdateRequest,
    fee_id: int = Path(..., ge=1),
    container: ServiceContainer = Depends(get_container)
):
    fee = await container.ledger.update_status(fee_id, request.status, force=request.force)
    return create_success_response(
        data=FeeTransactionResponse.model_validate(fee).model_dump(mode="json"),
        message=f"Fee {fee_id} is now {fee.status}"
    )
