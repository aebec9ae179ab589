"""
Revenue read routes for dashboards.
Serves the last aggregated state; ingestion problems never surface here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

import structlog

from liquidlab.api.dependencies import get_container, get_pagination_params
from liquidlab.api.schemas.common import (
    PaginationParams,
    PaginatedResponse,
    SuccessResponse,
    create_paginated_response,
    create_success_response,
)
from liquidlab.api.schemas.revenue import FeeTransactionResponse, RevenueSummaryResponse
from liquidlab.models.fee_transaction import FeeStatus
from liquidlab.services.container import ServiceContainer
from liquidlab.services.revenue_aggregator import parse_period
from liquidlab.utils.time import to_naive_utc

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/platforms/{platform_id}/pending-payouts",
    response_model=SuccessResponse,
    summary="Pending Payouts",
    description="Amounts still owed to a platform per payout window"
)
async def get_pending_payouts(
    platform_id: int = Path(..., ge=1),
    container: ServiceContainer = Depends(get_container)
):
    await container.registry.get_platform(platform_id)
    pending = await container.payouts.pending_payouts(platform_id)
    return create_success_response(
        data=[item.to_dict() for item in pending],
        message=f"{len(pending)} pending payout window(s)"
    )


@router.get(
    "/platforms/{platform_id}/fee-transactions",
    response_model=PaginatedResponse,
    summary="Fee Transactions",
    description="Ledger rows for a platform, newest first"
)
async def get_fee_transactions(
    platform_id: int = Path(..., ge=1),
    status: Optional[FeeStatus] = Query(None, description="Filter by fee status"),
    start_date: Optional[datetime] = Query(None, description="Created at or after (UTC)"),
    end_date: Optional[datetime] = Query(None, description="Created at or before (UTC)"),
    pagination: PaginationParams = Depends(get_pagination_params),
    container: ServiceContainer = Depends(get_container)
):
    await container.registry.get_platform(platform_id)
    rows, total = await container.ledger.list_transactions(
        platform_id,
        status=status.value if status else None,
        start_date=to_naive_utc(start_date),
        end_date=to_naive_utc(end_date),
        limit=pagination.limit,
        offset=pagination.offset
    )
    return create_paginated_response(
        data=[FeeTransactionResponse.model_validate(row).model_dump(mode="json") for row in rows],
        total=total,
        limit=pagination.limit,
        offset=pagination.offset
    )


@router.get(
    "/platforms/{platform_id}/summary/{period}",
    response_model=SuccessResponse,
    summary="Revenue Summary",
    description="Latest summary for a platform and period (daily, weekly, monthly, all-time)"
)
async def get_revenue_summary(
    platform_id: int = Path(..., ge=1),
    period: str = Path(...),
    container: ServiceContainer = Depends(get_container)
):
    revenue_period = parse_period(period)
    summary = await container.aggregator.get_summary(platform_id, revenue_period)
    if summary is None:
        return create_success_response(data=None, message="No revenue data for this period")

    return create_success_response(
        data=RevenueSummaryResponse.model_validate(summary).model_dump(mode="json")
    )


@router.get(
    "/platforms",
    response_model=SuccessResponse,
    summary="All Platform Revenues",
    description="Revenue summaries across platforms, highest platform earnings first"
)
async def get_all_platform_revenues(
    min_revenue: Optional[Decimal] = Query(None, ge=0, description="Minimum platform earnings"),
    period: Optional[str] = Query(None, description="Restrict to one period"),
    container: ServiceContainer = Depends(get_container)
):
    revenue_period = parse_period(period) if period else None
    summaries = await container.aggregator.get_all_platform_revenues(revenue_period, min_revenue)
    return create_success_response(
        data=[RevenueSummaryResponse.model_validate(s).model_dump(mode="json") for s in summaries]
    )


@router.get(
    "/contract",
    response_model=SuccessResponse,
    summary="Fee Contract",
    description="Fee rates and revenue split ratios currently applied"
)
async def get_fee_contract(container: ServiceContainer = Depends(get_container)):
    return create_success_response(data=container.calculator.describe())

