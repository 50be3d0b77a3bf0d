from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.core.dependencies import require_admin
from thcplus.db.session import get_session
from thcplus.models.admin import Admin
from thcplus.models.coupon import Coupon
from thcplus.schemas.common import ActionResponse
from thcplus.schemas.coupon import (
    CouponBulkSyncData,
    CouponCreate,
    CouponMutationData,
    CouponPerformanceRead,
    CouponRead,
    CouponUpdate,
    CouponUsageSyncData,
    SquareSyncRead,
)
from thcplus.services import coupon_sync
from thcplus.services import coupons as coupons_service
from thcplus.services.coupon_sync import SquareSynced, SquareSyncOutcome
from thcplus.services.square import DiscountProvider, SquareError, get_discount_provider

router = APIRouter(prefix="/admin/coupons", tags=["admin-coupons"])


def _coupon_read(coupon: Coupon, redemption_count: int = 0) -> CouponRead:
    return CouponRead.model_validate(coupon).model_copy(update={"redemption_count": redemption_count})


def _square_read(outcome: SquareSyncOutcome) -> SquareSyncRead:
    if isinstance(outcome, SquareSynced):
        return SquareSyncRead(synced=True, discount_id=outcome.discount_id, version=outcome.version)
    return SquareSyncRead(synced=False, reason=outcome.reason)


def _mutation(result: coupons_service.CouponMutation) -> CouponMutationData:
    return CouponMutationData(coupon=_coupon_read(result.coupon), square=_square_read(result.square))


@router.post("", response_model=ActionResponse[CouponMutationData], status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreate,
    response: Response,
    session: AsyncSession = Depends(get_session),
    provider: DiscountProvider | None = Depends(get_discount_provider),
    admin: Admin = Depends(require_admin),
) -> ActionResponse[CouponMutationData]:
    try:
        result = await coupons_service.create_coupon(session, payload, provider=provider, created_by=admin.email)
    except coupons_service.CouponCodeTaken as exc:
        response.status_code = status.HTTP_409_CONFLICT
        return ActionResponse(success=False, error=str(exc))
    return ActionResponse(success=True, message="Coupon created successfully", data=_mutation(result))


@router.get("", response_model=list[CouponRead])
async def list_coupons(
    session: AsyncSession = Depends(get_session),
    _: Admin = Depends(require_admin),
) -> list[CouponRead]:
    rows = await coupons_service.list_coupons(session)
    return [_coupon_read(coupon, count) for coupon, count in rows]


@router.get("/performance", response_model=list[CouponPerformanceRead])
async def coupon_performance(
    session: AsyncSession = Depends(get_session),
    _: Admin = Depends(require_admin),
) -> list[CouponPerformanceRead]:
    rows = await coupons_service.coupon_performance(session)
    return [CouponPerformanceRead(name=row.name, redemptions=row.redemptions, savings=row.savings) for row in rows]


@router.post("/sync", response_model=ActionResponse[CouponBulkSyncData])
async def sync_all_coupons(
    session: AsyncSession = Depends(get_session),
    provider: DiscountProvider | None = Depends(get_discount_provider),
    _: Admin = Depends(require_admin),
) -> ActionResponse[CouponBulkSyncData]:
    result = await coupon_sync.sync_all_coupons_from_square(session, provider=provider)
    return ActionResponse(
        success=True,
        message=f"Synced {result.synced_count} coupons from Square",
        data=CouponBulkSyncData(synced_count=result.synced_count, failed_count=result.failed_count),
    )


@router.patch("/{coupon_id}", response_model=ActionResponse[CouponMutationData])
async def update_coupon(
    coupon_id: UUID,
    payload: CouponUpdate,
    session: AsyncSession = Depends(get_session),
    provider: DiscountProvider | None = Depends(get_discount_provider),
    _: Admin = Depends(require_admin),
) -> ActionResponse[CouponMutationData]:
    result = await coupons_service.update_coupon(session, coupon_id, payload, provider=provider)
    return ActionResponse(success=True, message="Coupon updated successfully", data=_mutation(result))


@router.post("/{coupon_id}/sync", response_model=ActionResponse[CouponUsageSyncData])
async def sync_coupon(
    coupon_id: UUID,
    response: Response,
    session: AsyncSession = Depends(get_session),
    provider: DiscountProvider | None = Depends(get_discount_provider),
    _: Admin = Depends(require_admin),
) -> ActionResponse[CouponUsageSyncData]:
    try:
        usage = await coupon_sync.sync_coupon_usage_from_square(session, coupon_id, provider=provider)
    except SquareError:
        response.status_code = status.HTTP_502_BAD_GATEWAY
        return ActionResponse(success=False, error="Failed to sync coupon usage from Square")
    return ActionResponse(
        success=True,
        message=f"Synced usage count: {usage}",
        data=CouponUsageSyncData(usage_count=usage),
    )
