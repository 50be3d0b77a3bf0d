from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.db.session import get_session
from thcplus.schemas.common import ActionResponse
from thcplus.schemas.coupon import CouponSummary, CouponValidateRequest, CouponValidationData
from thcplus.services import coupons as coupons_service

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/validate", response_model=ActionResponse[CouponValidationData])
async def validate_coupon(
    payload: CouponValidateRequest,
    session: AsyncSession = Depends(get_session),
) -> ActionResponse[CouponValidationData]:
    result = await coupons_service.validate_coupon(
        session,
        code=payload.code,
        order_total=payload.order_total,
        customer_email=str(payload.customer_email) if payload.customer_email else None,
    )
    summary = None
    if result.is_valid and result.coupon is not None:
        summary = CouponSummary(
            code=result.coupon.code,
            description=result.coupon.description,
            discount_type=result.coupon.discount_type,
            value=result.coupon.value,
        )
    return ActionResponse(
        success=True,
        message=result.message,
        data=CouponValidationData(
            is_valid=result.is_valid,
            discount_amount=result.discount_amount,
            final_total=result.final_total,
            coupon=summary,
        ),
    )


@router.post("/redeem", response_model=ActionResponse[None])
async def redeem_coupon(
    payload: CouponValidateRequest,
    session: AsyncSession = Depends(get_session),
) -> ActionResponse[None]:
    result = await coupons_service.redeem_coupon(
        session,
        code=payload.code,
        order_total=payload.order_total,
        customer_email=str(payload.customer_email) if payload.customer_email else None,
        customer_phone=payload.customer_phone,
    )
    if not result.success:
        return ActionResponse(success=False, error=result.message)
    return ActionResponse(success=True, message=result.message)
