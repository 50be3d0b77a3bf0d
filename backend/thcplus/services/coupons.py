from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import assert_never
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.models.coupon import Coupon, CouponRedemption, DiscountType
from thcplus.schemas.coupon import CouponCreate, CouponUpdate
from thcplus.services import coupon_sync
from thcplus.services.coupon_sync import SquareSynced, SquareSyncOutcome
from thcplus.services.square import DiscountProvider

logger = logging.getLogger(__name__)

MSG_INVALID = "Invalid coupon code"
MSG_INACTIVE = "This coupon is no longer active"
MSG_EXPIRED = "This coupon has expired"
MSG_NOT_STARTED = "This coupon is not yet valid"
MSG_EXHAUSTED = "This coupon has reached its maximum usage limit"
MSG_CUSTOMER_LIMIT = "You have already used this coupon the maximum number of times"
MSG_VALID = "Coupon is valid!"
MSG_DUPLICATE = "A coupon with this code already exists"

PERFORMANCE_TOP_N = 5


class CouponCodeTaken(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(MSG_DUPLICATE)
        self.code = code


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def compute_discount(discount_type: DiscountType, value: float, order_total: float) -> float:
    """Discount for `order_total`, never more than the order itself."""
    match discount_type:
        case DiscountType.percentage:
            amount = order_total * value / 100
        case DiscountType.fixed:
            amount = value
        case _:
            assert_never(discount_type)
    return min(amount, order_total)


@dataclass(frozen=True)
class CouponValidation:
    is_valid: bool
    message: str
    discount_amount: float
    final_total: float
    coupon: Coupon | None = None


def _rejected(message: str, order_total: float) -> CouponValidation:
    return CouponValidation(is_valid=False, message=message, discount_amount=0.0, final_total=order_total)


async def get_coupon_by_code(session: AsyncSession, code: str) -> Coupon | None:
    cleaned = normalize_code(code)
    if not cleaned:
        return None
    return (await session.execute(select(Coupon).where(Coupon.code == cleaned))).scalar_one_or_none()


async def count_customer_redemptions(session: AsyncSession, *, coupon_id: UUID, customer_email: str) -> int:
    total = await session.scalar(
        select(func.count(CouponRedemption.id)).where(
            CouponRedemption.coupon_id == coupon_id,
            CouponRedemption.customer_email == customer_email,
        )
    )
    return int(total or 0)


async def evaluate_coupon(
    session: AsyncSession,
    coupon: Coupon,
    *,
    order_total: float,
    customer_email: str | None = None,
    now: datetime | None = None,
) -> CouponValidation:
    """Lifecycle, capacity and eligibility checks in priority order; first failure wins."""
    now = now or _now()
    if not coupon.is_active:
        return _rejected(MSG_INACTIVE, order_total)
    expires_at = _as_utc(coupon.expires_at)
    if expires_at is not None and expires_at < now:
        return _rejected(MSG_EXPIRED, order_total)
    starts_at = _as_utc(coupon.starts_at)
    if starts_at is not None and starts_at > now:
        return _rejected(MSG_NOT_STARTED, order_total)
    if coupon.max_uses is not None and coupon.uses_count >= coupon.max_uses:
        return _rejected(MSG_EXHAUSTED, order_total)
    if coupon.min_purchase is not None and order_total < coupon.min_purchase:
        return _rejected(f"Minimum purchase of ${coupon.min_purchase:.2f} required", order_total)
    # No email means no per-customer check; callers wanting the cap must send one.
    if coupon.max_uses_per_customer is not None and customer_email:
        used = await count_customer_redemptions(session, coupon_id=coupon.id, customer_email=customer_email)
        if used >= coupon.max_uses_per_customer:
            return _rejected(MSG_CUSTOMER_LIMIT, order_total)

    discount = compute_discount(coupon.discount_type, coupon.value, order_total)
    return CouponValidation(
        is_valid=True,
        message=MSG_VALID,
        discount_amount=discount,
        final_total=order_total - discount,
        coupon=coupon,
    )


async def validate_coupon(
    session: AsyncSession,
    *,
    code: str,
    order_total: float,
    customer_email: str | None = None,
    now: datetime | None = None,
) -> CouponValidation:
    """Read-only check of a code against an order; never writes."""
    coupon = await get_coupon_by_code(session, code)
    if coupon is None:
        return _rejected(MSG_INVALID, order_total)
    return await evaluate_coupon(session, coupon, order_total=order_total, customer_email=customer_email, now=now)


@dataclass(frozen=True)
class RedemptionResult:
    success: bool
    message: str
    discount_amount: float = 0.0
    redemption_id: UUID | None = None


async def redeem_coupon(
    session: AsyncSession,
    *,
    code: str,
    order_total: float,
    customer_email: str | None = None,
    customer_phone: str | None = None,
    now: datetime | None = None,
) -> RedemptionResult:
    """
    Re-validate and redeem in one transaction.

    The usage increment is a conditional UPDATE guarded by the cap, so two
    concurrent redemptions of the last available use cannot both commit: the
    loser's UPDATE matches no row and its transaction is rolled back before
    any redemption row is written. The per-customer cap is checked again
    under the same row lock.
    """
    validation = await validate_coupon(
        session, code=code, order_total=order_total, customer_email=customer_email, now=now
    )
    if not validation.is_valid or validation.coupon is None:
        await session.rollback()
        return RedemptionResult(success=False, message=validation.message)

    coupon = validation.coupon
    try:
        claimed = await session.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                Coupon.is_active.is_(True),
                or_(Coupon.max_uses.is_(None), Coupon.uses_count < Coupon.max_uses),
            )
            .values(uses_count=Coupon.uses_count + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await session.rollback()
            return RedemptionResult(success=False, message=MSG_EXHAUSTED)

        # Recounted after the UPDATE: the coupon row lock serialises redemptions of the same coupon.
        if coupon.max_uses_per_customer is not None and customer_email:
            used = await count_customer_redemptions(session, coupon_id=coupon.id, customer_email=customer_email)
            if used >= coupon.max_uses_per_customer:
                await session.rollback()
                return RedemptionResult(success=False, message=MSG_CUSTOMER_LIMIT)

        redemption = CouponRedemption(
            coupon_id=coupon.id,
            customer_email=customer_email,
            customer_phone=customer_phone,
            discount_amount=validation.discount_amount,
            order_total=order_total,
            redeemed_at=now or _now(),
        )
        session.add(redemption)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("coupon_redeemed", extra={"coupon_code": coupon.code, "discount_amount": validation.discount_amount})
    return RedemptionResult(
        success=True,
        message=f"Coupon redeemed! You saved ${validation.discount_amount:.2f}",
        discount_amount=validation.discount_amount,
        redemption_id=redemption.id,
    )


@dataclass(frozen=True)
class CouponMutation:
    coupon: Coupon
    square: SquareSyncOutcome


async def create_coupon(
    session: AsyncSession,
    payload: CouponCreate,
    *,
    provider: DiscountProvider | None,
    created_by: str | None = None,
) -> CouponMutation:
    code = normalize_code(payload.code)
    if await get_coupon_by_code(session, code) is not None:
        raise CouponCodeTaken(code)

    outcome = await coupon_sync.mirror_new_coupon(
        provider,
        coupon_sync.DiscountDefinition(
            code=code,
            discount_type=payload.discount_type,
            value=payload.value,
            min_purchase=payload.min_purchase,
        ),
    )

    coupon = Coupon(
        code=code,
        description=payload.description.strip(),
        discount_type=payload.discount_type,
        value=payload.value,
        min_purchase=payload.min_purchase,
        max_uses=payload.max_uses,
        max_uses_per_customer=payload.max_uses_per_customer,
        is_active=True,
        starts_at=_as_utc(payload.starts_at),
        expires_at=_as_utc(payload.expires_at),
        uses_count=0,
        created_by=created_by,
    )
    if isinstance(outcome, SquareSynced):
        coupon.square_discount_id = outcome.discount_id
        coupon.square_version = outcome.version
        coupon.square_synced = True
        coupon.square_synced_at = _now()

    session.add(coupon)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise CouponCodeTaken(code)
    await session.refresh(coupon)
    logger.info("coupon_created", extra={"coupon_code": code, "square_synced": coupon.square_synced})
    return CouponMutation(coupon=coupon, square=outcome)


async def update_coupon(
    session: AsyncSession,
    coupon_id: UUID,
    payload: CouponUpdate,
    *,
    provider: DiscountProvider | None,
) -> CouponMutation:
    coupon = await session.get(Coupon, coupon_id)
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")

    data = payload.model_dump(exclude_unset=True)
    if "description" in data and data["description"] is not None:
        coupon.description = data["description"].strip()
    for field in ("discount_type", "value", "is_active"):
        if data.get(field) is not None:
            setattr(coupon, field, data[field])
    if "min_purchase" in data:
        coupon.min_purchase = data["min_purchase"]
    if "expires_at" in data:
        coupon.expires_at = _as_utc(data["expires_at"])

    outcome: SquareSyncOutcome = coupon_sync.NOT_CONFIGURED
    if {"discount_type", "value", "min_purchase"} & data.keys():
        outcome = await coupon_sync.mirror_updated_coupon(provider, coupon)
        if isinstance(outcome, SquareSynced):
            coupon.square_version = outcome.version
            coupon.square_synced = True
            coupon.square_synced_at = _now()

    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    return CouponMutation(coupon=coupon, square=outcome)


async def list_coupons(session: AsyncSession) -> list[tuple[Coupon, int]]:
    rows = (
        await session.execute(
            select(Coupon, func.count(CouponRedemption.id))
            .outerjoin(CouponRedemption, CouponRedemption.coupon_id == Coupon.id)
            .group_by(Coupon.id)
            .order_by(Coupon.created_at.desc())
        )
    ).all()
    return [(coupon, int(count or 0)) for coupon, count in rows]


@dataclass(frozen=True)
class CouponPerformance:
    name: str
    redemptions: int
    savings: int


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def coupon_performance(session: AsyncSession, *, now: datetime | None = None) -> list[CouponPerformance]:
    """Top active coupons by redemptions since the first of the current month."""
    since = _month_start(now or _now())
    redemptions = func.count(CouponRedemption.id)
    rows = (
        await session.execute(
            select(Coupon.code, redemptions, func.coalesce(func.sum(CouponRedemption.discount_amount), 0.0))
            .join(CouponRedemption, CouponRedemption.coupon_id == Coupon.id)
            .where(Coupon.is_active.is_(True), CouponRedemption.redeemed_at >= since)
            .group_by(Coupon.id, Coupon.code)
            .order_by(redemptions.desc(), Coupon.code)
            .limit(PERFORMANCE_TOP_N)
        )
    ).all()
    return [CouponPerformance(name=code, redemptions=int(count), savings=round(float(total))) for code, count, total in rows]
