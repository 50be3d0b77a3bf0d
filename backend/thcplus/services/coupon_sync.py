"""Mirroring coupons into the Square catalog and reconciling usage counts back."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.models.coupon import Coupon
from thcplus.services.square import DiscountDefinition, DiscountProvider, SquareDiscountRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SquareSynced:
    discount_id: str
    version: int


@dataclass(frozen=True)
class SquareSyncSkipped:
    reason: str


SquareSyncOutcome = SquareSynced | SquareSyncSkipped

NOT_CONFIGURED = SquareSyncSkipped(reason="square_not_configured")


def definition_for(coupon: Coupon) -> DiscountDefinition:
    return DiscountDefinition(
        code=coupon.code,
        discount_type=coupon.discount_type,
        value=coupon.value,
        min_purchase=coupon.min_purchase,
    )


async def mirror_new_coupon(provider: DiscountProvider | None, definition: DiscountDefinition) -> SquareSyncOutcome:
    """Create the POS discount; failures degrade to a skipped outcome instead of raising."""
    if provider is None:
        return NOT_CONFIGURED
    try:
        ref: SquareDiscountRef = await provider.create_discount(definition)
    except Exception as exc:
        logger.warning("square_discount_create_failed", extra={"coupon_code": definition.code, "error": str(exc)})
        return SquareSyncSkipped(reason=f"square_error: {exc}")
    return SquareSynced(discount_id=ref.discount_id, version=ref.version)


async def mirror_updated_coupon(provider: DiscountProvider | None, coupon: Coupon) -> SquareSyncOutcome:
    if provider is None:
        return NOT_CONFIGURED
    if not coupon.square_discount_id or coupon.square_version is None:
        return SquareSyncSkipped(reason="not_linked")
    try:
        ref = await provider.update_discount(coupon.square_discount_id, coupon.square_version, definition_for(coupon))
    except Exception as exc:
        logger.warning("square_discount_update_failed", extra={"coupon_code": coupon.code, "error": str(exc)})
        return SquareSyncSkipped(reason=f"square_error: {exc}")
    return SquareSynced(discount_id=ref.discount_id, version=ref.version)


def _require_provider(provider: DiscountProvider | None) -> DiscountProvider:
    if provider is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Square integration is not configured")
    return provider


async def sync_coupon_usage_from_square(
    session: AsyncSession,
    coupon_id: UUID,
    *,
    provider: DiscountProvider | None,
    now: datetime | None = None,
) -> int:
    """
    Overwrite the local uses_count with Square's order history count.

    Square is treated as the source of truth only here; real-time validation
    never consults it. Provider errors propagate to the caller.
    """
    provider = _require_provider(provider)
    coupon = await session.get(Coupon, coupon_id)
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")
    if not coupon.square_discount_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Coupon is not linked to Square")

    usage = await provider.get_discount_usage(coupon.square_discount_id)
    coupon.uses_count = int(usage)
    coupon.square_synced = True
    coupon.square_synced_at = now or datetime.now(timezone.utc)
    session.add(coupon)
    await session.commit()
    logger.info("square_usage_synced", extra={"coupon_code": coupon.code, "usage_count": usage})
    return int(usage)


@dataclass(frozen=True)
class BulkSyncResult:
    synced_count: int
    failed_count: int


async def sync_all_coupons_from_square(
    session: AsyncSession,
    *,
    provider: DiscountProvider | None,
    now: datetime | None = None,
) -> BulkSyncResult:
    """Sync every Square-linked coupon in turn; one failing coupon is logged and skipped."""
    provider = _require_provider(provider)
    coupon_ids = (
        await session.execute(
            select(Coupon.id).where(Coupon.square_discount_id.is_not(None)).order_by(Coupon.created_at)
        )
    ).scalars().all()

    synced = 0
    failed = 0
    for coupon_id in coupon_ids:
        try:
            await sync_coupon_usage_from_square(session, coupon_id, provider=provider, now=now)
        except Exception as exc:
            await session.rollback()
            failed += 1
            logger.warning("square_usage_sync_failed", extra={"coupon_id": str(coupon_id), "error": str(exc)})
            continue
        synced += 1
    return BulkSyncResult(synced_count=synced, failed_count=failed)
