from __future__ import annotations

import re
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from thcplus.models.coupon import DiscountType

COUPON_CODE_RE = re.compile(r"^[A-Z0-9]+$")


class CouponValidateRequest(BaseModel):
    code: str = Field(min_length=1)
    order_total: float = Field(ge=0)
    customer_email: EmailStr | None = None
    customer_phone: str | None = Field(default=None, max_length=40)


class CouponSummary(BaseModel):
    code: str
    description: str
    discount_type: DiscountType
    value: float


class CouponValidationData(BaseModel):
    is_valid: bool
    discount_amount: float
    final_total: float
    coupon: CouponSummary | None = None


class CouponCreate(BaseModel):
    code: str = Field(min_length=3, max_length=40)
    description: str = Field(min_length=1)
    discount_type: DiscountType
    value: float = Field(gt=0)
    min_purchase: float | None = Field(default=None, ge=0)
    max_uses: int | None = Field(default=None, gt=0)
    max_uses_per_customer: int | None = Field(default=None, gt=0)
    starts_at: datetime
    expires_at: datetime | None = None

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        cleaned = value.strip().upper()
        if not COUPON_CODE_RE.match(cleaned):
            raise ValueError("Code must be uppercase letters and numbers only")
        return cleaned


class CouponUpdate(BaseModel):
    description: str | None = Field(default=None, min_length=1)
    discount_type: DiscountType | None = None
    value: float | None = Field(default=None, gt=0)
    min_purchase: float | None = Field(default=None, ge=0)
    is_active: bool | None = None
    expires_at: datetime | None = None


class CouponRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    description: str
    discount_type: DiscountType
    value: float
    min_purchase: float | None = None
    max_uses: int | None = None
    max_uses_per_customer: int | None = None
    is_active: bool
    starts_at: datetime
    expires_at: datetime | None = None
    uses_count: int
    square_discount_id: str | None = None
    square_version: int | None = None
    square_synced: bool
    square_synced_at: datetime | None = None
    created_at: datetime
    redemption_count: int = 0


class CouponPerformanceRead(BaseModel):
    name: str
    redemptions: int
    savings: int


class SquareSyncRead(BaseModel):
    synced: bool
    discount_id: str | None = None
    version: int | None = None
    reason: str | None = None


class CouponMutationData(BaseModel):
    coupon: CouponRead
    square: SquareSyncRead


class CouponUsageSyncData(BaseModel):
    usage_count: int


class CouponBulkSyncData(BaseModel):
    synced_count: int
    failed_count: int = 0
