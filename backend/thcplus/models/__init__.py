from thcplus.db.base import Base  # noqa: F401
from thcplus.models.admin import Admin, AdminRole  # noqa: F401
from thcplus.models.age_verification import AgeVerification  # noqa: F401
from thcplus.models.contact import ContactSubmission, SubmissionStatus  # noqa: F401
from thcplus.models.coupon import Coupon, CouponRedemption, DiscountType  # noqa: F401

__all__ = [
    "Base",
    "Admin",
    "AdminRole",
    "AgeVerification",
    "ContactSubmission",
    "SubmissionStatus",
    "Coupon",
    "CouponRedemption",
    "DiscountType",
]
