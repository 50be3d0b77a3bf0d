from fastapi import APIRouter

from thcplus.api.v1 import admin_coupons
from thcplus.api.v1 import age_verification
from thcplus.api.v1 import auth
from thcplus.api.v1 import compliance
from thcplus.api.v1 import contact
from thcplus.api.v1 import coupons
from thcplus.api.v1 import submissions

api_router = APIRouter()

api_router.include_router(auth.router)
api_router.include_router(coupons.router)
api_router.include_router(admin_coupons.router)
api_router.include_router(age_verification.router)
api_router.include_router(compliance.router)
api_router.include_router(contact.router)
api_router.include_router(submissions.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
