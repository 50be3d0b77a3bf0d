from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.core import security
from thcplus.core.config import settings
from thcplus.core.rate_limit import api_rate_limit, per_ip_limiter
from thcplus.db.session import get_session
from thcplus.schemas.auth import AdminLoginRequest, TokenResponse
from thcplus.services import auth as auth_service

router = APIRouter(prefix="/admin/auth", tags=["auth"])

login_rate_limit = per_ip_limiter(api_rate_limit)


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: AdminLoginRequest,
    session: AsyncSession = Depends(get_session),
    _: None = Depends(login_rate_limit),
) -> TokenResponse:
    admin = await auth_service.authenticate_admin(session, payload.email, payload.password)
    return TokenResponse(
        access_token=security.create_access_token(str(admin.id)),
        expires_in=settings.access_token_exp_minutes * 60,
    )
