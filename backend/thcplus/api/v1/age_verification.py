from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.core.config import settings
from thcplus.core.request_meta import resolve_client_ip, resolve_user_agent
from thcplus.db.session import get_session
from thcplus.schemas.age_verification import AgeSessionRead, AgeVerificationData, AgeVerificationRequest
from thcplus.schemas.common import ActionResponse
from thcplus.services import age_verification as age_service

router = APIRouter(prefix="/age-verification", tags=["age-verification"])


def _deny_redirect() -> RedirectResponse:
    return RedirectResponse(url=settings.age_gate_deny_redirect_url, status_code=status.HTTP_303_SEE_OTHER)


@router.post("", response_model=ActionResponse[AgeVerificationData])
async def verify_age(
    payload: AgeVerificationRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    # Declining is not rate limited and leaves no record.
    if not payload.accepted:
        return _deny_redirect()

    outcome = await age_service.verify_age(
        session,
        ip_address=resolve_client_ip(request.headers, request.client),
        user_agent=resolve_user_agent(request.headers),
    )
    if not outcome.success or outcome.session_id is None or outcome.expires_at is None:
        response.status_code = status.HTTP_429_TOO_MANY_REQUESTS
        return ActionResponse[AgeVerificationData](success=False, error=outcome.error)

    age_service.set_session_cookie(response, outcome.session_id)
    return ActionResponse(success=True, message=outcome.message, data=AgeVerificationData(expires_at=outcome.expires_at))


@router.post("/deny", response_class=RedirectResponse)
async def deny_age() -> RedirectResponse:
    return _deny_redirect()


@router.get("/session", response_model=AgeSessionRead)
async def read_session(request: Request) -> AgeSessionRead:
    return AgeSessionRead(verified=bool((request.cookies.get(settings.age_gate_cookie_name) or "").strip()))


@router.delete("/session", response_model=AgeSessionRead)
async def clear_session(response: Response) -> AgeSessionRead:
    age_service.clear_session_cookie(response)
    return AgeSessionRead(verified=False)
