from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.core.request_meta import resolve_client_ip, resolve_user_agent
from thcplus.db.session import get_session
from thcplus.schemas.common import ActionResponse
from thcplus.schemas.contact import ContactFormRequest
from thcplus.services import captcha as captcha_service
from thcplus.services import contact as contact_service
from thcplus.services import email as email_service

router = APIRouter(prefix="/contact", tags=["contact"])


@router.post("", response_model=ActionResponse[None])
async def submit_contact_form(
    payload: ContactFormRequest,
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
) -> ActionResponse[None]:
    ip_address = resolve_client_ip(request.headers, request.client)
    try:
        await captcha_service.verify(payload.captcha_token, remote_ip=ip_address)
    except HTTPException as exc:
        response.status_code = exc.status_code
        return ActionResponse(success=False, error=captcha_service.CAPTCHA_FAILED)

    try:
        submission = await contact_service.submit_contact_form(
            session, payload, ip_address=ip_address, user_agent=resolve_user_agent(request.headers)
        )
    except contact_service.ContactRateLimited as exc:
        response.status_code = status.HTTP_429_TOO_MANY_REQUESTS
        return ActionResponse(success=False, error=str(exc))

    background_tasks.add_task(
        email_service.send_contact_notification, submission.name, submission.email, submission.message
    )
    background_tasks.add_task(email_service.send_contact_confirmation, submission.email, submission.name)
    return ActionResponse(success=True, message=contact_service.SUCCESS_MESSAGE)
