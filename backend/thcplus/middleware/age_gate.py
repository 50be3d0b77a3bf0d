from typing import Awaitable, Callable

from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from thcplus.core.config import settings
from thcplus.db import session as db_session
from thcplus.services import age_verification


def is_exempt(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in settings.age_gate_exempt_prefixes)


class AgeGateMiddleware(BaseHTTPMiddleware):
    """
    Redirect unverified visitors to the age-verification page.

    By default a non-empty session cookie is enough to pass; its expiry is
    enforced only by the browser. With `age_gate_verify_sessions` enabled the
    cookie value is also looked up against the stored audit rows and an
    unknown or expired session is cleared and redirected.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        path = request.url.path
        if is_exempt(path):
            return await call_next(request)

        session_id = (request.cookies.get(settings.age_gate_cookie_name) or "").strip()
        if not session_id:
            return RedirectResponse(url=settings.age_gate_redirect_path, status_code=307)

        if settings.age_gate_verify_sessions:
            async with db_session.SessionLocal() as session:
                active = await age_verification.is_session_active(session, session_id)
            if not active:
                redirect = RedirectResponse(url=settings.age_gate_redirect_path, status_code=307)
                age_verification.clear_session_cookie(redirect)
                return redirect

        return await call_next(request)
