from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging

from fastapi import Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.core import rate_limit, security
from thcplus.core.config import settings
from thcplus.models.age_verification import AgeVerification

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Age verification successful"


class AgeVerificationAuditError(Exception):
    """The compliance audit row could not be written in an environment where it is mandatory."""


@dataclass(frozen=True)
class AgeVerificationOutcome:
    success: bool
    message: str | None = None
    error: str | None = None
    session_id: str | None = None
    expires_at: datetime | None = None


def session_window() -> timedelta:
    return timedelta(hours=settings.age_gate_session_hours)


async def verify_age(
    session: AsyncSession,
    *,
    ip_address: str,
    user_agent: str,
    now: datetime | None = None,
) -> AgeVerificationOutcome:
    """
    Record an accepted age attestation for the visitor.

    Rate limited per hashed IP. The audit row is mandatory in production:
    a failed write raises AgeVerificationAuditError and no session is issued.
    Elsewhere the failure is logged and the session is still granted.
    """
    ip_hash = security.hash_ip_address(ip_address)
    limited = await rate_limit.check_rate_limit(ip_hash, rate_limit.age_verification_rate_limit)
    if not limited.success:
        wait = rate_limit.format_time_until_reset(limited.reset)
        return AgeVerificationOutcome(success=False, error=f"Too many verification attempts. Please try again in {wait}.")

    verified_at = now or datetime.now(timezone.utc)
    session_id = security.generate_session_id()
    expires_at = verified_at + session_window()

    record = AgeVerification(
        session_id=session_id,
        ip_hash=ip_hash,
        user_agent=user_agent,
        verified_at=verified_at,
        expires_at=expires_at,
    )
    try:
        session.add(record)
        await session.commit()
    except Exception as exc:
        await session.rollback()
        if settings.is_production:
            raise AgeVerificationAuditError("Failed to record age verification") from exc
        logger.warning("age_verification_audit_skipped", extra={"ip_hash": ip_hash, "error": str(exc)})

    return AgeVerificationOutcome(success=True, message=SUCCESS_MESSAGE, session_id=session_id, expires_at=expires_at)


def set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        key=settings.age_gate_cookie_name,
        value=session_id,
        max_age=int(session_window().total_seconds()),
        httponly=True,
        secure=settings.secure_cookies,
        samesite="strict",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.age_gate_cookie_name,
        path="/",
        httponly=True,
        secure=settings.secure_cookies,
        samesite="strict",
    )


async def is_session_active(session: AsyncSession, session_id: str, *, now: datetime | None = None) -> bool:
    """Server-side check that `session_id` was issued and has not expired."""
    if not session_id:
        return False
    expires_at = (
        await session.execute(select(AgeVerification.expires_at).where(AgeVerification.session_id == session_id))
    ).scalar_one_or_none()
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at > (now or datetime.now(timezone.utc))
