from __future__ import annotations

from datetime import datetime, timezone
import logging
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.core import rate_limit, security
from thcplus.models.contact import ContactSubmission, SubmissionStatus
from thcplus.schemas.contact import ContactFormRequest

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Thank you for your message! We'll get back to you soon."


class ContactRateLimited(Exception):
    def __init__(self, wait: str) -> None:
        super().__init__(f"Too many submissions. Please try again in {wait}.")
        self.wait = wait


async def submit_contact_form(
    session: AsyncSession,
    payload: ContactFormRequest,
    *,
    ip_address: str,
    user_agent: str,
) -> ContactSubmission:
    """Persist a contact message after the per-IP limit check. Captcha is verified by the caller."""
    ip_hash = security.hash_ip_address(ip_address)
    limited = await rate_limit.check_rate_limit(ip_hash, rate_limit.contact_form_rate_limit)
    if not limited.success:
        raise ContactRateLimited(rate_limit.format_time_until_reset(limited.reset))

    submission = ContactSubmission(
        name=payload.name,
        email=str(payload.email),
        message=payload.message,
        ip_hash=ip_hash,
        user_agent=user_agent,
        status=SubmissionStatus.new,
    )
    session.add(submission)
    await session.commit()
    await session.refresh(submission)
    # Message body and sender details stay out of the logs.
    logger.info("contact_submission_created", extra={"submission_id": str(submission.id)})
    return submission


async def update_submission_status(
    session: AsyncSession,
    submission_id: UUID,
    new_status: SubmissionStatus,
    *,
    now: datetime | None = None,
) -> ContactSubmission:
    submission = await session.get(ContactSubmission, submission_id)
    if submission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found")
    submission.status = new_status
    if new_status == SubmissionStatus.replied:
        submission.replied_at = now or datetime.now(timezone.utc)
    session.add(submission)
    await session.commit()
    await session.refresh(submission)
    return submission
