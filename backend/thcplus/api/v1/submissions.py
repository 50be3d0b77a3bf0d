from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.core.dependencies import require_admin
from thcplus.db.session import get_session
from thcplus.models.admin import Admin
from thcplus.schemas.contact import ContactSubmissionRead, SubmissionStatusUpdate
from thcplus.services import contact as contact_service

router = APIRouter(prefix="/admin/submissions", tags=["submissions"])


@router.post("/update-status", response_model=ContactSubmissionRead)
async def update_submission_status(
    payload: SubmissionStatusUpdate,
    session: AsyncSession = Depends(get_session),
    _: Admin = Depends(require_admin),
) -> ContactSubmissionRead:
    submission = await contact_service.update_submission_status(session, payload.id, payload.status)
    return ContactSubmissionRead.model_validate(submission)
