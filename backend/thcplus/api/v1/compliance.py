from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.core.dependencies import require_admin
from thcplus.db.session import get_session
from thcplus.models.admin import Admin
from thcplus.schemas.age_verification import AgeVerificationRead, ComplianceOverview, ComplianceStatsRead
from thcplus.services import compliance as compliance_service

router = APIRouter(prefix="/admin/compliance", tags=["compliance"])


@router.get("", response_model=ComplianceOverview)
async def compliance_overview(
    page: int = Query(default=1, ge=1),
    session: AsyncSession = Depends(get_session),
    _: Admin = Depends(require_admin),
) -> ComplianceOverview:
    stats = await compliance_service.compliance_stats(session)
    listing = await compliance_service.list_verifications(session, page=page)
    return ComplianceOverview(
        stats=ComplianceStatsRead(
            total=stats.total,
            last_30_days=stats.last_30_days,
            last_7_days=stats.last_7_days,
            today=stats.today,
        ),
        items=[AgeVerificationRead.model_validate(row) for row in listing.items],
        page=listing.page,
        page_size=listing.page_size,
        total_items=listing.total_items,
        total_pages=listing.total_pages,
    )


@router.get("/export", response_class=StreamingResponse)
async def export_age_verifications_csv(
    session: AsyncSession = Depends(get_session),
    _: Admin = Depends(require_admin),
) -> StreamingResponse:
    content = await compliance_service.export_verifications_csv(session)
    headers = {"Content-Disposition": f'attachment; filename="{compliance_service.export_filename()}"'}
    return StreamingResponse(iter([content]), media_type="text/csv", headers=headers)
