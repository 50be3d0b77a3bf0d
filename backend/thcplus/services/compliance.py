from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from io import StringIO
import math

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.models.age_verification import AgeVerification

EXPORT_COLUMNS = ["Session ID", "IP Hash", "User Agent", "Verified At", "Expires At", "Created At"]
PAGE_SIZE = 50


def _iso(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def export_filename(now: datetime | None = None) -> str:
    day = (now or datetime.now(timezone.utc)).date().isoformat()
    return f"age-verification-logs-{day}.csv"


async def export_verifications_csv(session: AsyncSession) -> str:
    """All audit rows newest first, one CSV line each; commas in user agents become semicolons."""
    rows = (
        await session.execute(select(AgeVerification).order_by(AgeVerification.verified_at.desc()))
    ).scalars().all()

    buf = StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for row in rows:
        writer.writerow(
            [
                row.session_id,
                row.ip_hash,
                (row.user_agent or "").replace(",", ";"),
                _iso(row.verified_at),
                _iso(row.expires_at),
                _iso(row.created_at),
            ]
        )
    return buf.getvalue()


@dataclass(frozen=True)
class ComplianceStats:
    total: int
    last_30_days: int
    last_7_days: int
    today: int


async def _count_since(session: AsyncSession, since: datetime | None) -> int:
    stmt = select(func.count(AgeVerification.id))
    if since is not None:
        stmt = stmt.where(AgeVerification.verified_at >= since)
    return int(await session.scalar(stmt) or 0)


async def compliance_stats(session: AsyncSession, *, now: datetime | None = None) -> ComplianceStats:
    now = now or datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return ComplianceStats(
        total=await _count_since(session, None),
        last_30_days=await _count_since(session, now - timedelta(days=30)),
        last_7_days=await _count_since(session, now - timedelta(days=7)),
        today=await _count_since(session, midnight),
    )


@dataclass(frozen=True)
class VerificationPage:
    items: list[AgeVerification]
    page: int
    page_size: int
    total_items: int
    total_pages: int


async def list_verifications(session: AsyncSession, *, page: int = 1, page_size: int = PAGE_SIZE) -> VerificationPage:
    page = max(1, page)
    total = await _count_since(session, None)
    items = (
        await session.execute(
            select(AgeVerification)
            .order_by(AgeVerification.verified_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()
    return VerificationPage(
        items=list(items),
        page=page,
        page_size=page_size,
        total_items=total,
        total_pages=math.ceil(total / page_size),
    )
