import asyncio
import csv
from datetime import datetime, timedelta, timezone
from io import StringIO

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from thcplus.db.base import Base
from thcplus.models.age_verification import AgeVerification
from thcplus.services import compliance as compliance_service


def _verification(session_id: str, verified_at: datetime, user_agent: str = "UA") -> AgeVerification:
    return AgeVerification(
        session_id=session_id,
        ip_hash=f"hash-{session_id}",
        user_agent=user_agent,
        verified_at=verified_at,
        expires_at=verified_at + timedelta(hours=24),
    )


def _seed(session_factory: async_sessionmaker, *rows: AgeVerification) -> None:
    async def _store() -> None:
        async with session_factory() as session:
            session.add_all(list(rows))
            await session.commit()

    asyncio.run(_store())


def test_export_requires_admin(client: TestClient) -> None:
    resp = client.get("/api/admin/compliance/export")

    assert resp.status_code == 401
    assert resp.json() == {"detail": "Unauthorized", "code": None}

    forged = client.get("/api/admin/compliance/export", headers={"Authorization": "Bearer not-a-token"})
    assert forged.status_code == 401


def test_export_streams_csv_newest_first(
    client: TestClient, session_factory: async_sessionmaker, admin_headers: dict[str, str]
) -> None:
    older = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
    newer = datetime(2026, 3, 2, 18, 0, tzinfo=timezone.utc)
    _seed(
        session_factory,
        _verification("s-old", older, "Mozilla/5.0 (Windows NT 10.0, Win64, x64)"),
        _verification("s-new", newer),
    )

    resp = client.get("/api/admin/compliance/export", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    today = datetime.now(timezone.utc).date().isoformat()
    assert resp.headers["content-disposition"] == f'attachment; filename="age-verification-logs-{today}.csv"'

    rows = list(csv.reader(StringIO(resp.text)))
    assert rows[0] == ["Session ID", "IP Hash", "User Agent", "Verified At", "Expires At", "Created At"]
    assert [row[0] for row in rows[1:]] == ["s-new", "s-old"]
    assert all(len(row) == 6 for row in rows)
    old_row = rows[2]
    assert old_row[1] == "hash-s-old"
    assert old_row[2] == "Mozilla/5.0 (Windows NT 10.0; Win64; x64)"
    assert old_row[3] == "2026-03-01T09:30:00+00:00"
    assert old_row[4] == "2026-03-02T09:30:00+00:00"
    assert datetime.fromisoformat(old_row[5]).tzinfo is not None


def test_export_with_no_rows_is_header_only(client: TestClient, admin_headers: dict[str, str]) -> None:
    resp = client.get("/api/admin/compliance/export", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.text == "Session ID,IP Hash,User Agent,Verified At,Expires At,Created At\n"


def test_overview_returns_stats_and_first_page(
    client: TestClient, session_factory: async_sessionmaker, admin_headers: dict[str, str]
) -> None:
    now = datetime.now(timezone.utc)
    _seed(session_factory, *[_verification(f"s{i}", now - timedelta(days=60, minutes=i)) for i in range(55)])

    first = client.get("/api/admin/compliance", headers=admin_headers).json()
    second = client.get("/api/admin/compliance", params={"page": 2}, headers=admin_headers).json()

    assert first["stats"]["total"] == 55
    assert first["stats"]["last_30_days"] == 0
    assert first["page_size"] == 50
    assert first["total_pages"] == 2
    assert len(first["items"]) == 50
    assert first["items"][0]["session_id"] == "s0"
    assert len(second["items"]) == 5


def test_export_filename_uses_utc_date() -> None:
    assert (
        compliance_service.export_filename(datetime(2026, 1, 9, 23, 0, tzinfo=timezone.utc))
        == "age-verification-logs-2026-01-09.csv"
    )


@pytest.mark.anyio
async def test_stats_windows() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    now = datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc)
    async with factory() as session:
        session.add_all(
            [
                _verification("today", now - timedelta(hours=2)),
                _verification("yesterday", now - timedelta(hours=20)),
                _verification("week", now - timedelta(days=5)),
                _verification("month", now - timedelta(days=20)),
                _verification("ancient", now - timedelta(days=90)),
            ]
        )
        await session.commit()

    async with factory() as session:
        stats = await compliance_service.compliance_stats(session, now=now)

    assert stats == compliance_service.ComplianceStats(total=5, last_30_days=4, last_7_days=3, today=1)
