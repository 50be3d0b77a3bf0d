import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker

from thcplus.core import security
from thcplus.core.rate_limit import api_rate_limit
from thcplus.services import auth as auth_service


def _login(client: TestClient, email: str = "admin@thcplus.com", password: str = "Sup3r-secret!"):
    return client.post("/api/admin/auth/login", json={"email": email, "password": password})


def test_login_issues_bearer_token(
    client: TestClient, session_factory: async_sessionmaker, admin_headers: dict[str, str]
) -> None:
    resp = _login(client, email="Admin@THCPlus.com")

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == 24 * 60 * 60
    assert security.decode_token(body["access_token"])["type"] == "access"

    overview = client.get("/api/admin/compliance", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert overview.status_code == 200

    async def _last_login():
        async with session_factory() as session:
            admin = await auth_service.get_admin_by_email(session, "admin@thcplus.com")
            return admin.last_login_at

    assert asyncio.run(_last_login()) is not None


def test_wrong_credentials_share_one_error(client: TestClient, admin_headers: dict[str, str]) -> None:
    wrong_password = _login(client, password="nope")
    unknown_admin = _login(client, email="ghost@thcplus.com")

    assert wrong_password.status_code == unknown_admin.status_code == 401
    assert wrong_password.json() == unknown_admin.json() == {"detail": "Invalid credentials", "code": None}


def test_login_is_rate_limited(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(api_rate_limit, "limit", 2)

    assert _login(client).status_code == 401
    assert _login(client).status_code == 401
    blocked = _login(client)

    assert blocked.status_code == 429
    assert blocked.json()["detail"].startswith("Too many requests. Please try again in ")
    assert int(blocked.headers["Retry-After"]) > 0


@pytest.mark.parametrize(
    "token",
    [
        "garbage",
        security.create_access_token("not-a-uuid"),
        security.create_access_token("00000000-0000-0000-0000-000000000000"),
    ],
)
def test_invalid_tokens_are_unauthorized(client: TestClient, token: str) -> None:
    resp = client.get("/api/admin/coupons", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401
    assert resp.json()["detail"] == "Unauthorized"


@pytest.mark.anyio
async def test_create_admin_is_idempotent() -> None:
    from sqlalchemy.ext.asyncio import create_async_engine

    from thcplus.db.base import Base
    from thcplus.models.admin import AdminRole

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async with factory() as session:
        first, created = await auth_service.create_admin(
            session, email="Owner@THCPlus.com", password="pw-one", name="Owner", role=AdminRole.super_admin
        )
        again, created_again = await auth_service.create_admin(
            session, email="owner@thcplus.com", password="pw-two", name="Someone"
        )

    assert created is True and created_again is False
    assert again.id == first.id
    assert first.email == "owner@thcplus.com"
    assert first.role == AdminRole.super_admin
    assert security.verify_password("pw-one", again.password_hash)
    assert not security.verify_password("pw-two", again.password_hash)
