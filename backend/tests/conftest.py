import asyncio
import os
from collections.abc import Generator

import pytest
from sqlalchemy.ext import asyncio as sa_asyncio

# Keep pytest output high-signal by disabling outbound Sentry capture in tests.
os.environ["SENTRY_DSN"] = ""
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("SMTP_ENABLED", "false")

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker

from thcplus.core import rate_limit, security
from thcplus.db.base import Base
from thcplus.db.session import get_session
from thcplus import models  # noqa: F401
from thcplus.services import auth as auth_service
from thcplus.services.square import get_discount_provider


_TRACKED_ENGINES: list[sa_asyncio.AsyncEngine] = []
_ORIGINAL_CREATE_ASYNC_ENGINE = sa_asyncio.create_async_engine


def _tracked_create_async_engine(*args, **kwargs):  # type: ignore[no-untyped-def]
    engine = _ORIGINAL_CREATE_ASYNC_ENGINE(*args, **kwargs)
    _TRACKED_ENGINES.append(engine)
    return engine


sa_asyncio.create_async_engine = _tracked_create_async_engine  # type: ignore[assignment]

_LIMITERS = (
    rate_limit.contact_form_rate_limit,
    rate_limit.age_verification_rate_limit,
    rate_limit.api_rate_limit,
)


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _dispose_tracked_async_engines() -> Generator[None, None, None]:
    start_index = len(_TRACKED_ENGINES)
    yield
    pending = _TRACKED_ENGINES[start_index:]
    if not pending:
        return

    async def _dispose_all() -> None:
        for engine in pending:
            try:
                await engine.dispose()
            except Exception:
                continue

    try:
        asyncio.run(_dispose_all())
    except RuntimeError:
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(_dispose_all())
        finally:
            loop.close()

    del _TRACKED_ENGINES[start_index:]


@pytest.fixture(autouse=True)
def _clear_rate_limits() -> Generator[None, None, None]:
    # The in-memory rate-limit buckets are process-global and can leak across tests.
    rate_limit.reset_buckets(_LIMITERS)
    yield
    rate_limit.reset_buckets(_LIMITERS)


@pytest.fixture(autouse=True)
def _clear_dependency_overrides() -> Generator[None, None, None]:
    yield
    from thcplus.main import app

    app.dependency_overrides.clear()


@pytest.fixture
def session_factory() -> async_sessionmaker:
    engine = sa_asyncio.create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    return factory


@pytest.fixture
def client(session_factory: async_sessionmaker) -> TestClient:
    from thcplus.main import app

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_discount_provider] = lambda: None
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def admin_headers(session_factory: async_sessionmaker) -> dict[str, str]:
    async def _create() -> str:
        async with session_factory() as session:
            admin, _ = await auth_service.create_admin(
                session, email="admin@thcplus.com", password="Sup3r-secret!", name="Admin User"
            )
            return security.create_access_token(str(admin.id))

    return {"Authorization": f"Bearer {asyncio.run(_create())}"}
