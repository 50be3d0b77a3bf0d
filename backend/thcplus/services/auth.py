from __future__ import annotations

from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from thcplus.core import security
from thcplus.models.admin import Admin, AdminRole


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


async def get_admin_by_email(session: AsyncSession, email: str) -> Admin | None:
    result = await session.execute(select(Admin).where(Admin.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def authenticate_admin(session: AsyncSession, email: str, password: str) -> Admin:
    admin = await get_admin_by_email(session, email)
    if admin is None or not security.verify_password(password, admin.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    admin.last_login_at = datetime.now(timezone.utc)
    session.add(admin)
    await session.commit()
    return admin


async def create_admin(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    name: str,
    role: AdminRole = AdminRole.admin,
) -> tuple[Admin, bool]:
    """Create an admin unless one already exists for `email`; returns (admin, created)."""
    existing = await get_admin_by_email(session, email)
    if existing is not None:
        return existing, False
    admin = Admin(
        email=normalize_email(email),
        password_hash=security.hash_password(password),
        name=name,
        role=role,
    )
    session.add(admin)
    await session.commit()
    await session.refresh(admin)
    return admin, True
