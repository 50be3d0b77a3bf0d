from datetime import datetime, timedelta, timezone
import hashlib
from typing import Any, Optional
import uuid

import bcrypt
from jose import JWTError, jwt

from thcplus.core.config import settings


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(subject: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_exp_minutes)
    to_encode = {"sub": subject, "type": "access", "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict[str, Any]]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def hash_ip_address(ip_address: str) -> str:
    """One-way SHA-256 hex digest of an IP address, safe to persist and use as a limiter key."""
    return hashlib.sha256(ip_address.encode("utf-8")).hexdigest()


def generate_session_id() -> str:
    return str(uuid.uuid4())
