from __future__ import annotations

from typing import Any

import httpx
from fastapi import HTTPException, status

from thcplus.core.config import settings

RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"
CAPTCHA_FAILED = "Captcha verification failed. Please try again."


def _require_recaptcha_secret() -> str:
    secret = (settings.recaptcha_secret_key or "").strip()
    if secret:
        return secret
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="CAPTCHA secret key missing")


def _require_captcha_token(token: str | None) -> str:
    normalized = (token or "").strip()
    if normalized:
        return normalized
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="CAPTCHA required")


def _recaptcha_payload(secret: str, token: str, remote_ip: str | None) -> dict[str, Any]:
    payload: dict[str, Any] = {"secret": secret, "response": token}
    if remote_ip:
        payload["remoteip"] = remote_ip
    return payload


async def _recaptcha_verify(payload: dict[str, Any]) -> dict[str, Any]:
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.post(RECAPTCHA_VERIFY_URL, data=payload)
    except httpx.HTTPError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=CAPTCHA_FAILED)
    if resp.status_code != 200:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=CAPTCHA_FAILED)
    if not resp.content:
        return {}
    parsed = resp.json()
    return parsed if isinstance(parsed, dict) else {}


async def verify(token: str | None, *, remote_ip: str | None = None) -> None:
    """Verify a reCAPTCHA token; fails closed when the secret is missing or Google is unreachable."""
    if not settings.captcha_enabled:
        return
    secret = _require_recaptcha_secret()
    normalized_token = _require_captcha_token(token)
    data = await _recaptcha_verify(_recaptcha_payload(secret, normalized_token, remote_ip))
    if not bool(data.get("success")):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=CAPTCHA_FAILED)
