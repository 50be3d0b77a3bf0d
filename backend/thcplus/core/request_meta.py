from __future__ import annotations

from collections.abc import Mapping
from typing import Any

UNKNOWN = "unknown"


def resolve_client_ip(headers: Mapping[str, str], client: Any = None) -> str:
    """Client IP from proxy headers, falling back to the socket peer and then "unknown"."""
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    host = getattr(client, "host", None)
    return host or UNKNOWN


def resolve_user_agent(headers: Mapping[str, str]) -> str:
    return (headers.get("user-agent") or "").strip() or UNKNOWN
