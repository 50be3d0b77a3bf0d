"""Square catalog/orders client used to mirror coupons as POS discounts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
import logging
from typing import Any, Protocol, assert_never
from uuid import uuid4

import httpx

from thcplus.core.config import Settings, settings
from thcplus.models.coupon import DiscountType

logger = logging.getLogger(__name__)

SEARCH_ORDERS_PAGE_SIZE = 500
USAGE_LOOKBACK_DAYS = 365
_LABEL_COLOR = "9da2a6"


class SquareError(Exception):
    """Raised for any transport, HTTP or payload failure talking to Square."""


@dataclass(frozen=True)
class DiscountDefinition:
    code: str
    discount_type: DiscountType
    value: float
    min_purchase: float | None = None


@dataclass(frozen=True)
class SquareDiscountRef:
    discount_id: str
    version: int


class DiscountProvider(Protocol):
    async def create_discount(self, definition: DiscountDefinition) -> SquareDiscountRef: ...

    async def update_discount(self, discount_id: str, version: int, definition: DiscountDefinition) -> SquareDiscountRef: ...

    async def get_discount_usage(self, discount_id: str) -> int: ...


def is_square_configured(config: Settings | None = None) -> bool:
    config = config or settings
    return bool((config.square_access_token or "").strip() and (config.square_location_id or "").strip())


def to_cents(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _percentage(value: float) -> str:
    return format(Decimal(str(value)).normalize(), "f")


def _money(amount: float, currency: str) -> dict[str, Any]:
    return {"amount": to_cents(amount), "currency": currency}


def discount_data(definition: DiscountDefinition, *, currency: str) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": definition.code,
        "pin_required": False,
        "label_color": _LABEL_COLOR,
    }
    match definition.discount_type:
        case DiscountType.percentage:
            data["discount_type"] = "FIXED_PERCENTAGE"
            data["percentage"] = _percentage(definition.value)
        case DiscountType.fixed:
            data["discount_type"] = "FIXED_AMOUNT"
            data["amount_money"] = _money(definition.value, currency)
        case _:
            assert_never(definition.discount_type)
    if definition.min_purchase:
        data["minimum_amount_money"] = _money(definition.min_purchase, currency)
    return data


def _parse_ref(payload: dict[str, Any], *, fallback_version: int) -> SquareDiscountRef:
    obj = payload.get("catalog_object") or {}
    discount_id = obj.get("id")
    if not isinstance(discount_id, str) or not discount_id:
        raise SquareError("Square response did not include a catalog object id")
    try:
        version = int(obj.get("version"))
    except (TypeError, ValueError):
        version = fallback_version
    return SquareDiscountRef(discount_id=discount_id, version=version)


def _order_uses_discount(order: dict[str, Any], discount_id: str) -> bool:
    return any((d or {}).get("catalog_object_id") == discount_id for d in order.get("discounts") or [])


class SquareClient:
    def __init__(
        self,
        *,
        access_token: str,
        location_id: str,
        environment: str = "sandbox",
        api_version: str = "2024-10-17",
        currency: str = "USD",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.access_token = access_token
        self.location_id = location_id
        self.environment = "production" if (environment or "").strip().lower() == "production" else "sandbox"
        self.api_version = api_version
        self.currency = currency
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "SquareClient":
        config = config or settings
        return cls(
            access_token=(config.square_access_token or "").strip(),
            location_id=(config.square_location_id or "").strip(),
            environment=config.square_environment,
            api_version=config.square_api_version,
            currency=config.square_currency,
            timeout=config.square_timeout_seconds,
        )

    @property
    def base_url(self) -> str:
        return "https://connect.squareup.com" if self.environment == "production" else "https://connect.squareupsandbox.com"

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Square-Version": self.api_version,
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, headers=headers, transport=self._transport
            ) as client:
                resp = await client.post(path, json=body)
        except httpx.HTTPError as exc:
            raise SquareError(f"Square request to {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            detail = ""
            try:
                errors = resp.json().get("errors") or []
                detail = "; ".join(str(e.get("detail") or e.get("code")) for e in errors if isinstance(e, dict))
            except ValueError:
                detail = resp.text[:200]
            raise SquareError(f"Square {path} returned {resp.status_code}: {detail or 'no detail'}")
        try:
            parsed = resp.json()
        except ValueError as exc:
            raise SquareError(f"Square {path} returned invalid JSON") from exc
        return parsed if isinstance(parsed, dict) else {}

    async def create_discount(self, definition: DiscountDefinition) -> SquareDiscountRef:
        body = {
            "idempotency_key": f"coupon-{definition.code}-{uuid4().hex}",
            "object": {
                "type": "DISCOUNT",
                "id": f"#{definition.code}",
                "discount_data": discount_data(definition, currency=self.currency),
            },
        }
        payload = await self._post("/v2/catalog/object", body)
        return _parse_ref(payload, fallback_version=1)

    async def update_discount(self, discount_id: str, version: int, definition: DiscountDefinition) -> SquareDiscountRef:
        body = {
            "idempotency_key": f"update-{discount_id}-{uuid4().hex}",
            "object": {
                "type": "DISCOUNT",
                "id": discount_id,
                "version": version,
                "discount_data": discount_data(definition, currency=self.currency),
            },
        }
        payload = await self._post("/v2/catalog/object", body)
        return _parse_ref(payload, fallback_version=version + 1)

    async def get_discount_usage(self, discount_id: str, *, now: datetime | None = None) -> int:
        """Count orders at this location in the last year that applied `discount_id`."""
        now = now or datetime.now(timezone.utc)
        start_at = (now - timedelta(days=USAGE_LOOKBACK_DAYS)).isoformat()
        usage = 0
        cursor: str | None = None
        while True:
            body: dict[str, Any] = {
                "location_ids": [self.location_id],
                "query": {"filter": {"date_time_filter": {"created_at": {"start_at": start_at}}}},
                "limit": SEARCH_ORDERS_PAGE_SIZE,
            }
            if cursor:
                body["cursor"] = cursor
            payload = await self._post("/v2/orders/search", body)
            usage += sum(1 for order in payload.get("orders") or [] if _order_uses_discount(order, discount_id))
            cursor = payload.get("cursor") or None
            if not cursor:
                return usage


def get_discount_provider() -> DiscountProvider | None:
    """FastAPI dependency: a Square client when credentials are configured, else None (local-only mode)."""
    if not is_square_configured():
        return None
    return SquareClient.from_settings()
