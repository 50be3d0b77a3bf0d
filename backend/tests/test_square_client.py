import json
from datetime import datetime, timezone

import httpx
import pytest

from thcplus.core.config import settings
from thcplus.models.coupon import DiscountType
from thcplus.services import square
from thcplus.services.square import DiscountDefinition, SquareClient, SquareError


def _client(handler, **overrides) -> SquareClient:
    values = {
        "access_token": "sq-token",
        "location_id": "LOC1",
        "environment": "sandbox",
        "transport": httpx.MockTransport(handler),
    }
    values.update(overrides)
    return SquareClient(**values)


def test_discount_data_percentage_and_minimum() -> None:
    data = square.discount_data(
        DiscountDefinition(code="SUMMER25", discount_type=DiscountType.percentage, value=25, min_purchase=50),
        currency="USD",
    )
    assert data["name"] == "SUMMER25"
    assert data["discount_type"] == "FIXED_PERCENTAGE"
    assert data["percentage"] == "25"
    assert "amount_money" not in data
    assert data["minimum_amount_money"] == {"amount": 5000, "currency": "USD"}


@pytest.mark.parametrize(
    ("value", "expected"),
    [(33.3333333, "33.3333333"), (12.5, "12.5"), (100, "100"), (100.0, "100"), (7.25, "7.25")],
)
def test_discount_data_percentage_keeps_full_precision(value: float, expected: str) -> None:
    data = square.discount_data(
        DiscountDefinition(code="THIRD", discount_type=DiscountType.percentage, value=value), currency="USD"
    )
    assert data["percentage"] == expected


def test_discount_data_fixed_amount_in_cents() -> None:
    data = square.discount_data(
        DiscountDefinition(code="FLAT10", discount_type=DiscountType.fixed, value=10.5), currency="USD"
    )
    assert data["discount_type"] == "FIXED_AMOUNT"
    assert data["amount_money"] == {"amount": 1050, "currency": "USD"}
    assert "minimum_amount_money" not in data


def test_to_cents_rounds_half_up() -> None:
    assert square.to_cents(19.995) == 2000
    assert square.to_cents(0.1 + 0.2) == 30


@pytest.mark.anyio
async def test_create_discount_posts_catalog_object() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"catalog_object": {"id": "DISC123", "version": 1700000000}})

    ref = await _client(handler).create_discount(
        DiscountDefinition(code="SUMMER25", discount_type=DiscountType.percentage, value=25)
    )

    assert ref == square.SquareDiscountRef(discount_id="DISC123", version=1700000000)
    request = seen[0]
    assert str(request.url) == "https://connect.squareupsandbox.com/v2/catalog/object"
    assert request.headers["Authorization"] == "Bearer sq-token"
    assert request.headers["Square-Version"] == "2024-10-17"
    body = json.loads(request.content)
    assert body["object"]["type"] == "DISCOUNT"
    assert body["object"]["id"] == "#SUMMER25"
    assert body["idempotency_key"].startswith("coupon-SUMMER25-")


@pytest.mark.anyio
async def test_update_discount_sends_version_and_falls_back() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"catalog_object": {"id": "DISC123"}})

    ref = await _client(handler, environment="production").update_discount(
        "DISC123", 4, DiscountDefinition(code="SUMMER25", discount_type=DiscountType.percentage, value=30)
    )

    assert ref.version == 5
    assert bodies[0]["object"]["version"] == 4
    assert bodies[0]["object"]["discount_data"]["percentage"] == "30"


@pytest.mark.anyio
async def test_error_responses_raise_square_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"errors": [{"code": "UNAUTHORIZED", "detail": "bad token"}]})

    with pytest.raises(SquareError, match="401: bad token"):
        await _client(handler).create_discount(
            DiscountDefinition(code="X1", discount_type=DiscountType.fixed, value=1)
        )


@pytest.mark.anyio
async def test_transport_errors_raise_square_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SquareError):
        await _client(handler).get_discount_usage("DISC123")


@pytest.mark.anyio
async def test_usage_counts_matching_orders_across_pages() -> None:
    bodies: list[dict] = []
    pages = [
        {
            "orders": [
                {"id": "o1", "discounts": [{"catalog_object_id": "DISC123"}]},
                {"id": "o2", "discounts": [{"catalog_object_id": "OTHER"}]},
                {"id": "o3"},
            ],
            "cursor": "page-2",
        },
        {
            "orders": [
                {"id": "o4", "discounts": [{"catalog_object_id": "OTHER"}, {"catalog_object_id": "DISC123"}]},
                {"id": "o5", "discounts": [{"catalog_object_id": "DISC123"}]},
            ]
        },
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=pages[len(bodies) - 1])

    now = datetime(2026, 5, 15, tzinfo=timezone.utc)
    usage = await _client(handler).get_discount_usage("DISC123", now=now)

    assert usage == 3
    assert len(bodies) == 2
    assert bodies[0]["location_ids"] == ["LOC1"]
    assert bodies[0]["limit"] == 500
    assert "cursor" not in bodies[0]
    assert bodies[1]["cursor"] == "page-2"
    start_at = bodies[0]["query"]["filter"]["date_time_filter"]["created_at"]["start_at"]
    assert start_at.startswith("2025-05-15")


def test_provider_only_when_credentials_present(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "square_access_token", "tok")
    monkeypatch.setattr(settings, "square_location_id", "  ")
    assert square.is_square_configured() is False
    assert square.get_discount_provider() is None

    monkeypatch.setattr(settings, "square_location_id", "LOC1")
    provider = square.get_discount_provider()
    assert isinstance(provider, SquareClient)
    assert provider.base_url == "https://connect.squareupsandbox.com"
