"""GET /api/catalog の HTTP 契約 (TestClient 使用)"""

import asyncio
from decimal import Decimal

import httpx
from fastapi.testclient import TestClient

from catalog_service.aggregator import FanoutAggregator
from catalog_service.config import Settings
from catalog_service.errors import UpstreamUnreachable
from catalog_service.main import build_aggregator, create_app
from catalog_service.models import ProductRecord
from upstream_stubs import StubCatalogSource, StubStockSource


def test_catalog_joins_products_and_stock() -> None:
    catalog = StubCatalogSource(
        [
            ProductRecord(id="p1", name="Widget", price=Decimal("9.99")),
            ProductRecord(id="p2", name="Gadget", description="big", price=Decimal("5")),
        ]
    )
    stock = StubStockSource(stock={"p1": True, "p2": False})
    app = create_app(aggregator=FanoutAggregator(catalog, stock))

    with TestClient(app) as client:
        resp = client.get("/api/catalog")

    assert resp.status_code == 200
    assert resp.json() == [
        {"id": "p1", "name": "Widget", "description": "", "price": 9.99, "inStock": True},
        {"id": "p2", "name": "Gadget", "description": "big", "price": 5.0, "inStock": False},
    ]


def test_catalog_source_down_returns_503() -> None:
    catalog = StubCatalogSource(error=UpstreamUnreachable("catalog-source", "refused"))
    app = create_app(aggregator=FanoutAggregator(catalog, StubStockSource()))

    with TestClient(app) as client:
        resp = client.get("/api/catalog")

    assert resp.status_code == 503
    assert "catalog source unavailable" in resp.json()["detail"]


def test_diagnostics_counts_degraded_items_outside_the_response() -> None:
    catalog = StubCatalogSource([ProductRecord(id="p1", name="Widget", price=Decimal("1"))])
    stock = StubStockSource(failures={"p1": UpstreamUnreachable("stock-source", "down")})
    app = create_app(aggregator=FanoutAggregator(catalog, stock))

    with TestClient(app) as client:
        body = client.get("/api/catalog").json()
        diagnostics = client.get("/api/catalog/diagnostics").json()

    assert body == [
        {"id": "p1", "name": "Widget", "description": "", "price": 1.0, "inStock": False}
    ]
    assert diagnostics["degraded_items"] == 1
    assert diagnostics["requests"] == 1


def test_health() -> None:
    app = create_app(aggregator=FanoutAggregator(StubCatalogSource(), StubStockSource()))

    with TestClient(app) as client:
        assert client.get("/health").json() == {
            "status": "ok",
            "service": "catalog-service",
        }


def test_wired_aggregator_degrades_on_stock_timeout() -> None:
    """実クライアント + MockTransport: p1 の在庫が期限内に返らない"""

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "catalog":
            return httpx.Response(
                200, json=[{"id": "p1", "name": "Widget", "price": 9.99}]
            )
        await asyncio.sleep(5)
        return httpx.Response(200, json={"productId": "p1", "inStock": True})

    settings = Settings(
        catalog_source_url="http://catalog",
        stock_source_url="http://stock",
        aggregator_timeout=0.1,
        cache_ttl=0,
    )

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            aggregator = build_aggregator(settings, http)
            assert aggregator.cache is None
            return await aggregator.get_catalog()

    items = asyncio.run(scenario())

    assert [item.model_dump(mode="json", by_alias=True) for item in items] == [
        {"id": "p1", "name": "Widget", "description": "", "price": 9.99, "inStock": False}
    ]


def test_build_aggregator_applies_settings() -> None:
    settings = Settings(
        aggregator_max_inflight=2,
        aggregator_default_stock=True,
        aggregator_stock_strategy="batched",
        cache_ttl=0.5,
        cache_capacity=10,
    )

    async def scenario():
        async with httpx.AsyncClient() as http:
            return build_aggregator(settings, http)

    aggregator = asyncio.run(scenario())

    assert aggregator.max_inflight == 2
    assert aggregator.default_stock is True
    assert aggregator.strategy == "batched"
    assert aggregator.cache.capacity == 10
    assert aggregator.cache.tier is None
