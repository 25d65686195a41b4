"""上流サービスのスタブ。呼び出しを記録し、失敗・遅延を注入できる。"""

import asyncio
from decimal import Decimal

from catalog_service.models import ProductRecord, StockStatus


def product(product_id: str, name: str = "", price: str = "1.00") -> ProductRecord:
    return ProductRecord(id=product_id, name=name or product_id, price=Decimal(price))


class StubCatalogSource:
    """fetch_all の呼び出し回数を数える Catalog-source"""

    def __init__(
        self,
        products: list[ProductRecord] | None = None,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.products = products or []
        self.error = error
        self.gate = gate
        self.calls = 0

    async def fetch_all(self, timeout: float) -> list[ProductRecord]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.products)


class StubStockSource:
    """
    stock: {product_id: in_stock}
    failures: {product_id: 例外} (fetch_one で送出)
    hang: ここに含まれる ID は応答しない
    """

    def __init__(
        self,
        stock: dict[str, bool] | None = None,
        failures: dict[str, Exception] | None = None,
        hang: set[str] | None = None,
        batch_error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.stock = stock or {}
        self.failures = failures or {}
        self.hang = hang or set()
        self.batch_error = batch_error
        self.delay = delay
        self.calls: list[str] = []
        self.batch_calls: list[list[str]] = []
        self.inflight = 0
        self.max_inflight_seen = 0
        self.cancelled: list[str] = []

    async def fetch_one(self, product_id: str, timeout: float) -> StockStatus:
        self.calls.append(product_id)
        self.inflight += 1
        self.max_inflight_seen = max(self.max_inflight_seen, self.inflight)
        try:
            await asyncio.sleep(self.delay)
            if product_id in self.hang:
                await asyncio.sleep(3600)
            if product_id in self.failures:
                raise self.failures[product_id]
            return StockStatus(product_id=product_id, in_stock=self.stock[product_id])
        except asyncio.CancelledError:
            self.cancelled.append(product_id)
            raise
        finally:
            self.inflight -= 1

    async def fetch_all(self, product_ids: list[str], timeout: float) -> list[StockStatus]:
        self.batch_calls.append(list(product_ids))
        if self.batch_error is not None:
            raise self.batch_error
        return [
            StockStatus(product_id=pid, in_stock=self.stock[pid])
            for pid in product_ids
            if pid in self.stock and pid not in self.failures
        ]
