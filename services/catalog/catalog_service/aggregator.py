"""
Catalog Service — ファンアウト集約 (FanoutAggregator)

1 件のカタログ要求から 2 つの上流へリクエストを展開し、結果を結合して返す。

  GET /api/catalog
        │
        ▼
  ┌──────────────────────────┐   1. 商品一覧 (必須)
  │     FanoutAggregator     │──────────────────────▶ Catalog-source
  │                          │   2. 在庫 (ベストエフォート)
  │  deadline ───────────────│──┬──▶ Stock-source /stock/p1  ┐ 同時実行数は
  │                          │  ├──▶ Stock-source /stock/p2  │ max_inflight
  │                          │  └──▶ Stock-source /stock/p3  ┘ で制限
  └──────────────────────────┘
        │ 3. 商品 ID で結合 (Catalog-source の並び順のまま)
        ▼
  [CatalogItem, ...]

失敗時のポリシー:
  - Catalog-source が失敗 → CatalogUnavailable (商品が無ければカタログは作れない)
  - Stock-source が一部/全部失敗 → その商品は default_stock (既定 False) で返す。
    エラーにはしない。劣化件数は stats.degraded_items にだけ記録し、
    レスポンスには載せない。
  - 全体の期限切れ → 解決済みの在庫は使い、残りは default_stock。
"""

import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import asdict, dataclass
from typing import Any, Literal

from pydantic import TypeAdapter

from .cache import AggregationCache
from .errors import (
    CatalogUnavailable,
    UpstreamBadResponse,
    UpstreamError,
    UpstreamTimeout,
)
from .models import CatalogItem, ProductRecord, StockStatus
from .upstream import CatalogSourceClient, StockSourceClient

logger = logging.getLogger(__name__)

PRODUCTS_CACHE_KEY = "catalog:products"

_products_adapter = TypeAdapter(tuple[ProductRecord, ...])
_stock_adapter = TypeAdapter(tuple[StockStatus, ...])


@dataclass
class AggregatorStats:
    requests: int = 0
    catalog_failures: int = 0
    degraded_items: int = 0
    batch_fallbacks: int = 0


class FanoutAggregator:
    def __init__(
        self,
        catalog_source: CatalogSourceClient,
        stock_source: StockSourceClient,
        *,
        timeout: float = 2.0,
        max_inflight: int = 8,
        default_stock: bool = False,
        strategy: Literal["per-item", "batched"] = "per-item",
        cache: AggregationCache | None = None,
    ):
        if max_inflight < 1:
            raise ValueError("max_inflight must be >= 1")
        self.catalog_source = catalog_source
        self.stock_source = stock_source
        self.timeout = timeout
        self.max_inflight = max_inflight
        self.default_stock = default_stock
        self.strategy = strategy
        self.cache = cache
        self.stats = AggregatorStats()

    async def get_catalog(self, timeout: float | None = None) -> list[CatalogItem]:
        """
        カタログを組み立てる。

        1. Catalog-source から商品一覧を取得 (失敗したら CatalogUnavailable)
        2. 在庫を取得 (per-item または batched)
        3. 商品 ID で結合。取得できなかった在庫は default_stock
        """
        self.stats.requests += 1
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.timeout if timeout is None else timeout)

        try:
            products = await self._fetch_products(deadline)
        except UpstreamError as e:
            self.stats.catalog_failures += 1
            logger.error("Catalog-source failed (%s): %s", e.kind, e)
            raise CatalogUnavailable(f"catalog source unavailable: {e}") from e

        stock = await self._resolve_stock(products, deadline)

        items = []
        degraded = 0
        for product in products:
            in_stock = stock.get(product.id)
            if in_stock is None:
                in_stock = self.default_stock
                degraded += 1
            items.append(CatalogItem.join(product, in_stock))
        self.stats.degraded_items += degraded
        if degraded:
            logger.info(
                "Catalog served with %d/%d items on default stock",
                degraded,
                len(items),
            )
        return items

    def summary(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "max_inflight": self.max_inflight,
            "default_stock": self.default_stock,
            "timeout_seconds": self.timeout,
            **asdict(self.stats),
            "cache": self.cache.summary() if self.cache is not None else None,
        }

    # ── 商品一覧 ─────────────────────────────────

    async def _fetch_products(self, deadline: float) -> list[ProductRecord]:
        async def fetch() -> list[ProductRecord]:
            return await self.catalog_source.fetch_all(self._remaining(deadline))

        products = await self._through_cache(
            PRODUCTS_CACHE_KEY, fetch, _products_adapter, deadline, "catalog-source"
        )
        return list(products)

    # ── 在庫 ─────────────────────────────────────

    async def _resolve_stock(
        self, products: list[ProductRecord], deadline: float
    ) -> dict[str, bool]:
        """
        解決できた在庫だけを {product_id: in_stock} で返す。
        ここに無い ID は呼び出し側で default_stock になる。
        """
        # 重複 ID は 1 回だけ照会する (結果は全ての重複行に使う)
        product_ids = list(dict.fromkeys(p.id for p in products))
        if not product_ids:
            return {}

        if self.strategy == "batched":
            try:
                statuses = await self._fetch_stock_batch(product_ids, deadline)
            except UpstreamBadResponse as e:
                self.stats.batch_fallbacks += 1
                logger.info("Batched stock lookup rejected, falling back: %s", e)
            except UpstreamError as e:
                logger.warning(
                    "Batched stock lookup failed (%s), %d items on default: %s",
                    e.kind,
                    len(product_ids),
                    e,
                )
                return {}
            else:
                wanted = set(product_ids)
                resolved = {
                    s.product_id: s.in_stock for s in statuses if s.product_id in wanted
                }
                missing = len(wanted) - len(resolved)
                if missing:
                    logger.warning("Batched stock answer missing %d items", missing)
                return resolved

        return await self._fetch_stock_per_item(product_ids, deadline)

    async def _fetch_stock_per_item(
        self, product_ids: list[str], deadline: float
    ) -> dict[str, bool]:
        semaphore = asyncio.Semaphore(self.max_inflight)

        async def lookup(product_id: str) -> StockStatus:
            async with semaphore:
                return await self._fetch_stock_one(product_id, deadline)

        tasks = {asyncio.ensure_future(lookup(pid)): pid for pid in product_ids}
        try:
            done, pending = await asyncio.wait(
                tasks, timeout=max(0.0, self._remaining(deadline))
            )
        finally:
            # 呼び出し元のキャンセル時もここで子タスクを止める
            for task in tasks:
                if not task.done():
                    task.cancel()

        if pending:
            logger.warning(
                "Deadline expired with %d stock lookups pending", len(pending)
            )
            await asyncio.gather(*pending, return_exceptions=True)

        resolved: dict[str, bool] = {}
        for task in done:
            product_id = tasks[task]
            e = task.exception()
            if e is None:
                resolved[product_id] = task.result().in_stock
            elif isinstance(e, UpstreamError):
                logger.warning(
                    "Stock lookup for %s failed (%s): %s", product_id, e.kind, e
                )
            else:
                raise e
        return resolved

    async def _fetch_stock_one(self, product_id: str, deadline: float) -> StockStatus:
        async def fetch() -> list[StockStatus]:
            status = await self.stock_source.fetch_one(
                product_id, self._remaining(deadline)
            )
            return [status]

        statuses = await self._through_cache(
            f"stock:{product_id}", fetch, _stock_adapter, deadline, "stock-source"
        )
        return statuses[0]

    async def _fetch_stock_batch(
        self, product_ids: list[str], deadline: float
    ) -> list[StockStatus]:
        async def fetch() -> list[StockStatus]:
            return await self.stock_source.fetch_all(
                product_ids, self._remaining(deadline)
            )

        digest = hashlib.sha1(",".join(sorted(product_ids)).encode()).hexdigest()
        statuses = await self._through_cache(
            f"stock:batch:{digest}", fetch, _stock_adapter, deadline, "stock-source"
        )
        return list(statuses)

    # ── 共通 ─────────────────────────────────────

    async def _through_cache(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Iterable]],
        adapter: TypeAdapter,
        deadline: float,
        upstream: str,
    ) -> Iterable:
        if self.cache is None:
            return await fetch()
        # 共有 fetch は別の呼び出し元の期限で動いていることがあるので、
        # 待つ側も自分の期限で打ち切る
        remaining = self._remaining(deadline)
        if remaining <= 0:
            raise UpstreamTimeout(upstream, "deadline already expired")
        try:
            return await asyncio.wait_for(
                self.cache.get_or_fetch(key, fetch, adapter), remaining
            )
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(upstream, f"waiting for {key} timed out") from e

    @staticmethod
    def _remaining(deadline: float) -> float:
        return deadline - asyncio.get_running_loop().time()
