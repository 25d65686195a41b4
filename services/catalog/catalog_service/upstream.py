"""
Catalog Service — 上流クライアント

Catalog-source (商品の正) と Stock-source (在庫状態の正) への薄いクライアント。
Catalog Service はどちらのデータも所有せず、読むだけ。

  ┌────────────────┐  GET /products        ┌────────────────┐
  │                │──────────────────────▶│ Catalog-source │
  │ Catalog Service│                       └────────────────┘
  │  (aggregator)  │  GET /stock/{id}      ┌────────────────┐
  │                │──────────────────────▶│  Stock-source  │
  └────────────────┘  GET /stock?ids=a&..  └────────────────┘

各呼び出しは timeout (秒) を厳守する。期限を過ぎたら実行中の HTTP 呼び出しを
キャンセルして UpstreamTimeout を送出する。呼び出し元を期限以上待たせない。
"""

import asyncio
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from .errors import UpstreamBadResponse, UpstreamTimeout, UpstreamUnreachable
from .models import ProductRecord, StockStatus

# ゲートウェイ系のステータスは「到達不能」として扱う
_UNREACHABLE_STATUSES = {502, 503, 504}

_products_adapter = TypeAdapter(list[ProductRecord])
_stock_list_adapter = TypeAdapter(list[StockStatus])


class UpstreamClient:
    """上流サービス共通の GET + エラー分類"""

    name = "upstream"

    def __init__(self, base_url: str, http: httpx.AsyncClient):
        self.base_url = base_url.rstrip("/")
        self.http = http

    async def _get_json(
        self,
        path: str,
        timeout: float,
        params: list[tuple[str, str]] | None = None,
    ) -> Any:
        if timeout <= 0:
            raise UpstreamTimeout(self.name, "deadline already expired")
        url = f"{self.base_url}{path}"
        try:
            # httpx 側の timeout は接続ごと、wait_for が呼び出し全体の期限
            resp = await asyncio.wait_for(
                self.http.get(url, params=params, timeout=timeout),
                timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise UpstreamTimeout(self.name, f"GET {path} timed out") from e
        except (httpx.DecodingError, httpx.TooManyRedirects) as e:
            # 応答は来たが読めない (壊れた content-encoding・リダイレクトループ)
            raise UpstreamBadResponse(self.name, f"GET {path}: {e!r}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UpstreamUnreachable(self.name, f"GET {path} failed: {e!r}") from e

        if resp.status_code in _UNREACHABLE_STATUSES:
            raise UpstreamUnreachable(
                self.name, f"GET {path} returned {resp.status_code}"
            )
        if not resp.is_success:
            raise UpstreamBadResponse(
                self.name, f"GET {path} returned {resp.status_code}"
            )
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamBadResponse(self.name, f"GET {path}: invalid JSON") from e


class CatalogSourceClient(UpstreamClient):
    name = "catalog-source"

    async def fetch_all(self, timeout: float) -> list[ProductRecord]:
        """全商品を Catalog-source の並び順のまま取得する。"""
        payload = await self._get_json("/products", timeout)
        try:
            return _products_adapter.validate_python(payload)
        except ValidationError as e:
            raise UpstreamBadResponse(self.name, f"invalid product list: {e}") from e


class StockSourceClient(UpstreamClient):
    name = "stock-source"

    async def fetch_one(self, product_id: str, timeout: float) -> StockStatus:
        # ID はパスの 1 セグメントとして扱う ("a/b" -> /stock/a%2Fb)
        path = f"/stock/{quote(product_id, safe='')}"
        payload = await self._get_json(path, timeout)
        try:
            status = StockStatus.model_validate(payload)
        except ValidationError as e:
            raise UpstreamBadResponse(self.name, f"invalid stock status: {e}") from e
        if status.product_id != product_id:
            raise UpstreamBadResponse(
                self.name,
                f"asked for {product_id!r}, got {status.product_id!r}",
            )
        return status

    async def fetch_all(
        self, product_ids: list[str], timeout: float
    ) -> list[StockStatus]:
        """
        一括在庫照会。Stock-source がこの機能を持たない場合は 404/405 などが
        返り UpstreamBadResponse になる (aggregator は個別照会にフォールバック)。
        """
        payload = await self._get_json(
            "/stock", timeout, params=[("ids", pid) for pid in product_ids]
        )
        try:
            return _stock_list_adapter.validate_python(payload)
        except ValidationError as e:
            raise UpstreamBadResponse(self.name, f"invalid stock list: {e}") from e
