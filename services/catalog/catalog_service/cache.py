"""
Catalog Service — 集約キャッシュ (AggregationCache)

上流の結果をリクエストの形 (キー) ごとに短い TTL で保持し、
バースト時の重複呼び出しを抑える。正しさには不要で、負荷を減らすためだけのもの。
無効化しても結果は変わらず、レイテンシと上流呼び出し数だけが変わる。

Single-flight:
  同じキーへの同時ミスは 1 回の上流呼び出しにまとめ、全員に同じ結果
  (または同じ例外) を返す。キャッシュスタンピードを防ぐ。

  caller A ──┐
  caller B ──┼──▶ in-flight task (key) ──▶ upstream (1回だけ)
  caller C ──┘         │
                       └──▶ put(key, value)

  待機側がキャンセルされても共有タスクは止めない (asyncio.shield)。

退避 (eviction):
  1. 期限切れのエントリを先に捨てる
  2. それでも容量超過なら LRU で捨てる

エントリは書き込み後は不変。値は tuple で保持し、put は丸ごと置き換える。

REDIS_URL が設定されていれば、ミス時に Redis (L2) を参照し、
取得した値を同じ TTL で書き込む。Redis の失敗はミス扱い。
"""

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import asdict, dataclass
from typing import Any

import redis.asyncio as aioredis
from pydantic import TypeAdapter, ValidationError
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: tuple
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    collapsed: int = 0
    fetches: int = 0
    tier_hits: int = 0
    evictions: int = 0
    expirations: int = 0

    def summary(self) -> dict[str, int]:
        return asdict(self)


class RedisCacheTier:
    """複数レプリカで共有する L2。値は TypeAdapter で JSON に変換して保存する。"""

    def __init__(self, redis: aioredis.Redis, namespace: str = "catalog-cache"):
        self.redis = redis
        self.namespace = namespace

    def _make_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str, adapter: TypeAdapter) -> Any | None:
        try:
            raw = await self.redis.get(self._make_key(key))
        except RedisError as e:
            logger.warning("Redis cache get failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return adapter.validate_json(raw)
        except ValidationError:
            logger.warning("Discarding undecodable Redis cache entry %s", key)
            return None

    async def set(
        self, key: str, value: Any, adapter: TypeAdapter, ttl: float
    ) -> None:
        try:
            await self.redis.set(
                self._make_key(key),
                adapter.dump_json(value),
                px=max(1, int(ttl * 1000)),
            )
        except RedisError as e:
            logger.warning("Redis cache set failed for %s: %s", key, e)


class AggregationCache:
    def __init__(
        self,
        ttl: float,
        capacity: int = 1024,
        tier: RedisCacheTier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.capacity = capacity
        self.tier = tier
        self.clock = clock
        self.stats = CacheStats()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._inflight: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> tuple[tuple | None, bool]:
        """(value, hit) を返す。期限切れはその場で捨ててミス扱い。"""
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return None, False
        if entry.expires_at <= self.clock():
            del self._entries[key]
            self.stats.expirations += 1
            self.stats.misses += 1
            return None, False
        self._entries.move_to_end(key)
        self.stats.hits += 1
        return entry.value, True

    def put(self, key: str, value: Iterable, ttl: float | None = None) -> None:
        ttl = self.ttl if ttl is None else ttl
        if ttl <= 0:
            return
        now = self.clock()
        self._entries[key] = CacheEntry(key, tuple(value), now + ttl)
        self._entries.move_to_end(key)
        if len(self._entries) > self.capacity:
            self._purge_expired(now)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
            self.stats.evictions += 1

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]
        self.stats.expirations += len(expired)

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Iterable]],
        adapter: TypeAdapter | None = None,
        ttl: float | None = None,
    ) -> tuple:
        """
        キャッシュを引き、ミスなら fetch を 1 回だけ実行する (single-flight)。
        失敗はキャッシュしない。待機中の全員が同じ例外を受け取る。
        """
        value, hit = self.get(key)
        if hit:
            return value

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key, fetch, adapter, ttl))
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
        else:
            self.stats.collapsed += 1
        return await asyncio.shield(task)

    async def _load(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Iterable]],
        adapter: TypeAdapter | None,
        ttl: float | None,
    ) -> tuple:
        ttl = self.ttl if ttl is None else ttl
        try:
            if self.tier is not None and adapter is not None:
                shared = await self.tier.get(key, adapter)
                if shared is not None:
                    self.stats.tier_hits += 1
                    self.put(key, shared, ttl)
                    return tuple(shared)

            self.stats.fetches += 1
            value = tuple(await fetch())
            self.put(key, value, ttl)
            if self.tier is not None and adapter is not None and ttl > 0:
                await self.tier.set(key, value, adapter, ttl)
            return value
        finally:
            self._inflight.pop(key, None)

    def summary(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "capacity": self.capacity,
            "ttl_seconds": self.ttl,
            "inflight": len(self._inflight),
            "shared_tier": self.tier is not None,
            **self.stats.summary(),
        }


def _consume_exception(task: asyncio.Task) -> None:
    # 待機者が全員キャンセル済みでも "exception was never retrieved" を出さない
    if not task.cancelled():
        task.exception()
