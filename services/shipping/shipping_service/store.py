"""
Shipping Service — レコードストア

追記 (append) と全件取得 (list_all) だけを持つ。更新・削除はしない。
各サービスが独自のデータストアを持つ (Database per Service パターン)。

ID (uuid4) と出荷日時はストアが採番する。出荷日時は呼び出し元が
指定していればそれを使う。DB には UTC (naive) で保存する。
"""

import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime, String, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

from .errors import StoreUnavailable
from .models import CreateShippingRequest, ShippingRecord

logger = logging.getLogger(__name__)

_CREATE_TABLE = text("""
    CREATE TABLE IF NOT EXISTS shippings (
        id VARCHAR(36) PRIMARY KEY,
        order_id TEXT NOT NULL,
        address TEXT NOT NULL,
        shipped_at TIMESTAMP NOT NULL
    )
""")

_INSERT = text("""
    INSERT INTO shippings (id, order_id, address, shipped_at)
    VALUES (:id, :order_id, :address, :shipped_at)
""").bindparams(bindparam("shipped_at", type_=DateTime()))

_SELECT_ALL = text("""
    SELECT id, order_id, address, shipped_at
    FROM shippings
    ORDER BY shipped_at ASC, id ASC
""").columns(id=String(), order_id=String(), address=String(), shipped_at=DateTime())


def _to_db(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


class ShippingStore:
    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    async def init_schema(self) -> None:
        """shippings テーブルが無ければ作る (マイグレーションではない)"""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(_CREATE_TABLE)
        except (SQLAlchemyError, OSError) as e:
            logger.exception("Failed to initialize shippings table")
            raise StoreUnavailable("shipping store unavailable") from e

    async def append(self, req: CreateShippingRequest) -> ShippingRecord:
        shipped_at = req.shipped_at or datetime.now(timezone.utc)
        record = ShippingRecord(
            id=str(uuid4()),
            order_id=req.order_id,
            address=req.address,
            shipped_at=_from_db(_to_db(shipped_at)),
        )
        try:
            async with self.session_factory() as session:
                await session.execute(
                    _INSERT,
                    {
                        "id": record.id,
                        "order_id": record.order_id,
                        "address": record.address,
                        "shipped_at": _to_db(record.shipped_at),
                    },
                )
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.exception("Failed to append shipping record for %s", req.order_id)
            raise StoreUnavailable("shipping store unavailable") from e
        logger.info("Recorded shipment %s for order %s", record.id, record.order_id)
        return record

    async def list_all(self) -> list[ShippingRecord]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(_SELECT_ALL)
                rows = result.fetchall()
        except (SQLAlchemyError, OSError) as e:
            logger.exception("Failed to list shipping records")
            raise StoreUnavailable("shipping store unavailable") from e
        return [
            ShippingRecord(
                id=row.id,
                order_id=row.order_id,
                address=row.address,
                shipped_at=_from_db(row.shipped_at),
            )
            for row in rows
        ]
