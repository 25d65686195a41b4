"""
Audit Service — ログストア

logs テーブルへの追記と全件取得だけ。Shipping Service とは DB を共有しない。
"""

import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime, String, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

from .errors import StoreUnavailable
from .models import AuditLogEntry, CreateAuditLogRequest

logger = logging.getLogger(__name__)

_CREATE_TABLE = text("""
    CREATE TABLE IF NOT EXISTS logs (
        id VARCHAR(36) PRIMARY KEY,
        type TEXT NOT NULL,
        source_service TEXT NOT NULL,
        message TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL
    )
""")

_INSERT = text("""
    INSERT INTO logs (id, type, source_service, message, created_at)
    VALUES (:id, :type, :source_service, :message, :created_at)
""").bindparams(bindparam("created_at", type_=DateTime()))

_SELECT_ALL = text("""
    SELECT id, type, source_service, message, created_at
    FROM logs
    ORDER BY created_at ASC, id ASC
""").columns(
    id=String(),
    type=String(),
    source_service=String(),
    message=String(),
    created_at=DateTime(),
)


class AuditLogStore:
    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    async def init_schema(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.execute(_CREATE_TABLE)
        except (SQLAlchemyError, OSError) as e:
            logger.exception("Failed to initialize logs table")
            raise StoreUnavailable("audit store unavailable") from e

    async def append(self, req: CreateAuditLogRequest) -> AuditLogEntry:
        """ID と時刻 (未指定なら現在時刻) を採番して追記する。"""
        timestamp = req.timestamp or datetime.now(timezone.utc)
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
        entry = AuditLogEntry(
            id=str(uuid4()),
            type=req.type,
            source_service=req.source_service,
            message=req.message,
            timestamp=timestamp.replace(tzinfo=timezone.utc),
        )
        try:
            async with self.session_factory() as session:
                await session.execute(
                    _INSERT,
                    {
                        "id": entry.id,
                        "type": entry.type,
                        "source_service": entry.source_service,
                        "message": entry.message,
                        "created_at": timestamp,
                    },
                )
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.exception("Failed to append audit log from %s", req.source_service)
            raise StoreUnavailable("audit store unavailable") from e
        return entry

    async def list_all(self) -> list[AuditLogEntry]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(_SELECT_ALL)
                rows = result.fetchall()
        except (SQLAlchemyError, OSError) as e:
            logger.exception("Failed to list audit logs")
            raise StoreUnavailable("audit store unavailable") from e
        return [
            AuditLogEntry(
                id=row.id,
                type=row.type,
                source_service=row.source_service,
                message=row.message,
                timestamp=row.created_at.replace(tzinfo=timezone.utc),
            )
            for row in rows
        ]
