"""
Audit Service — FastAPI エントリーポイント

各サービスから送られる監査ログを記録し、一覧で返す。
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from sqlalchemy.ext.asyncio import create_async_engine

from .config import Settings, load_settings
from .errors import register_exception_handlers
from .models import AuditLogEntry, CreateAuditLogRequest
from .store import AuditLogStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    store: AuditLogStore | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        active = store
        if active is None:
            conf = settings or load_settings()
            engine = create_async_engine(conf.database_url, echo=False)
            active = AuditLogStore(engine)
            logger.info("Connecting audit store (%s)", engine.url.render_as_string())
        app.state.store = active
        try:
            await active.init_schema()
            yield
        finally:
            if engine is not None:
                await engine.dispose()

    app = FastAPI(title="Audit Service", lifespan=lifespan)
    register_exception_handlers(app)

    @app.post("/api/audit", status_code=201, response_model=AuditLogEntry)
    async def create_audit_log(req: CreateAuditLogRequest, request: Request):
        return await request.app.state.store.append(req)

    @app.get("/api/audit/logs", response_model=list[AuditLogEntry])
    async def list_audit_logs(request: Request):
        """記録済みの監査ログを古い順に返す"""
        return await request.app.state.store.list_all()

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "audit-service"}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.server_port)
