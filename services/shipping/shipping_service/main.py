"""
Shipping Service — FastAPI エントリーポイント

出荷記録を受け付けてストアに追記する。集約処理 (aggregator) は通らない。
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from sqlalchemy.ext.asyncio import create_async_engine

from .config import Settings, load_settings
from .errors import register_exception_handlers
from .models import CreateShippingRequest, ShippingRecord
from .store import ShippingStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    store: ShippingStore | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        active = store
        if active is None:
            conf = settings or load_settings()
            engine = create_async_engine(conf.database_url, echo=False)
            active = ShippingStore(engine)
            logger.info("Connecting shipping store (%s)", engine.url.render_as_string())
        app.state.store = active
        try:
            await active.init_schema()
            yield
        finally:
            if engine is not None:
                await engine.dispose()

    app = FastAPI(title="Shipping Service", lifespan=lifespan)
    register_exception_handlers(app)

    @app.post("/api/shipping", status_code=201, response_model=ShippingRecord)
    async def create_shipping(req: CreateShippingRequest, request: Request):
        """出荷を記録する。ID と出荷日時はストアが採番する。"""
        return await request.app.state.store.append(req)

    @app.get("/api/shipping", response_model=list[ShippingRecord])
    async def list_shippings(request: Request):
        return await request.app.state.store.list_all()

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "shipping-service"}

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
