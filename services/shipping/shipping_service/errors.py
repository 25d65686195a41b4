"""
Shipping Service — 例外定義

  ValidationError (必須項目の欠落・空文字) → 400
  StoreUnavailable (DB 障害)              → 503  リトライはしない
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class StoreUnavailable(Exception):
    pass


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreUnavailable)
    async def _store_unavailable(request: Request, exc: StoreUnavailable):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400, content={"detail": jsonable_encoder(exc.errors())}
        )
