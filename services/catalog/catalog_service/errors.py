"""
Catalog Service — 例外定義

  UpstreamError (内部用。上流クライアントが送出する)
    ├─ UpstreamTimeout      期限切れ
    ├─ UpstreamUnreachable  接続失敗 / 502・503・504
    └─ UpstreamBadResponse  その他の非 2xx・不正な JSON・スキーマ不一致

  CatalogUnavailable (呼び出し元に 503 で返る)
    Catalog-source の失敗のみ。Stock-source の失敗はここに来ない。
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class UpstreamError(Exception):
    kind = "upstream_error"

    def __init__(self, upstream: str, message: str):
        super().__init__(f"{upstream}: {message}")
        self.upstream = upstream


class UpstreamTimeout(UpstreamError):
    kind = "timeout"


class UpstreamUnreachable(UpstreamError):
    kind = "unreachable"


class UpstreamBadResponse(UpstreamError):
    kind = "bad_response"


class CatalogUnavailable(Exception):
    """商品一覧を取得できない。product identity が無ければカタログは作れない。"""


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CatalogUnavailable)
    async def _catalog_unavailable(request: Request, exc: CatalogUnavailable):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400, content={"detail": jsonable_encoder(exc.errors())}
        )
