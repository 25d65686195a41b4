"""
Catalog Service — データモデル

ProductRecord は Catalog-source、StockStatus は Stock-source が所有する。
CatalogItem は両者を結合したレスポンス専用のモデルで、永続化しない。

外部 JSON は camelCase (inStock, productId)、Python 側は snake_case。
"""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

# JSON では数値として返す (pydantic 既定の Decimal は文字列になる)
Price = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class ProductRecord(_CamelModel):
    id: str
    name: str
    description: str = ""
    price: Price


class StockStatus(_CamelModel):
    product_id: str
    in_stock: bool


class CatalogItem(_CamelModel):
    id: str
    name: str
    description: str
    price: Price
    in_stock: bool

    @classmethod
    def join(cls, product: ProductRecord, in_stock: bool) -> "CatalogItem":
        return cls(
            id=product.id,
            name=product.name,
            description=product.description,
            price=product.price,
            in_stock=in_stock,
        )
