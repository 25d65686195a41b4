"""
Shipping Service — データモデル

ShippingRecord は作成後に変更しない (更新・削除 API は持たない)。
"""

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, StringConstraints
from pydantic.alias_generators import to_camel

NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateShippingRequest(_CamelModel):
    order_id: NonBlank
    address: NonBlank
    # 省略時はストアが現在時刻 (UTC) を入れる
    shipped_at: datetime | None = None


class ShippingRecord(_CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    order_id: str
    address: str
    shipped_at: datetime
