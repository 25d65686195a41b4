"""
Audit Service — データモデル

監査ログは追記のみ。type は "ORDER_SHIPPED" のような自由な分類文字列。
"""

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, StringConstraints
from pydantic.alias_generators import to_camel

NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateAuditLogRequest(_CamelModel):
    type: NonBlank
    source_service: NonBlank
    message: NonBlank
    timestamp: datetime | None = None


class AuditLogEntry(_CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    source_service: str
    message: str
    timestamp: datetime
