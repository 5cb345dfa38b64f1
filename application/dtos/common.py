"""
DTO 基类与分页参数
"""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_serializer

from core.config import settings
from core.response import utc_iso


def _utc_z(value: Any) -> Any:
    if isinstance(value, datetime):
        return utc_iso(value)
    if isinstance(value, (list, tuple)):
        return type(value)(_utc_z(v) for v in value)
    if isinstance(value, dict):
        return {k: _utc_z(v) for k, v in value.items()}
    return value


class DTOBase(BaseModel):
    """所有出参 DTO 的时间字段统一为 UTC、Z 结尾（包括嵌套的退款明细）"""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):
        return _utc_z(handler(self))


class PaginationParams(BaseModel):
    page: int = Field(1, ge=1, description="页码，从1开始")
    size: int = Field(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="每页大小")
