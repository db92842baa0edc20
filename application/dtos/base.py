"""
DTO 基类：统一 camelCase 别名与 UTC-Z 时间序列化
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, model_serializer
from pydantic.alias_generators import to_camel

from core.response import to_utc_z


def _convert(value):
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, list):
        return [_convert(v) for v in value]
    if isinstance(value, dict):
        return {k: _convert(v) for k, v in value.items()}
    return value


class DTOBase(BaseModel):
    """Base DTO: camelCase on the wire, datetimes serialized as UTC-Z."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        return _convert(handler(self))
