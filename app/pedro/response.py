# @Time    : 2025/11/11 01:30
# @Author  : Pedro
# @File    : response.py
# @Software: PyCharm
"""
统一成功响应 {code, msg, data}
错误响应由 app.pedro.exception 的异常处理器输出
"""

import datetime
import json
from decimal import Decimal
from enum import Enum
from functools import singledispatch
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import JSONResponse

T = TypeVar("T")


# =========================================================
# 🔄 JSON 安全序列化
# =========================================================
@singledispatch
def serialize(data: Any) -> Any:
    return data


@serialize.register
def _(data: BaseModel):
    # 文档 / 响应字段统一 camelCase
    return serialize(data.model_dump(by_alias=True))


@serialize.register(datetime.date)
def _(data):
    # datetime 是 date 子类，Firestore 的 DatetimeWithNanoseconds 也走这里
    return data.isoformat()


@serialize.register
def _(data: Decimal):
    # 金额已 quantize 到分，整数金额（如 VND）输出为 int
    return int(data) if data == data.to_integral_value() else float(data)


@serialize.register
def _(data: Enum):
    return data.value


@serialize.register(dict)
def _(data):
    return {k: serialize(v) for k, v in data.items()}


@serialize.register(list)
@serialize.register(tuple)
@serialize.register(set)
def _(data):
    return [serialize(i) for i in data]


class ApiJSONResponse(JSONResponse):
    def render(self, content: Any) -> bytes:
        return json.dumps(content, ensure_ascii=False, allow_nan=False, separators=(",", ":")).encode("utf-8")


# =========================================================
# ✅ 响应模型
# =========================================================
class ApiResponse(BaseModel, Generic[T]):
    code: int = Field(default=0, description="状态码，0 为成功")
    msg: str = Field(default="success", description="消息")
    data: Optional[T] = Field(default=None, description="数据体")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @classmethod
    def success(cls, data: Optional[Any] = None, msg: str = "success", code: int = 0) -> ApiJSONResponse:
        return ApiJSONResponse(content={"code": code, "msg": msg, "data": serialize(data)})
