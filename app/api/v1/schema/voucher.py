"""
# @Time    : 2025/11/14 22:01
# @Author  : Pedro
# @File    : voucher.py
# @Software: PyCharm
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.pedro.enums import DiscountType, VoucherScope


class CamelSchema(BaseModel):
    """请求体同时接受 camelCase（前端）与 snake_case"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VoucherDefinition(CamelSchema):
    """
    券定义（运营后台创建）
    业务规则（折扣范围 / 适用范围 / 有效期）由 VoucherCatalog 校验，
    失败统一抛 InvalidVoucherDefinition
    """
    code: Optional[str] = Field(default=None, description="自定义券码，留空自动生成")
    description: str = ""
    discount_type: DiscountType
    discount_value: float = Field(allow_inf_nan=False)
    scope: VoucherScope = VoucherScope.ALL_HOMESTAYS
    host_id: Optional[str] = None
    applicable_homestay_id: Optional[str] = None
    applicable_room_id: Optional[str] = None
    valid_from: Optional[datetime] = Field(default=None, description="留空 = 立即生效")
    expiry_date: datetime
    usage_limit: int = Field(default=0, description="全局核销上限，0 = 不限")
    per_user_limit: Optional[int] = Field(default=None, description="单用户核销上限，留空使用系统默认")
    max_discount_cap: Optional[float] = Field(default=None, alias="maxDiscountAmount", allow_inf_nan=False)
    is_active: bool = True


class IssueVouchersSchema(CamelSchema):
    """批量发放：同一定义给每个用户各生成一张专属券"""
    voucher: VoucherDefinition
    user_ids: List[str] = Field(min_length=1)


class LaunchPromoSchema(CamelSchema):
    discount_percent: float = Field(description="折扣百分比 1–100", allow_inf_nan=False)
    duration_minutes: int = Field(description="持续分钟数")
    description: Optional[str] = None


class BookingSchema(CamelSchema):
    homestay_id: str
    room_id: Optional[str] = None
    subtotal: Decimal = Field(gt=0)


class RedeemSchema(BookingSchema):
    code: str = Field(min_length=1)


class SuggestionSchema(CamelSchema):
    homestay_id: str
    room_id: Optional[str] = None
    current_price: Decimal = Field(gt=0)
