"""
# @Time    : 2025/11/10 17:56
# @Author  : Pedro
# @File    : voucher.py
# @Software: PyCharm

Firestore 文档模型（字段名与前端 camelCase 保持一致）
- vouchers/{id}                      → Voucher
- userVouchers/{userId}_{voucherId}  → UserVoucherUsage
- settings/live_promo                → LiveFlashPromotion
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.pedro.enums import DiscountType, VoucherScope

VOUCHER_COLLECTION = "vouchers"
USAGE_COLLECTION = "userVouchers"
SETTINGS_COLLECTION = "settings"
LIVE_PROMO_ID = "live_promo"
LIVE_PROMO_CLAIM_ID = "live_promo_claim"
NOTIFICATION_COLLECTION = "notifications"

# 领取后的“永久”券过期时间（沿用前端约定）
PERMANENT_EXPIRY = datetime(2099, 12, 31, tzinfo=timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FirestoreDoc(BaseModel):
    """camelCase 别名 + Firestore dict 互转"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        return cls.model_validate(doc)

    def to_document(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude={"id"})
        return {k: v.value if isinstance(v, Enum) else v for k, v in data.items()}


class Voucher(FirestoreDoc):
    code: str
    description: str = ""

    discount_type: DiscountType
    discount_value: float

    scope: VoucherScope = VoucherScope.ALL_HOMESTAYS
    host_id: Optional[str] = None
    applicable_homestay_id: Optional[str] = None
    applicable_room_id: Optional[str] = None

    valid_from: datetime
    expiry_date: datetime

    # 全局核销上限，0 = 不限
    usage_limit: int = 0
    per_user_limit: int = 1
    redeemed_count: int = 0

    is_active: bool = True
    claimed_by: Optional[str] = None
    max_discount_cap: Optional[float] = Field(default=None, alias="maxDiscountAmount")
    created_at: Optional[datetime] = None

    @field_validator("valid_from", "expiry_date", "created_at")
    @classmethod
    def normalize_utc(cls, value):
        return as_utc(value)

    @property
    def remaining(self) -> Optional[int]:
        if self.usage_limit <= 0:
            return None
        return max(0, self.usage_limit - self.redeemed_count)


class LiveFlashPromotion(Voucher):
    launched_at: datetime
    duration_minutes: int

    @field_validator("launched_at")
    @classmethod
    def normalize_launch_utc(cls, value):
        return as_utc(value)

    @staticmethod
    def expiry_for(launched_at: datetime, duration_minutes: int) -> datetime:
        return launched_at + timedelta(minutes=duration_minutes)


class UserVoucherUsage(FirestoreDoc):
    user_id: str
    voucher_id: str
    usage_count: int = 0
    is_used: bool = False
    last_used_at: Optional[datetime] = None
    received_at: Optional[datetime] = None

    @field_validator("last_used_at", "received_at")
    @classmethod
    def normalize_utc(cls, value):
        return as_utc(value)

    @staticmethod
    def doc_id(user_id: str, voucher_id: str) -> str:
        return f"{user_id}_{voucher_id}"


class BookingContext(BaseModel):
    """核销时的订单上下文（subtotal 来自计价服务）"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    homestay_id: str
    room_id: Optional[str] = None
    subtotal: Decimal = Field(gt=0)


class RedemptionResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    voucher_id: str
    code: str
    user_id: str
    subtotal: Decimal
    discount_amount: Decimal
    final_total: Decimal
    usage_count: int = 0


class VoucherSuggestion(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    voucher: Voucher
    savings: Decimal
    final_price: Decimal


class RoomVoucherSuggestions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    room_id: Optional[str] = None
    homestay_id: str
    current_price: Decimal
    suggested_vouchers: List[VoucherSuggestion] = []
