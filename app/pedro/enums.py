# -*- coding:utf-8 -*-
"""
券系统枚举定义
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
✅ 折扣类型
✅ 适用范围
✅ 事件名称
"""

from enum import Enum


class DiscountType(str, Enum):
    """
    折扣类型
      - PERCENTAGE：按比例 (1–100)
      - FIXED_AMOUNT：固定金额
    """

    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class VoucherScope(str, Enum):
    """
    适用范围（与前端 VoucherScope 字符串保持一致）
    all_homestays / all_rooms 都视为全部房源可用
    """

    ALL_HOMESTAYS = "all_homestays"
    ALL_ROOMS = "all_rooms"
    SPECIFIC_HOMESTAY = "specific_homestay"
    SPECIFIC_ROOM = "specific_room"

    @property
    def is_global(self) -> bool:
        return self in (VoucherScope.ALL_HOMESTAYS, VoucherScope.ALL_ROOMS)


class VoucherEvent(str, Enum):
    CLAIMED = "voucher.claimed"
    GRANTED = "voucher.granted"
    REDEEMED = "voucher.redeemed"
