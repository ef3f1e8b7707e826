"""
有效期判定（纯函数）

始终在服务端事务内以服务器时间调用；前端倒计时仅作展示。
"""
from datetime import datetime

from app.api.v1.model.voucher import Voucher
from app.pedro.exception import VoucherExpired, VoucherInactive


class ExpiryPolicy:

    @staticmethod
    def is_expired(valid_from: datetime, expiry_date: datetime, now: datetime) -> bool:
        return now > expiry_date

    @staticmethod
    def is_active(voucher: Voucher, now: datetime) -> bool:
        return (
            voucher.is_active
            and now >= voucher.valid_from
            and not ExpiryPolicy.is_expired(voucher.valid_from, voucher.expiry_date, now)
        )

    @staticmethod
    def check(voucher: Voucher, now: datetime) -> None:
        if not voucher.is_active:
            raise VoucherInactive()
        if ExpiryPolicy.is_expired(voucher.valid_from, voucher.expiry_date, now):
            raise VoucherExpired()
        if now < voucher.valid_from:
            raise VoucherInactive("This voucher is not valid yet")
