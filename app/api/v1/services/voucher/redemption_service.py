"""
# @Time    : 2025/11/15 8:41
# @Author  : Pedro
# @File    : redemption_service.py
# @Software: PyCharm

💳 券核销
------------------------------------------------------
redeem 在单个事务内完成：
  读券 → 读用户使用记录 → 校验（状态/有效期/归属/范围/总量/单人）
  → redeemedCount 原子 +1 → 写使用记录
任何一步校验失败，事务不提交，计数不变
"""
import asyncio
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Optional

from app.api.v1.model.voucher import (
    USAGE_COLLECTION,
    VOUCHER_COLLECTION,
    BookingContext,
    RedemptionResult,
    RoomVoucherSuggestions,
    UserVoucherUsage,
    Voucher,
    VoucherSuggestion,
)
from app.api.v1.services.voucher.catalog_service import VoucherCatalog
from app.api.v1.services.voucher.code_generator import CodeGenerator
from app.api.v1.services.voucher.expiry_policy import ExpiryPolicy
from app.pedro.enums import DiscountType, VoucherEvent, VoucherScope
from app.pedro.exception import (
    AlreadyRedeemedByUser,
    ScopeMismatch,
    UsageLimitReached,
    VoucherNotFound,
    VoucherNotOwned,
)
from app.pedro.logger import audit_logger
from app.pedro.utils import utcnow
from app.extension.eventbus.base import EventBus
from app.extension.store import Increment, Transaction, VoucherStore
from app.extension.store.transaction_helper import RetryPolicy, run_transaction

CENT = Decimal("0.01")


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def scope_matches(voucher: Voucher, homestay_id: str, room_id: Optional[str]) -> bool:
    if voucher.scope.is_global:
        return True
    if voucher.scope == VoucherScope.SPECIFIC_HOMESTAY:
        return voucher.applicable_homestay_id == homestay_id
    if voucher.scope == VoucherScope.SPECIFIC_ROOM:
        return room_id is not None and voucher.applicable_room_id == room_id
    return False


class RedemptionEngine:

    def __init__(
            self,
            store: VoucherStore,
            catalog: VoucherCatalog,
            *,
            eventbus: Optional[EventBus] = None,
            clock: Callable = utcnow,
            retry: RetryPolicy = RetryPolicy(),
    ):
        self.store = store
        self.catalog = catalog
        self.eventbus = eventbus
        self.clock = clock
        self.retry = retry

    @staticmethod
    def compute_discount(voucher: Voucher, subtotal) -> Decimal:
        """
        折扣金额（保留两位小数）
        - percentage：subtotal × value / 100，有上限时取较小值
        - fixed_amount：min(value, subtotal)，最终价不会为负
        """
        subtotal = _dec(subtotal)
        value = _dec(voucher.discount_value)
        if voucher.discount_type == DiscountType.PERCENTAGE:
            discount = subtotal * value / Decimal(100)
            if voucher.max_discount_cap is not None:
                discount = min(discount, _dec(voucher.max_discount_cap))
        else:
            discount = value
        return min(discount, subtotal).quantize(CENT, rounding=ROUND_HALF_UP)

    @staticmethod
    def _check(voucher: Voucher, usage: Optional[UserVoucherUsage], user_id: str, booking: BookingContext, now):
        # 顺序固定：状态/有效期 → 归属 → 范围 → 总量 → 单人
        ExpiryPolicy.check(voucher, now)
        if voucher.claimed_by and voucher.claimed_by != user_id:
            raise VoucherNotOwned()
        if not scope_matches(voucher, booking.homestay_id, booking.room_id):
            raise ScopeMismatch()
        if voucher.usage_limit > 0 and voucher.redeemed_count >= voucher.usage_limit:
            raise UsageLimitReached()
        if usage is not None and usage.usage_count >= voucher.per_user_limit:
            raise AlreadyRedeemedByUser()

    def _result(self, voucher: Voucher, user_id: str, booking: BookingContext, usage_count: int) -> RedemptionResult:
        subtotal = _dec(booking.subtotal)
        discount = self.compute_discount(voucher, subtotal)
        return RedemptionResult(
            voucher_id=voucher.id,
            code=voucher.code,
            user_id=user_id,
            subtotal=subtotal,
            discount_amount=discount,
            final_total=(subtotal - discount).quantize(CENT, rounding=ROUND_HALF_UP),
            usage_count=usage_count,
        )

    async def redeem(self, code: str, user_id: str, booking: BookingContext) -> RedemptionResult:
        code = CodeGenerator.normalize(code)

        def _tx(tx: Transaction) -> RedemptionResult:
            now = self.clock()
            docs = tx.query(VOUCHER_COLLECTION, [("code", "==", code)], limit=1)
            if not docs:
                raise VoucherNotFound()
            voucher = Voucher.from_document(docs[0])

            usage_id = UserVoucherUsage.doc_id(user_id, voucher.id)
            usage_doc = tx.get(USAGE_COLLECTION, usage_id)
            usage = UserVoucherUsage.from_document(usage_doc) if usage_doc else None

            self._check(voucher, usage, user_id, booking, now)

            usage_count = (usage.usage_count if usage else 0) + 1
            record = {"userId": user_id, "voucherId": voucher.id, "usageCount": usage_count,
                      "isUsed": True, "lastUsedAt": now}
            if usage is None:
                record["receivedAt"] = now

            tx.update(VOUCHER_COLLECTION, voucher.id, {"redeemedCount": Increment(1)})
            tx.put(USAGE_COLLECTION, usage_id, record, merge=True)
            return self._result(voucher, user_id, booking, usage_count)

        result = await run_transaction(self.store, _tx, name="voucher.redeem", policy=self.retry)
        audit_logger.info(f"💳 {user_id} 核销 {result.code} 优惠 {result.discount_amount}")
        if self.eventbus:
            await self.eventbus.publish(VoucherEvent.REDEEMED.value, {
                "user_id": user_id,
                "voucher_id": result.voucher_id,
                "code": result.code,
                "discount_amount": result.discount_amount,
            })
        return result

    async def preview(self, code: str, user_id: str, booking: BookingContext) -> RedemptionResult:
        """试算（只读，不占用次数）"""
        voucher = await self.catalog.get_by_code(code)
        usage = await self.catalog.usage(voucher.id, user_id)
        self._check(voucher, usage, user_id, booking, self.clock())
        return self._result(voucher, user_id, booking, usage.usage_count if usage else 0)

    async def suggest(
            self,
            user_id: str,
            homestay_id: str,
            room_id: Optional[str],
            current_price,
    ) -> RoomVoucherSuggestions:
        """给某个房间推荐可用券，按节省金额从高到低"""
        price = _dec(current_price)
        vouchers = await self.catalog.list_available(user_id=user_id)
        usage_docs = await asyncio.to_thread(self.store.query, USAGE_COLLECTION, [("userId", "==", user_id)])
        used: Dict[str, int] = {doc.get("voucherId"): doc.get("usageCount", 0) for doc in usage_docs}

        suggestions = []
        for voucher in vouchers:
            if not scope_matches(voucher, homestay_id, room_id):
                continue
            if used.get(voucher.id, 0) >= voucher.per_user_limit:
                continue
            savings = self.compute_discount(voucher, price)
            if savings <= 0:
                continue
            suggestions.append(VoucherSuggestion(voucher=voucher, savings=savings, final_price=price - savings))

        suggestions.sort(key=lambda s: s.savings, reverse=True)
        return RoomVoucherSuggestions(
            room_id=room_id,
            homestay_id=homestay_id,
            current_price=price,
            suggested_vouchers=suggestions,
        )
