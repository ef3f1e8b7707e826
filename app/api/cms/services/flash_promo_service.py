"""
# @Time    : 2025/11/15 10:12
# @Author  : Pedro
# @File    : flash_promo_service.py
# @Software: PyCharm

⚡ 秒杀券（settings/live_promo 单例）
------------------------------------------------------
状态：无活动 → launch → 进行中 → claim 成功（删除活动 + 生成专属券）
                                → 过期（读取时视为无活动）
                                → end（运营手动结束）

claim 只有一个赢家：读活动 / 校验 / 写券 / 删活动 在同一个事务里完成，
并发冲突由 run_transaction 重试；重试时读到的已是赢家提交后的状态。
赢家同时写入 settings/live_promo_claim，活动窗口内迟到的请求据此返回 AlreadyClaimed。
"""
import asyncio
from datetime import timedelta
from typing import Callable, Optional

from app.api.v1.model.voucher import (
    LIVE_PROMO_CLAIM_ID,
    LIVE_PROMO_ID,
    PERMANENT_EXPIRY,
    SETTINGS_COLLECTION,
    VOUCHER_COLLECTION,
    LiveFlashPromotion,
    Voucher,
    as_utc,
)
from app.api.v1.services.voucher.catalog_service import voucher_event_payload
from app.api.v1.services.voucher.code_generator import CodeGenerator
from app.api.v1.services.voucher.expiry_policy import ExpiryPolicy
from app.pedro.enums import DiscountType, VoucherEvent, VoucherScope
from app.pedro.exception import (
    AlreadyClaimed,
    InvalidVoucherDefinition,
    PromotionAlreadyLive,
    PromotionExpired,
    PromotionNotFound,
)
from app.pedro.logger import audit_logger
from app.pedro.utils import utcnow
from app.extension.eventbus.base import EventBus
from app.extension.store import Transaction, VoucherStore
from app.extension.store.base import Unsubscribe
from app.extension.store.transaction_helper import RetryPolicy, run_transaction


class FlashPromoService:

    def __init__(
            self,
            store: VoucherStore,
            *,
            eventbus: Optional[EventBus] = None,
            code_generator: Optional[CodeGenerator] = None,
            clock: Callable = utcnow,
            retry: RetryPolicy = RetryPolicy(),
            max_duration_minutes: int = 60,
            code_prefix: str = "FLASH",
            code_length: int = 4,
            code_max_attempts: int = 5,
            claimed_voucher_valid_days: Optional[int] = None,
    ):
        self.store = store
        self.eventbus = eventbus
        self.codes = code_generator or CodeGenerator()
        self.clock = clock
        self.retry = retry
        self.max_duration_minutes = max_duration_minutes
        self.code_prefix = code_prefix
        self.code_length = code_length
        self.code_max_attempts = code_max_attempts
        self.claimed_voucher_valid_days = claimed_voucher_valid_days

    def _expired(self, promo: LiveFlashPromotion, now) -> bool:
        return ExpiryPolicy.is_expired(promo.valid_from, promo.expiry_date, now)

    def _claimed_expiry(self, now):
        if self.claimed_voucher_valid_days:
            return now + timedelta(days=self.claimed_voucher_valid_days)
        return PERMANENT_EXPIRY

    # ======================================================
    # 🚀 上线
    # ======================================================
    async def launch(
            self,
            discount_percent: float,
            duration_minutes: int,
            description: Optional[str] = None,
    ) -> LiveFlashPromotion:
        if not 1 <= discount_percent <= 100:
            raise InvalidVoucherDefinition("Percentage discount must be between 1 and 100")
        if not 1 <= duration_minutes <= self.max_duration_minutes:
            raise InvalidVoucherDefinition(
                f"Duration must be between 1 and {self.max_duration_minutes} minutes"
            )

        def _tx(tx: Transaction) -> LiveFlashPromotion:
            now = self.clock()
            current = tx.get(SETTINGS_COLLECTION, LIVE_PROMO_ID)
            if current is not None and not self._expired(LiveFlashPromotion.from_document(current), now):
                raise PromotionAlreadyLive()

            code = self.codes.generate_unique(
                lambda c: bool(tx.query(VOUCHER_COLLECTION, [("code", "==", c)], limit=1)),
                length=self.code_length,
                prefix=self.code_prefix,
                max_attempts=self.code_max_attempts,
            )
            promo = LiveFlashPromotion(
                id=LIVE_PROMO_ID,
                code=code,
                description=description or f"Flash Sale! {discount_percent:g}% off all bookings.",
                discount_type=DiscountType.PERCENTAGE,
                discount_value=discount_percent,
                scope=VoucherScope.ALL_HOMESTAYS,
                valid_from=now,
                expiry_date=LiveFlashPromotion.expiry_for(now, duration_minutes),
                usage_limit=1,
                per_user_limit=1,
                redeemed_count=0,
                is_active=True,
                created_at=now,
                launched_at=now,
                duration_minutes=duration_minutes,
            )
            tx.put(SETTINGS_COLLECTION, LIVE_PROMO_ID, promo.to_document())
            tx.delete(SETTINGS_COLLECTION, LIVE_PROMO_CLAIM_ID)
            return promo

        promo = await run_transaction(self.store, _tx, name="promo.launch", policy=self.retry)
        audit_logger.info(f"⚡ 秒杀上线 code={promo.code} {promo.discount_value:g}% {duration_minutes}min")
        return promo

    # ======================================================
    # 🏁 领取（唯一赢家）
    # ======================================================
    async def claim(self, user_id: str) -> Voucher:

        def _tx(tx: Transaction) -> Voucher:
            now = self.clock()
            live_doc = tx.get(SETTINGS_COLLECTION, LIVE_PROMO_ID)
            marker = tx.get(SETTINGS_COLLECTION, LIVE_PROMO_CLAIM_ID)

            if live_doc is None:
                if marker is not None and now <= as_utc(marker["expiryDate"]):
                    raise AlreadyClaimed()
                raise PromotionNotFound()

            promo = LiveFlashPromotion.from_document(live_doc)
            if promo.claimed_by:
                raise AlreadyClaimed()
            if self._expired(promo, now):
                raise PromotionExpired()

            voucher_id = tx.new_id(VOUCHER_COLLECTION)
            data = promo.model_dump(include=set(Voucher.model_fields))
            data.update(
                id=voucher_id,
                claimed_by=user_id,
                valid_from=now,
                expiry_date=self._claimed_expiry(now),
                usage_limit=1,
                per_user_limit=1,
                redeemed_count=0,
                is_active=True,
                scope=VoucherScope.ALL_HOMESTAYS,
                created_at=now,
            )
            voucher = Voucher(**data)

            tx.put(VOUCHER_COLLECTION, voucher_id, voucher.to_document())
            tx.delete(SETTINGS_COLLECTION, LIVE_PROMO_ID)
            tx.put(SETTINGS_COLLECTION, LIVE_PROMO_CLAIM_ID, {
                "code": promo.code,
                "claimedBy": user_id,
                "voucherId": voucher_id,
                "claimedAt": now,
                "expiryDate": promo.expiry_date,
            })
            return voucher

        voucher = await run_transaction(self.store, _tx, name="promo.claim", policy=self.retry)
        audit_logger.info(f"🏆 秒杀券 {voucher.code} 被 {user_id} 抢到")
        if self.eventbus:
            await self.eventbus.publish(VoucherEvent.CLAIMED.value, voucher_event_payload(voucher, user_id))
        return voucher

    # ======================================================
    # 🛑 结束
    # ======================================================
    async def end(self) -> bool:
        """手动结束（幂等）；返回是否真的删掉了进行中的活动"""

        def _tx(tx: Transaction) -> bool:
            existed = tx.get(SETTINGS_COLLECTION, LIVE_PROMO_ID) is not None
            tx.delete(SETTINGS_COLLECTION, LIVE_PROMO_ID)
            tx.delete(SETTINGS_COLLECTION, LIVE_PROMO_CLAIM_ID)
            return existed

        existed = await run_transaction(self.store, _tx, name="promo.end", policy=self.retry)
        audit_logger.info(f"🛑 秒杀结束 existed={existed}")
        return existed

    # ======================================================
    # 👀 查询 / 订阅
    # ======================================================
    def _visible(self, doc) -> Optional[LiveFlashPromotion]:
        if doc is None:
            return None
        promo = LiveFlashPromotion.from_document(doc)
        if promo.claimed_by or self._expired(promo, self.clock()):
            return None
        return promo

    async def current(self) -> Optional[LiveFlashPromotion]:
        doc = await asyncio.to_thread(self.store.get, SETTINGS_COLLECTION, LIVE_PROMO_ID)
        return self._visible(doc)

    def watch(self, callback: Callable[[Optional[LiveFlashPromotion]], None]) -> Unsubscribe:
        """实时订阅（回调可能在后台线程执行，只用于前端倒计时展示）"""
        return self.store.watch(
            SETTINGS_COLLECTION, LIVE_PROMO_ID, lambda doc: callback(self._visible(doc))
        )
