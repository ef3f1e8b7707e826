"""
# @Time    : 2025/11/15 7:20
# @Author  : Pedro
# @File    : catalog_service.py
# @Software: PyCharm

🎟️ 券目录：创建 / 批量发放 / 查询 / 订阅 / 启停 / 领取 / 定向发放
所有写操作都走 run_transaction（事务内：先读后写）
"""
import asyncio
import math
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from app.api.v1.model.voucher import (
    LIVE_PROMO_ID,
    SETTINGS_COLLECTION,
    USAGE_COLLECTION,
    VOUCHER_COLLECTION,
    UserVoucherUsage,
    Voucher,
    as_utc,
)
from app.api.v1.schema.voucher import VoucherDefinition
from app.api.v1.services.voucher.code_generator import CodeGenerator
from app.api.v1.services.voucher.expiry_policy import ExpiryPolicy
from app.pedro.enums import DiscountType, VoucherEvent, VoucherScope
from app.pedro.exception import AlreadyClaimed, InvalidVoucherDefinition, VoucherNotFound
from app.pedro.logger import audit_logger
from app.pedro.utils import utcnow
from app.extension.eventbus.base import EventBus
from app.extension.store import Transaction, VoucherStore
from app.extension.store.base import Unsubscribe
from app.extension.store.transaction_helper import RetryPolicy, run_transaction

HOMESTAY_COLLECTION = "homestays"
ROOM_COLLECTION = "rooms"
# Firestore 单事务最多 500 次写入
ISSUE_BATCH_SIZE = 200


def voucher_event_payload(voucher: Voucher, user_id: str) -> Dict:
    """事件载荷（通知处理器使用）"""
    return {
        "user_id": user_id,
        "voucher_id": voucher.id,
        "code": voucher.code,
        "discount_type": voucher.discount_type.value,
        "discount_value": voucher.discount_value,
        "expiry_date": voucher.expiry_date,
    }


class VoucherCatalog:

    def __init__(
            self,
            store: VoucherStore,
            *,
            eventbus: Optional[EventBus] = None,
            code_generator: Optional[CodeGenerator] = None,
            clock: Callable = utcnow,
            retry: RetryPolicy = RetryPolicy(),
            code_length: int = 8,
            code_max_attempts: int = 5,
            per_user_limit: int = 1,
            verify_scope_targets: bool = False,
    ):
        self.store = store
        self.eventbus = eventbus
        self.codes = code_generator or CodeGenerator()
        self.clock = clock
        self.retry = retry
        self.code_length = code_length
        self.code_max_attempts = code_max_attempts
        self.per_user_limit = per_user_limit
        self.verify_scope_targets = verify_scope_targets

    # ======================================================
    # ✅ 创建
    # ======================================================
    def _validate(self, definition: VoucherDefinition, now) -> Tuple:
        value = definition.discount_value
        if value is None or not math.isfinite(value) or value <= 0:
            raise InvalidVoucherDefinition("Discount value must be positive")
        if definition.discount_type == DiscountType.PERCENTAGE and not 1 <= value <= 100:
            raise InvalidVoucherDefinition("Percentage discount must be between 1 and 100")

        if definition.max_discount_cap is not None:
            if definition.discount_type != DiscountType.PERCENTAGE:
                raise InvalidVoucherDefinition("Discount cap only applies to percentage vouchers")
            if not math.isfinite(definition.max_discount_cap) or definition.max_discount_cap <= 0:
                raise InvalidVoucherDefinition("Discount cap must be positive")

        if definition.scope == VoucherScope.SPECIFIC_HOMESTAY and not definition.applicable_homestay_id:
            raise InvalidVoucherDefinition("A specific homestay voucher needs applicableHomestayId")
        if definition.scope == VoucherScope.SPECIFIC_ROOM and not definition.applicable_room_id:
            raise InvalidVoucherDefinition("A specific room voucher needs applicableRoomId")

        valid_from = as_utc(definition.valid_from) or now
        expiry_date = as_utc(definition.expiry_date)
        if valid_from >= expiry_date:
            raise InvalidVoucherDefinition("Voucher must start before it expires")

        if definition.usage_limit < 0:
            raise InvalidVoucherDefinition("Usage limit cannot be negative")
        per_user_limit = self.per_user_limit if definition.per_user_limit is None else definition.per_user_limit
        if per_user_limit < 1:
            raise InvalidVoucherDefinition("Per-user limit must be at least 1")
        return valid_from, expiry_date, per_user_limit

    @staticmethod
    def _code_taken(tx: Transaction, code: str) -> bool:
        return bool(tx.query(VOUCHER_COLLECTION, [("code", "==", code)], limit=1))

    @staticmethod
    def _check_scope_target(tx: Transaction, definition: VoucherDefinition):
        if definition.scope == VoucherScope.SPECIFIC_HOMESTAY:
            if tx.get(HOMESTAY_COLLECTION, definition.applicable_homestay_id) is None:
                raise InvalidVoucherDefinition("Homestay not found")
        elif definition.scope == VoucherScope.SPECIFIC_ROOM:
            if tx.get(ROOM_COLLECTION, definition.applicable_room_id) is None:
                raise InvalidVoucherDefinition("Room not found")

    @staticmethod
    def _build(voucher_id, code, definition: VoucherDefinition, valid_from, expiry_date, per_user_limit, now,
               claimed_by: Optional[str] = None) -> Voucher:
        return Voucher(
            id=voucher_id,
            code=code,
            description=definition.description,
            discount_type=definition.discount_type,
            discount_value=definition.discount_value,
            scope=definition.scope,
            host_id=definition.host_id,
            applicable_homestay_id=definition.applicable_homestay_id,
            applicable_room_id=definition.applicable_room_id,
            valid_from=valid_from,
            expiry_date=expiry_date,
            usage_limit=definition.usage_limit,
            per_user_limit=per_user_limit,
            redeemed_count=0,
            is_active=definition.is_active,
            claimed_by=claimed_by,
            max_discount_cap=definition.max_discount_cap,
            created_at=now,
        )

    async def create(self, definition: VoucherDefinition) -> Voucher:
        """
        创建券（单事务）：
        1. 校验定义
        2. 自定义券码查重 / 自动生成唯一券码
        3. 写入 vouchers，redeemedCount = 0
        """
        now = self.clock()
        valid_from, expiry_date, per_user_limit = self._validate(definition, now)
        custom_code = CodeGenerator.validate(definition.code) if definition.code else None

        def _tx(tx: Transaction) -> Voucher:
            if self.verify_scope_targets:
                self._check_scope_target(tx, definition)

            if custom_code:
                live = tx.get(SETTINGS_COLLECTION, LIVE_PROMO_ID)
                if self._code_taken(tx, custom_code) or (live and live.get("code") == custom_code):
                    raise InvalidVoucherDefinition("Voucher code already exists")
                code = custom_code
            else:
                code = self.codes.generate_unique(
                    lambda c: self._code_taken(tx, c),
                    length=self.code_length,
                    max_attempts=self.code_max_attempts,
                )

            voucher = self._build(tx.new_id(VOUCHER_COLLECTION), code, definition, valid_from, expiry_date,
                                  per_user_limit, now)
            tx.put(VOUCHER_COLLECTION, voucher.id, voucher.to_document())
            return voucher

        voucher = await run_transaction(self.store, _tx, name="voucher.create", policy=self.retry)
        audit_logger.info(f"🎟️ 新券创建 id={voucher.id} code={voucher.code} scope={voucher.scope.value}")
        return voucher

    async def issue_to_users(self, definition: VoucherDefinition, user_ids: Iterable[str]) -> List[Voucher]:
        """
        批量发放专属券：同一定义给每个用户各生成一张（claimedBy = 该用户，券码各不相同）
        每 ISSUE_BATCH_SIZE 个用户一个事务；某批失败时之前的批次已提交
        """
        users = list(dict.fromkeys(u for u in user_ids if u))
        if not users:
            raise InvalidVoucherDefinition("No users to issue vouchers to")
        if definition.code:
            raise InvalidVoucherDefinition("Bulk issue generates one code per user, custom codes are not allowed")

        now = self.clock()
        valid_from, expiry_date, per_user_limit = self._validate(definition, now)

        def _batch_tx(batch: List[str]):
            def _tx(tx: Transaction) -> List[Voucher]:
                if self.verify_scope_targets:
                    self._check_scope_target(tx, definition)

                # 先生成全部券码（读），再统一写入
                taken = set()
                codes = []
                for _ in batch:
                    code = self.codes.generate_unique(
                        lambda c: c in taken or self._code_taken(tx, c),
                        length=self.code_length,
                        max_attempts=self.code_max_attempts,
                    )
                    taken.add(code)
                    codes.append(code)

                vouchers = []
                for user_id, code in zip(batch, codes):
                    voucher = self._build(tx.new_id(VOUCHER_COLLECTION), code, definition, valid_from, expiry_date,
                                          per_user_limit, now, claimed_by=user_id)
                    tx.put(VOUCHER_COLLECTION, voucher.id, voucher.to_document())
                    vouchers.append(voucher)
                return vouchers
            return _tx

        issued: List[Voucher] = []
        for start in range(0, len(users), ISSUE_BATCH_SIZE):
            batch = users[start:start + ISSUE_BATCH_SIZE]
            vouchers = await run_transaction(self.store, _batch_tx(batch), name="voucher.issue", policy=self.retry)
            audit_logger.info(f"📦 批量发放 {len(vouchers)} 张专属券 ({start + len(vouchers)}/{len(users)})")
            if self.eventbus:
                for voucher in vouchers:
                    await self.eventbus.publish(VoucherEvent.GRANTED.value,
                                                voucher_event_payload(voucher, voucher.claimed_by))
            issued.extend(vouchers)
        return issued

    # ======================================================
    # 🔍 查询
    # ======================================================
    async def get(self, voucher_id: str) -> Voucher:
        doc = await asyncio.to_thread(self.store.get, VOUCHER_COLLECTION, voucher_id)
        if doc is None:
            raise VoucherNotFound()
        return Voucher.from_document(doc)

    async def get_by_code(self, code: str) -> Voucher:
        code = CodeGenerator.normalize(code)
        docs = await asyncio.to_thread(self.store.query, VOUCHER_COLLECTION, [("code", "==", code)], limit=1)
        if not docs:
            raise VoucherNotFound()
        return Voucher.from_document(docs[0])

    async def is_code_unique(self, code: str) -> bool:
        code = CodeGenerator.normalize(code)
        docs = await asyncio.to_thread(self.store.query, VOUCHER_COLLECTION, [("code", "==", code)], limit=1)
        return not docs

    async def list_available(self, user_id: Optional[str] = None) -> List[Voucher]:
        """
        当前可用的公共券（已启用 / 在有效期内 / 未被领取 / 未用完）
        传 user_id 时额外包含该用户领取的专属券
        """
        now = self.clock()
        docs = await asyncio.to_thread(self.store.query, VOUCHER_COLLECTION, [("isActive", "==", True)])
        vouchers = []
        for doc in docs:
            voucher = Voucher.from_document(doc)
            if not ExpiryPolicy.is_active(voucher, now):
                continue
            if voucher.claimed_by and voucher.claimed_by != user_id:
                continue
            if voucher.remaining == 0:
                continue
            vouchers.append(voucher)
        vouchers.sort(key=lambda v: v.expiry_date)
        return vouchers

    async def list_for_user(self, user_id: str) -> List[Voucher]:
        """我的券：秒杀领取的 + 后台定向发放的"""
        claimed = await asyncio.to_thread(self.store.query, VOUCHER_COLLECTION, [("claimedBy", "==", user_id)])
        vouchers = {doc["id"]: Voucher.from_document(doc) for doc in claimed}

        usages = await asyncio.to_thread(self.store.query, USAGE_COLLECTION, [("userId", "==", user_id)])
        for usage in usages:
            voucher_id = usage.get("voucherId")
            if voucher_id in vouchers:
                continue
            doc = await asyncio.to_thread(self.store.get, VOUCHER_COLLECTION, voucher_id)
            if doc is not None:
                vouchers[voucher_id] = Voucher.from_document(doc)

        return sorted(vouchers.values(), key=lambda v: v.created_at or v.valid_from, reverse=True)

    async def list_for_host(self, host_id: str) -> List[Voucher]:
        docs = await asyncio.to_thread(
            self.store.query, VOUCHER_COLLECTION, [("hostId", "==", host_id)],
            order_by="createdAt", descending=True,
        )
        return [Voucher.from_document(doc) for doc in docs]

    async def list_all(self, limit: Optional[int] = None) -> List[Voucher]:
        docs = await asyncio.to_thread(
            self.store.query, VOUCHER_COLLECTION, order_by="createdAt", descending=True, limit=limit,
        )
        return [Voucher.from_document(doc) for doc in docs]

    async def usage(self, voucher_id: str, user_id: str) -> Optional[UserVoucherUsage]:
        """用户对某券的使用记录（客户端超时后可据此确认核销结果）"""
        doc = await asyncio.to_thread(
            self.store.get, USAGE_COLLECTION, UserVoucherUsage.doc_id(user_id, voucher_id)
        )
        return UserVoucherUsage.from_document(doc) if doc else None

    # ======================================================
    # 🔁 启停
    # ======================================================
    async def _set_active(self, voucher_id: str, active: bool) -> Voucher:
        def _tx(tx: Transaction) -> Voucher:
            doc = tx.get(VOUCHER_COLLECTION, voucher_id)
            if doc is None:
                raise VoucherNotFound()
            voucher = Voucher.from_document(doc)
            if voucher.is_active == active:
                return voucher
            tx.update(VOUCHER_COLLECTION, voucher_id, {"isActive": active})
            return voucher.model_copy(update={"is_active": active})

        voucher = await run_transaction(self.store, _tx, name="voucher.set_active", policy=self.retry)
        audit_logger.info(f"🔁 券 {voucher.code} isActive={active}")
        return voucher

    async def deactivate(self, voucher_id: str) -> Voucher:
        return await self._set_active(voucher_id, False)

    async def activate(self, voucher_id: str) -> Voucher:
        return await self._set_active(voucher_id, True)

    # ======================================================
    # 🎁 定向发放
    # ======================================================
    async def grant(self, voucher_id: str, user_id: str) -> UserVoucherUsage:
        """给用户发放券（幂等：已有使用记录则原样返回）"""
        now = self.clock()
        usage_id = UserVoucherUsage.doc_id(user_id, voucher_id)

        def _tx(tx: Transaction):
            doc = tx.get(VOUCHER_COLLECTION, voucher_id)
            if doc is None:
                raise VoucherNotFound()
            existing = tx.get(USAGE_COLLECTION, usage_id)
            voucher = Voucher.from_document(doc)
            if existing is not None:
                return voucher, UserVoucherUsage.from_document(existing), False

            usage = UserVoucherUsage(
                id=usage_id,
                user_id=user_id,
                voucher_id=voucher_id,
                usage_count=0,
                is_used=False,
                received_at=now,
            )
            tx.put(USAGE_COLLECTION, usage_id, usage.to_document())
            return voucher, usage, True

        voucher, usage, created = await run_transaction(self.store, _tx, name="voucher.grant", policy=self.retry)
        if created:
            audit_logger.info(f"🎁 券 {voucher.code} 发放给 {user_id}")
            if self.eventbus:
                await self.eventbus.publish(VoucherEvent.GRANTED.value, voucher_event_payload(voucher, user_id))
        return usage

    # ======================================================
    # 🙋 领取
    # ======================================================
    async def claim(self, voucher_id: str, user_id: str) -> Voucher:
        """
        领取券（单事务）：claimedBy 只能写一次
        同一用户重复领取原样返回；已被他人领取 → AlreadyClaimed
        """
        now = self.clock()

        def _tx(tx: Transaction):
            doc = tx.get(VOUCHER_COLLECTION, voucher_id)
            if doc is None:
                raise VoucherNotFound()
            voucher = Voucher.from_document(doc)
            if voucher.claimed_by == user_id:
                return voucher, False
            if voucher.claimed_by:
                raise AlreadyClaimed("This voucher has already been claimed")
            ExpiryPolicy.check(voucher, now)

            tx.update(VOUCHER_COLLECTION, voucher_id, {"claimedBy": user_id})
            return voucher.model_copy(update={"claimed_by": user_id}), True

        voucher, created = await run_transaction(self.store, _tx, name="voucher.claim", policy=self.retry)
        if created:
            audit_logger.info(f"🙋 券 {voucher.code} 被 {user_id} 领取")
            if self.eventbus:
                await self.eventbus.publish(VoucherEvent.CLAIMED.value, voucher_event_payload(voucher, user_id))
        return voucher

    # ======================================================
    # 📡 订阅
    # ======================================================
    def watch_all(self, callback: Callable[[List[Voucher]], None]) -> Unsubscribe:
        """后台实时券列表（按 createdAt 倒序）；回调可能来自存储的后台线程"""
        return self.store.watch_query(
            VOUCHER_COLLECTION,
            lambda docs: callback([Voucher.from_document(doc) for doc in docs]),
            order_by="createdAt",
            descending=True,
        )
