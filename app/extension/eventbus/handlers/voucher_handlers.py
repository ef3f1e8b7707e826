# app/extension/eventbus/handlers/voucher_handlers.py
import asyncio

from loguru import logger

from app.api.v1.model.voucher import NOTIFICATION_COLLECTION
from app.pedro.enums import DiscountType, VoucherEvent
from app.pedro.utils import utcnow
from app.extension.eventbus.base import EventBus
from app.extension.store import VoucherStore


def _discount_text(data) -> str:
    value = data.get("discount_value")
    if data.get("discount_type") == DiscountType.PERCENTAGE.value:
        return f"{value:g}% discount"
    return f"{value:g} discount"


def _write_notification(store: VoucherStore, data):
    user_id = data["user_id"]

    def _tx(tx):
        doc_id = tx.new_id(NOTIFICATION_COLLECTION)
        tx.put(NOTIFICATION_COLLECTION, doc_id, {
            "userId": user_id,
            "type": "voucher",
            "title": "New Voucher Received!",
            "message": f"You received a {_discount_text(data)} voucher ({data['code']})",
            "actionUrl": "/profile/vouchers",
            "read": False,
            "createdAt": utcnow(),
        })
        return doc_id

    return store.transact(_tx)


def register_voucher_handlers(bus: EventBus, store: VoucherStore):
    """注册券相关的通知监听（通知失败只记日志，不影响已提交的领取/核销）"""

    @bus.on(VoucherEvent.CLAIMED.value)
    async def notify_voucher_claimed(data):
        doc_id = await asyncio.to_thread(_write_notification, store, data)
        logger.info(f"🔔 已通知 {data['user_id']} 抢到秒杀券 {data['code']} ({doc_id})")

    @bus.on(VoucherEvent.GRANTED.value)
    async def notify_voucher_granted(data):
        doc_id = await asyncio.to_thread(_write_notification, store, data)
        logger.info(f"🔔 已通知 {data['user_id']} 收到券 {data['code']} ({doc_id})")

    @bus.on(VoucherEvent.REDEEMED.value)
    async def log_voucher_redeemed(data):
        logger.info(f"🧾 {data['user_id']} 使用券 {data['code']} 优惠 {data['discount_amount']}")

    return bus
