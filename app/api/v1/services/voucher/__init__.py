"""
券服务装配
------------------------------------------------------
build_voucher_services(settings) → VoucherServices
路由通过 get_services(request) 从 app.state 取用（测试可整体替换）
"""
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from app.pedro.utils import utcnow
from app.extension.eventbus.base import EventBus
from app.extension.store import VoucherStore, build_store
from app.extension.store.transaction_helper import RetryPolicy


@dataclass
class VoucherServices:
    store: VoucherStore
    eventbus: EventBus
    catalog: "VoucherCatalog"
    promos: "FlashPromoService"
    redemption: "RedemptionEngine"


def build_voucher_services(
        settings,
        store: Optional[VoucherStore] = None,
        eventbus: Optional[EventBus] = None,
        clock: Callable = utcnow,
) -> VoucherServices:
    from app.api.cms.services.flash_promo_service import FlashPromoService
    from app.api.v1.services.voucher.catalog_service import VoucherCatalog
    from app.api.v1.services.voucher.redemption_service import RedemptionEngine
    from app.extension.eventbus.handlers.voucher_handlers import register_voucher_handlers

    store = store or build_store(settings)
    eventbus = eventbus or EventBus()
    register_voucher_handlers(eventbus, store)

    voucher_cfg = settings.voucher
    promo_cfg = settings.promotion
    retry = RetryPolicy.from_settings(voucher_cfg)

    catalog = VoucherCatalog(
        store,
        eventbus=eventbus,
        clock=clock,
        retry=retry,
        code_length=voucher_cfg.code_length,
        code_max_attempts=voucher_cfg.code_max_attempts,
        per_user_limit=voucher_cfg.per_user_limit,
        verify_scope_targets=voucher_cfg.verify_scope_targets,
    )
    promos = FlashPromoService(
        store,
        eventbus=eventbus,
        clock=clock,
        retry=retry,
        max_duration_minutes=promo_cfg.max_duration_minutes,
        code_prefix=promo_cfg.code_prefix,
        code_length=promo_cfg.code_length,
        code_max_attempts=voucher_cfg.code_max_attempts,
        claimed_voucher_valid_days=promo_cfg.claimed_voucher_valid_days,
    )
    redemption = RedemptionEngine(store, catalog, eventbus=eventbus, clock=clock, retry=retry)
    return VoucherServices(store=store, eventbus=eventbus, catalog=catalog, promos=promos, redemption=redemption)


def get_services(request: Request) -> VoucherServices:
    """FastAPI 依赖"""
    return request.app.state.voucher_services
