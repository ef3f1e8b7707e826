# app/api/v1/voucher.py
from fastapi import APIRouter, Depends

from app.api.v1.model.voucher import BookingContext
from app.api.v1.schema.voucher import BookingSchema, RedeemSchema, SuggestionSchema
from app.api.v1.services.voucher import VoucherServices, get_services
from app.pedro.identity import login_required
from app.pedro.response import ApiResponse

rp = APIRouter(prefix="/voucher", tags=["优惠券"])


def _booking(data: BookingSchema) -> BookingContext:
    return BookingContext(homestay_id=data.homestay_id, room_id=data.room_id, subtotal=data.subtotal)


@rp.get("/available", name="当前可领/可用的公共券")
async def list_available(uid: str = Depends(login_required), services: VoucherServices = Depends(get_services)):
    vouchers = await services.catalog.list_available(user_id=uid)
    return ApiResponse.success(vouchers)


@rp.get("/mine", name="我的券")
async def list_mine(uid: str = Depends(login_required), services: VoucherServices = Depends(get_services)):
    vouchers = await services.catalog.list_for_user(uid)
    return ApiResponse.success(vouchers)


@rp.post("/{voucher_id}/claim", name="领取券")
async def claim(voucher_id: str, uid: str = Depends(login_required),
                services: VoucherServices = Depends(get_services)):
    voucher = await services.catalog.claim(voucher_id, uid)
    return ApiResponse.success(voucher, msg="Voucher claimed")


@rp.get("/code/{code}", name="按券码查询")
async def get_by_code(code: str, uid: str = Depends(login_required),
                      services: VoucherServices = Depends(get_services)):
    voucher = await services.catalog.get_by_code(code)
    return ApiResponse.success(voucher)


@rp.get("/{voucher_id}/usage", name="我的使用记录（超时后对账用）")
async def get_usage(voucher_id: str, uid: str = Depends(login_required),
                    services: VoucherServices = Depends(get_services)):
    usage = await services.catalog.usage(voucher_id, uid)
    return ApiResponse.success(usage)


@rp.post("/preview", name="试算优惠")
async def preview(data: RedeemSchema, uid: str = Depends(login_required),
                  services: VoucherServices = Depends(get_services)):
    result = await services.redemption.preview(data.code, uid, _booking(data))
    return ApiResponse.success(result)


@rp.post("/redeem", name="核销")
async def redeem(data: RedeemSchema, uid: str = Depends(login_required),
                 services: VoucherServices = Depends(get_services)):
    # 超时 (OperationTimeout) 时结果未知：客户端先查 /{voucher_id}/usage 再决定是否重试
    result = await services.redemption.redeem(data.code, uid, _booking(data))
    return ApiResponse.success(result, msg="Voucher applied")


@rp.post("/suggestions", name="房间可用券推荐")
async def suggestions(data: SuggestionSchema, uid: str = Depends(login_required),
                      services: VoucherServices = Depends(get_services)):
    result = await services.redemption.suggest(uid, data.homestay_id, data.room_id, data.current_price)
    return ApiResponse.success(result)
