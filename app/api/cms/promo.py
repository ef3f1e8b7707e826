# app/api/cms/promo.py
from fastapi import APIRouter, Depends

from app.api.v1.schema.voucher import LaunchPromoSchema
from app.api.v1.services.voucher import VoucherServices, get_services
from app.pedro.identity import admin_required
from app.pedro.response import ApiResponse

rp = APIRouter(prefix="/promo", tags=["秒杀管理"], dependencies=[Depends(admin_required)])


@rp.post("/launch", name="上线秒杀")
async def launch(data: LaunchPromoSchema, services: VoucherServices = Depends(get_services)):
    promo = await services.promos.launch(data.discount_percent, data.duration_minutes, data.description)
    return ApiResponse.success(promo, msg=f"Flash promotion launched! Code: {promo.code}")


@rp.post("/end", name="结束秒杀")
async def end(services: VoucherServices = Depends(get_services)):
    existed = await services.promos.end()
    return ApiResponse.success({"ended": existed}, msg="Flash promotion ended")
