# app/api/v1/promo.py
from fastapi import APIRouter, Depends, WebSocket

from app.api.v1.services.voucher import VoucherServices, get_services
from app.api.ws_bridge import relay
from app.pedro.identity import login_required
from app.pedro.response import ApiResponse
from app.pedro.utils import utcnow

rp = APIRouter(prefix="/promo", tags=["秒杀"])


@rp.get("/live", name="当前秒杀活动")
async def live_promo(uid: str = Depends(login_required), services: VoucherServices = Depends(get_services)):
    promo = await services.promos.current()
    return ApiResponse.success({"promo": promo, "serverTime": utcnow()})


@rp.post("/claim", name="抢秒杀券")
async def claim(uid: str = Depends(login_required), services: VoucherServices = Depends(get_services)):
    voucher = await services.promos.claim(uid)
    return ApiResponse.success(voucher, msg="Voucher claimed")


@rp.websocket("/live/ws")
async def live_promo_ws(ws: WebSocket):
    """
    实时推送 settings/live_promo（仅用于倒计时展示，领取以服务端事务为准）
    每条消息附带 serverTime，前端据此校正本地时钟
    """
    services: VoucherServices = ws.app.state.voucher_services
    await ws.accept()
    await relay(ws, services.promos.watch, "live_promo")
