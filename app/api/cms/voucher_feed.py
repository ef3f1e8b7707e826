# app/api/cms/voucher_feed.py
from fastapi import APIRouter, Query, WebSocket
from loguru import logger

from app.api.v1.services.voucher import VoucherServices
from app.api.ws_bridge import relay
from app.pedro.exception import APIException, AuthFailed, Forbidden
from app.pedro.identity import verify_token

# 浏览器 WebSocket 不能带 Authorization 头，令牌走 ?token=，所以这里不挂路由级 admin_required
rp = APIRouter(prefix="/voucher", tags=["券管理"])


async def _authorize(token: str) -> str:
    if not token:
        raise AuthFailed("缺少认证凭据")
    principal = await verify_token(token)
    if not principal.admin:
        raise Forbidden("需要管理员权限")
    return principal.uid


@rp.websocket("/ws")
async def vouchers_ws(ws: WebSocket, token: str = Query(default="")):
    """
    后台券列表实时推送（createdAt 倒序，每次变化推送完整列表）
    鉴权失败以 4000 + HTTP 状态码关闭：4401 未登录 / 4403 非管理员 / 4503 认证服务不可用
    """
    try:
        uid = await _authorize(token)
    except APIException as e:
        await ws.close(code=4000 + e.http_code, reason=e.msg)
        return

    services: VoucherServices = ws.app.state.voucher_services
    await ws.accept()
    logger.info(f"📡 管理员 {uid} 订阅券列表")
    await relay(ws, services.catalog.watch_all, "vouchers")
