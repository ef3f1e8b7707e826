"""
# @Time    : 2025/10/30 7:40
# @Author  : Pedro
# @File    : identity.py
# @Software: PyCharm

Firebase ID Token 鉴权
- login_required → 返回 uid
- admin_required → uid + 自定义 claim admin=True
- verify_token → WebSocket 等拿不到 Bearer 头的场景直接调用
"""
import asyncio
from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from firebase_admin import auth
from loguru import logger

from app.pedro.exception import AuthFailed, AuthUnavailable, Forbidden


@dataclass(frozen=True)
class Principal:
    uid: str
    admin: bool = False


security_scheme = HTTPBearer(auto_error=False)


async def verify_token(token: str) -> Principal:
    """
    校验 Firebase ID Token
    - 令牌无效 / 过期 / 吊销 / 格式错误 → AuthFailed (401)
    - 拉取 Google 公钥失败 → AuthUnavailable (503)，不是用户的问题，不能让客户端退出登录
    """
    try:
        claims = await asyncio.to_thread(auth.verify_id_token, token)
    except auth.CertificateFetchError as e:
        logger.error(f"[AUTH] 公钥拉取失败: {e}")
        raise AuthUnavailable()
    except (auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError) as e:
        logger.warning(f"[AUTH] token rejected: {e}")
        raise AuthFailed("登录已失效，请重新登录")
    except ValueError as e:
        # 空 token，或 Firebase Admin 尚未初始化
        logger.warning(f"[AUTH] token 无法校验: {e}")
        raise AuthFailed()

    return Principal(uid=claims["uid"], admin=bool(claims.get("admin", False)))


async def get_current_principal(
        credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
) -> Principal:
    if not credentials:
        raise AuthFailed("缺少认证凭据")
    return await verify_token(credentials.credentials)


async def login_required(principal: Principal = Depends(get_current_principal)) -> str:
    return principal.uid


async def admin_required(principal: Principal = Depends(get_current_principal)) -> str:
    if not principal.admin:
        raise Forbidden("需要管理员权限")
    return principal.uid
