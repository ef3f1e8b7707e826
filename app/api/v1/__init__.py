from fastapi import APIRouter

from app.api import autoload_routers


def create_v1() -> APIRouter:
    """用户端接口（/v1）"""
    return autoload_routers(APIRouter(prefix="/v1"), "app.api.v1")
