from fastapi import APIRouter

from app.api import autoload_routers


def create_cms() -> APIRouter:
    """运营后台接口（/cms）"""
    return autoload_routers(APIRouter(prefix="/cms"), "app.api.cms")
