"""
API 注册入口
"""
import importlib
import pkgutil
import time

from fastapi import APIRouter, FastAPI
from loguru import logger

SKIP_MODULES = {"__init__", "model", "schema", "services", "validator", "exception"}


def autoload_routers(router: APIRouter, package_name: str) -> APIRouter:
    """
    自动扫描 package 下所有包含 rp 对象的模块，并注册到 router
    """
    package = importlib.import_module(package_name)
    start_time = time.time()

    for _, module_name, is_pkg in pkgutil.iter_modules(package.__path__):
        if is_pkg or module_name in SKIP_MODULES:
            continue

        module = importlib.import_module(f"{package_name}.{module_name}")
        rp = getattr(module, "rp", None)
        if rp is None:
            logger.warning(f"⚠️ 模块 {module_name:<12} 未定义 rp 对象，已跳过。")
            continue
        router.include_router(rp)
        logger.info(f"✅ 已注册子模块: {module_name:<12} | prefix={rp.prefix or '/'} | routes={len(rp.routes)}")

    elapsed = (time.time() - start_time) * 1000
    logger.info(f"🌿 {package_name} 子模块注册完成！耗时 {elapsed:.2f} ms")
    return router


def register_blueprint(app: FastAPI):
    from app.api.v1 import create_v1
    from app.api.cms import create_cms

    app.include_router(create_v1())
    app.include_router(create_cms())
