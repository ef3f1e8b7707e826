# -*- coding: utf-8 -*-
"""
Homestay-Promo 应用工厂
--------------------------------------------
create_app() 依次装配：配置 → CORS → 日志 → 路由 (v1 / cms) → 异常 → 券服务
Firestore 后端在 lifespan 里初始化 Firebase Admin；memory 后端（测试）跳过
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.config.settings_manager import init_settings


# ======================================================
# 🧱 装配步骤
# ======================================================
def register_cors(app: FastAPI):
    origins = app.state.settings.app.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # 通配来源不能带凭证
        allow_credentials="*" not in origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )
    logger.info(f"✅ CORS origins={origins}")


def register_logger(app: FastAPI, to_file: bool = True):
    from app.pedro.logger import setup_logger
    setup_logger(app, to_file=to_file)


def register_blueprints(app: FastAPI):
    from app.api import register_blueprint
    register_blueprint(app)


def register_exception_handlers(app: FastAPI):
    from app.pedro.exception import register_exception_handlers as _register
    _register(app)


def register_voucher_services(app: FastAPI, services=None):
    """券服务容器挂到 app.state（测试可直接注入内存实现）"""
    if services is None:
        from app.api.v1.services.voucher import build_voucher_services
        services = build_voucher_services(app.state.settings)
    app.state.voucher_services = services
    logger.info(f"🎟️ 券服务已装配 | store={services.store.name}")


# ======================================================
# 🧬 lifespan
# ======================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    if settings.store.backend == "firestore":
        from app.extension.google_tools.firebase_admin_service import init_firebase_admin
        init_firebase_admin()
    logger.info(f"🚀 {settings.app.name} 已启动 | env={settings.app.env} store={settings.store.backend}")
    yield
    logger.info(f"🧹 {settings.app.name} 正在关闭")


# ======================================================
# 🏗️ create_app
# ======================================================
def create_app(services=None, log_to_file: bool = True, settings=None) -> FastAPI:
    settings = init_settings(settings=settings)
    # 文档只在 debug 环境开放
    docs = settings.app.debug

    app = FastAPI(
        title=settings.app.name,
        version=settings.app.version,
        description="Homestay voucher & flash promotion service",
        debug=settings.app.debug,
        docs_url="/docs" if docs else None,
        redoc_url="/redoc" if docs else None,
        openapi_url="/openapi.json" if docs else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    register_cors(app)
    register_logger(app, to_file=log_to_file)
    register_blueprints(app)
    register_exception_handlers(app)
    register_voucher_services(app, services)
    return app
