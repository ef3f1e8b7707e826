"""
Homestay-Promo 日志系统模块
---------------------
✅ 控制台彩色日志（带 request_id）
✅ 按天分割的运行日志 + 券审计日志（发券 / 抢券 / 核销 / 启停）
✅ FastAPI 请求耗时中间件，透传 X-Request-ID
✅ uvicorn 标准 logging 转发到 Loguru
"""

import logging
import sys
import time
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from app.config.settings_manager import get_current_settings

LOG_PATH = "logs/app_{time:YYYY-MM-DD}.log"
AUDIT_LOG_PATH = "logs/voucher_audit_{time:YYYY-MM-DD}.log"
REQUEST_ID_HEADER = "X-Request-ID"

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[request_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# 券状态变更专用：额外写入审计文件
audit_logger = logger.bind(audit=True)


def _is_audit(record) -> bool:
    return bool(record["extra"].get("audit"))


def init_logger(level: Optional[str] = None, to_file: bool = True):
    settings = get_current_settings()
    level = level or ("DEBUG" if settings.app.debug else "INFO")

    logger.remove()
    logger.configure(extra={"request_id": "-"})
    logger.add(sys.stdout, level=level, enqueue=True, backtrace=True, colorize=True, format=LOG_FORMAT)

    if to_file:
        logger.add(
            LOG_PATH,
            rotation="00:00",      # 每天一个文件
            retention="14 days",
            level=level,
            enqueue=True,
            format=LOG_FORMAT,
        )
        # 审计日志保留更久，便于事后核对领取 / 核销
        logger.add(
            AUDIT_LOG_PATH,
            rotation="00:00",
            retention="90 days",
            level="INFO",
            enqueue=True,
            filter=_is_audit,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {extra[request_id]} | {message}",
        )

    logging.getLogger("uvicorn.access").handlers = [InterceptHandler()]
    logging.getLogger("uvicorn.error").handlers = [InterceptHandler()]
    logger.info(f"✅ Logger initialized (level={level}, files={to_file})")


class InterceptHandler(logging.Handler):
    """将标准 logging 转发给 Loguru"""
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """每个请求一个 request_id，贯穿本次请求内的所有日志"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        start_time = time.time()
        with logger.contextualize(request_id=request_id):
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000
            client = request.client.host if request.client else "-"
            logger.info(
                f"{request.method} {request.url.path} "
                f"status={response.status_code} "
                f"duration={process_time:.2f}ms "
                f"client={client}"
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def setup_logger(app: FastAPI, to_file: bool = True):
    init_logger(to_file=to_file)
    app.add_middleware(RequestLoggingMiddleware)
    logger.info("🧩 Log middleware registered successfully.")
    return logger
