# -*- coding: utf-8 -*-
"""
Homestay-Promo exception system
-------------------------------
✅ APIException 基类 (msg / error_code / http_code)
✅ 券 / 秒杀活动业务异常
✅ FastAPI 全局异常处理器
"""
import traceback
import uuid
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel


class APIExceptionModel(BaseModel):
    msg: str = "sorry, we made a mistake (*￣︶￣)!"
    error_code: int = 999
    request: Optional[str] = None
    trace_id: Optional[str] = None


class APIException(Exception):
    msg = "sorry, we made a mistake (*￣︶￣)!"
    error_code = 999
    http_code = 400
    # 临时故障（冲突 / 上游不可用），客户端可稍后重试
    transient = False

    def __init__(self, msg=None, error_code=None, http_code=None):
        self.msg = msg or self.msg
        self.error_code = error_code or self.error_code
        self.http_code = http_code or self.http_code
        super().__init__(self.msg)


class NotFound(APIException):
    msg = "资源未找到"
    error_code = 1001
    http_code = 404


class ParameterError(APIException):
    msg = "参数错误"
    error_code = 1002
    http_code = 400


class AuthFailed(APIException):
    msg = "认证失败"
    error_code = 1003
    http_code = 401


class AuthUnavailable(APIException):
    msg = "认证服务暂不可用，请稍后重试"
    error_code = 1006
    http_code = 503
    transient = True


class Forbidden(APIException):
    msg = "权限不足"
    error_code = 1004
    http_code = 403


class InternalServerError(APIException):
    msg = "服务器内部错误"
    error_code = 5001
    http_code = 500


# ======================================================
# 🎟️ 券定义 / 券码
# ======================================================
class InvalidVoucherDefinition(ParameterError):
    msg = "Invalid voucher definition"
    error_code = 4001


class CodeGenerationExhausted(APIException):
    msg = "Could not generate a unique voucher code, please try again"
    error_code = 4002
    http_code = 503


# ======================================================
# ⚡ 秒杀活动
# ======================================================
class PromotionAlreadyLive(APIException):
    msg = "A flash promotion is already live"
    error_code = 4101
    http_code = 409


class PromotionNotFound(NotFound):
    msg = "There is no flash promotion right now"
    error_code = 4102


class AlreadyClaimed(APIException):
    msg = "This offer was just claimed by someone else"
    error_code = 4103
    http_code = 409


class PromotionExpired(APIException):
    msg = "This flash promotion has expired"
    error_code = 4104
    http_code = 410


# ======================================================
# 🧾 核销
# ======================================================
class VoucherNotFound(NotFound):
    msg = "Voucher code not found"
    error_code = 4201


class VoucherInactive(APIException):
    msg = "This voucher is not active"
    error_code = 4202


class VoucherExpired(APIException):
    msg = "This voucher has expired"
    error_code = 4203


class VoucherNotOwned(Forbidden):
    msg = "This voucher belongs to another account"
    error_code = 4204


class ScopeMismatch(APIException):
    msg = "This voucher is not applicable to this property"
    error_code = 4205


class UsageLimitReached(APIException):
    msg = "This voucher has been fully redeemed"
    error_code = 4206
    http_code = 409


class AlreadyRedeemedByUser(APIException):
    msg = "You have already used this voucher"
    error_code = 4207
    http_code = 409


# ======================================================
# 🔁 事务
# ======================================================
class ConflictAborted(APIException):
    msg = "The request conflicted with another update, please retry"
    error_code = 4301
    http_code = 503
    transient = True


class OperationTimeout(APIException):
    msg = "The request timed out, please check the result before retrying"
    error_code = 4302
    http_code = 504


def build_error_response(request: Request, msg: str, error_code: int, http_code: int, trace_id=None):
    trace_id = trace_id or uuid.uuid4().hex[:8]
    model = APIExceptionModel(
        msg=msg,
        error_code=error_code,
        request=f"{request.method} {request.url.path}",
        trace_id=trace_id,
    )
    return JSONResponse(status_code=http_code, content=model.model_dump())


def register_exception_handlers(app):

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        return build_error_response(request, exc.msg, exc.error_code, exc.http_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        first_err = exc.errors()[0] if exc.errors() else {}
        msg = first_err.get("msg", "参数错误")
        return build_error_response(request, msg, 1005, 422)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        trace_id = uuid.uuid4().hex[:8]
        tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        logger.error(f"[Unhandled] TraceID={trace_id} {request.method} {request.url.path}\n{tb_str}")
        err = InternalServerError("服务器内部异常，请稍后重试")
        return build_error_response(request, err.msg, err.error_code, err.http_code, trace_id)
