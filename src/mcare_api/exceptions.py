"""应用异常处理注册。

身份领域异常、协议异常与参数校验错误统一转换为 ``{request_id, error}`` 结构，
错误码与提示文案按状态码集中维护。
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from mcare_api.core.errors import IdentityError
from mcare_api.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger(__name__)

_GENERIC_SUGGESTION = "请稍后重试，若持续失败请联系管理员。"

# 状态码 -> (错误码, 默认提示, 处理建议)
_HTTP_DEFAULTS: dict[int, tuple[str, str, str]] = {
    status.HTTP_400_BAD_REQUEST: ("BAD_REQUEST", "请求参数不合法。", _GENERIC_SUGGESTION),
    status.HTTP_401_UNAUTHORIZED: ("UNAUTHORIZED", "未登录或登录状态已失效。", "请重新登录并携带有效访问令牌。"),
    status.HTTP_403_FORBIDDEN: ("FORBIDDEN", "无权限访问该资源。", _GENERIC_SUGGESTION),
    status.HTTP_404_NOT_FOUND: ("NOT_FOUND", "请求资源不存在。", "请确认请求地址是否正确。"),
    status.HTTP_405_METHOD_NOT_ALLOWED: ("METHOD_NOT_ALLOWED", "请求方法不被允许。", "请确认接口文档中的请求方法。"),
    status.HTTP_409_CONFLICT: ("CONFLICT", "请求与当前数据状态冲突。", _GENERIC_SUGGESTION),
    status.HTTP_422_UNPROCESSABLE_CONTENT: (
        "VALIDATION_ERROR",
        "请求参数校验失败。",
        "请根据错误字段提示修正请求参数后重试。",
    ),
    status.HTTP_429_TOO_MANY_REQUESTS: ("TOO_MANY_REQUESTS", "请求过于频繁。", "请稍后再试。"),
}


def _http_defaults(status_code: int) -> tuple[str, str, str]:
    return _HTTP_DEFAULTS.get(status_code, ("HTTP_ERROR", "请求处理失败。", _GENERIC_SUGGESTION))


def _error_response(
    request: Request,
    status_code: int,
    *,
    code: str,
    message: str,
    suggestion: str,
    extra: dict[str, object] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    details: dict[str, object] = {"status_code": status_code, "reason": code.lower(), "suggestion": suggestion}
    if extra:
        details.update(extra)
    return JSONResponse(
        status_code=status_code,
        content=error_payload(request, code=code, message=message, details=details),
        headers=headers,
    )


async def identity_exception_handler(request: Request, exc: IdentityError):
    """身份领域异常自带状态码、错误码与建议。"""
    return _error_response(
        request,
        exc.status_code,
        code=exc.code,
        message=exc.message,
        suggestion=exc.suggestion,
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """将协议异常统一包装为标准错误结构，detail 为字典时允许覆盖错误码与文案。"""
    code, message, suggestion = _http_defaults(exc.status_code)
    extra: dict[str, object] = {}
    detail = exc.detail
    if isinstance(detail, dict):
        code = str(detail.get("code") or code)
        message = str(detail.get("message") or detail.get("detail") or message)
        raw_details = detail.get("details")
        if isinstance(raw_details, dict):
            extra.update(raw_details)
        elif raw_details is not None:
            extra["details"] = raw_details
    elif isinstance(detail, str) and detail.strip():
        message = detail
    return _error_response(
        request,
        exc.status_code,
        code=code,
        message=message,
        suggestion=suggestion,
        extra=extra,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """统一处理请求参数校验错误。"""
    code, message, suggestion = _http_defaults(status.HTTP_422_UNPROCESSABLE_CONTENT)
    errors = [
        {
            "field": ".".join(str(item) for item in err.get("loc", []) if item != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_CONTENT,
        code=code,
        message=message,
        suggestion=suggestion,
        extra={"errors": errors},
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常，避免内部细节泄露。"""
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="INTERNAL_ERROR",
        message=DEFAULT_ERROR_MESSAGE,
        suggestion="请稍后重试，若持续失败请联系管理员并提供 request_id。",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(IdentityError)(identity_exception_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
