"""
统一异常处理器。

挂到 DRF 的 EXCEPTION_HANDLER setting 上。
所有响应（无论成功还是失败）前端都能用同一套逻辑判断：
  response.type 存在  → 出问题了
  没有 type 字段      → 成功

统一错误响应格式：
{
    "type":    "validation_error" | "not_found" | "block" | "payment_error" | "unavailable" | ...,
    "code":    "SESSION_NOT_FOUND",
    "message": "Session not found or expired. ...",
    "detail":  { ... }  // 可选
}
"""

import logging

from django.http import JsonResponse
from rest_framework import exceptions as drf_exceptions
from rest_framework.views import exception_handler as drf_default_handler

from .exceptions import BaseAppException

logger = logging.getLogger(__name__)

# DRF 自带异常 → 统一格式里的 type
_DRF_TYPE_MAP = {
    drf_exceptions.ValidationError: 'validation_error',
    drf_exceptions.ParseError: 'validation_error',
    drf_exceptions.NotAuthenticated: 'unauthorized',
    drf_exceptions.AuthenticationFailed: 'unauthorized',
    drf_exceptions.PermissionDenied: 'forbidden',
    drf_exceptions.NotFound: 'not_found',
    drf_exceptions.MethodNotAllowed: 'block',
}


def _error_body(type_, code, message, detail=None):
    body = {'type': type_, 'code': code, 'message': message}
    if detail is not None:
        body['detail'] = detail
    return body


def unified_exception_handler(exc, context):
    """
    DRF exception handler entry point.

    优先级：
    1. BaseAppException 及其子类 → 统一格式；5xx 额外记 error 日志
    2. DRF 自带的 APIException（校验 / 认证 / 权限）→ 转成统一格式
    3. 其他异常 → 交给 DRF 默认处理（通常冒泡成 500）
    """

    # --- 1. 我们自己的异常体系 ---
    if isinstance(exc, BaseAppException):
        if exc.http_status >= 500:
            view = context.get('view')
            logger.error(
                "%s raised %s (%s): %s",
                type(view).__name__ if view else 'unknown view',
                type(exc).__name__, exc.code, exc.message,
            )
        body = _error_body(exc.type, exc.code, exc.message, exc.detail)
        return JsonResponse(body, status=exc.http_status)

    # --- 2. DRF 自带的异常 ---
    for drf_cls, type_ in _DRF_TYPE_MAP.items():
        if isinstance(exc, drf_cls):
            if isinstance(exc, drf_exceptions.ValidationError):
                body = _error_body(type_, 'VALIDATION_ERROR', 'Request validation failed', exc.detail)
            else:
                body = _error_body(type_, exc.default_code.upper(), str(exc.detail))
            response = JsonResponse(body, status=exc.status_code)
            if getattr(exc, 'auth_header', None):
                response['WWW-Authenticate'] = exc.auth_header
            return response

    # --- 3. 其他的交给 DRF 默认处理 ---
    return drf_default_handler(exc, context)
