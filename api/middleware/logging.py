"""
请求/响应日志中间件

每个请求记录 request_started 与 request_completed / request_client_error /
request_server_error 两条日志，附带耗时与幂等键；请求体按开关记录并脱敏。
"""
import json
import time
from typing import Any, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

SKIP_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})

# 网关回调原文带签名，整体不记录
SKIP_BODY_PREFIXES = ("/api/v1/payments/webhooks/",)

SENSITIVE_FIELDS = frozenset({
    "password",
    "token",
    "secret",
    "api_key",
    "access_token",
    "signature",
    "razorpay_signature",
    "card",
    "card_number",
    "cvv",
})


def sanitize(data: Any) -> Any:
    """递归把敏感字段替换为 ***"""
    if isinstance(data, dict):
        return {k: "***" if str(k).lower() in SENSITIVE_FIELDS else sanitize(v) for k, v in data.items()}
    if isinstance(data, list):
        return [sanitize(v) for v in data]
    return data


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES
        self.idempotency_header: str = settings.idempotency.header

    async def dispatch(self, request: Request, call_next):
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        info = await self._request_info(request)
        logger.info("request_started", **info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=round(time.perf_counter() - started, 4),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
                **info,
            )
            # 交给全局异常处理器
            raise

        duration = time.perf_counter() - started
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        self._log_response(response, duration, info)
        return response

    async def _request_info(self, request: Request) -> dict:
        info: dict[str, Any] = {"query_params": dict(request.query_params)}
        if request.path_params:
            info["path_params"] = request.path_params

        idempotency_key = request.headers.get(self.idempotency_header)
        if idempotency_key:
            info["idempotency_key"] = idempotency_key

        if request.method in ("POST", "PUT", "PATCH") and self._should_log_body(request):
            body = await self._body_snippet(request)
            if body is not None:
                info["body"] = body

        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _should_log_body(self, request: Request) -> bool:
        if request.url.path.startswith(SKIP_BODY_PREFIXES):
            return False
        # X-Log-Body: true/false 覆盖默认开关
        flag = (request.headers.get("X-Log-Body") or "").lower()
        if flag in ("true", "1", "yes"):
            return True
        if flag in ("false", "0", "no"):
            return False
        return self.body_log_default and settings.DEBUG

    async def _body_snippet(self, request: Request) -> Optional[Any]:
        body = await request.body()
        if not body:
            return None
        text = body[: self.max_body_bytes].decode("utf-8", errors="ignore")
        if "application/json" not in request.headers.get("content-type", "").lower():
            return text
        try:
            return sanitize(json.loads(text))
        except ValueError:
            # 截断的 JSON，按文本记录
            return text

    @staticmethod
    def _log_response(response: Response, duration: float, info: dict) -> None:
        fields = {"status_code": response.status_code, "duration": round(duration, 4), **info}
        if response.status_code < 400:
            logger.info("request_completed", **fields)
        elif response.status_code < 500:
            logger.warning("request_client_error", **fields)
        else:
            logger.error("request_server_error", **fields)
