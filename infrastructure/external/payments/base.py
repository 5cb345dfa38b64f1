"""
支付网关客户端基类：httpx 连接、tenacity 重试、错误映射、状态映射

子类只负责各自的 REST 路径与报文；金额一律为最小货币单位（分/paise）。
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import PaymentSettings
from infrastructure.external.payments.exceptions import (
    PaymentGatewayError,
    PaymentProviderError,
    PaymentRateLimitedError,
    PaymentRecoverableError,
    PaymentTimeoutError,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

# 网关侧临时故障，调用方可以稍后重试
_RECOVERABLE_HTTP = frozenset({500, 502, 503, 504})


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(
        self,
        settings: PaymentSettings,
        *,
        base_url: Optional[str] = None,
        auth: Optional[httpx.Auth | tuple[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._base_url = base_url
        self._auth = auth
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        t = self._settings.timeouts
        return httpx.Timeout(t.total, connect=t.connect, read=t.read, write=t.write)

    def _http(self) -> httpx.AsyncClient:
        # 懒加载并复用连接池，aclose() 时释放
        if self._client is None:
            kwargs: dict[str, Any] = {"timeout": self.timeouts}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            if self._auth is not None:
                kwargs["auth"] = self._auth
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """只重试传输层错误；HTTP 状态码由 _raise_for_status 处理"""
        retry = self._settings.retry
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retry.max + 1),
            wait=wait_exponential(multiplier=retry.base_backoff, min=0.1, max=2.0),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                return await self._http().request(method, path, **kwargs)
        raise AssertionError("unreachable")

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._send(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise PaymentTimeoutError(
                f"{self.provider} timed out on {method} {path}", provider=self.provider
            ) from exc
        except httpx.TransportError as exc:
            raise PaymentRecoverableError(str(exc) or type(exc).__name__, provider=self.provider) from exc

        if resp.status_code >= 400:
            raise self._error_from_response(resp, path)
        return resp.json()

    def _error_from_response(self, resp: httpx.Response, path: str) -> PaymentGatewayError:
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        error = payload.get("error") if isinstance(payload, dict) else None
        error = error if isinstance(error, dict) else {}
        code = error.get("code")
        message = error.get("description") or f"{self.provider} request failed with HTTP {resp.status_code}"
        self._log("provider_http_error", status_code=resp.status_code, provider_code=code, path=path)

        if resp.status_code == 429:
            exc_cls = PaymentRateLimitedError
        elif resp.status_code in _RECOVERABLE_HTTP:
            exc_cls = PaymentRecoverableError
        else:
            exc_cls = PaymentProviderError
        return exc_cls(
            message,
            provider=self.provider,
            provider_code=str(code) if code else None,
            details={"status_code": resp.status_code},
        )

    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)
