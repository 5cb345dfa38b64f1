"""
API依赖项 - 调用方身份解析、服务获取与幂等键处理

服务实例在 lifespan 中装配并挂载到 app.state，这里只负责取出。
"""
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from api.middleware import bind_principal
from application.services.idempotency_service import IdempotencyService
from application.services.order_service import OrderService
from application.services.payment_service import PaymentService
from application.services.wallet_service import WalletLedgerService
from core.config import settings
from core.exceptions import (
    IdempotentReplay,
    ServiceUnavailableException,
    TokenExpiredException,
    UnauthorizedException,
)
from domain.common.exceptions import IdempotencyKeyMissingException
from domain.common.principal import Principal, Role
from domain.idempotency.entity import IdempotencyContext


# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token issued by the auth service",
    auto_error=False,
)


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """从 Bearer token 中提取 token"""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    raise UnauthorizedException("Missing authentication credentials")


def decode_principal(token: str) -> Principal:
    """校验签名并把声明映射为 Principal（本服务不签发 token）"""
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.PyJWTError:
        raise UnauthorizedException("Invalid authentication credentials")

    user_id = claims.get("sub")
    if not user_id:
        raise UnauthorizedException("Token has no subject")
    try:
        role = Role(str(claims.get("role", "")).lower())
    except ValueError:
        raise UnauthorizedException("Token carries an unknown role")
    tenant = claims.get("tenant")
    return Principal(user_id=str(user_id), role=role, tenant_id=str(tenant) if tenant else None)


async def get_principal(token: str = Depends(get_token)) -> Principal:
    principal = decode_principal(token)
    bind_principal(principal)
    return principal


async def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


async def get_wallet_service(request: Request) -> WalletLedgerService:
    return request.app.state.wallet_service


async def get_idempotency_service(request: Request) -> IdempotencyService:
    return request.app.state.idempotency_service


async def get_payment_service(request: Request) -> PaymentService:
    service = getattr(request.app.state, "payment_service", None)
    if service is None:
        raise ServiceUnavailableException("Payment gateway is not configured")
    return service


async def require_idempotency_key(
    request: Request,
    principal: Principal = Depends(get_principal),
    service: IdempotencyService = Depends(get_idempotency_service),
) -> IdempotencyContext:
    """要求请求携带幂等键；命中有效记录时直接回放首次响应"""
    header = settings.idempotency.header
    key = (request.headers.get(header) or "").strip()
    if not key:
        raise IdempotencyKeyMissingException(header)

    ctx = IdempotencyContext(
        key=key,
        user_id=principal.user_id,
        endpoint=f"{request.method} {request.url.path}",
    )
    record = await service.find_replay(ctx)
    if record is not None:
        raise IdempotentReplay(record.status_code, record.response, record.created_at)
    return ctx
