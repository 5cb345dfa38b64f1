"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import orders as orders_routes
from api.routes import payments as payments_routes
from api.routes import wallet as wallet_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from application.services.idempotency_service import IdempotencyService
from application.services.order_service import OrderService
from application.services.payment_service import PaymentService
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.settings import payment_settings
from core.logging_config import get_logger, configure_logging
from domain.pricing.calculator import PriceCalculator
from infrastructure.adapters.order_event_publisher import build_order_event_publisher
from infrastructure.database import AsyncSessionLocal, create_tables, engine
from infrastructure.external.cache import create_redis_client
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.exceptions import UnsupportedProviderError
from infrastructure.repositories.catalog_repository import (
    SQLAlchemyCatalogRepository,
    SQLAlchemyTenantConfigRepository,
)
from infrastructure.unit_of_work import uow_factory_for
from infrastructure.wiring import build_wallet_ledger


# 初始化日志
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：装配服务并挂载到 app.state"""
    # 启动时创建数据库表（仅开发环境）。生产应使用迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")

    uow_factory = uow_factory_for(AsyncSessionLocal)
    tenant_config = SQLAlchemyTenantConfigRepository(AsyncSessionLocal)
    calculator = PriceCalculator(SQLAlchemyCatalogRepository(AsyncSessionLocal), tenant_config)
    ledger = build_wallet_ledger(uow_factory)
    idempotency = IdempotencyService(uow_factory, ttl_seconds=settings.idempotency.ttl_seconds)
    publisher = build_order_event_publisher(settings.kafka)

    dispatcher = None
    if settings.TASKS_ENABLED:
        from infrastructure.tasks.utils.dispatcher import TaskDispatcher
        dispatcher = TaskDispatcher()
        logger.info("task_dispatcher_enabled")

    redis = None
    if settings.redis.url:
        try:
            redis = await create_redis_client(
                settings.redis.url,
                namespace=settings.redis.namespace,
                max_connections=settings.redis.max_connections,
                default_ttl=settings.redis.default_ttl,
            )
            logger.info("redis_cache_initialized", message="Redis cache initialized")
        except Exception as exc:
            # 去重降级：结算本身按订单状态条件更新，重复回调不会重复入账
            logger.error("redis_cache_init_failed", error=str(exc))

    payment_service = None
    try:
        gateway = get_payment_gateway()
    except (RuntimeError, UnsupportedProviderError) as exc:
        logger.warning("payment_gateway_unavailable", provider=payment_settings.default_provider, error=str(exc))
    else:
        payment_service = PaymentService(
            uow_factory,
            gateway,
            ledger,
            gateway_resolver=get_payment_gateway,
            publisher=publisher,
            dispatcher=dispatcher,
            deduplicator=redis,
            webhook_dedupe_ttl=payment_settings.webhook.dedupe_ttl_seconds,
        )
        logger.info("payment_gateway_initialized", provider=gateway.provider)

    app.state.wallet_service = ledger
    app.state.idempotency_service = idempotency
    app.state.order_service = OrderService(
        uow_factory,
        calculator,
        tenant_config,
        ledger,
        idempotency,
        publisher=publisher,
        dispatcher=dispatcher,
    )
    app.state.payment_service = payment_service

    yield

    # 关闭时的清理工作
    if payment_service is not None:
        await payment_service.aclose()
    if publisher is not None:
        await publisher.aclose()
    if redis is not None:
        await redis.close()
        logger.info("redis_cache_shutdown", message="Redis cache shutdown")
    await engine.dispose()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="多租户外卖订单计费服务：价格校验、钱包账本、支付与退款对账",
)

# 中间件：后添加的在外层先执行
# 日志中间件依赖 request_id 等上下文，必须位于 RequestIDMiddleware 内层
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由
app.include_router(orders_routes.router, prefix="/api/v1")
app.include_router(payments_routes.router, prefix="/api/v1")
app.include_router(wallet_routes.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc"
        },
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
