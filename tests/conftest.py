"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./billing-test.db")
os.environ.setdefault("DEBUG", "false")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.dtos.payments import (
    CreateGatewayOrder,
    GatewayOrder,
    GatewayRefund,
    GatewayRefundRequest,
    PaymentDetails,
    WebhookEvent,
)
from application.services.idempotency_service import IdempotencyService
from application.services.order_service import OrderService
from application.services.payment_service import PaymentService
from application.services.wallet_service import WalletLedgerService
from domain.common.principal import Principal, Role
from domain.order.events import OrderEvent
from domain.pricing.calculator import PriceCalculator
from domain.pricing.entity import (
    Coupon,
    DeliveryConfiguration,
    PriceConfiguration,
    Product,
    TaxComponent,
    TaxConfiguration,
    Topping,
)
from domain.pricing.repository import CatalogRepository, TenantConfigRepository
from domain.wallet.cashback import CashbackPolicy
from infrastructure.database import build_engine, create_tables
from infrastructure.external.payments.exceptions import PaymentProviderError
from infrastructure.unit_of_work import uow_factory_for


TENANT = "t1"


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class InMemoryCatalog(CatalogRepository):
    def __init__(self, products=(), toppings=()):
        self.products = {p.id: p for p in products}
        self.toppings = {t.id: t for t in toppings}

    async def get_product(self, product_id: str) -> Optional[Product]:
        return self.products.get(product_id)

    async def get_topping(self, topping_id: str) -> Optional[Topping]:
        return self.toppings.get(topping_id)


class InMemoryTenantConfig(TenantConfigRepository):
    def __init__(self):
        self.delivery: dict[str, DeliveryConfiguration] = {}
        self.taxes: dict[str, TaxConfiguration] = {}
        self.coupons: dict[tuple[str, str], Coupon] = {}

    async def get_delivery_configuration(self, tenant_id: str) -> Optional[DeliveryConfiguration]:
        return self.delivery.get(tenant_id)

    async def get_tax_configuration(self, tenant_id: str) -> Optional[TaxConfiguration]:
        return self.taxes.get(tenant_id)

    async def get_coupon(self, code: str, tenant_id: str) -> Optional[Coupon]:
        return self.coupons.get((code, tenant_id))


class InMemoryPublisher:
    def __init__(self):
        self.events: list[OrderEvent] = []

    async def publish(self, event: OrderEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.event.value for e in self.events]


class RecordingDispatcher:
    def __init__(self):
        self.calls: list[tuple[str, dict]] = []

    def enqueue(self, task_name: str, *, args=None, kwargs=None) -> None:
        self.calls.append((task_name, dict(kwargs or {})))


class InMemoryDeduplicator:
    def __init__(self):
        self.seen: set[str] = set()

    async def first_seen(self, key: str, ttl_seconds: int) -> bool:
        if key in self.seen:
            return False
        self.seen.add(key)
        return True


class StubGateway:
    provider = "stub"

    def __init__(self):
        self.created: list[CreateGatewayOrder] = []
        self.refunds: list[GatewayRefundRequest] = []
        self.verify_result = True
        self.fail_refund = False
        self.webhook_data: dict = {}
        self.webhook_id = "evt_1"

    async def create_order(self, req: CreateGatewayOrder) -> GatewayOrder:
        self.created.append(req)
        return GatewayOrder(
            gateway_order_id=f"gw_{req.order_id}",
            status="pending",
            provider=self.provider,
            amount_minor=req.amount_minor,
            currency=req.currency,
        )

    async def verify_payment(self, gateway_order_id: str, payment_id: str, signature: str | None) -> bool:
        return self.verify_result

    async def refund(self, req: GatewayRefundRequest) -> GatewayRefund:
        self.refunds.append(req)
        if self.fail_refund:
            raise PaymentProviderError("refund rejected", provider=self.provider)
        return GatewayRefund(
            id=f"rfnd_{len(self.refunds)}",
            amount_minor=req.amount_minor or 0,
            status="processed",
            provider=self.provider,
            payment_id=req.payment_id,
        )

    async def get_payment_details(self, payment_id: str) -> PaymentDetails:
        return PaymentDetails(payment_id=payment_id, status="paid", provider=self.provider)

    async def get_refunds(self, payment_id: str) -> list[GatewayRefund]:
        return []

    def parse_webhook(self, headers: dict, body: bytes) -> WebhookEvent:
        return WebhookEvent(id=self.webhook_id, type="stub.event", provider=self.provider, data=dict(self.webhook_data))


# ---------------------------------------------------------------------------
# Catalog snapshot used across tests
# ---------------------------------------------------------------------------


def make_product(product_id: str, price: str, *, tenant_id: str = TENANT, published: bool = True) -> Product:
    return Product(
        id=product_id,
        tenant_id=tenant_id,
        name=product_id.title(),
        is_published=published,
        price_configuration={
            "Size": PriceConfiguration(
                price_type="base",
                available_options={"Small": Decimal("50"), "Regular": Decimal(price)},
            ),
        },
    )


def item(product_id: str, qty: int = 1, size: str = "Regular", toppings=None) -> dict:
    return {
        "product_id": product_id,
        "name": product_id.title(),
        "qty": qty,
        "price_configuration": {"Size": size},
        "toppings": toppings or [],
    }


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog(
        products=[
            make_product("pizza", "200"),
            make_product("thali", "250"),
            make_product("biryani", "500"),
            make_product("combo", "150"),
            make_product("hidden", "100", published=False),
            make_product("foreign", "100", tenant_id="t2"),
        ],
        toppings=[
            Topping(id="cheese", tenant_id=TENANT, name="Cheese", price=Decimal("30"), is_published=True),
            Topping(id="olive", tenant_id=TENANT, name="Olive", price=Decimal("20"), is_published=False),
        ],
    )


@pytest.fixture
def tenant_config() -> InMemoryTenantConfig:
    return InMemoryTenantConfig()


@pytest.fixture
def calculator(catalog, tenant_config) -> PriceCalculator:
    return PriceCalculator(catalog, tenant_config)


def add_tax(config: InMemoryTenantConfig, rate: str, tenant_id: str = TENANT) -> None:
    config.taxes[tenant_id] = TaxConfiguration(tenant_id=tenant_id, taxes=[TaxComponent("GST", Decimal(rate))])


def add_coupon(config: InMemoryTenantConfig, code: str, discount: str, *, expired: bool = False) -> None:
    delta = timedelta(days=-1 if expired else 30)
    config.coupons[(code, TENANT)] = Coupon(
        code=code,
        tenant_id=TENANT,
        discount=Decimal(discount),
        valid_upto=datetime.now(timezone.utc) + delta,
    )


# ---------------------------------------------------------------------------
# Database backed services
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def uow_factory(engine):
    return uow_factory_for(async_sessionmaker(bind=engine, expire_on_commit=False))


@pytest.fixture
def ledger(uow_factory) -> WalletLedgerService:
    return WalletLedgerService(uow_factory, CashbackPolicy())


@pytest.fixture
def idempotency(uow_factory) -> IdempotencyService:
    return IdempotencyService(uow_factory, ttl_seconds=3600)


@pytest.fixture
def publisher() -> InMemoryPublisher:
    return InMemoryPublisher()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def order_service(uow_factory, calculator, tenant_config, ledger, idempotency, publisher, dispatcher) -> OrderService:
    return OrderService(
        uow_factory,
        calculator,
        tenant_config,
        ledger,
        idempotency,
        publisher=publisher,
        dispatcher=dispatcher,
    )


@pytest.fixture
def payment_service(uow_factory, gateway, ledger, publisher, dispatcher) -> PaymentService:
    return PaymentService(
        uow_factory,
        gateway,
        ledger,
        publisher=publisher,
        dispatcher=dispatcher,
        deduplicator=InMemoryDeduplicator(),
    )


@pytest.fixture
def customer() -> Principal:
    return Principal(user_id="cust-1", role=Role.customer)


@pytest.fixture
def manager() -> Principal:
    return Principal(user_id="mgr-1", role=Role.manager, tenant_id=TENANT)


@pytest.fixture
def admin() -> Principal:
    return Principal(user_id="admin-1", role=Role.admin)


async def fund_wallet(ledger: WalletLedgerService, user_id: str, amount: str) -> None:
    """Seed a balance through the ledger so the ledger stays consistent."""
    await ledger.refund_to_wallet(user_id, Decimal(amount), f"seed-{user_id}-{amount}")
