"""
订单仓储接口
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Optional

from .entity import Order, PaymentStatus


class OrderRepository(ABC):

    @abstractmethod
    async def add(self, order: Order) -> Order:
        """插入订单"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """回写可变字段（支付状态、订单状态、退款汇总）"""
        pass

    @abstractmethod
    async def update_payment_status(
        self,
        order_id: str,
        status: PaymentStatus,
        *,
        expected: tuple[PaymentStatus, ...],
        payment_id: Optional[str] = None,
    ) -> Optional[Order]:
        """仅当当前状态属于 expected 时更新，返回更新后的订单；否则返回 None"""
        pass

    @abstractmethod
    async def reserve_refund(self, order_id: str, amount: Decimal) -> Optional[Order]:
        """预留退款额度：仅当订单已支付且 已退 + 预留 + amount <= total 时成功，否则返回 None"""
        pass

    @abstractmethod
    async def apply_refund(
        self,
        order_id: str,
        *,
        reserved: Decimal,
        wallet_amount: Decimal,
        gateway_amount: Decimal,
    ) -> Order:
        """释放预留额度，并把成功的退款腿累加到退款汇总"""
        pass

    @abstractmethod
    async def delete(self, order_id: str) -> bool:
        pass

    @abstractmethod
    async def list(
        self,
        *,
        tenant_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Order]:
        pass

    @abstractmethod
    async def count(self, *, tenant_id: Optional[str] = None, customer_id: Optional[str] = None) -> int:
        pass
