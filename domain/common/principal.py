"""Authenticated caller as seen by the business layer."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from domain.common.exceptions import ForbiddenException, TenantRequiredException


class Role(str, Enum):
    admin = "admin"
    manager = "manager"
    customer = "customer"


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Role
    tenant_id: Optional[str] = None

    @property
    def is_customer(self) -> bool:
        return self.role == Role.customer

    def resolve_tenant(self, requested: Optional[str]) -> str:
        """Tenant an order-scoped operation applies to.

        Managers are pinned to their own tenant; admins and customers must name one.
        """
        if self.role == Role.manager:
            if not self.tenant_id:
                raise ForbiddenException("Manager is not assigned to a tenant")
            if requested and requested != self.tenant_id:
                raise ForbiddenException("Managers can only act on their own tenant")
            return self.tenant_id
        if not requested:
            raise TenantRequiredException()
        return requested
