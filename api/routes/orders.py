"""
订单API路由 - 下单结算与订单管理
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.dependencies import get_order_service, get_principal, require_idempotency_key
from application.dtos.common import PaginationParams
from application.dtos.orders import CreateOrderDTO, OrderResponseDTO, UpdateOrderStatusDTO
from application.services.order_service import OrderService
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.common.principal import Principal
from domain.idempotency.entity import IdempotencyContext


router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post(
    "",
    summary="创建订单",
    status_code=201,
    response_model=ApiResponse[OrderResponseDTO],
)
async def create_order(
    payload: CreateOrderDTO,
    principal: Principal = Depends(get_principal),
    idempotency: IdempotencyContext = Depends(require_idempotency_key),
    service: OrderService = Depends(get_order_service),
):
    """
    创建订单并结算

    - 服务端按租户配置重算价格，任何一项与提交值不符即整体拒绝并返回全部错误
    - 必须携带幂等键请求头；同一键的重复请求直接回放首次响应
    - 钱包抵扣覆盖全部金额时订单直接标记为已支付
    """
    result = await service.create_order(principal, payload, idempotency=idempotency)
    # 返回与幂等缓存一致的响应体，保证首次与重放结果相同
    return JSONResponse(status_code=result.status_code, content=result.response)


@router.get(
    "",
    summary="订单列表",
    response_model=ApiResponse[PaginatedData[OrderResponseDTO]],
)
async def list_orders(
    params: PaginationParams = Depends(),
    tenant_id: Optional[str] = Query(None, description="租户ID（管理员可选；店长只能查看自己的租户）"),
    principal: Principal = Depends(get_principal),
    service: OrderService = Depends(get_order_service),
):
    orders, total = await service.list_orders(principal, tenant_id=tenant_id, page=params.page, size=params.size)
    return paginated_response(
        items=[OrderResponseDTO.from_entity(o) for o in orders],
        total=total,
        page=params.page,
        size=params.size,
    )


@router.get(
    "/mine",
    summary="我的订单",
    response_model=ApiResponse[PaginatedData[OrderResponseDTO]],
)
async def list_my_orders(
    params: PaginationParams = Depends(),
    principal: Principal = Depends(get_principal),
    service: OrderService = Depends(get_order_service),
):
    orders, total = await service.list_my_orders(principal, page=params.page, size=params.size)
    return paginated_response(
        items=[OrderResponseDTO.from_entity(o) for o in orders],
        total=total,
        page=params.page,
        size=params.size,
    )


@router.get("/{order_id}", summary="订单详情", response_model=ApiResponse[OrderResponseDTO])
async def get_order(
    order_id: str,
    principal: Principal = Depends(get_principal),
    service: OrderService = Depends(get_order_service),
):
    order = await service.get_order(principal, order_id)
    return success_response(data=OrderResponseDTO.from_entity(order))


@router.patch("/{order_id}/status", summary="更新订单状态", response_model=ApiResponse[OrderResponseDTO])
async def update_order_status(
    order_id: str,
    payload: UpdateOrderStatusDTO,
    principal: Principal = Depends(get_principal),
    service: OrderService = Depends(get_order_service),
):
    """顾客只能取消自己的订单"""
    order = await service.update_status(principal, order_id, payload.status)
    return success_response(data=OrderResponseDTO.from_entity(order), message="Order status updated")


@router.delete("/{order_id}", summary="删除订单", response_model=ApiResponse[None])
async def delete_order(
    order_id: str,
    principal: Principal = Depends(get_principal),
    service: OrderService = Depends(get_order_service),
):
    await service.delete_order(principal, order_id)
    return success_response(data=None, message="Order deleted")
