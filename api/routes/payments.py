"""
Payments API routes.

Thin layer over PaymentService: initiate/verify a gateway payment, issue
refunds, query the gateway and receive provider webhooks. No SDK details here.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_payment_service, get_principal
from application.dtos.orders import OrderResponseDTO
from application.dtos.payments import (
    GatewayRefund,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentDetails,
    RefundOutcome,
    RefundPaymentRequest,
    VerifyPaymentRequest,
)
from application.services.payment_service import PaymentService
from core.logging_config import get_logger
from core.response import Response as ApiResponse, success_response
from domain.common.principal import Principal


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post("/initiate", summary="Create gateway order", response_model=ApiResponse[InitiatePaymentResponse])
async def initiate_payment(
    payload: InitiatePaymentRequest,
    principal: Principal = Depends(get_principal),
    service: PaymentService = Depends(get_payment_service),
):
    """Create a gateway order for the order's final_total (amount sent in minor units)."""
    result = await service.initiate_payment(principal, payload)
    return success_response(data=result, message="Payment initiated")


@router.post("/verify", summary="Verify payment")
async def verify_payment(
    payload: VerifyPaymentRequest,
    principal: Principal = Depends(get_principal),
    service: PaymentService = Depends(get_payment_service),
):
    order, verified = await service.verify_payment(principal, payload)
    return success_response(
        data={"verified": verified, "order": OrderResponseDTO.from_entity(order).to_payload()},
        message="Payment verified" if verified else "Payment verification failed",
    )


@router.post("/refund", summary="Refund an order", response_model=ApiResponse[RefundOutcome])
async def refund_order(
    payload: RefundPaymentRequest,
    principal: Principal = Depends(get_principal),
    service: PaymentService = Depends(get_payment_service),
):
    """Split the refund between wallet and gateway in proportion to how the order was paid."""
    outcome = await service.refund(principal, payload)
    message = "Refund processed" if outcome.gateway_refund_status != "failed" else "Gateway refund failed"
    return success_response(data=outcome, message=message)


@router.get("/{order_id}/details", summary="Gateway payment details", response_model=ApiResponse[PaymentDetails])
async def payment_details(
    order_id: str,
    principal: Principal = Depends(get_principal),
    service: PaymentService = Depends(get_payment_service),
):
    details = await service.get_payment_details(principal, order_id)
    return success_response(data=details)


@router.get("/{order_id}/refunds", summary="Gateway refunds", response_model=ApiResponse[list[GatewayRefund]])
async def payment_refunds(
    order_id: str,
    principal: Principal = Depends(get_principal),
    service: PaymentService = Depends(get_payment_service),
):
    refunds = await service.get_refunds(principal, order_id)
    return success_response(data=refunds)


@router.post("/webhooks/{provider}", summary="Provider webhook")
async def payments_webhook(
    provider: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    # Signature covers the exact bytes; never parse before verifying
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    result = await service.handle_webhook(provider, headers, raw_body)
    if result.get("duplicate"):
        logger.info("webhook_duplicate_ignored", provider=provider, event_id=result.get("event_id"))
        return success_response(data=result, message="Duplicate event ignored")
    # 200 acknowledges receipt per provider conventions
    return success_response(data=result, message="Webhook received")
