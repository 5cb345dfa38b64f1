"""
钱包API路由 - 余额、流水与返现预估
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_principal, get_wallet_service
from application.dtos.common import PaginationParams
from application.dtos.wallet import (
    CashbackPreviewDTO,
    CashbackPreviewRequest,
    WalletBalanceDTO,
    WalletTransactionDTO,
)
from application.services.wallet_service import WalletLedgerService
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.common.principal import Principal


router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("/balance", summary="钱包余额", response_model=ApiResponse[WalletBalanceDTO])
async def get_balance(
    principal: Principal = Depends(get_principal),
    service: WalletLedgerService = Depends(get_wallet_service),
):
    """首次查询时自动开通钱包"""
    wallet = await service.get_balance(principal.user_id)
    return success_response(data=WalletBalanceDTO.from_entity(wallet))


@router.get(
    "/transactions",
    summary="钱包流水",
    response_model=ApiResponse[PaginatedData[WalletTransactionDTO]],
)
async def list_transactions(
    params: PaginationParams = Depends(),
    principal: Principal = Depends(get_principal),
    service: WalletLedgerService = Depends(get_wallet_service),
):
    items, total = await service.get_transactions(principal.user_id, page=params.page, limit=params.size)
    return paginated_response(
        items=[WalletTransactionDTO.from_entity(tx) for tx in items],
        total=total,
        page=params.page,
        size=params.size,
    )


@router.post("/cashback-preview", summary="返现预估", response_model=ApiResponse[CashbackPreviewDTO])
async def cashback_preview(
    payload: CashbackPreviewRequest,
    _principal: Principal = Depends(get_principal),
    service: WalletLedgerService = Depends(get_wallet_service),
):
    amount = service.calculate_cashback(payload.order_amount, payload.wallet_amount_used)
    return success_response(
        data=CashbackPreviewDTO(
            order_amount=payload.order_amount,
            wallet_amount_used=payload.wallet_amount_used,
            cashback_amount=amount,
        )
    )
