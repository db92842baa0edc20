"""
结算单API路由（管理员） - 供批量打款任务读取待打款记录并回写转账ID
"""
from fastapi import APIRouter, Depends, Query

from api.dependencies import CurrentUser, get_payout_service, require_admin
from application.dtos.checkout import MarkPayoutProcessingDTO
from application.services.payout_service import PayoutApplicationService
from core.response import Response as ApiResponse, success_response


router = APIRouter(
    prefix="/payouts",
    tags=["Payouts"],
)


@router.get("/pending", summary="List pending payouts", response_model=ApiResponse)
async def list_pending_payouts(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    admin: CurrentUser = Depends(require_admin),
    service: PayoutApplicationService = Depends(get_payout_service),
):
    payouts = await service.list_pending(skip=skip, limit=limit)
    return success_response(data=payouts)


@router.get("/sellers/{seller_id}", summary="List payouts of a seller", response_model=ApiResponse)
async def list_seller_payouts(
    seller_id: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    admin: CurrentUser = Depends(require_admin),
    service: PayoutApplicationService = Depends(get_payout_service),
):
    payouts = await service.list_by_seller(seller_id, skip=skip, limit=limit)
    return success_response(data=payouts)


@router.post("/{payout_id}/processing", summary="Mark payout processing", response_model=ApiResponse)
async def mark_payout_processing(
    payout_id: str,
    payload: MarkPayoutProcessingDTO,
    admin: CurrentUser = Depends(require_admin),
    service: PayoutApplicationService = Depends(get_payout_service),
):
    payout = await service.mark_processing(payout_id, payload)
    return success_response(data=payout, message="Payout marked processing")
