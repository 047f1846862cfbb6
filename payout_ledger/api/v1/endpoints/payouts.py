from fastapi import APIRouter, Depends, HTTPException, status

from payout_ledger.api.v1.deps import get_payout_service
from payout_ledger.core.errors import DocumentNotFound, InvalidPayoutTransition
from payout_ledger.core.security import require_admin_key
from payout_ledger.models.seller import SellerKind
from payout_ledger.schemas.payout import PayoutAttempt, SellerPayoutHistory
from payout_ledger.services.payout_service import PayoutService

router = APIRouter()


@router.get("/{seller_kind}/{seller_id}", response_model=SellerPayoutHistory)
async def seller_payouts(
    seller_kind: SellerKind,
    seller_id: str,
    service: PayoutService = Depends(get_payout_service)
):
    """Completed and queued payouts for one seller"""
    return await service.seller_history(seller_kind.value, seller_id)


@router.post(
    "/pending/{pending_id}/retry",
    response_model=PayoutAttempt,
    dependencies=[Depends(require_admin_key)]
)
async def retry_pending_payout(pending_id: str, service: PayoutService = Depends(get_payout_service)):
    """Operator retry of a failed or waiting payout"""
    try:
        return await service.retry_payout(pending_id)
    except DocumentNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidPayoutTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
