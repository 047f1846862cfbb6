from fastapi import APIRouter, Depends, HTTPException

from payout_ledger.api.v1.deps import get_payout_service, get_settlement_service
from payout_ledger.core.errors import SettlementAlreadyRecorded
from payout_ledger.core.security import require_admin_key
from payout_ledger.db.document_store import DocumentStore
from payout_ledger.db.session import get_store
from payout_ledger.models.seller import SellerKind
from payout_ledger.repositories.order_repo import OrderRepository
from payout_ledger.schemas.settlement import SettlementResult, SettlementRetryRequest
from payout_ledger.services.payout_service import PayoutService
from payout_ledger.services.settlement_service import SettlementService

router = APIRouter(dependencies=[Depends(require_admin_key)])


@router.post("/{order_id}", response_model=SettlementResult)
async def rerun_seller_settlement(
    order_id: str,
    body: SettlementRetryRequest,
    store: DocumentStore = Depends(get_store),
    service: SettlementService = Depends(get_settlement_service),
    payout_service: PayoutService = Depends(get_payout_service)
):
    """Re-record one seller of an order whose earlier settlement write failed, then pay it out"""
    try:
        kind = SellerKind(body.seller_kind).value
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown seller kind: {body.seller_kind}")

    order = await OrderRepository(store).get(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    try:
        result = await service.rerun_seller(order, kind, body.seller_id)
    except SettlementAlreadyRecorded as e:
        raise HTTPException(status_code=409, detail=str(e))

    if result.pending_payout_ids:
        result.payouts = await payout_service.dispatch_order_payouts(order.id)
    return result
