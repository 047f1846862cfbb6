from typing import List

from fastapi import APIRouter, Depends, Query

from payout_ledger.core.security import require_admin_key
from payout_ledger.db.document_store import DocumentStore
from payout_ledger.db.session import get_store
from payout_ledger.models.dispute import Dispute, Refund
from payout_ledger.repositories.dispute_repo import DisputeRepository, RefundRepository

router = APIRouter(dependencies=[Depends(require_admin_key)])


@router.get("/disputes", response_model=List[Dispute])
async def list_disputes(
    limit: int = Query(default=100, ge=1, le=1000),
    store: DocumentStore = Depends(get_store)
):
    return await DisputeRepository(store).list_recent(limit)


@router.get("/refunds", response_model=List[Refund])
async def list_refunds(
    limit: int = Query(default=100, ge=1, le=1000),
    store: DocumentStore = Depends(get_store)
):
    return await RefundRepository(store).list_recent(limit)
