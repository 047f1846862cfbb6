from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from payout_ledger.core.security import require_admin_key
from payout_ledger.db.document_store import DocumentStore
from payout_ledger.db.session import get_store
from payout_ledger.models.ledger import LedgerEntry
from payout_ledger.repositories.ledger_repo import LedgerRepository
from payout_ledger.schemas.ledger import LedgerListResponse, LedgerTotals

router = APIRouter(dependencies=[Depends(require_admin_key)])


@router.get("/", response_model=LedgerListResponse)
async def list_ledger(
    year: Optional[int] = None,
    month: Optional[int] = Query(default=None, ge=1, le=12),
    limit: int = Query(default=1000, ge=1, le=5000),
    store: DocumentStore = Depends(get_store)
):
    """Ledger entries for a period, with totals"""
    entries = await LedgerRepository(store).list_entries(year=year, month=month, limit=limit)
    return LedgerListResponse(entries=entries, totals=LedgerRepository.calculate_totals(entries))


@router.get("/totals", response_model=LedgerTotals)
async def ledger_totals(
    year: Optional[int] = None,
    month: Optional[int] = Query(default=None, ge=1, le=12),
    store: DocumentStore = Depends(get_store)
):
    entries = await LedgerRepository(store).list_entries(year=year, month=month)
    return LedgerRepository.calculate_totals(entries)


@router.get("/orders/{order_id}", response_model=List[LedgerEntry])
async def order_ledger(order_id: str, store: DocumentStore = Depends(get_store)):
    """Ledger entries for one order"""
    return await LedgerRepository(store).list_for_order(order_id)
