from typing import List, Optional

from pydantic import BaseModel

from payout_ledger.schemas.payout import SweepResult


class FailedSeller(BaseModel):
    seller_kind: str
    seller_id: str
    error: str


class SettlementResult(BaseModel):
    """Outcome of recording one order's sale across its sellers."""
    success: bool
    ledger_entry_ids: List[str] = []
    pending_payout_ids: List[str] = []
    unresolved_subtotal_cents: int = 0
    failed_sellers: List[FailedSeller] = []
    error: Optional[str] = None
    # Set when the recorded payouts were dispatched in the same request
    payouts: Optional[SweepResult] = None


class SettlementRetryRequest(BaseModel):
    """Operator request to re-record settlement for one seller of an order."""
    seller_kind: str
    seller_id: str
