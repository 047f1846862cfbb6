from typing import List, Optional

from pydantic import BaseModel

from payout_ledger.models.payout import Payout, PendingPayout


class PayoutAttempt(BaseModel):
    pending_payout_id: str
    status: str
    transfer_id: Optional[str] = None
    error: Optional[str] = None


class SweepResult(BaseModel):
    """What one pass over the payout queue did."""
    checked: int = 0
    transferred: int = 0
    deferred: int = 0
    failed: int = 0
    attempts: List[PayoutAttempt] = []


class SellerPayoutHistory(BaseModel):
    seller_kind: str
    seller_id: str
    payouts: List[Payout]
    pending_payouts: List[PendingPayout]
