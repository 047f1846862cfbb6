from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from payout_ledger.models.base import DocumentModel


class DisputeStatus(str, Enum):
    OPEN = "open"
    WON = "won"
    LOST = "lost"


class ReversedTransfer(BaseModel):
    transfer_id: str
    reversal_id: Optional[str] = None
    amount_cents: int
    seller_id: Optional[str] = None
    seller_kind: Optional[str] = None
    seller_name: Optional[str] = None
    failed: bool = False
    error: Optional[str] = None


class Retransfer(BaseModel):
    original_transfer_id: str
    new_transfer_id: Optional[str] = None
    pending_payout_id: Optional[str] = None
    amount_cents: int
    seller_id: Optional[str] = None
    outcome: str   # transferred | queued | retry_pending


class Dispute(DocumentModel):
    dispute_id: str
    charge_id: str
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    order_number: Optional[str] = None

    amount_cents: int
    currency: str = "gbp"
    reason: str = ""
    status: DisputeStatus = DisputeStatus.OPEN
    evidence_due_by: Optional[datetime] = None

    transfers_reversed: List[ReversedTransfer] = []
    amount_recovered_cents: int = 0

    net_impact_cents: Optional[int] = None
    retransfers: List[Retransfer] = []
    resolved_at: Optional[datetime] = None


class Refund(DocumentModel):
    """One record per refund delivery that carried new money (append-only)."""

    charge_id: str
    payment_id: Optional[str] = None
    order_id: str
    order_number: str = ""

    charge_total_cents: int
    amount_refunded_cents: int          # incremental amount of this delivery
    cumulative_refunded_cents: int
    refund_percentage: float
    is_full_refund: bool

    transfers_reversed: List[ReversedTransfer] = []
    total_reversed_cents: int = 0
    pending_payouts_affected: int = 0
