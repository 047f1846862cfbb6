"""
Payout queue and completed transfer records.

PendingPayout state machine:
    pending -> processing -> completed
    pending -> awaiting_account -> processing -> completed
    processing -> retry_pending -> processing (operator retry only)
    processing with a sent transfer -> retry_pending (operator reconcile)
    any non-terminal state -> cancelled (refund)
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from payout_ledger.core.errors import InvalidPayoutTransition
from payout_ledger.models.base import DocumentModel


class PendingPayoutStatus(str, Enum):
    PENDING = "pending"
    AWAITING_ACCOUNT = "awaiting_account"
    PROCESSING = "processing"
    COMPLETED = "completed"
    RETRY_PENDING = "retry_pending"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    "pending": {"processing", "awaiting_account", "cancelled"},
    "awaiting_account": {"processing", "cancelled"},
    "processing": {"completed", "retry_pending"},
    "retry_pending": {"processing", "awaiting_account", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}

# Queued payouts a refund can still shrink or cancel
OPEN_STATUSES = ["pending", "awaiting_account", "retry_pending"]


def check_transition(current: str, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidPayoutTransition(current, target)


class PayoutStatus(str, Enum):
    COMPLETED = "completed"
    REVERSED = "reversed"
    PARTIALLY_REVERSED = "partially_reversed"


# Payouts whose transfer still holds reversible money
REVERSIBLE_STATUSES = ["completed", "partially_reversed"]


class PendingPayout(DocumentModel):
    seller_id: str
    seller_kind: str
    seller_name: str = ""
    seller_email: str = ""

    order_id: str
    order_number: str = ""

    amount_cents: int
    item_amount_cents: int = 0
    shipping_cents: int = 0     # artists only, paid at 100%
    currency: str = "gbp"

    status: PendingPayoutStatus = PendingPayoutStatus.PENDING
    failure_reason: Optional[str] = None
    attempts: int = 0
    transfer_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    # Refund adjustments
    original_amount_cents: Optional[int] = None
    reduced_by_refund: bool = False
    cancelled_reason: Optional[str] = None

    # Re-issued after a won dispute
    reason: Optional[str] = None
    original_transfer_id: Optional[str] = None
    dispute_id: Optional[str] = None


class Payout(DocumentModel):
    seller_id: str
    seller_kind: str
    seller_name: str = ""

    transfer_id: str
    destination_account: Optional[str] = None

    order_id: str
    order_number: str = ""

    amount_cents: int
    # Set when a refund shrank the queued payout before it was sent
    original_amount_cents: Optional[int] = None
    currency: str = "gbp"
    status: PayoutStatus = PayoutStatus.COMPLETED
    reversed_amount_cents: int = 0
    reversal_reason: Optional[str] = None
    reversed_at: Optional[datetime] = None

    from_pending_payout: Optional[str] = None
    reason: Optional[str] = None
    original_transfer_id: Optional[str] = None
    dispute_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def entitled_cents(self) -> int:
        """What the sale originally owed the seller, before refund shrinkage."""
        return self.original_amount_cents or self.amount_cents

    def remaining_cents(self) -> int:
        """How much of this payout has not been pulled back."""
        return self.amount_cents - self.reversed_amount_cents
