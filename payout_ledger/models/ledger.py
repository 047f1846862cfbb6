"""
Ledger model - per-seller revenue record for a completed order.

Design principles:
- One ledger entry per (order, seller) pair
- Immutable once created; refunds are recorded as separate refund documents
- Fees are this seller's share only
- All amounts in integer cents

Invariants:
- total_fees_cents = processor_fee_cents + platform_fee_cents
- net_revenue_cents = gross_total_cents - total_fees_cents
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from payout_ledger.models.base import DocumentModel, utcnow


class LedgerPayoutStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class FeeBreakdown(BaseModel):
    processor_fee_cents: int = 0
    platform_fee_cents: int = 0
    total_fees_cents: int = 0


class LedgerItem(BaseModel):
    item_type: str
    id: str = ""
    title: str = "Unknown"
    artist: Optional[str] = None
    quantity: int = 1
    unit_price_cents: int = 0
    line_total_cents: int = 0


class LedgerEntry(DocumentModel):
    # References
    order_id: str
    order_number: str = ""

    # Timing, denormalised for range queries
    timestamp: datetime = Field(default_factory=utcnow)
    year: int = 0
    month: int = 0
    day: int = 0

    # Customer
    customer_id: Optional[str] = None
    customer_email: str = ""

    # Seller (None means platform revenue)
    seller_id: Optional[str] = None
    seller_kind: Optional[str] = None
    seller_name: Optional[str] = None
    seller_email: Optional[str] = None

    # Revenue breakdown
    subtotal_cents: int
    shipping_cents: int = 0
    gross_total_cents: int
    fees: FeeBreakdown = Field(default_factory=FeeBreakdown)
    net_revenue_cents: int

    # Payout tracking
    payout_amount_cents: int
    payout_status: LedgerPayoutStatus = LedgerPayoutStatus.PENDING

    # Payment
    payment_method: str = "stripe"
    payment_id: Optional[str] = None
    currency: str = "gbp"

    # Items
    item_count: int = 0
    has_physical: bool = False
    has_digital: bool = False
    items: List[LedgerItem] = []

    def model_post_init(self, __context) -> None:
        if not self.year:
            self.year = self.timestamp.year
            self.month = self.timestamp.month
            self.day = self.timestamp.day
