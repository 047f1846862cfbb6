from typing import List

from pydantic import BaseModel

from payout_ledger.models.ledger import LedgerEntry


class LedgerTotals(BaseModel):
    """Aggregated figures over a set of ledger entries."""
    orders: int = 0
    entries: int = 0
    gross_revenue_cents: int = 0
    net_revenue_cents: int = 0
    subtotal_cents: int = 0
    shipping_cents: int = 0
    processor_fees_cents: int = 0
    platform_fees_cents: int = 0
    total_fees_cents: int = 0
    item_count: int = 0


class LedgerListResponse(BaseModel):
    entries: List[LedgerEntry]
    totals: LedgerTotals
