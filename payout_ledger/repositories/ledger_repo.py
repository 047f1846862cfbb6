"""
LedgerRepository - append-only per-seller revenue records.

Entries are written once by the settlement recorder and never updated;
reporting reads them back by period or by order.
"""

from datetime import datetime
from typing import List, Optional

from payout_ledger.db.document_store import DocumentStore, Filter
from payout_ledger.models.ledger import LedgerEntry
from payout_ledger.schemas.ledger import LedgerTotals


class LedgerRepository:
    """Repository for ledger entries (per-seller sales records)."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.collection = "ledger_entries"

    async def add_entry(self, entry: LedgerEntry) -> str:
        """Append one ledger entry and return its id."""
        return await self.store.add(self.collection, entry.to_document())

    async def list_for_order(self, order_id: str) -> List[LedgerEntry]:
        docs = await self.store.query(self.collection, [("order_id", "==", order_id)])
        return [LedgerEntry.from_document(doc) for doc in docs]

    async def list_entries(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[LedgerEntry]:
        """
        Ledger entries for a reporting period, newest first.

        year/month use the denormalised fields; start/end narrow further by
        timestamp.
        """
        filters: List[Filter] = []
        if year:
            filters.append(("year", "==", year))
        if month:
            filters.append(("month", "==", month))
        if start_date:
            filters.append(("timestamp", ">=", start_date))
        if end_date:
            filters.append(("timestamp", "<=", end_date))

        docs = await self.store.query(
            self.collection,
            filters,
            order_by=("timestamp", "desc"),
            limit=limit
        )
        return [LedgerEntry.from_document(doc) for doc in docs]

    @staticmethod
    def calculate_totals(entries: List[LedgerEntry]) -> LedgerTotals:
        totals = LedgerTotals()
        order_ids = set()
        for entry in entries:
            order_ids.add(entry.order_id)
            totals.gross_revenue_cents += entry.gross_total_cents
            totals.net_revenue_cents += entry.net_revenue_cents
            totals.subtotal_cents += entry.subtotal_cents
            totals.shipping_cents += entry.shipping_cents
            totals.processor_fees_cents += entry.fees.processor_fee_cents
            totals.platform_fees_cents += entry.fees.platform_fee_cents
            totals.total_fees_cents += entry.fees.total_fees_cents
            totals.item_count += entry.item_count
        totals.orders = len(order_ids)
        totals.entries = len(entries)
        return totals
