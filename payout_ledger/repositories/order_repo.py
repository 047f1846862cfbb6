from datetime import datetime, timezone
from typing import Optional

from payout_ledger.db.document_store import DocumentStore
from payout_ledger.models.order import Order, RefundStatus, SettlementStatus


class OrderRepository:
    """Order lookups plus the two idempotency guards that live on the order."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.collection = "orders"

    async def get(self, order_id: str) -> Optional[Order]:
        doc = await self.store.get(self.collection, order_id)
        if doc:
            return Order.from_document(doc)
        return None

    async def find_by_payment_id(self, payment_id: str) -> Optional[Order]:
        docs = await self.store.query(
            self.collection,
            [("payment_id", "==", payment_id)],
            limit=1
        )
        if docs:
            return Order.from_document(docs[0])
        return None

    async def claim_settlement(self, order_id: str) -> bool:
        """
        Mark the order as settled exactly once.

        Returns False when another delivery already recorded it.
        """
        now = datetime.now(timezone.utc)
        return await self.store.update_if(
            self.collection,
            order_id,
            {"settlement_status": None},
            {"settlement_status": SettlementStatus.RECORDED.value, "settled_at": now, "updated_at": now}
        )

    async def release_settlement(self, order_id: str) -> bool:
        """Undo claim_settlement when recording failed before any write."""
        return await self.store.update_if(
            self.collection,
            order_id,
            {"settlement_status": SettlementStatus.RECORDED.value},
            {"settlement_status": None, "updated_at": datetime.now(timezone.utc)}
        )

    async def claim_refund_delta(
        self,
        order_id: str,
        previously_refunded_cents: int,
        cumulative_refunded_cents: int,
    ) -> bool:
        """
        Advance the order's cumulative refunded amount with compare-and-set.

        Only the delivery that moves the counter from the value it read
        gets to reverse the delta.
        """
        fields = {
            "cumulative_refunded_cents": cumulative_refunded_cents,
            "updated_at": datetime.now(timezone.utc)
        }
        claimed = await self.store.update_if(
            self.collection,
            order_id,
            {"cumulative_refunded_cents": previously_refunded_cents},
            fields
        )
        if not claimed and previously_refunded_cents == 0:
            # Orders written before the counter existed have no field at all
            claimed = await self.store.update_if(
                self.collection,
                order_id,
                {"cumulative_refunded_cents": None},
                fields
            )
        return claimed

    async def mark_refunded(self, order_id: str, status: RefundStatus | str, refunded_cents: int) -> bool:
        now = datetime.now(timezone.utc)
        return await self.store.update(self.collection, order_id, {
            "refund_status": RefundStatus(status).value,
            "refund_amount_cents": refunded_cents,
            "refunded_at": now,
            "updated_at": now
        })
