"""
PayoutRepository - the payout queue (pending_payouts) and completed
transfer records (payouts).

Every status change of a pending payout goes through transition(), which
enforces the queue state machine.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from payout_ledger.core.errors import DocumentNotFound, InvalidPayoutTransition
from payout_ledger.db.document_store import DocumentStore, Filter
from payout_ledger.models.payout import (
    Payout,
    PendingPayout,
    PendingPayoutStatus,
    check_transition,
)


class PayoutRepository:
    """Repository for pending payouts and completed payouts."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.pending_collection = "pending_payouts"
        self.payout_collection = "payouts"

    # ===== PENDING PAYOUTS =====

    async def create_pending(self, pending: PendingPayout) -> str:
        pending.id = await self.store.add(self.pending_collection, pending.to_document())
        return pending.id

    async def get_pending(self, pending_id: str) -> PendingPayout:
        doc = await self.store.get(self.pending_collection, pending_id)
        if not doc:
            raise DocumentNotFound(self.pending_collection, pending_id)
        return PendingPayout.from_document(doc)

    async def list_pending(
        self,
        seller_kind: Optional[str] = None,
        seller_id: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
        order_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[PendingPayout]:
        filters: List[Filter] = []
        if seller_kind:
            filters.append(("seller_kind", "==", seller_kind))
        if seller_id:
            filters.append(("seller_id", "==", seller_id))
        if order_id:
            filters.append(("order_id", "==", order_id))
        if statuses:
            filters.append(("status", "in", list(statuses)))

        docs = await self.store.query(
            self.pending_collection,
            filters,
            order_by=("created_at", "asc"),
            limit=limit
        )
        return [PendingPayout.from_document(doc) for doc in docs]

    async def transition(
        self,
        pending: PendingPayout,
        target: PendingPayoutStatus | str,
        **fields: Any
    ) -> PendingPayout:
        """
        Move a pending payout to a new status.

        Raises InvalidPayoutTransition if the state machine forbids it, or
        if the stored status moved on since `pending` was read (another
        worker claimed it first).
        """
        target = PendingPayoutStatus(target).value
        check_transition(pending.status, target)

        updates: Dict[str, Any] = dict(fields)
        updates["status"] = target
        updates["updated_at"] = datetime.now(timezone.utc)
        claimed = await self.store.update_if(
            self.pending_collection,
            pending.id,
            {"status": pending.status},
            updates
        )
        if not claimed:
            raise InvalidPayoutTransition(pending.status, target)

        for key, value in updates.items():
            setattr(pending, key, value)
        return pending

    async def update_pending(self, pending_id: str, fields: Dict[str, Any]) -> bool:
        fields = dict(fields)
        fields["updated_at"] = datetime.now(timezone.utc)
        return await self.store.update(self.pending_collection, pending_id, fields)

    # ===== COMPLETED PAYOUTS =====

    async def create_payout(self, payout: Payout) -> str:
        payout.id = await self.store.add(self.payout_collection, payout.to_document())
        return payout.id

    async def list_payouts(
        self,
        seller_kind: Optional[str] = None,
        seller_id: Optional[str] = None,
        order_id: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Payout]:
        filters: List[Filter] = []
        if seller_kind:
            filters.append(("seller_kind", "==", seller_kind))
        if seller_id:
            filters.append(("seller_id", "==", seller_id))
        if order_id:
            filters.append(("order_id", "==", order_id))
        if statuses:
            filters.append(("status", "in", list(statuses)))

        docs = await self.store.query(
            self.payout_collection,
            filters,
            order_by=("created_at", "asc"),
            limit=limit
        )
        return [Payout.from_document(doc) for doc in docs]

    async def find_by_transfer(self, transfer_id: str) -> Optional[Payout]:
        docs = await self.store.query(
            self.payout_collection,
            [("transfer_id", "==", transfer_id)],
            limit=1
        )
        if docs:
            return Payout.from_document(docs[0])
        return None

    async def update_payout(self, payout_id: str, fields: Dict[str, Any]) -> bool:
        fields = dict(fields)
        fields["updated_at"] = datetime.now(timezone.utc)
        return await self.store.update(self.payout_collection, payout_id, fields)
