from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from payout_ledger.db.document_store import DocumentStore
from payout_ledger.models.dispute import Dispute, DisputeStatus, Refund


class DisputeRepository:
    """Dispute records, one per processor dispute id."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.collection = "disputes"

    async def get_by_dispute_id(self, dispute_id: str) -> Optional[Dispute]:
        docs = await self.store.query(
            self.collection,
            [("dispute_id", "==", dispute_id)],
            limit=1
        )
        if docs:
            return Dispute.from_document(docs[0])
        return None

    async def create(self, dispute: Dispute) -> str:
        dispute.id = await self.store.add(self.collection, dispute.to_document())
        return dispute.id

    async def update(self, dispute_id: str, fields: Dict[str, Any]) -> bool:
        fields = dict(fields)
        fields["updated_at"] = datetime.now(timezone.utc)
        return await self.store.update(self.collection, dispute_id, fields)

    async def claim_close(self, dispute_id: str, status: DisputeStatus | str, resolved_at: datetime) -> bool:
        """Move an open dispute to its final status; False if already closed."""
        return await self.store.update_if(
            self.collection,
            dispute_id,
            {"status": DisputeStatus.OPEN.value},
            {
                "status": DisputeStatus(status).value,
                "resolved_at": resolved_at,
                "updated_at": datetime.now(timezone.utc)
            }
        )

    async def list_recent(self, limit: int = 100) -> List[Dispute]:
        docs = await self.store.query(self.collection, order_by=("created_at", "desc"), limit=limit)
        return [Dispute.from_document(doc) for doc in docs]


class RefundRepository:
    """Append-only refund audit trail."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.collection = "refunds"

    async def add(self, refund: Refund) -> str:
        refund.id = await self.store.add(self.collection, refund.to_document())
        return refund.id

    async def list_for_charge(self, charge_id: str) -> List[Refund]:
        docs = await self.store.query(
            self.collection,
            [("charge_id", "==", charge_id)],
            order_by=("created_at", "asc")
        )
        return [Refund.from_document(doc) for doc in docs]

    async def list_recent(self, limit: int = 100) -> List[Refund]:
        docs = await self.store.query(self.collection, order_by=("created_at", "desc"), limit=limit)
        return [Refund.from_document(doc) for doc in docs]
