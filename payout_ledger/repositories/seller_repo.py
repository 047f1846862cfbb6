from datetime import datetime, timezone
from typing import Any, Dict, Optional

from payout_ledger.db.document_store import DocumentStore
from payout_ledger.models.seller import SELLER_COLLECTIONS, Seller, SellerKind, seller_collection


class SellerRepository:
    """Seller profile and balance operations (artists, suppliers, crate sellers)."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, kind: SellerKind | str, seller_id: str) -> Optional[Seller]:
        doc = await self.store.get(seller_collection(kind), seller_id)
        if not doc:
            return None
        doc["kind"] = SellerKind(kind).value
        return Seller.from_document(doc)

    async def find_by_account(self, account_id: str) -> Optional[Seller]:
        """Locate the seller owning a processor sub-account, across all kinds."""
        for kind, collection in SELLER_COLLECTIONS.items():
            docs = await self.store.query(
                collection,
                [("connect_account_id", "==", account_id)],
                limit=1
            )
            if docs:
                doc = docs[0]
                doc["kind"] = kind.value
                return Seller.from_document(doc)
        return None

    async def adjust_balances(
        self,
        kind: SellerKind | str,
        seller_id: str,
        pending_delta: int = 0,
        earnings_delta: int = 0,
    ) -> bool:
        """Atomically move the running pending balance / total earnings counters."""
        deltas = {}
        if pending_delta:
            deltas["pending_balance_cents"] = pending_delta
        if earnings_delta:
            deltas["total_earnings_cents"] = earnings_delta
        if not deltas:
            return True
        return await self.store.increment(seller_collection(kind), seller_id, deltas)

    async def update(self, kind: SellerKind | str, seller_id: str, fields: Dict[str, Any]) -> bool:
        fields = dict(fields)
        fields["updated_at"] = datetime.now(timezone.utc)
        return await self.store.update(seller_collection(kind), seller_id, fields)
