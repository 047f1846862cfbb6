from typing import List

from payout_ledger.db.document_store import DocumentStore
from payout_ledger.models.webhook_log import WebhookLog


class WebhookLogRepository:
    """Append-only audit trail of processed webhook deliveries."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.collection = "webhook_logs"

    async def add(self, log: WebhookLog) -> str:
        return await self.store.add(self.collection, log.model_dump())

    async def list_recent(self, limit: int = 100) -> List[WebhookLog]:
        docs = await self.store.query(self.collection, order_by=("timestamp", "desc"), limit=limit)
        return [WebhookLog.model_validate(doc) for doc in docs]
