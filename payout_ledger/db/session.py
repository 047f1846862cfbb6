from payout_ledger.db.document_store import DocumentStore, MongoDocumentStore
from payout_ledger.db.mongo import mongodb


async def get_store() -> DocumentStore:
    """Request-scoped document store over the active connection."""
    return MongoDocumentStore(mongodb.db)
