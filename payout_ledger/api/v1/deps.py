from fastapi import Depends

from payout_ledger.core.config import settings
from payout_ledger.db.document_store import DocumentStore
from payout_ledger.db.session import get_store
from payout_ledger.services.event_router import EventRouter
from payout_ledger.services.notifier import LoggingNotifier, SellerNotifier
from payout_ledger.services.payout_service import PayoutService
from payout_ledger.services.processor import PaymentProcessor, StripeProcessor
from payout_ledger.services.settlement_service import SettlementService


async def get_processor() -> PaymentProcessor:
    return StripeProcessor(settings.STRIPE_SECRET_KEY)


async def get_notifier() -> SellerNotifier:
    return LoggingNotifier()


async def get_event_router(
    store: DocumentStore = Depends(get_store),
    processor: PaymentProcessor = Depends(get_processor),
    notifier: SellerNotifier = Depends(get_notifier)
) -> EventRouter:
    """A fresh router per delivery."""
    return EventRouter(store, processor, settings, notifier=notifier)


async def get_payout_service(
    store: DocumentStore = Depends(get_store),
    processor: PaymentProcessor = Depends(get_processor),
    notifier: SellerNotifier = Depends(get_notifier)
) -> PayoutService:
    return PayoutService(store, processor, settings, notifier)


async def get_settlement_service(store: DocumentStore = Depends(get_store)) -> SettlementService:
    return SettlementService(store, config=settings)
