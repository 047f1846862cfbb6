"""
Routes validated webhook events to the settlement, payout and reversal
services. Built per request; holds no state between deliveries.
"""

import logging
import time
from typing import Awaitable, Callable, Dict, Optional

from payout_ledger.core.config import Settings, settings as default_settings
from payout_ledger.db.document_store import DocumentStore
from payout_ledger.models.webhook_log import WebhookLog
from payout_ledger.repositories.order_repo import OrderRepository
from payout_ledger.repositories.webhook_log_repo import WebhookLogRepository
from payout_ledger.schemas.events import (
    AccountUpdated,
    ChargeRefunded,
    DisputeClosed,
    DisputeCreated,
    PaymentCompleted,
    RouteResult,
    WebhookEvent,
)
from payout_ledger.services.notifier import SellerNotifier
from payout_ledger.services.payout_service import PayoutService
from payout_ledger.services.processor import PaymentProcessor
from payout_ledger.services.reversal_service import ReversalService
from payout_ledger.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


class EventRouter:
    def __init__(
        self,
        store: DocumentStore,
        processor: PaymentProcessor,
        config: Optional[Settings] = None,
        source: str = "stripe",
        notifier: Optional[SellerNotifier] = None,
    ):
        self.config = config or default_settings
        self.source = source
        self.orders = OrderRepository(store)
        self.logs = WebhookLogRepository(store)
        self.settlements = SettlementService(store, config=self.config)
        self.payout_service = PayoutService(store, processor, self.config, notifier)
        self.reversals = ReversalService(store, processor, self.config, self.payout_service)

        self.handlers: Dict[str, Callable[..., Awaitable[str]]] = {
            "payment_completed": self._payment_completed,
            "dispute_created": self._dispute_created,
            "dispute_closed": self._dispute_closed,
            "charge_refunded": self._charge_refunded,
            "account_updated": self._account_updated,
        }

    async def route(self, event: WebhookEvent) -> RouteResult:
        """
        Dispatch one event to its handler and log the outcome.

        Seller-level failures are handled inside the services; only an
        unexpected error escapes a handler, and it is logged rather than
        raised so the delivery is still acknowledged.
        """
        started = time.monotonic()
        handler = self.handlers[event.type]
        success = True
        error = None
        try:
            message = await handler(event)
        except Exception as e:
            logger.exception("Handler for %s (%s) failed", event.type, event.event_id)
            success = False
            error = str(e)
            message = f"{event.type} failed"

        await self._log(event, success, message, error, started)
        return RouteResult(event_type=event.type, handled=success, message=message)

    async def _log(self, event: WebhookEvent, success: bool, message: str, error: Optional[str], started: float) -> None:
        try:
            await self.logs.add(WebhookLog(
                source=self.source,
                event_type=event.source_type or event.type,
                event_id=event.event_id,
                success=success,
                message=message,
                error=error,
                metadata=event.model_dump(mode="json", exclude={"event_id", "source_type"}),
                processing_time_ms=int((time.monotonic() - started) * 1000),
            ))
        except Exception:
            logger.exception("Could not write webhook log for %s", event.event_id)

    async def _payment_completed(self, event: PaymentCompleted) -> str:
        order = await self.orders.get(event.order_id)
        if not order:
            logger.warning("Payment %s for unknown order %s", event.payment_id, event.order_id)
            return f"Order {event.order_id} not found"

        if not await self.orders.claim_settlement(order.id):
            logger.info("Order %s already settled, skipping duplicate delivery", order.order_number or order.id)
            return f"Order {order.order_number or order.id} already settled"

        result = await self.settlements.record_sale(order)
        if not result.success and not result.ledger_entry_ids:
            # Nothing written, so a redelivery may try again
            await self.orders.release_settlement(order.id)
            return f"Settlement failed: {result.error}"

        for failed in result.failed_sellers:
            logger.error(
                "Order %s: settlement for %s %s needs an operator re-run: %s",
                order.order_number, failed.seller_kind, failed.seller_id, failed.error
            )

        sweep = await self.payout_service.dispatch_order_payouts(order.id)
        return (
            f"Order {order.order_number or order.id}: {len(result.ledger_entry_ids)} ledger entries, "
            f"{sweep.transferred} paid, {sweep.deferred} awaiting account, {sweep.failed} failed"
        )

    async def _dispute_created(self, event: DisputeCreated) -> str:
        dispute = await self.reversals.handle_dispute_created(event)
        return f"Dispute {dispute.dispute_id}: {dispute.amount_recovered_cents} cents recovered"

    async def _dispute_closed(self, event: DisputeClosed) -> str:
        dispute = await self.reversals.handle_dispute_closed(event)
        if not dispute:
            return f"Dispute {event.dispute_id} not found"
        return f"Dispute {dispute.dispute_id} closed: {dispute.status}"

    async def _charge_refunded(self, event: ChargeRefunded) -> str:
        refund = await self.reversals.handle_refund(event)
        if not refund:
            return f"Refund on {event.charge_id}: nothing new to reverse"
        return (
            f"Refund on {event.charge_id}: {refund.amount_refunded_cents} cents new, "
            f"{refund.total_reversed_cents} cents reversed"
        )

    async def _account_updated(self, event: AccountUpdated) -> str:
        sweep = await self.payout_service.handle_account_updated(event)
        if sweep is None:
            return f"Account {event.account_id} updated"
        return f"Account {event.account_id} active: {sweep.transferred} of {sweep.checked} payouts sent"
