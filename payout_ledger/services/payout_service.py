"""
Payout queue processing.

Moves PendingPayouts through the queue state machine and issues the actual
transfers. A transfer is attempted at most once per call; failures park the
payout in retry_pending for an operator to retry. A payout that was
attempted before is first looked up at the processor, so a transfer that
landed after a timeout is recorded rather than sent twice.
"""

import asyncio
import logging
from typing import Optional

from payout_ledger.core.config import Settings, settings as default_settings
from payout_ledger.core.errors import DocumentNotFound, InvalidPayoutTransition
from payout_ledger.db.document_store import DocumentStore
from payout_ledger.models.base import utcnow
from payout_ledger.models.payout import Payout, PendingPayout, PendingPayoutStatus
from payout_ledger.models.seller import ConnectStatus, Seller
from payout_ledger.repositories.payout_repo import PayoutRepository
from payout_ledger.repositories.seller_repo import SellerRepository
from payout_ledger.schemas.events import AccountUpdated
from payout_ledger.schemas.payout import PayoutAttempt, SellerPayoutHistory, SweepResult
from payout_ledger.services.notifier import (
    LoggingNotifier,
    NoticeKind,
    SellerNotice,
    SellerNotifier,
    send_notice,
)
from payout_ledger.services.processor import PaymentProcessor

logger = logging.getLogger(__name__)


def derive_connect_status(
    charges_enabled: bool,
    payouts_enabled: bool,
    disabled_reason: Optional[str] = None,
) -> ConnectStatus:
    if charges_enabled and payouts_enabled:
        return ConnectStatus.ACTIVE
    if disabled_reason:
        return ConnectStatus.RESTRICTED
    return ConnectStatus.ONBOARDING


class PayoutService:
    def __init__(
        self,
        store: DocumentStore,
        processor: PaymentProcessor,
        config: Optional[Settings] = None,
        notifier: Optional[SellerNotifier] = None,
    ):
        self.processor = processor
        self.config = config or default_settings
        self.notifier = notifier or LoggingNotifier()
        self.payouts = PayoutRepository(store)
        self.sellers = SellerRepository(store)

    async def _find_sent_transfer(self, pending: PendingPayout) -> Optional[str]:
        """
        The transfer an earlier attempt of this payout already created, if
        any. A timed-out call can still land at the processor, so this is
        checked before a payout is ever sent a second time.
        """
        if pending.transfer_id:
            return pending.transfer_id
        for transfer in await self.processor.list_transfers(pending.order_id):
            if transfer.metadata.get("pending_payout_id") == pending.id:
                return transfer.id
        return None

    async def execute_payout(self, pending: PendingPayout, seller: Seller) -> PayoutAttempt:
        """
        Issue the transfer for one pending payout.

        Success writes a completed Payout and moves the amount from the
        seller's pending balance to total earnings. Any failure, including
        a timeout, leaves the payout in retry_pending with the reason.
        """
        earlier_attempt = pending.attempts > 0 or pending.transfer_id is not None
        attempts = pending.attempts + 1
        await self.payouts.transition(
            pending,
            PendingPayoutStatus.PROCESSING,
            attempts=attempts,
            failure_reason=None
        )

        metadata = {
            "order_id": pending.order_id,
            "order_number": pending.order_number,
            "seller_id": pending.seller_id,
            "seller_kind": pending.seller_kind,
            "pending_payout_id": pending.id,
        }
        if pending.reason:
            metadata["reason"] = pending.reason

        try:
            transfer_id = None
            if earlier_attempt:
                transfer_id = await asyncio.wait_for(
                    self._find_sent_transfer(pending),
                    timeout=self.config.TRANSFER_TIMEOUT_SECONDS
                )
                if transfer_id:
                    logger.warning(
                        "Payout %s already reached the processor as %s, recording it instead of resending",
                        pending.id, transfer_id
                    )
            if transfer_id is None:
                transfer_id = await asyncio.wait_for(
                    self.processor.create_transfer(
                        destination=seller.connect_account_id,
                        amount_cents=pending.amount_cents,
                        currency=pending.currency,
                        group=pending.order_id,
                        metadata=metadata,
                        idempotency_key=f"pending_payout:{pending.id}:{attempts}",
                    ),
                    timeout=self.config.TRANSFER_TIMEOUT_SECONDS
                )
        except asyncio.TimeoutError:
            reason = f"Transfer timed out after {self.config.TRANSFER_TIMEOUT_SECONDS}s"
            logger.error("Payout %s to %s %s: %s", pending.id, pending.seller_kind, pending.seller_id, reason)
            await self.payouts.transition(pending, PendingPayoutStatus.RETRY_PENDING, failure_reason=reason)
            return PayoutAttempt(pending_payout_id=pending.id, status=pending.status, error=reason)
        except Exception as e:
            logger.exception("Payout %s to %s %s failed", pending.id, pending.seller_kind, pending.seller_id)
            await self.payouts.transition(pending, PendingPayoutStatus.RETRY_PENDING, failure_reason=str(e))
            return PayoutAttempt(pending_payout_id=pending.id, status=pending.status, error=str(e))

        try:
            await self._record_transfer(pending, seller, transfer_id)
        except Exception as e:
            return await self._hold_for_reconcile(pending, transfer_id, e)

        logger.info(
            "Paid %d cents to %s %s for order %s (transfer %s)",
            pending.amount_cents, pending.seller_kind, pending.seller_id, pending.order_number, transfer_id
        )
        await send_notice(self.notifier, SellerNotice(
            kind=NoticeKind.DISPUTE_RETRANSFER if pending.dispute_id else NoticeKind.PAYOUT_COMPLETED,
            seller_kind=pending.seller_kind,
            seller_id=pending.seller_id,
            seller_name=seller.name or pending.seller_name,
            seller_email=seller.email or pending.seller_email,
            order_id=pending.order_id,
            order_number=pending.order_number,
            amount_cents=pending.amount_cents,
            currency=pending.currency,
            transfer_id=transfer_id,
            dispute_id=pending.dispute_id,
        ))
        return PayoutAttempt(pending_payout_id=pending.id, status=pending.status, transfer_id=transfer_id)

    async def _record_transfer(self, pending: PendingPayout, seller: Seller, transfer_id: str) -> None:
        now = utcnow()
        # A reconciled transfer may already have its Payout from the failed attempt
        if await self.payouts.find_by_transfer(transfer_id) is None:
            await self.payouts.create_payout(Payout(
                seller_id=pending.seller_id,
                seller_kind=pending.seller_kind,
                seller_name=pending.seller_name,
                transfer_id=transfer_id,
                destination_account=seller.connect_account_id,
                order_id=pending.order_id,
                order_number=pending.order_number,
                amount_cents=pending.amount_cents,
                original_amount_cents=pending.original_amount_cents,
                currency=pending.currency,
                from_pending_payout=pending.id,
                reason=pending.reason,
                original_transfer_id=pending.original_transfer_id,
                dispute_id=pending.dispute_id,
                completed_at=now,
            ))
        await self.payouts.transition(
            pending,
            PendingPayoutStatus.COMPLETED,
            transfer_id=transfer_id,
            failure_reason=None,
            completed_at=now
        )
        await self.sellers.adjust_balances(
            pending.seller_kind,
            pending.seller_id,
            pending_delta=-pending.amount_cents,
            earnings_delta=pending.amount_cents
        )

    async def _hold_for_reconcile(self, pending: PendingPayout, transfer_id: str, error: Exception) -> PayoutAttempt:
        """
        The money left but recording it failed. Keep the transfer id on the
        pending payout and park it in retry_pending, where an operator retry
        records the existing transfer instead of sending a new one.
        """
        reason = f"Transfer {transfer_id} was sent but recording it failed: {error}"
        logger.error("Payout %s: %s", pending.id, reason, exc_info=error)
        try:
            await self.payouts.update_pending(pending.id, {"transfer_id": transfer_id, "failure_reason": reason})
            pending.transfer_id = transfer_id
            if pending.status == PendingPayoutStatus.PROCESSING.value:
                await self.payouts.transition(pending, PendingPayoutStatus.RETRY_PENDING)
        except Exception:
            logger.exception("Payout %s: could not park transfer %s for reconciliation", pending.id, transfer_id)
        return PayoutAttempt(
            pending_payout_id=pending.id,
            status=pending.status,
            transfer_id=transfer_id,
            error=reason
        )

    async def _defer(self, pending: PendingPayout) -> PayoutAttempt:
        await self.payouts.transition(pending, PendingPayoutStatus.AWAITING_ACCOUNT)
        logger.info(
            "Payout %s for %s %s waits for an active account",
            pending.id, pending.seller_kind, pending.seller_id
        )
        return PayoutAttempt(pending_payout_id=pending.id, status=pending.status)

    @staticmethod
    def _tally(result: SweepResult, attempt: PayoutAttempt) -> None:
        result.attempts.append(attempt)
        if attempt.status == PendingPayoutStatus.COMPLETED.value:
            result.transferred += 1
        elif attempt.status == PendingPayoutStatus.AWAITING_ACCOUNT.value:
            result.deferred += 1
        else:
            result.failed += 1

    async def dispatch_order_payouts(self, order_id: str) -> SweepResult:
        """Pay out or park every freshly queued payout of an order."""
        result = SweepResult()
        queued = await self.payouts.list_pending(
            order_id=order_id,
            statuses=[PendingPayoutStatus.PENDING.value]
        )

        for pending in queued:
            result.checked += 1
            try:
                seller = await self.sellers.get(pending.seller_kind, pending.seller_id)
                if seller and seller.has_active_account and self.config.AUTO_PAYOUTS_ENABLED:
                    attempt = await self.execute_payout(pending, seller)
                else:
                    attempt = await self._defer(pending)
            except InvalidPayoutTransition as e:
                logger.warning("Payout %s skipped: %s", pending.id, e)
                continue
            except Exception as e:
                logger.exception("Dispatch of payout %s failed", pending.id)
                attempt = PayoutAttempt(pending_payout_id=pending.id, status=pending.status, error=str(e))
            self._tally(result, attempt)

        return result

    async def process_awaiting_payouts(self, seller_kind: str, seller_id: str) -> SweepResult:
        """
        Sweep a seller's awaiting_account payouts once their account is
        active. Bounded to PAYOUT_SWEEP_BATCH_SIZE payouts per call.
        """
        result = SweepResult()
        seller = await self.sellers.get(seller_kind, seller_id)
        if not seller or not seller.has_active_account:
            logger.info("Sweep skipped: %s %s has no active account", seller_kind, seller_id)
            return result

        waiting = await self.payouts.list_pending(
            seller_kind=seller_kind,
            seller_id=seller_id,
            statuses=[PendingPayoutStatus.AWAITING_ACCOUNT.value],
            limit=self.config.PAYOUT_SWEEP_BATCH_SIZE
        )

        for pending in waiting:
            result.checked += 1
            try:
                attempt = await self.execute_payout(pending, seller)
            except InvalidPayoutTransition as e:
                logger.warning("Payout %s skipped: %s", pending.id, e)
                continue
            self._tally(result, attempt)

        logger.info(
            "Sweep for %s %s: %d checked, %d transferred, %d failed",
            seller_kind, seller_id, result.checked, result.transferred, result.failed
        )
        return result

    async def retry_payout(self, pending_id: str) -> PayoutAttempt:
        """
        Operator retry of a retry_pending or awaiting_account payout.

        A payout stuck in processing whose transfer is known to have gone
        out is reconciled: the existing transfer is recorded, nothing is
        sent again.
        """
        pending = await self.payouts.get_pending(pending_id)
        if pending.status == PendingPayoutStatus.PROCESSING.value and pending.transfer_id:
            await self.payouts.transition(pending, PendingPayoutStatus.RETRY_PENDING)
        elif pending.status not in (
            PendingPayoutStatus.RETRY_PENDING.value,
            PendingPayoutStatus.AWAITING_ACCOUNT.value,
        ):
            raise InvalidPayoutTransition(pending.status, PendingPayoutStatus.PROCESSING.value)

        seller = await self.sellers.get(pending.seller_kind, pending.seller_id)
        if not seller:
            raise DocumentNotFound(pending.seller_kind, pending.seller_id)

        if not seller.has_active_account:
            if pending.status == PendingPayoutStatus.AWAITING_ACCOUNT.value:
                return PayoutAttempt(pending_payout_id=pending.id, status=pending.status)
            return await self._defer(pending)

        return await self.execute_payout(pending, seller)

    async def handle_account_updated(self, event: AccountUpdated) -> Optional[SweepResult]:
        seller = None
        if event.seller_kind and event.seller_id:
            seller = await self.sellers.get(event.seller_kind, event.seller_id)
        if seller is None:
            seller = await self.sellers.find_by_account(event.account_id)
        if seller is None:
            logger.warning("account.updated for unknown account %s", event.account_id)
            return None

        status = derive_connect_status(event.charges_enabled, event.payouts_enabled, event.disabled_reason)
        await self.sellers.update(seller.kind, seller.id, {
            "connect_account_id": event.account_id,
            "connect_status": status.value,
            "connect_charges_enabled": event.charges_enabled,
            "connect_payouts_enabled": event.payouts_enabled,
            "connect_disabled_reason": event.disabled_reason,
        })
        logger.info("%s %s account %s is now %s", seller.kind, seller.id, event.account_id, status.value)

        if status != ConnectStatus.ACTIVE:
            return None
        return await self.process_awaiting_payouts(seller.kind, seller.id)

    async def seller_history(self, seller_kind: str, seller_id: str) -> SellerPayoutHistory:
        return SellerPayoutHistory(
            seller_kind=seller_kind,
            seller_id=seller_id,
            payouts=await self.payouts.list_payouts(seller_kind=seller_kind, seller_id=seller_id),
            pending_payouts=await self.payouts.list_pending(seller_kind=seller_kind, seller_id=seller_id),
        )
