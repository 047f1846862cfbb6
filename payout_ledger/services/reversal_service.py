"""
Reversal engine: pulls money back from sellers on disputes and refunds,
and gives it back when a dispute is won.

Idempotency:
- disputes are keyed by the processor dispute id; a repeated
  dispute.created updates the existing record and skips transfers that
  are already fully reversed
- refunds advance the order's cumulative_refunded_cents with a
  compare-and-set before any reversal, so only one delivery of a given
  cumulative amount reverses anything
"""

import logging
from decimal import Decimal
from typing import List, Optional

from payout_ledger.core.config import Settings, settings as default_settings
from payout_ledger.db.document_store import DocumentStore
from payout_ledger.models.base import utcnow
from payout_ledger.models.dispute import Dispute, DisputeStatus, Refund, Retransfer, ReversedTransfer
from payout_ledger.models.order import Order, RefundStatus
from payout_ledger.models.payout import (
    OPEN_STATUSES,
    REVERSIBLE_STATUSES,
    PayoutStatus,
    PendingPayout,
    PendingPayoutStatus,
)
from payout_ledger.repositories.dispute_repo import DisputeRepository, RefundRepository
from payout_ledger.repositories.order_repo import OrderRepository
from payout_ledger.repositories.payout_repo import PayoutRepository
from payout_ledger.repositories.seller_repo import SellerRepository
from payout_ledger.schemas.events import ChargeRefunded, DisputeClosed, DisputeCreated
from payout_ledger.services.fee_allocator import round_cents
from payout_ledger.services.notifier import NoticeKind, SellerNotice, SellerNotifier, send_notice
from payout_ledger.services.payout_service import PayoutService
from payout_ledger.services.processor import PaymentProcessor

logger = logging.getLogger(__name__)

DISPUTE_WON_REASON = "dispute_won_retransfer"

# A payout counts as fully reversed once this share of it is pulled back
FULLY_REVERSED_RATIO = Decimal("0.99")


class ReversalService:
    def __init__(
        self,
        store: DocumentStore,
        processor: PaymentProcessor,
        config: Optional[Settings] = None,
        payout_service: Optional[PayoutService] = None,
        notifier: Optional[SellerNotifier] = None,
    ):
        self.processor = processor
        self.config = config or default_settings
        self.payout_service = payout_service or PayoutService(store, processor, self.config, notifier)
        self.notifier = notifier or self.payout_service.notifier
        self.orders = OrderRepository(store)
        self.payouts = PayoutRepository(store)
        self.sellers = SellerRepository(store)
        self.disputes = DisputeRepository(store)
        self.refunds = RefundRepository(store)

    async def _find_order(self, payment_id: Optional[str], charge_id: Optional[str]) -> Optional[Order]:
        for reference in (payment_id, charge_id):
            if reference:
                order = await self.orders.find_by_payment_id(reference)
                if order:
                    return order
        return None

    async def _reduce_earnings(self, seller_kind: Optional[str], seller_id: Optional[str], amount_cents: int) -> None:
        """Take reversed money off a seller's total earnings, never below zero."""
        if not seller_kind or not seller_id or amount_cents <= 0:
            return
        seller = await self.sellers.get(seller_kind, seller_id)
        if not seller:
            logger.warning("Cannot adjust earnings: %s %s not found", seller_kind, seller_id)
            return
        delta = min(amount_cents, max(0, seller.total_earnings_cents))
        await self.sellers.adjust_balances(seller_kind, seller_id, earnings_delta=-delta)

    async def _notify(self, kind: NoticeKind, seller_kind: Optional[str], seller_id: Optional[str], **fields) -> None:
        if not seller_kind or not seller_id:
            return
        try:
            seller = await self.sellers.get(seller_kind, seller_id)
        except Exception:
            logger.exception("Cannot look up %s %s for a %s notice", seller_kind, seller_id, kind.value)
            seller = None
        await send_notice(self.notifier, SellerNotice(
            kind=kind,
            seller_kind=seller_kind,
            seller_id=seller_id,
            seller_name=seller.name if seller else "",
            seller_email=seller.email if seller else "",
            **fields
        ))

    # ===== DISPUTES =====

    async def handle_dispute_created(self, event: DisputeCreated) -> Dispute:
        """
        Fully reverse every transfer of the disputed order.

        The dispute is always recorded, even when some reversals fail.
        """
        existing = await self.disputes.get_by_dispute_id(event.dispute_id)
        order = await self._find_order(event.payment_id, event.charge_id)
        group = event.transfer_group or (order.id if order else None)

        reversed_transfers: List[ReversedTransfer] = []
        already_reversed = set()
        if existing:
            reversed_transfers = [rt for rt in existing.transfers_reversed if not rt.failed]
            already_reversed = {rt.transfer_id for rt in reversed_transfers}

        transfers = []
        if group:
            try:
                transfers = await self.processor.list_transfers(group)
            except Exception:
                logger.exception("Dispute %s: could not list transfers for group %s", event.dispute_id, group)
        else:
            logger.warning("Dispute %s: no order or transfer group for charge %s", event.dispute_id, event.charge_id)

        for transfer in transfers:
            if transfer.id in already_reversed or transfer.reversed:
                continue

            payout = await self.payouts.find_by_transfer(transfer.id)
            seller_kind = payout.seller_kind if payout else transfer.metadata.get("seller_kind")
            seller_id = payout.seller_id if payout else transfer.metadata.get("seller_id")
            seller_name = payout.seller_name if payout else None

            try:
                reversal = await self.processor.reverse_transfer(
                    transfer.id,
                    metadata={"dispute_id": event.dispute_id, "reason": event.reason}
                )
            except Exception as e:
                logger.exception("Dispute %s: reversal of %s failed", event.dispute_id, transfer.id)
                reversed_transfers.append(ReversedTransfer(
                    transfer_id=transfer.id,
                    amount_cents=transfer.remaining_cents,
                    seller_id=seller_id,
                    seller_kind=seller_kind,
                    seller_name=seller_name,
                    failed=True,
                    error=str(e),
                ))
                continue

            reversed_transfers.append(ReversedTransfer(
                transfer_id=transfer.id,
                reversal_id=reversal.id,
                amount_cents=reversal.amount_cents,
                seller_id=seller_id,
                seller_kind=seller_kind,
                seller_name=seller_name,
            ))
            await self._reduce_earnings(seller_kind, seller_id, reversal.amount_cents)
            if payout:
                await self.payouts.update_payout(payout.id, {
                    "status": PayoutStatus.REVERSED.value,
                    "reversed_amount_cents": payout.reversed_amount_cents + reversal.amount_cents,
                    "reversal_reason": f"dispute:{event.dispute_id}",
                    "reversed_at": utcnow(),
                })
            logger.info(
                "Dispute %s: reversed %d cents from transfer %s (%s %s)",
                event.dispute_id, reversal.amount_cents, transfer.id, seller_kind, seller_id
            )
            await self._notify(
                NoticeKind.DISPUTE_REVERSAL,
                seller_kind,
                seller_id,
                order_id=order.id if order else None,
                order_number=order.order_number if order else None,
                amount_cents=reversal.amount_cents,
                currency=event.currency,
                transfer_id=transfer.id,
                dispute_id=event.dispute_id,
            )

        recovered = sum(rt.amount_cents for rt in reversed_transfers if not rt.failed)

        if existing:
            await self.disputes.update(existing.id, {
                "transfers_reversed": [rt.model_dump() for rt in reversed_transfers],
                "amount_recovered_cents": recovered,
            })
            existing.transfers_reversed = reversed_transfers
            existing.amount_recovered_cents = recovered
            return existing

        dispute = Dispute(
            dispute_id=event.dispute_id,
            charge_id=event.charge_id,
            payment_id=event.payment_id,
            order_id=order.id if order else None,
            order_number=order.order_number if order else None,
            amount_cents=event.amount_cents,
            currency=event.currency,
            reason=event.reason,
            evidence_due_by=event.evidence_due_by,
            transfers_reversed=reversed_transfers,
            amount_recovered_cents=recovered,
        )
        await self.disputes.create(dispute)
        logger.info(
            "Dispute %s recorded: %d of %d cents recovered",
            event.dispute_id, recovered, event.amount_cents
        )
        return dispute

    async def _retransfer(self, dispute: Dispute, reversed_transfer: ReversedTransfer) -> Retransfer:
        pending = PendingPayout(
            seller_id=reversed_transfer.seller_id,
            seller_kind=reversed_transfer.seller_kind,
            seller_name=reversed_transfer.seller_name or "",
            order_id=dispute.order_id or "",
            order_number=dispute.order_number or "",
            amount_cents=reversed_transfer.amount_cents,
            item_amount_cents=reversed_transfer.amount_cents,
            currency=dispute.currency,
            reason=DISPUTE_WON_REASON,
            original_transfer_id=reversed_transfer.transfer_id,
            dispute_id=dispute.dispute_id,
        )
        await self.payouts.create_pending(pending)
        await self.sellers.adjust_balances(
            pending.seller_kind, pending.seller_id, pending_delta=pending.amount_cents
        )

        seller = await self.sellers.get(pending.seller_kind, pending.seller_id)
        if seller and seller.has_active_account:
            attempt = await self.payout_service.execute_payout(pending, seller)
        else:
            await self.payouts.transition(pending, PendingPayoutStatus.AWAITING_ACCOUNT)
            attempt = None
            await self._notify(
                NoticeKind.DISPUTE_RETRANSFER,
                pending.seller_kind,
                pending.seller_id,
                order_id=pending.order_id,
                order_number=pending.order_number,
                amount_cents=pending.amount_cents,
                currency=pending.currency,
                dispute_id=dispute.dispute_id,
                detail="queued until the seller's account is active",
            )

        if attempt and attempt.transfer_id:
            outcome = "transferred"
        elif attempt:
            outcome = PendingPayoutStatus.RETRY_PENDING.value
        else:
            outcome = "queued"

        return Retransfer(
            original_transfer_id=reversed_transfer.transfer_id,
            new_transfer_id=attempt.transfer_id if attempt else None,
            pending_payout_id=pending.id,
            amount_cents=pending.amount_cents,
            seller_id=pending.seller_id,
            outcome=outcome,
        )

    async def handle_dispute_closed(self, event: DisputeClosed) -> Optional[Dispute]:
        dispute = await self.disputes.get_by_dispute_id(event.dispute_id)
        if not dispute:
            logger.warning("dispute.closed for unknown dispute %s", event.dispute_id)
            return None
        if dispute.status != DisputeStatus.OPEN.value:
            logger.info("Dispute %s already closed as %s", dispute.dispute_id, dispute.status)
            return dispute

        now = utcnow()
        won = event.status == "won"
        outcome = DisputeStatus.WON.value if won else DisputeStatus.LOST.value

        # Claim the dispute before moving money so a replayed close is a no-op
        if not await self.disputes.claim_close(dispute.id, outcome, now):
            logger.info("Dispute %s already being closed", dispute.dispute_id)
            return dispute

        if not won:
            net_impact = dispute.amount_cents - dispute.amount_recovered_cents
            await self.disputes.update(dispute.id, {"net_impact_cents": net_impact})
            dispute.status = DisputeStatus.LOST.value
            dispute.net_impact_cents = net_impact
            dispute.resolved_at = now
            logger.info("Dispute %s lost, platform absorbs %d cents", dispute.dispute_id, net_impact)
            return dispute

        retransfers: List[Retransfer] = []
        for reversed_transfer in dispute.transfers_reversed:
            if reversed_transfer.failed or reversed_transfer.amount_cents <= 0:
                continue
            if not reversed_transfer.seller_id or not reversed_transfer.seller_kind:
                logger.error(
                    "Dispute %s: no seller recorded for transfer %s, %d cents not returned",
                    dispute.dispute_id, reversed_transfer.transfer_id, reversed_transfer.amount_cents
                )
                continue
            try:
                retransfers.append(await self._retransfer(dispute, reversed_transfer))
            except Exception:
                logger.exception(
                    "Dispute %s: could not return %d cents for transfer %s",
                    dispute.dispute_id, reversed_transfer.amount_cents, reversed_transfer.transfer_id
                )

        await self.disputes.update(dispute.id, {
            "net_impact_cents": 0,
            "retransfers": [rt.model_dump() for rt in retransfers],
        })
        dispute.status = DisputeStatus.WON.value
        dispute.net_impact_cents = 0
        dispute.retransfers = retransfers
        dispute.resolved_at = now
        logger.info("Dispute %s won, %d re-transfer(s)", dispute.dispute_id, len(retransfers))
        return dispute

    # ===== REFUNDS =====

    async def handle_refund(self, event: ChargeRefunded) -> Optional[Refund]:
        """
        Reverse the newly refunded share of an order's payouts.

        The event carries the cumulative refunded amount; only the delta
        since the last processed delivery is reversed.
        """
        order = await self._find_order(event.payment_id, event.charge_id)
        if not order:
            logger.warning("Refund on charge %s: no matching order", event.charge_id)
            return None

        charge_total = event.amount_cents
        cumulative = event.amount_refunded_cents
        refund_pct = Decimal(cumulative) / Decimal(charge_total)
        is_full = refund_pct >= Decimal(self.config.FULL_REFUND_THRESHOLD)

        previously = order.cumulative_refunded_cents or 0
        delta = cumulative - previously
        if delta <= 0:
            logger.info(
                "Refund on charge %s: cumulative %d already processed, nothing to reverse",
                event.charge_id, cumulative
            )
            return None

        if not await self.orders.claim_refund_delta(order.id, previously, cumulative):
            logger.info("Refund on charge %s: delivery already claimed", event.charge_id)
            return None

        delta_ratio = Decimal(delta) / Decimal(charge_total)
        reversed_transfers = await self._reverse_payouts(order, delta_ratio, is_full, event.charge_id)
        affected = await self._adjust_queued_payouts(order, refund_pct, is_full)

        refund = Refund(
            charge_id=event.charge_id,
            payment_id=event.payment_id,
            order_id=order.id,
            order_number=order.order_number,
            charge_total_cents=charge_total,
            amount_refunded_cents=delta,
            cumulative_refunded_cents=cumulative,
            refund_percentage=float(refund_pct * 100),
            is_full_refund=is_full,
            transfers_reversed=reversed_transfers,
            total_reversed_cents=sum(rt.amount_cents for rt in reversed_transfers if not rt.failed),
            pending_payouts_affected=affected,
        )
        await self.refunds.add(refund)

        status = RefundStatus.FULLY_REFUNDED if is_full else RefundStatus.PARTIALLY_REFUNDED
        await self.orders.mark_refunded(order.id, status, cumulative)

        logger.info(
            "Refund on order %s: %d cents new (%s), %d cents reversed, %d queued payout(s) adjusted",
            order.order_number, delta, status.value, refund.total_reversed_cents, affected
        )
        return refund

    async def _reverse_payouts(
        self,
        order: Order,
        delta_ratio: Decimal,
        is_full: bool,
        charge_id: str,
    ) -> List[ReversedTransfer]:
        """
        Pull the newly refunded share back from every sent payout.

        The share is taken of what the seller was originally owed, so a
        payout that a partial refund shrank before it was sent is not
        under-reversed. A full refund takes back whatever is left.
        """
        results: List[ReversedTransfer] = []
        payouts = await self.payouts.list_payouts(order_id=order.id, statuses=REVERSIBLE_STATUSES)

        for payout in payouts:
            wanted = round_cents(Decimal(payout.entitled_cents) * delta_ratio)
            try:
                transfer = await self.processor.get_transfer(payout.transfer_id)
                available = min(transfer.remaining_cents, payout.remaining_cents())
                if is_full:
                    wanted = available
                amount = wanted
                if amount > available:
                    logger.warning(
                        "Refund reversal on %s clamped from %d to %d cents",
                        payout.transfer_id, wanted, available
                    )
                    amount = available
                if amount <= 0:
                    continue

                reversal = await self.processor.reverse_transfer(
                    payout.transfer_id,
                    amount_cents=amount,
                    metadata={"charge_id": charge_id, "reason": "refund", "order_id": order.id}
                )
            except Exception as e:
                logger.exception("Refund reversal of transfer %s failed", payout.transfer_id)
                results.append(ReversedTransfer(
                    transfer_id=payout.transfer_id,
                    amount_cents=wanted,
                    seller_id=payout.seller_id,
                    seller_kind=payout.seller_kind,
                    seller_name=payout.seller_name,
                    failed=True,
                    error=str(e),
                ))
                continue

            total_reversed = payout.reversed_amount_cents + reversal.amount_cents
            nothing_left = available - reversal.amount_cents <= 0
            if nothing_left or total_reversed >= FULLY_REVERSED_RATIO * payout.amount_cents:
                status = PayoutStatus.REVERSED
            else:
                status = PayoutStatus.PARTIALLY_REVERSED

            await self.payouts.update_payout(payout.id, {
                "status": status.value,
                "reversed_amount_cents": total_reversed,
                "reversal_reason": "refund",
                "reversed_at": utcnow(),
            })
            await self._reduce_earnings(payout.seller_kind, payout.seller_id, reversal.amount_cents)
            await self._notify(
                NoticeKind.REFUND_ADJUSTMENT,
                payout.seller_kind,
                payout.seller_id,
                order_id=order.id,
                order_number=order.order_number,
                amount_cents=reversal.amount_cents,
                currency=payout.currency,
                original_amount_cents=payout.amount_cents,
                is_full_refund=is_full,
                transfer_id=payout.transfer_id,
            )

            results.append(ReversedTransfer(
                transfer_id=payout.transfer_id,
                reversal_id=reversal.id,
                amount_cents=reversal.amount_cents,
                seller_id=payout.seller_id,
                seller_kind=payout.seller_kind,
                seller_name=payout.seller_name,
            ))
        return results

    async def _adjust_queued_payouts(self, order: Order, refund_pct: Decimal, is_full: bool) -> int:
        """
        Cancel or shrink payouts that have not been transferred yet.

        Shrinking is computed from the original amount and the cumulative
        refund share, so successive partial refunds do not compound.
        """
        affected = 0
        queued = await self.payouts.list_pending(order_id=order.id, statuses=OPEN_STATUSES)

        for pending in queued:
            original = pending.original_amount_cents or pending.amount_cents
            if is_full:
                new_amount = 0
            else:
                new_amount = original - round_cents(Decimal(original) * refund_pct)
            removed = pending.amount_cents - max(0, new_amount)
            if removed <= 0:
                continue

            try:
                if new_amount <= 0:
                    await self.payouts.transition(
                        pending,
                        PendingPayoutStatus.CANCELLED,
                        amount_cents=0,
                        original_amount_cents=original,
                        reduced_by_refund=True,
                        cancelled_reason="full_refund" if is_full else "refund",
                    )
                else:
                    await self.payouts.update_pending(pending.id, {
                        "amount_cents": new_amount,
                        "original_amount_cents": original,
                        "reduced_by_refund": True,
                    })
                await self.sellers.adjust_balances(
                    pending.seller_kind, pending.seller_id, pending_delta=-removed
                )
            except Exception:
                logger.exception("Could not adjust queued payout %s for refund", pending.id)
                continue
            affected += 1
            await self._notify(
                NoticeKind.REFUND_ADJUSTMENT,
                pending.seller_kind,
                pending.seller_id,
                order_id=order.id,
                order_number=order.order_number,
                amount_cents=removed,
                currency=pending.currency,
                original_amount_cents=original,
                is_full_refund=is_full,
                detail="queued payout cancelled" if new_amount <= 0 else "queued payout reduced",
            )

        return affected
