import asyncio
import logging
from typing import Collection, Dict, List, Optional, Tuple

from payout_ledger.core.config import Settings, settings as default_settings
from payout_ledger.core.errors import SettlementAlreadyRecorded
from payout_ledger.db.document_store import DocumentStore
from payout_ledger.models.base import utcnow
from payout_ledger.models.ledger import FeeBreakdown, LedgerEntry, LedgerItem
from payout_ledger.models.order import Order
from payout_ledger.models.payout import PendingPayout
from payout_ledger.models.seller import SellerKind
from payout_ledger.repositories.ledger_repo import LedgerRepository
from payout_ledger.repositories.payout_repo import PayoutRepository
from payout_ledger.repositories.seller_repo import SellerRepository
from payout_ledger.schemas.settlement import FailedSeller, SettlementResult
from payout_ledger.services.fee_allocator import FeeAllocator, SellerAllocation
from payout_ledger.services.seller_resolver import SellerGroup, SellerKey, SellerResolver

logger = logging.getLogger(__name__)


class SettlementService:
    """
    Records one paid order as per-seller ledger entries and queued payouts.

    Duplicate-order detection is the caller's job; every call appends.
    Each seller's writes are independent: a failure for one seller is
    reported in failed_sellers and never rolls back the others.
    """

    def __init__(
        self,
        store: DocumentStore,
        allocator: Optional[FeeAllocator] = None,
        resolver: Optional[SellerResolver] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.allocator = allocator or FeeAllocator(self.config)
        self.resolver = resolver or SellerResolver(store)
        self.ledger = LedgerRepository(store)
        self.payouts = PayoutRepository(store)
        self.sellers = SellerRepository(store)

    def _processing_fee(self, order: Order) -> int:
        if order.processor_fee_cents is not None:
            return order.processor_fee_cents
        return self.allocator.order_processing_fee(order.item_total_cents)

    @staticmethod
    def _shipping_for(order: Order, groups: Dict[SellerKey, SellerGroup]) -> Dict[SellerKey, int]:
        """Only artists who ship their own stock are owed shipping."""
        shipping = {}
        for key in groups:
            kind, seller_id = key
            if kind == SellerKind.ARTIST.value and seller_id in order.artist_shipping:
                shipping[key] = order.artist_shipping[seller_id]
        return shipping

    async def _record_seller(
        self,
        order: Order,
        group: SellerGroup,
        allocation: SellerAllocation,
    ) -> Tuple[str, Optional[str]]:
        seller = group.seller
        items = group.items
        payout_amount = allocation.net_revenue_cents

        entry = LedgerEntry(
            order_id=order.id,
            order_number=order.order_number,
            timestamp=utcnow(),
            customer_id=order.customer_id,
            customer_email=order.customer_email,
            seller_id=seller.seller_id,
            seller_kind=seller.kind,
            seller_name=seller.name,
            seller_email=seller.email,
            subtotal_cents=allocation.subtotal_cents,
            shipping_cents=allocation.shipping_cents,
            gross_total_cents=allocation.gross_total_cents,
            fees=FeeBreakdown(
                processor_fee_cents=allocation.processor_fee_cents,
                platform_fee_cents=allocation.platform_fee_cents,
                total_fees_cents=allocation.total_fees_cents,
            ),
            net_revenue_cents=allocation.net_revenue_cents,
            payout_amount_cents=payout_amount,
            payment_method=order.payment_method,
            payment_id=order.payment_id,
            currency=order.currency,
            item_count=sum(item.quantity for item in items),
            has_physical=any(item.is_physical for item in items),
            has_digital=any(item.is_digital for item in items),
            items=[
                LedgerItem(
                    item_type=item.item_type,
                    id=item.product_id or item.crate_listing_id or "",
                    title=item.title or "Unknown",
                    artist=item.artist_name,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    line_total_cents=item.line_total_cents,
                )
                for item in items
            ],
        )
        entry_id = await self.ledger.add_entry(entry)

        if payout_amount <= 0:
            logger.warning(
                "Order %s: %s %s nets %d cents after fees, no payout queued",
                order.order_number, seller.kind, seller.seller_id, payout_amount
            )
            return entry_id, None

        pending = PendingPayout(
            seller_id=seller.seller_id,
            seller_kind=seller.kind,
            seller_name=seller.name,
            seller_email=seller.email,
            order_id=order.id,
            order_number=order.order_number,
            amount_cents=payout_amount,
            item_amount_cents=allocation.seller_net_cents,
            shipping_cents=allocation.shipping_cents,
            currency=order.currency,
        )
        pending_id = await self.payouts.create_pending(pending)
        await self.sellers.adjust_balances(seller.kind, seller.seller_id, pending_delta=payout_amount)

        logger.info(
            "Order %s: recorded %d cents for %s %s (%s)",
            order.order_number, payout_amount, seller.kind, seller.seller_id, seller.name
        )
        return entry_id, pending_id

    async def record_sale(
        self,
        order: Order,
        only: Optional[Collection[SellerKey]] = None,
    ) -> SettlementResult:
        """
        Write ledger entries and pending payouts for every seller in the order.

        `only` limits the writes to the given (seller_kind, seller_id) keys,
        for re-running sellers that failed on an earlier attempt. Fees are
        still allocated across all sellers of the order.
        """
        try:
            resolution = await self.resolver.resolve_order(order)
            groups = resolution.groups
            allocations = self.allocator.allocate(
                {key: group.items for key, group in groups.items()},
                self._processing_fee(order),
                self._shipping_for(order, groups),
            )
        except Exception as e:
            logger.exception("Order %s: could not group sellers", order.order_number or order.id)
            return SettlementResult(success=False, error=str(e))

        result = SettlementResult(
            success=True,
            unresolved_subtotal_cents=resolution.unresolved_subtotal_cents
        )
        if not groups:
            logger.info(
                "Order %s: no resolvable sellers, %d cents kept as platform revenue",
                order.order_number or order.id, order.item_total_cents
            )
            return result

        keys: List[SellerKey] = [key for key in groups if only is None or key in only]
        outcomes = await asyncio.gather(
            *(self._record_seller(order, groups[key], allocations[key]) for key in keys),
            return_exceptions=True
        )

        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Order %s: settlement failed for %s %s: %s",
                    order.order_number, key[0], key[1], outcome,
                    exc_info=outcome
                )
                result.failed_sellers.append(
                    FailedSeller(seller_kind=key[0], seller_id=key[1], error=str(outcome))
                )
                continue
            entry_id, pending_id = outcome
            result.ledger_entry_ids.append(entry_id)
            if pending_id:
                result.pending_payout_ids.append(pending_id)

        if result.failed_sellers:
            result.success = False
            result.error = f"{len(result.failed_sellers)} seller(s) failed to record"
        return result

    async def rerun_seller(self, order: Order, seller_kind: str, seller_id: str) -> SettlementResult:
        """
        Record one seller of an order whose earlier settlement write failed.

        Raises SettlementAlreadyRecorded if that seller already has a
        ledger entry for the order, so a repeated re-run cannot pay twice.
        """
        for entry in await self.ledger.list_for_order(order.id):
            if entry.seller_kind == seller_kind and entry.seller_id == seller_id:
                raise SettlementAlreadyRecorded(order.id, seller_kind, seller_id)
        return await self.record_sale(order, only={(seller_kind, seller_id)})
