"""
Fee allocation across the sellers of one order.

Policy:
- The processor fee is computed once for the whole order
  (percentage of the item subtotal + fixed charge) and split EQUALLY between
  the N sellers in the order, regardless of how much each one sold.
- The platform fee is a rate on each seller's own items:
  1% music and crate items, 5% merch.
- Shipping attributed to a seller is passed through at 100%.
- Every amount is rounded half-up to the minor unit per seller; the
  platform absorbs any rounding residue.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Hashable, Iterable, Mapping, Optional

from payout_ledger.core.config import Settings, settings as default_settings
from payout_ledger.models.order import MUSIC_ITEM_TYPES, ItemType, OrderItem


def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class SellerAllocation:
    subtotal_cents: int
    shipping_cents: int
    platform_fee_cents: int
    processor_fee_cents: int

    @property
    def total_fees_cents(self) -> int:
        return self.platform_fee_cents + self.processor_fee_cents

    @property
    def gross_total_cents(self) -> int:
        return self.subtotal_cents + self.shipping_cents

    @property
    def seller_net_cents(self) -> int:
        """Item revenue after fees, before shipping."""
        return self.subtotal_cents - self.total_fees_cents

    @property
    def net_revenue_cents(self) -> int:
        return self.gross_total_cents - self.total_fees_cents


class FeeAllocator:
    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        self.processing_percent = Decimal(config.PROCESSING_FEE_PERCENT)
        self.processing_fixed_cents = config.PROCESSING_FEE_FIXED_CENTS
        self.rates = {
            "music": Decimal(config.PLATFORM_FEE_MUSIC),
            "crate": Decimal(config.PLATFORM_FEE_CRATE),
            "merch": Decimal(config.PLATFORM_FEE_MERCH),
        }

    def platform_fee_rate(self, item_type: ItemType | str) -> Decimal:
        item_type = ItemType(item_type).value
        if item_type == "merch":
            return self.rates["merch"]
        if item_type == "crate":
            return self.rates["crate"]
        if item_type in MUSIC_ITEM_TYPES:
            return self.rates["music"]
        raise ValueError(f"No platform fee rate for item type: {item_type}")

    def order_processing_fee(self, subtotal_cents: int) -> int:
        """Processor fee for the whole order: percentage + fixed charge."""
        if subtotal_cents <= 0:
            return 0
        fee = Decimal(subtotal_cents) * self.processing_percent + self.processing_fixed_cents
        return round_cents(fee)

    def allocate(
        self,
        groups: Mapping[Hashable, Iterable[OrderItem]],
        total_processing_fee_cents: int,
        shipping_by_seller: Optional[Mapping[Hashable, int]] = None,
    ) -> Dict[Hashable, SellerAllocation]:
        """
        Split fees across seller groups.

        groups maps a seller key to that seller's items. An empty mapping
        (no resolvable seller) allocates nothing.
        """
        shipping_by_seller = shipping_by_seller or {}
        seller_count = len(groups)
        if seller_count == 0:
            return {}

        processing_share = round_cents(Decimal(total_processing_fee_cents) / seller_count)

        allocations: Dict[Hashable, SellerAllocation] = {}
        for key, items in groups.items():
            subtotal = 0
            platform_fee = Decimal(0)
            for item in items:
                subtotal += item.line_total_cents
                platform_fee += Decimal(item.line_total_cents) * self.platform_fee_rate(item.item_type)

            allocations[key] = SellerAllocation(
                subtotal_cents=subtotal,
                shipping_cents=max(0, int(shipping_by_seller.get(key, 0))),
                platform_fee_cents=round_cents(platform_fee),
                processor_fee_cents=processing_share,
            )
        return allocations
