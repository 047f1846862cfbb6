"""
Order model - consumed read-only by the settlement core.

Created upstream by order creation; only the settlement/refund status
fields are written here. All amounts in integer minor units.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from payout_ledger.models.base import DocumentModel


class ItemType(str, Enum):
    RELEASE = "release"
    TRACK = "track"
    DIGITAL = "digital"
    VINYL = "vinyl"
    MERCH = "merch"
    CRATE = "crate"


MUSIC_ITEM_TYPES = {"release", "track", "digital", "vinyl"}
PHYSICAL_ITEM_TYPES = {"vinyl", "merch", "crate"}


class SettlementStatus(str, Enum):
    RECORDED = "recorded"


class RefundStatus(str, Enum):
    PARTIALLY_REFUNDED = "partially_refunded"
    FULLY_REFUNDED = "fully_refunded"


class OrderItem(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    item_type: ItemType
    product_id: Optional[str] = None        # release id or merch product id
    seller_id: Optional[str] = None         # explicit seller on crate items
    crate_listing_id: Optional[str] = None
    title: str = ""
    artist_name: Optional[str] = None
    unit_price_cents: int
    quantity: int = 1

    @field_validator("item_type", mode="before")
    @classmethod
    def _normalise_type(cls, value):
        if value == "vinyl-crate":
            return ItemType.CRATE
        return value

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    @property
    def is_physical(self) -> bool:
        return self.item_type in PHYSICAL_ITEM_TYPES

    @property
    def is_digital(self) -> bool:
        return not self.is_physical


class Order(DocumentModel):
    order_number: str = ""
    customer_id: Optional[str] = None
    customer_email: str = ""

    items: List[OrderItem] = []

    shipping_cents: int = 0
    artist_shipping: Dict[str, int] = Field(default_factory=dict)  # artist_id -> shipping they are owed
    total_cents: int = 0
    currency: str = "gbp"

    payment_method: str = "stripe"
    payment_id: Optional[str] = None
    processor_fee_cents: Optional[int] = None

    settlement_status: Optional[SettlementStatus] = None
    cumulative_refunded_cents: int = 0
    refund_status: Optional[RefundStatus] = None

    @property
    def item_total_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)
