from enum import Enum
from typing import Optional

from payout_ledger.models.base import DocumentModel


class SellerKind(str, Enum):
    ARTIST = "artist"
    SUPPLIER = "supplier"
    CRATE_SELLER = "crate_seller"


class ConnectStatus(str, Enum):
    ONBOARDING = "onboarding"
    ACTIVE = "active"
    RESTRICTED = "restricted"


# Each seller kind lives in its own collection
SELLER_COLLECTIONS = {
    SellerKind.ARTIST: "artists",
    SellerKind.SUPPLIER: "suppliers",
    SellerKind.CRATE_SELLER: "users",
}


def seller_collection(kind: SellerKind | str) -> str:
    return SELLER_COLLECTIONS[SellerKind(kind)]


class Seller(DocumentModel):
    kind: Optional[SellerKind] = None
    name: str = ""
    email: str = ""

    connect_account_id: Optional[str] = None
    connect_status: Optional[ConnectStatus] = None

    pending_balance_cents: int = 0
    total_earnings_cents: int = 0

    @property
    def has_active_account(self) -> bool:
        return bool(self.connect_account_id) and self.connect_status == ConnectStatus.ACTIVE
