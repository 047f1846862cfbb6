import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from payout_ledger.db.document_store import DocumentStore
from payout_ledger.models.order import MUSIC_ITEM_TYPES, Order, OrderItem
from payout_ledger.models.seller import SellerKind, seller_collection

logger = logging.getLogger(__name__)

SellerKey = Tuple[str, str]   # (seller_kind, seller_id)


@dataclass(frozen=True)
class ResolvedSeller:
    kind: str
    seller_id: str
    name: str = ""
    email: str = ""

    @property
    def key(self) -> SellerKey:
        return (self.kind, self.seller_id)


@dataclass
class SellerGroup:
    seller: ResolvedSeller
    items: List[OrderItem] = field(default_factory=list)


@dataclass
class ResolutionResult:
    groups: Dict[SellerKey, SellerGroup] = field(default_factory=dict)
    unresolved: List[OrderItem] = field(default_factory=list)

    @property
    def unresolved_subtotal_cents(self) -> int:
        return sum(item.line_total_cents for item in self.unresolved)


def _first(doc: Dict[str, Any], *fields: str) -> Optional[str]:
    for name in fields:
        value = doc.get(name)
        if value:
            return str(value)
    return None


class SellerResolver:
    """
    Maps order line items to the seller who gets paid for them.

    - music items: release record -> submitter
    - merch: merch product -> supplier
    - crate items: explicit seller_id, else crate listing -> seller
    A lookup failure never aborts the order; the item is left unresolved
    and its revenue stays with the platform.
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self._cache: Dict[Tuple[str, str], Optional[Dict[str, Any]]] = {}

    async def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        cache_key = (collection, doc_id)
        if cache_key not in self._cache:
            self._cache[cache_key] = await self.store.get(collection, doc_id)
        return self._cache[cache_key]

    async def _profile(self, kind: SellerKind, seller_id: str) -> Dict[str, Any]:
        try:
            return await self._get(seller_collection(kind), seller_id) or {}
        except Exception:
            logger.exception("Could not load %s profile %s", kind.value, seller_id)
            return {}

    async def _resolve_release(self, item: OrderItem) -> Optional[ResolvedSeller]:
        if not item.product_id:
            return None
        release = await self._get("releases", item.product_id)
        if not release:
            logger.warning("Release not found: %s", item.product_id)
            return None

        seller_id = _first(release, "submitter_id", "uploaded_by", "user_id", "artist_id")
        if not seller_id:
            logger.warning("Release %s has no submitter", item.product_id)
            return None

        profile = await self._profile(SellerKind.ARTIST, seller_id)
        return ResolvedSeller(
            kind=SellerKind.ARTIST.value,
            seller_id=seller_id,
            name=profile.get("name") or release.get("artist_name") or item.artist_name or "Unknown Artist",
            email=profile.get("email") or release.get("submitter_email") or "",
        )

    async def _resolve_merch(self, item: OrderItem) -> Optional[ResolvedSeller]:
        if not item.product_id:
            return None
        product = await self._get("merch_products", item.product_id)
        if not product:
            logger.warning("Merch product not found: %s", item.product_id)
            return None

        seller_id = _first(product, "supplier_id", "seller_id")
        if not seller_id:
            logger.warning("No supplier on merch product %s", item.product_id)
            return None

        profile = await self._profile(SellerKind.SUPPLIER, seller_id)
        return ResolvedSeller(
            kind=SellerKind.SUPPLIER.value,
            seller_id=seller_id,
            name=profile.get("name") or product.get("seller_name") or "Unknown Supplier",
            email=profile.get("email") or "",
        )

    async def _resolve_crate(self, item: OrderItem) -> Optional[ResolvedSeller]:
        seller_id = item.seller_id
        if not seller_id and item.crate_listing_id:
            listing = await self._get("crate_listings", item.crate_listing_id)
            if listing:
                seller_id = _first(listing, "seller_id", "user_id")
            else:
                logger.warning("Crate listing not found: %s", item.crate_listing_id)

        if not seller_id:
            logger.warning("No seller for crate item '%s'", item.title)
            return None

        profile = await self._profile(SellerKind.CRATE_SELLER, seller_id)
        return ResolvedSeller(
            kind=SellerKind.CRATE_SELLER.value,
            seller_id=seller_id,
            name=profile.get("display_name") or profile.get("name") or "Seller",
            email=profile.get("email") or "",
        )

    async def resolve(self, item: OrderItem) -> Optional[ResolvedSeller]:
        """Resolve one item; None means platform revenue."""
        try:
            if item.item_type == "merch":
                return await self._resolve_merch(item)
            if item.item_type == "crate":
                return await self._resolve_crate(item)
            if item.item_type in MUSIC_ITEM_TYPES:
                return await self._resolve_release(item)
        except Exception:
            logger.exception("Seller lookup failed for item '%s' (%s)", item.title, item.item_type)
            return None
        logger.warning("Unknown item type %s", item.item_type)
        return None

    async def resolve_order(self, order: Order) -> ResolutionResult:
        result = ResolutionResult()
        for item in order.items:
            seller = await self.resolve(item)
            if seller is None:
                result.unresolved.append(item)
                continue
            group = result.groups.setdefault(seller.key, SellerGroup(seller=seller))
            group.items.append(item)

        if result.unresolved:
            logger.warning(
                "Order %s: %d item(s) with no resolvable seller (%d cents) kept as platform revenue",
                order.order_number or order.id,
                len(result.unresolved),
                result.unresolved_subtotal_cents
            )
        return result
