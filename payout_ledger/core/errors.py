"""Exceptions raised by the settlement and payout core."""


class LedgerError(Exception):
    """Base class for settlement/payout errors."""
    pass


class DocumentNotFound(LedgerError):
    """A document the operation depends on does not exist."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class InvalidPayoutTransition(LedgerError):
    """A pending payout was asked to move to a state it cannot reach."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move pending payout from '{current}' to '{target}'")


class ProcessorError(LedgerError):
    """The payment processor rejected or failed a call."""
    pass


class WebhookSignatureError(LedgerError):
    """Inbound webhook failed signature verification."""
    pass


class SettlementAlreadyRecorded(LedgerError):
    """A seller of an order already has a ledger entry."""

    def __init__(self, order_id: str, seller_kind: str, seller_id: str):
        self.order_id = order_id
        self.seller_kind = seller_kind
        self.seller_id = seller_id
        super().__init__(f"Order {order_id} is already recorded for {seller_kind} {seller_id}")
