"""
Seller notifications for money movements: a completed payout, a refund
that reduced or reversed earnings, and dispute reversals and returns.

Delivery is pluggable through the SellerNotifier protocol. A failed
notification is logged and never affects the money movement it reports.
"""

import logging
from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class NoticeKind(str, Enum):
    PAYOUT_COMPLETED = "payout_completed"
    REFUND_ADJUSTMENT = "refund_adjustment"
    DISPUTE_REVERSAL = "dispute_reversal"
    DISPUTE_RETRANSFER = "dispute_retransfer"


class SellerNotice(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    kind: NoticeKind
    seller_kind: str
    seller_id: str
    seller_name: str = ""
    seller_email: str = ""

    order_id: Optional[str] = None
    order_number: Optional[str] = None
    amount_cents: int
    currency: str = "gbp"

    # Refund adjustments: what the seller was due before, and whether the order is fully refunded
    original_amount_cents: Optional[int] = None
    is_full_refund: Optional[bool] = None

    transfer_id: Optional[str] = None
    dispute_id: Optional[str] = None
    detail: Optional[str] = None


class SellerNotifier(Protocol):
    async def notify(self, notice: SellerNotice) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes each notice to the application log."""

    async def notify(self, notice: SellerNotice) -> None:
        if not notice.seller_email:
            logger.info(
                "No email for %s %s, skipping %s notice",
                notice.seller_kind, notice.seller_id, notice.kind
            )
            return
        logger.info(
            "Notice %s to %s <%s>: %d %s on order %s",
            notice.kind, notice.seller_name or notice.seller_id, notice.seller_email,
            notice.amount_cents, notice.currency, notice.order_number or notice.order_id
        )


async def send_notice(notifier: SellerNotifier, notice: SellerNotice) -> None:
    try:
        await notifier.notify(notice)
    except Exception:
        logger.exception(
            "Could not send %s notice to %s %s",
            notice.kind, notice.seller_kind, notice.seller_id
        )
