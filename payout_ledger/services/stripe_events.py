"""
Translate raw Stripe event JSON into validated webhook event variants.

Only the event types the ledger acts on are mapped; anything else parses
to None and is acknowledged without further work.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import TypeAdapter

from payout_ledger.models.seller import SellerKind
from payout_ledger.schemas.events import WebhookEvent

logger = logging.getLogger(__name__)

_event_adapter = TypeAdapter(WebhookEvent)


def _checkout_completed(obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if obj.get("payment_status") not in (None, "paid", "no_payment_required"):
        logger.info("Checkout session %s not paid yet (%s)", obj.get("id"), obj.get("payment_status"))
        return None
    metadata = obj.get("metadata") or {}
    order_id = metadata.get("order_id") or obj.get("client_reference_id")
    if not order_id:
        return None
    return {
        "type": "payment_completed",
        "order_id": order_id,
        "payment_id": obj.get("payment_intent") or obj.get("id"),
    }


def _payment_intent_succeeded(obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    order_id = (obj.get("metadata") or {}).get("order_id")
    if not order_id:
        return None
    return {"type": "payment_completed", "order_id": order_id, "payment_id": obj.get("id")}


def _dispute_created(obj: Dict[str, Any]) -> Dict[str, Any]:
    due_by = (obj.get("evidence_details") or {}).get("due_by")
    return {
        "type": "dispute_created",
        "dispute_id": obj.get("id"),
        "charge_id": obj.get("charge"),
        "payment_id": obj.get("payment_intent"),
        "transfer_group": (obj.get("metadata") or {}).get("transfer_group"),
        "amount_cents": obj.get("amount"),
        "currency": obj.get("currency") or "gbp",
        "reason": obj.get("reason") or "",
        "evidence_due_by": datetime.fromtimestamp(due_by, tz=timezone.utc) if due_by else None,
    }


def _dispute_closed(obj: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "dispute_closed", "dispute_id": obj.get("id"), "status": obj.get("status")}


def _charge_refunded(obj: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "charge_refunded",
        "charge_id": obj.get("id"),
        "payment_id": obj.get("payment_intent"),
        "amount_cents": obj.get("amount"),
        "amount_refunded_cents": obj.get("amount_refunded"),
    }


def _account_updated(obj: Dict[str, Any]) -> Dict[str, Any]:
    metadata = obj.get("metadata") or {}
    seller_kind = metadata.get("seller_kind")
    seller_id = metadata.get("seller_id")
    if not seller_id and metadata.get("artist_id"):
        seller_kind, seller_id = SellerKind.ARTIST.value, metadata["artist_id"]
    return {
        "type": "account_updated",
        "account_id": obj.get("id"),
        "charges_enabled": bool(obj.get("charges_enabled")),
        "payouts_enabled": bool(obj.get("payouts_enabled")),
        "disabled_reason": (obj.get("requirements") or {}).get("disabled_reason"),
        "seller_kind": seller_kind,
        "seller_id": seller_id,
    }


STRIPE_EVENT_MAPPERS: Dict[str, Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]] = {
    "checkout.session.completed": _checkout_completed,
    "payment_intent.succeeded": _payment_intent_succeeded,
    "charge.dispute.created": _dispute_created,
    "charge.dispute.closed": _dispute_closed,
    "charge.refunded": _charge_refunded,
    "account.updated": _account_updated,
}


def parse_stripe_event(payload: Dict[str, Any]) -> Optional[WebhookEvent]:
    """
    Map a Stripe event to a webhook event variant.

    Returns None for event types the ledger ignores. Raises
    pydantic.ValidationError when a handled type is missing required data,
    and ValueError when the payload is not a JSON object.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"Event payload must be an object, got {type(payload).__name__}")

    event_type = payload.get("type")
    mapper = STRIPE_EVENT_MAPPERS.get(event_type)
    if mapper is None:
        logger.debug("Ignoring Stripe event type %s", event_type)
        return None

    data = payload.get("data") or {}
    obj = (data.get("object") if isinstance(data, dict) else None) or {}
    if not isinstance(obj, dict):
        raise ValueError(f"{event_type} data.object must be an object")
    fields = mapper(obj)
    if fields is None:
        return None

    fields["event_id"] = payload.get("id")
    fields["source_type"] = event_type
    return _event_adapter.validate_python(fields)
