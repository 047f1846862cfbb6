import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from payout_ledger.api.v1.deps import get_event_router
from payout_ledger.core.config import settings
from payout_ledger.core.errors import WebhookSignatureError
from payout_ledger.core.security import check_signature
from payout_ledger.services.event_router import EventRouter
from payout_ledger.services.stripe_events import parse_stripe_event

logger = logging.getLogger(__name__)

router = APIRouter()


async def _receive(request: Request, secret: str, source: str, event_router: EventRouter) -> dict:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        check_signature(payload, signature, secret)
    except WebhookSignatureError as e:
        logger.warning("Rejected %s webhook: %s", source, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    try:
        event = parse_stripe_event(json.loads(payload))
    except (ValueError, ValidationError) as e:
        logger.warning("Malformed %s webhook payload: %s", source, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed payload")

    if event is None:
        return {"received": True}

    event_router.source = source
    result = await event_router.route(event)
    logger.info("%s webhook %s: %s", source, event.source_type, result.message)
    return {"received": True}


@router.post("/stripe")
async def stripe_webhook(request: Request, event_router: EventRouter = Depends(get_event_router)):
    """Payment, dispute and refund events from the platform account"""
    return await _receive(request, settings.STRIPE_WEBHOOK_SECRET, "stripe", event_router)


@router.post("/stripe/connect")
async def stripe_connect_webhook(request: Request, event_router: EventRouter = Depends(get_event_router)):
    """Connected-account events (account.updated)"""
    return await _receive(request, settings.STRIPE_CONNECT_WEBHOOK_SECRET, "stripe_connect", event_router)
