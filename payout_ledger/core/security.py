import logging
import secrets

import stripe
from fastapi import Header, HTTPException, status

from payout_ledger.core.config import settings
from payout_ledger.core.errors import WebhookSignatureError

logger = logging.getLogger(__name__)


def check_signature(
    payload: bytes | str,
    signature_header: str | None,
    secret: str,
    tolerance: int | None = None,
) -> None:
    """
    Verify a processor webhook signature.

    Raises WebhookSignatureError for missing headers, bodies that are not
    UTF-8, bad HMACs and deliveries whose timestamp is outside the
    tolerance window (5 minutes by default).
    """
    if not signature_header or not secret:
        raise WebhookSignatureError("Missing signature header or secret")

    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise WebhookSignatureError(f"Payload is not UTF-8: {exc}") from exc

    if tolerance is None:
        tolerance = settings.WEBHOOK_TOLERANCE_SECONDS

    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError(str(exc)) from exc


def verify_signature(
    payload: bytes | str,
    signature_header: str | None,
    secret: str,
    tolerance: int | None = None,
) -> bool:
    try:
        check_signature(payload, signature_header, secret, tolerance)
    except WebhookSignatureError as exc:
        logger.warning("Webhook signature rejected: %s", exc)
        return False
    return True


async def require_admin_key(x_admin_key: str | None = Header(default=None)) -> None:
    """Guard operator endpoints with the shared admin key."""
    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key"
        )
