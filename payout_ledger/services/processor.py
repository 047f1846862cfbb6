"""
Payment processor port and its Stripe Connect implementation.

The core only ever talks to PaymentProcessor; StripeProcessor is the
production adapter. Stripe's SDK is synchronous, so every call runs in a
worker thread and SDK errors surface as ProcessorError.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import stripe

from payout_ledger.core.errors import ProcessorError

logger = logging.getLogger(__name__)


@dataclass
class Transfer:
    id: str
    amount_cents: int
    amount_reversed_cents: int = 0
    destination: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def remaining_cents(self) -> int:
        return max(0, self.amount_cents - self.amount_reversed_cents)

    @property
    def reversed(self) -> bool:
        return self.remaining_cents == 0


@dataclass
class TransferReversal:
    id: str
    amount_cents: int


class PaymentProcessor(Protocol):
    async def create_transfer(
        self,
        destination: str,
        amount_cents: int,
        currency: str,
        group: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        ...

    async def reverse_transfer(
        self,
        transfer_id: str,
        amount_cents: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> TransferReversal:
        ...

    async def get_transfer(self, transfer_id: str) -> Transfer:
        ...

    async def list_transfers(self, group: str) -> List[Transfer]:
        ...


def _to_transfer(obj: Any) -> Transfer:
    return Transfer(
        id=obj["id"],
        amount_cents=int(obj["amount"]),
        amount_reversed_cents=int(obj.get("amount_reversed") or 0),
        destination=obj.get("destination"),
        metadata=dict(obj.get("metadata") or {}),
    )


class StripeProcessor:
    """PaymentProcessor backed by Stripe Connect transfers."""

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def _call(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error("Stripe call %s failed: %s", getattr(fn, "__name__", fn), e)
            raise ProcessorError(str(e)) from e

    async def create_transfer(
        self,
        destination: str,
        amount_cents: int,
        currency: str,
        group: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> str:
        kwargs: Dict[str, Any] = {
            "amount": int(amount_cents),
            "currency": currency.lower(),
            "destination": destination,
            "metadata": {k: str(v) for k, v in (metadata or {}).items()},
        }
        if group:
            kwargs["transfer_group"] = group
        if idempotency_key:
            kwargs["idempotency_key"] = idempotency_key

        transfer = await self._call(stripe.Transfer.create, **kwargs)
        logger.info("Transfer %s created: %d %s -> %s", transfer["id"], amount_cents, currency, destination)
        return transfer["id"]

    async def reverse_transfer(
        self,
        transfer_id: str,
        amount_cents: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> TransferReversal:
        kwargs: Dict[str, Any] = {"metadata": {k: str(v) for k, v in (metadata or {}).items()}}
        if amount_cents is not None:
            kwargs["amount"] = int(amount_cents)

        reversal = await self._call(stripe.Transfer.create_reversal, transfer_id, **kwargs)
        return TransferReversal(id=reversal["id"], amount_cents=int(reversal["amount"]))

    async def get_transfer(self, transfer_id: str) -> Transfer:
        obj = await self._call(stripe.Transfer.retrieve, transfer_id)
        return _to_transfer(obj)

    async def list_transfers(self, group: str) -> List[Transfer]:
        result = await self._call(stripe.Transfer.list, transfer_group=group, limit=100)
        return [_to_transfer(obj) for obj in result["data"]]
