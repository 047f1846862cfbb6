"""
Webhook event variants handed from the boundary adapter to the core.

Each variant carries only the fields its handler needs and is validated
before routing, so handlers never see a partial payload.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class EventType(str, Enum):
    PAYMENT_COMPLETED = "payment_completed"
    DISPUTE_CREATED = "dispute_created"
    DISPUTE_CLOSED = "dispute_closed"
    CHARGE_REFUNDED = "charge_refunded"
    ACCOUNT_UPDATED = "account_updated"


class BaseEvent(BaseModel):
    event_id: Optional[str] = None
    source_type: str = ""      # processor's own event name, for the audit log


class PaymentCompleted(BaseEvent):
    type: Literal["payment_completed"] = "payment_completed"
    order_id: str
    payment_id: Optional[str] = None


class DisputeCreated(BaseEvent):
    type: Literal["dispute_created"] = "dispute_created"
    dispute_id: str
    charge_id: str
    payment_id: Optional[str] = None
    transfer_group: Optional[str] = None
    amount_cents: int = Field(ge=0)
    currency: str = "gbp"
    reason: str = ""
    evidence_due_by: Optional[datetime] = None


class DisputeClosed(BaseEvent):
    type: Literal["dispute_closed"] = "dispute_closed"
    dispute_id: str
    status: str          # processor status; only "won" counts as won


class ChargeRefunded(BaseEvent):
    type: Literal["charge_refunded"] = "charge_refunded"
    charge_id: str
    payment_id: Optional[str] = None
    amount_cents: int = Field(gt=0)
    amount_refunded_cents: int = Field(ge=0)   # cumulative to date


class AccountUpdated(BaseEvent):
    type: Literal["account_updated"] = "account_updated"
    account_id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    disabled_reason: Optional[str] = None
    seller_kind: Optional[str] = None
    seller_id: Optional[str] = None


WebhookEvent = Annotated[
    Union[PaymentCompleted, DisputeCreated, DisputeClosed, ChargeRefunded, AccountUpdated],
    Field(discriminator="type"),
]


class RouteResult(BaseModel):
    event_type: str
    handled: bool
    message: str = ""
