from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from payout_ledger.models.base import utcnow


class WebhookLog(BaseModel):
    """Audit line for one processed webhook delivery."""

    source: str = "stripe"
    event_type: str
    event_id: Optional[str] = None
    success: bool
    message: str = ""
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    processing_time_ms: Optional[int] = None
    timestamp: datetime = Field(default_factory=utcnow)
