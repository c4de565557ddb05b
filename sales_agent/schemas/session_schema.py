"""Read models returned by the session store."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SessionInfo(BaseModel):
    """A conversation session as seen by the orchestrator."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_phone: Optional[str] = None
    remote_jid: Optional[str] = None
    is_blocked: bool = False
    expires_at: datetime


class ProductExposure(BaseModel):
    """How often a product was shown within one session."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    product_id: str
    sent_count: int
    last_sent_at: datetime


class CustomerMemoryRecord(BaseModel):
    """Durable free-text summary about a customer, keyed by phone."""

    model_config = ConfigDict(from_attributes=True)

    customer_phone: str
    summary: str
    expires_at: datetime
