"""Webhook ledger: every verified provider event, recorded once by its event id."""
from datetime import datetime

from sqlmodel import Field, SQLModel

EVENT_PROCESSED = "processed"
EVENT_IGNORED = "ignored"
EVENT_CONFLICT = "conflict"


class PaymentEventLog(SQLModel, table=True):
    __tablename__ = "payment_events"

    id: int | None = Field(default=None, primary_key=True)
    event_id: str = Field(unique=True, index=True, max_length=255)  # evt_...
    event_type: str = Field(index=True, max_length=100)
    order_id: str | None = Field(default=None, index=True, max_length=36)
    payment_reference: str | None = Field(default=None, max_length=255)
    outcome: str = Field(default=EVENT_PROCESSED, max_length=16)  # processed | ignored | conflict
    received_at: datetime = Field(default_factory=datetime.utcnow)
