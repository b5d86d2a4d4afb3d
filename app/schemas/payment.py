from pydantic import BaseModel, Field


class CreateIntentRequest(BaseModel):
    """Payment intent for an existing pending order; the amount comes from the order."""
    order_id: str = Field(min_length=1, max_length=36)


class CreateIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    amount: str  # major units, 2dp
    currency: str


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool = False
    duplicate: bool = False
    conflict: bool = False
    event_type: str | None = None
