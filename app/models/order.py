import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

ORDER_PENDING = "pending"
ORDER_PAID = "paid"
ORDER_FAILED = "failed"
ORDER_CANCELLED = "cancelled"

ORDER_STATUSES = (ORDER_PENDING, ORDER_PAID, ORDER_FAILED, ORDER_CANCELLED)
TERMINAL_STATUSES = frozenset({ORDER_PAID, ORDER_FAILED, ORDER_CANCELLED})

# Forward-only: pending is the sole state with exits
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    ORDER_PENDING: frozenset({ORDER_PAID, ORDER_FAILED, ORDER_CANCELLED}),
    ORDER_PAID: frozenset(),
    ORDER_FAILED: frozenset(),
    ORDER_CANCELLED: frozenset(),
}


def new_order_number(now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    return f"ORD-{now.year}-{uuid.uuid4().hex[:12].upper()}"


class Order(SQLModel, table=True):
    """Checkout record. Financial record: never deleted, total fixed at creation."""

    __tablename__ = "orders"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    order_number: str = Field(default_factory=new_order_number, unique=True, index=True, max_length=50)
    user_id: str = Field(index=True, max_length=64)
    total: Decimal = Field(max_digits=12, decimal_places=2)
    currency: str = Field(default="sar", max_length=3)
    status: str = Field(default=ORDER_PENDING, index=True, max_length=16)  # pending | paid | failed | cancelled
    payment_reference: str | None = Field(default=None, index=True, max_length=255)  # Stripe PaymentIntent id
    payment_method: str | None = Field(default=None, max_length=16)  # "stripe"
    payment_details: dict | None = Field(default=None, sa_column=Column(JSON))
    paid_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class OrderItem(SQLModel, table=True):
    """Line item: template reference plus its price/name at checkout time."""

    __tablename__ = "order_items"
    __table_args__ = (UniqueConstraint("order_id", "template_id", name="order_items_unique_template"),)

    id: int | None = Field(default=None, primary_key=True)
    order_id: str = Field(foreign_key="orders.id", index=True, max_length=36)
    position: int = 0
    template_id: str = Field(index=True, max_length=36)
    unit_price: Decimal = Field(max_digits=10, decimal_places=2)
    template_name: str = ""
    template_type: str = ""
