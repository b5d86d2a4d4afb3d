from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_serializer

from app.models import Order, OrderItem


class OrderItemIn(BaseModel):
    template_id: str = Field(min_length=1, max_length=36)


class CreateOrderRequest(BaseModel):
    """Checkout: template ids only. Prices are always taken from the catalogue."""
    items: list[OrderItemIn]


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class OrderItemResponse(BaseModel):
    template_id: str
    template_name: str
    template_type: str
    unit_price: Decimal

    @field_serializer("unit_price")
    def serialize_unit_price(self, v: Decimal) -> str:
        return f"{v:.2f}"


class OrderResponse(BaseModel):
    id: str
    order_number: str
    user_id: str
    status: str
    total: Decimal
    currency: str
    payment_reference: str | None = None
    payment_method: str | None = None
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    items_count: int = 0
    items: list[OrderItemResponse] = []

    @field_serializer("total")
    def serialize_total(self, v: Decimal) -> str:
        return f"{v:.2f}"

    @classmethod
    def from_order(cls, order: Order, items: list[OrderItem]) -> "OrderResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            status=order.status,
            total=order.total,
            currency=(order.currency or "").upper(),
            payment_reference=order.payment_reference,
            payment_method=order.payment_method,
            paid_at=order.paid_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
            items_count=len(items),
            items=[
                OrderItemResponse(
                    template_id=i.template_id,
                    template_name=i.template_name,
                    template_type=i.template_type,
                    unit_price=i.unit_price,
                )
                for i in items
            ],
        )


class AdminOrderResponse(OrderResponse):
    """Operator view: adds the gateway/audit details."""
    payment_details: dict | None = None


class PageMeta(BaseModel):
    current_page: int
    last_page: int
    per_page: int
    total: int


class OrderListResponse(BaseModel):
    data: list[OrderResponse]
    meta: PageMeta


class AdminOrderListResponse(BaseModel):
    data: list[AdminOrderResponse]
    meta: PageMeta


class LibraryItemResponse(BaseModel):
    template_id: str
    template_name: str
    template_type: str
    order_id: str
    purchased_at: datetime | None = None


class TemplateAccessResponse(BaseModel):
    template_id: str
    has_access: bool
    reason: str  # free | purchased | payment_required
