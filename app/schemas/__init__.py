from .order import (
    AdminOrderListResponse,
    AdminOrderResponse,
    CancelOrderRequest,
    CreateOrderRequest,
    LibraryItemResponse,
    OrderListResponse,
    OrderResponse,
    PageMeta,
    TemplateAccessResponse,
)
from .payment import CreateIntentRequest, CreateIntentResponse, WebhookAck

__all__ = [
    "AdminOrderListResponse",
    "AdminOrderResponse",
    "CancelOrderRequest",
    "CreateIntentRequest",
    "CreateIntentResponse",
    "CreateOrderRequest",
    "LibraryItemResponse",
    "OrderListResponse",
    "OrderResponse",
    "PageMeta",
    "TemplateAccessResponse",
    "WebhookAck",
]
