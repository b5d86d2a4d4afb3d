from fastapi import APIRouter, Depends, Query, Request
from sqlmodel import Session

from app.api.deps import get_current_user_id
from app.core.config import settings
from app.core.database import get_db
from app.core.rate_limit import limiter, write_rate_limit
from app.models import Order
from app.schemas import CancelOrderRequest, CreateOrderRequest, OrderListResponse, OrderResponse, PageMeta
from app.services import order_store, purchase

router = APIRouter(prefix="/orders", tags=["orders"])


def order_response(db: Session, order: Order) -> OrderResponse:
    return OrderResponse.from_order(order, order_store.get_items(db, order.id))


def page_size(per_page: int | None) -> int:
    return min(per_page or settings.orders_per_page, settings.orders_max_per_page)


@router.post("", response_model=OrderResponse, status_code=201)
@limiter.limit(write_rate_limit)
def create_order(
    request: Request,
    body: CreateOrderRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Checkout: pending order with the templates' current prices."""
    order = purchase.checkout(db, user_id, [item.template_id for item in body.items])
    return order_response(db, order)


@router.get("", response_model=OrderListResponse)
def list_orders(
    page: int = Query(1, ge=1),
    per_page: int | None = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    result = order_store.list_orders(db, user_id, page, page_size(per_page))
    return OrderListResponse(
        data=[order_response(db, o) for o in result.items],
        meta=PageMeta(
            current_page=result.page,
            last_page=result.last_page,
            per_page=result.per_page,
            total=result.total,
        ),
    )


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return order_response(db, order_store.get_order(db, order_id, user_id))


@router.post("/{order_id}/cancel", response_model=OrderResponse)
@limiter.limit(write_rate_limit)
def cancel_order(
    request: Request,
    order_id: str,
    body: CancelOrderRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Abandoned checkout: only a pending order can be cancelled."""
    order = purchase.cancel_order(db, order_id, user_id=user_id, reason=body.reason if body else None)
    return order_response(db, order)
