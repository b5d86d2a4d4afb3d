"""
Order persistence: creation with a price snapshot, owner-scoped reads and
conditional status updates.

transition_status never does read-then-write: the new status is written with
a single UPDATE guarded by the status that was read, so of two concurrent
writers exactly one succeeds.
"""
import logging
import math
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple

from sqlalchemy import update
from sqlmodel import Session, func, select

from app.core.errors import InvalidLineItemsError, InvalidTransitionError, NotFoundError
from app.models import Order, OrderItem, Template
from app.models.order import (
    ALLOWED_TRANSITIONS,
    ORDER_FAILED,
    ORDER_PAID,
    ORDER_PENDING,
    ORDER_STATUSES,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class Page(NamedTuple):
    items: list[Order]
    page: int
    per_page: int
    total: int

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))


def is_free(template: Template) -> bool:
    return bool(template.is_free) or Decimal(template.price or 0) <= 0


def _snapshot_price(template: Template) -> Decimal:
    if is_free(template):
        return Decimal("0.00")
    return Decimal(template.price).quantize(CENT)


def create_order(
    db: Session,
    user_id: str,
    template_ids: Sequence[str],
    currency: str = "sar",
) -> Order:
    """Creates a pending order; each item's price is copied from the template as it is now."""
    ids = [str(t).strip() for t in (template_ids or [])]
    if not ids:
        raise InvalidLineItemsError("Order has no line items.")
    if any(not tid for tid in ids):
        raise InvalidLineItemsError("Blank template id.", detail="Template id is required.")
    if len(set(ids)) != len(ids):
        raise InvalidLineItemsError("Duplicate template ids.", detail="Each template can be ordered once.")

    found = db.exec(select(Template).where(Template.id.in_(ids))).all()
    templates = {t.id: t for t in found}
    unavailable = [tid for tid in ids if tid not in templates or not templates[tid].is_active]
    if unavailable:
        raise InvalidLineItemsError(
            f"Unknown or inactive templates: {unavailable}",
            detail="Template not found or not available: " + ", ".join(unavailable),
        )

    prices = [_snapshot_price(templates[tid]) for tid in ids]
    if not any(prices):
        # Stripe has nothing to charge for an all-free order
        raise InvalidLineItemsError("Order total is zero.", detail="Free templates need no purchase.")
    order = Order(
        user_id=str(user_id),
        total=sum(prices, Decimal("0.00")).quantize(CENT),
        currency=(currency or "sar").lower(),
        status=ORDER_PENDING,
    )
    try:
        db.add(order)
        db.flush()
        for position, (tid, price) in enumerate(zip(ids, prices)):
            template = templates[tid]
            db.add(
                OrderItem(
                    order_id=order.id,
                    position=position,
                    template_id=tid,
                    unit_price=price,
                    template_name=template.name,
                    template_type=template.type,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info(
        "Order created: order_id=%s number=%s user_id=%s total=%s items=%d",
        order.id,
        order.order_number,
        order.user_id,
        order.total,
        len(ids),
    )
    return order


def get_order(db: Session, order_id: str, user_id: str | None = None) -> Order:
    """Another user's order is reported exactly like a missing one."""
    order = db.get(Order, order_id) if order_id else None
    if order is None or (user_id is not None and order.user_id != str(user_id)):
        raise NotFoundError(f"Order {order_id} not found for user {user_id}.", detail="Order not found.")
    return order


def get_items(db: Session, order_id: str) -> list[OrderItem]:
    stmt = select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.position)
    return list(db.exec(stmt).all())


def list_orders(
    db: Session,
    user_id: str | None,
    page: int = 1,
    per_page: int = 10,
    status: str | None = None,
) -> Page:
    """Newest first. user_id=None lists every user's orders (operator view)."""
    page = max(1, int(page or 1))
    per_page = max(1, int(per_page or 10))
    stmt = select(Order)
    count_stmt = select(func.count()).select_from(Order)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == str(user_id))
        count_stmt = count_stmt.where(Order.user_id == str(user_id))
    if status:
        stmt = stmt.where(Order.status == status)
        count_stmt = count_stmt.where(Order.status == status)
    total = db.exec(count_stmt).one()
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * per_page).limit(per_page)
    return Page(items=list(db.exec(stmt).all()), page=page, per_page=per_page, total=int(total or 0))


def transition_status(
    db: Session,
    order_id: str,
    new_status: str,
    payment_reference: str | None = None,
    details: dict | None = None,
    payment_method: str | None = None,
) -> Order:
    """
    Moves the order to new_status if the state machine allows it.

    The write is `UPDATE ... WHERE id = :id AND status = :current`; zero
    affected rows means another request changed the order first and the
    caller gets InvalidTransitionError with the status that won.
    """
    if new_status not in ORDER_STATUSES:
        raise InvalidTransitionError(message=f"Unknown order status {new_status!r}.")
    order = get_order(db, order_id)
    current = order.status
    if new_status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current, new_status)

    now = datetime.utcnow()
    values: dict = {"status": new_status, "updated_at": now}
    if payment_reference and new_status in (ORDER_PAID, ORDER_FAILED):
        values["payment_reference"] = payment_reference
    if payment_method and new_status in (ORDER_PAID, ORDER_FAILED):
        values["payment_method"] = payment_method
    if new_status == ORDER_PAID:
        values["paid_at"] = now
    if details:
        values["payment_details"] = {**(order.payment_details or {}), **details}

    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.connection().execute(stmt)
        if result.rowcount != 1:
            db.rollback()
            latest = db.get(Order, order_id)
            winner = latest.status if latest is not None else current
            logger.info(
                "Lost status race: order_id=%s expected=%s now=%s requested=%s",
                order_id,
                current,
                winner,
                new_status,
            )
            raise InvalidTransitionError(winner, new_status)
        db.commit()
    except InvalidTransitionError:
        raise
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info("Order status changed: order_id=%s %s -> %s", order_id, current, new_status)
    return order
