"""
Purchase workflow: the only code that changes an order's status.

Gateway callbacks arrive at least once and in any order relative to a user
cancel, so every externally triggered step checks the current status first
and is safe to repeat:
- complete_payment: pending -> paid; already paid with the same reference is
  a no-op; any other terminal state is a conflict for operator review.
- handle_payment_failure: pending -> failed; terminal states are left alone
  (a paid order is never downgraded).
"""
import logging
from datetime import datetime
from typing import NamedTuple, NoReturn

from sqlmodel import Session, select

from app.core.config import settings
from app.core.errors import ConflictError, InvalidTransitionError, NotFoundError
from app.models import AuditLog, Order, OrderItem, Template
from app.models.order import ORDER_CANCELLED, ORDER_FAILED, ORDER_PAID, ORDER_PENDING
from app.services import order_store
from app.services.payment_gateway import PaymentGateway, PaymentIntent

logger = logging.getLogger(__name__)

PAYMENT_METHOD_STRIPE = "stripe"


class LibraryItem(NamedTuple):
    template_id: str
    template_name: str
    template_type: str
    order_id: str
    purchased_at: datetime | None


def _audit(db: Session, event: str, order: Order, detail: str | None = None) -> None:
    try:
        db.add(AuditLog(event=event, order_id=order.id, user_id=order.user_id, detail=detail[:2000] if detail else None))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning("AuditLog write failed: event=%s order_id=%s error=%s", event, order.id, e)


def checkout(db: Session, user_id: str, template_ids: list[str], currency: str | None = None) -> Order:
    return order_store.create_order(db, user_id, template_ids, currency or settings.stripe_currency)


def prepare_payment(
    db: Session,
    gateway: PaymentGateway,
    order_id: str,
    user_id: str,
    attempt_id: str | None = None,
) -> PaymentIntent:
    """Payment intent for the caller's own pending order. Nothing local changes here."""
    order = order_store.get_order(db, order_id, user_id)
    if order.status != ORDER_PENDING:
        raise InvalidTransitionError(
            order.status,
            ORDER_PAID,
            message="Order is already paid or closed.",
        )
    return gateway.create_intent(order, attempt_id)


def _raise_conflict(db: Session, order: Order, payment_reference: str, event_id: str | None) -> NoReturn:
    detail = (
        f"status={order.status} stored_reference={order.payment_reference} "
        f"incoming_reference={payment_reference} event_id={event_id}"
    )
    logger.error("Payment conflict, needs operator review: order_id=%s %s", order.id, detail)
    _audit(db, "payment_conflict", order, detail)
    raise ConflictError(
        f"Order {order.id} is {order.status}; refusing payment {payment_reference}.",
        detail="Order is not awaiting payment.",
    )


def complete_payment(
    db: Session,
    order_id: str,
    payment_reference: str,
    event_id: str | None = None,
    payment_method: str = PAYMENT_METHOD_STRIPE,
    details: dict | None = None,
) -> Order:
    if not payment_reference:
        raise ValueError("payment_reference is required")
    order = order_store.get_order(db, order_id)

    if order.status == ORDER_PAID and order.payment_reference == payment_reference:
        logger.info("Order already paid, skipping: order_id=%s reference=%s event_id=%s", order.id, payment_reference, event_id)
        return order

    if order.status == ORDER_PENDING:
        payload = dict(details or {})
        if event_id:
            payload["event_id"] = event_id
        try:
            order = order_store.transition_status(
                db,
                order.id,
                ORDER_PAID,
                payment_reference=payment_reference,
                details=payload,
                payment_method=payment_method,
            )
        except InvalidTransitionError:
            # Another delivery got there first; same reference means it did our work
            order = order_store.get_order(db, order_id)
            if order.status == ORDER_PAID and order.payment_reference == payment_reference:
                return order
        else:
            logger.info(
                "Payment completed: order_id=%s number=%s reference=%s total=%s %s",
                order.id,
                order.order_number,
                payment_reference,
                order.total,
                order.currency,
            )
            return order

    _raise_conflict(db, order, payment_reference, event_id)


def handle_payment_failure(
    db: Session,
    order_id: str,
    reason: str | None,
    payment_reference: str | None = None,
    event_id: str | None = None,
) -> Order:
    order = order_store.get_order(db, order_id)
    if order.status != ORDER_PENDING:
        logger.info("Payment failure ignored: order_id=%s already %s (event_id=%s)", order.id, order.status, event_id)
        return order

    reason = (reason or "Unknown error").strip()[:500] or "Unknown error"
    details = {"failure_reason": reason, "failed_at": datetime.utcnow().isoformat()}
    if event_id:
        details["event_id"] = event_id
    try:
        order = order_store.transition_status(
            db,
            order.id,
            ORDER_FAILED,
            payment_reference=payment_reference,
            details=details,
            payment_method=PAYMENT_METHOD_STRIPE if payment_reference else None,
        )
    except InvalidTransitionError:
        return order_store.get_order(db, order_id)
    logger.warning("Payment failed: order_id=%s number=%s reason=%s", order.id, order.order_number, reason)
    _audit(db, "payment_failed", order, reason)
    return order


def cancel_order(
    db: Session,
    order_id: str,
    user_id: str | None = None,
    reason: str | None = None,
    actor: str = "user",
) -> Order:
    """User or operator cancel. Unlike callbacks this is not idempotent: a closed order raises."""
    order = order_store.get_order(db, order_id, user_id)
    cancel_reason = (reason or "").strip()[:500] or f"Cancelled by {actor}"
    order = order_store.transition_status(
        db,
        order.id,
        ORDER_CANCELLED,
        details={"cancel_reason": cancel_reason, "cancelled_at": datetime.utcnow().isoformat(), "cancelled_by": actor},
    )
    logger.info("Order cancelled: order_id=%s by=%s reason=%s", order.id, actor, cancel_reason)
    _audit(db, "order_cancelled", order, cancel_reason)
    return order


def list_library(db: Session, user_id: str) -> list[LibraryItem]:
    """Templates from the user's paid orders; the first purchase of a template wins."""
    stmt = (
        select(OrderItem, Order)
        .join(Order, Order.id == OrderItem.order_id)
        .where(Order.user_id == str(user_id), Order.status == ORDER_PAID)
        .order_by(Order.paid_at, OrderItem.position)
    )
    seen: set[str] = set()
    out: list[LibraryItem] = []
    for item, order in db.exec(stmt).all():
        if item.template_id in seen:
            continue
        seen.add(item.template_id)
        out.append(
            LibraryItem(
                template_id=item.template_id,
                template_name=item.template_name,
                template_type=item.template_type,
                order_id=order.id,
                purchased_at=order.paid_at,
            )
        )
    return out


def user_owns_template(db: Session, user_id: str, template_id: str) -> bool:
    stmt = (
        select(OrderItem.id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(
            Order.user_id == str(user_id),
            Order.status == ORDER_PAID,
            OrderItem.template_id == template_id,
        )
        .limit(1)
    )
    return db.exec(stmt).first() is not None


def template_access(db: Session, user_id: str, template_id: str) -> tuple[bool, str]:
    """(has_access, reason): free templates are open, paid ones need a paid order."""
    template = db.get(Template, template_id)
    if template is None:
        raise NotFoundError(f"Template {template_id} not found.", detail="Template not found.")
    if order_store.is_free(template):
        return True, "free"
    if user_owns_template(db, user_id, template_id):
        return True, "purchased"
    return False, "payment_required"
