"""Operator API: X-Admin-Secret only. Order review, cancellation, audit trail, webhook ledger."""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, func, select

from app.api.deps import require_admin
from app.api.orders import page_size
from app.core.database import get_db
from app.models import AuditLog, Order, PaymentEventLog
from app.models.order import ORDER_PAID, ORDER_STATUSES
from app.schemas import AdminOrderListResponse, AdminOrderResponse, CancelOrderRequest, PageMeta
from app.services import order_store, purchase

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _admin_order(db: Session, order: Order) -> AdminOrderResponse:
    base = AdminOrderResponse.from_order(order, order_store.get_items(db, order.id))
    return base.model_copy(update={"payment_details": order.payment_details})


@router.get("/stats")
def admin_stats(db: Session = Depends(get_db)):
    """Order counts per status and the paid total."""
    counts = dict(db.exec(select(Order.status, func.count(Order.id)).group_by(Order.status)).all())
    paid_total = db.exec(select(func.coalesce(func.sum(Order.total), 0)).where(Order.status == ORDER_PAID)).one()
    conflicts = db.exec(select(func.count(AuditLog.id)).where(AuditLog.event == "payment_conflict")).one() or 0
    return {
        "orders": {s: int(counts.get(s, 0)) for s in ORDER_STATUSES},
        "paid_total": f"{paid_total or 0:.2f}",
        "payment_conflicts": int(conflicts),
    }


@router.get("/orders", response_model=AdminOrderListResponse)
def admin_orders(
    db: Session = Depends(get_db),
    status: str | None = Query(None, description="pending | paid | failed | cancelled"),
    user_id: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int | None = Query(None, ge=1),
):
    if status and status not in ORDER_STATUSES:
        raise HTTPException(status_code=422, detail=f"Unknown status: {status}")
    result = order_store.list_orders(db, user_id, page, page_size(per_page), status=status)
    return AdminOrderListResponse(
        data=[_admin_order(db, o) for o in result.items],
        meta=PageMeta(
            current_page=result.page,
            last_page=result.last_page,
            per_page=result.per_page,
            total=result.total,
        ),
    )


@router.get("/orders/{order_id}", response_model=AdminOrderResponse)
def admin_order(order_id: str, db: Session = Depends(get_db)):
    return _admin_order(db, order_store.get_order(db, order_id))


@router.post("/orders/{order_id}/cancel", response_model=AdminOrderResponse)
def admin_cancel_order(
    order_id: str,
    body: CancelOrderRequest | None = None,
    db: Session = Depends(get_db),
):
    order = purchase.cancel_order(db, order_id, reason=body.reason if body else None, actor="operator")
    return _admin_order(db, order)


@router.get("/logs")
def admin_logs(
    db: Session = Depends(get_db),
    limit: int = Query(200, le=500),
    event: str | None = Query(None, description="Filter: payment_conflict, payment_failed, order_cancelled"),
    order_id: str | None = Query(None),
):
    """Latest audit rows, newest first."""
    stmt = select(AuditLog)
    if event:
        stmt = stmt.where(AuditLog.event == event)
    if order_id:
        stmt = stmt.where(AuditLog.order_id == order_id)
    logs = db.exec(stmt.order_by(AuditLog.id.desc()).limit(limit)).all()
    return [
        {
            "id": log.id,
            "event": log.event,
            "order_id": log.order_id,
            "user_id": log.user_id,
            "detail": log.detail,
            "created_at": log.created_at.isoformat() if log.created_at else None,
        }
        for log in logs
    ]


@router.get("/payment-events")
def admin_payment_events(
    db: Session = Depends(get_db),
    limit: int = Query(100, le=300),
    outcome: str | None = Query(None, description="processed | ignored | conflict"),
):
    """Webhook ledger, newest first."""
    stmt = select(PaymentEventLog)
    if outcome:
        stmt = stmt.where(PaymentEventLog.outcome == outcome)
    events = db.exec(stmt.order_by(PaymentEventLog.id.desc()).limit(limit)).all()
    return [
        {
            "event_id": e.event_id,
            "event_type": e.event_type,
            "order_id": e.order_id,
            "payment_reference": e.payment_reference,
            "outcome": e.outcome,
            "received_at": e.received_at.isoformat() if e.received_at else None,
        }
        for e in events
    ]
