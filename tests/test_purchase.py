"""Purchase workflow: payment completion, failures, cancellation, library access."""
from decimal import Decimal

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from app.core.errors import ConflictError, GatewayUnavailableError, InvalidTransitionError, NotFoundError
from app.models import AuditLog, Template
from app.models.order import ORDER_CANCELLED, ORDER_FAILED, ORDER_PAID, ORDER_PENDING
from app.services import order_store, purchase


@pytest.fixture
def pending(db, make_template):
    template = make_template(price="150.00")
    return purchase.checkout(db, "user-1", [template.id])


def _audit_events(db, order_id):
    db.expire_all()
    return [a.event for a in db.exec(select(AuditLog).where(AuditLog.order_id == order_id)).all()]


def test_checkout_uses_configured_currency(pending):
    assert pending.currency == "sar"
    assert pending.status == ORDER_PENDING


def test_complete_payment_marks_paid(db, pending):
    order = purchase.complete_payment(db, pending.id, "pi_1", event_id="evt_1", details={"amount": 15000})
    assert order.status == ORDER_PAID
    assert order.payment_reference == "pi_1"
    assert order.payment_method == "stripe"
    assert order.payment_details["event_id"] == "evt_1"
    assert order.payment_details["amount"] == 15000


def test_complete_payment_twice_is_a_noop(db, pending):
    first = purchase.complete_payment(db, pending.id, "pi_1")
    paid_at = first.paid_at
    again = purchase.complete_payment(db, pending.id, "pi_1", event_id="evt_2")
    assert again.status == ORDER_PAID
    assert again.paid_at == paid_at
    assert "payment_conflict" not in _audit_events(db, pending.id)


def test_complete_payment_with_other_reference_conflicts(db, pending):
    purchase.complete_payment(db, pending.id, "pi_1")
    with pytest.raises(ConflictError):
        purchase.complete_payment(db, pending.id, "pi_2")
    assert order_store.get_order(db, pending.id).payment_reference == "pi_1"
    assert "payment_conflict" in _audit_events(db, pending.id)


def test_success_after_cancel_is_a_conflict(db, pending):
    purchase.cancel_order(db, pending.id, user_id="user-1")
    with pytest.raises(ConflictError):
        purchase.complete_payment(db, pending.id, "pi_1", event_id="evt_late")
    db.expire_all()
    order = order_store.get_order(db, pending.id)
    assert order.status == ORDER_CANCELLED
    assert order.payment_reference is None
    assert "payment_conflict" in _audit_events(db, pending.id)


def test_success_after_failure_is_a_conflict(db, pending):
    purchase.handle_payment_failure(db, pending.id, "card_declined", payment_reference="pi_1")
    with pytest.raises(ConflictError):
        purchase.complete_payment(db, pending.id, "pi_1")
    db.expire_all()
    assert order_store.get_order(db, pending.id).status == ORDER_FAILED


def test_complete_payment_unknown_order(db):
    with pytest.raises(NotFoundError):
        purchase.complete_payment(db, "missing", "pi_1")


def test_complete_payment_requires_reference(db, pending):
    with pytest.raises(ValueError):
        purchase.complete_payment(db, pending.id, "")


def test_payment_failure_marks_failed_with_reason(db, pending):
    order = purchase.handle_payment_failure(db, pending.id, "Your card was declined.", payment_reference="pi_1", event_id="evt_f")
    assert order.status == ORDER_FAILED
    assert order.payment_details["failure_reason"] == "Your card was declined."
    assert order.payment_details["event_id"] == "evt_f"
    assert "payment_failed" in _audit_events(db, pending.id)


def test_payment_failure_default_reason(db, pending):
    order = purchase.handle_payment_failure(db, pending.id, None)
    assert order.payment_details["failure_reason"] == "Unknown error"


def test_failure_never_downgrades_paid_order(db, pending):
    purchase.complete_payment(db, pending.id, "pi_1")
    order = purchase.handle_payment_failure(db, pending.id, "late failure", payment_reference="pi_1")
    assert order.status == ORDER_PAID
    db.expire_all()
    assert order_store.get_order(db, pending.id).status == ORDER_PAID


def test_failure_after_cancel_is_ignored(db, pending):
    purchase.cancel_order(db, pending.id)
    order = purchase.handle_payment_failure(db, pending.id, "declined")
    assert order.status == ORDER_CANCELLED


def test_cancel_records_reason_and_actor(db, pending):
    order = purchase.cancel_order(db, pending.id, user_id="user-1", reason="Changed my mind", actor="user")
    assert order.status == ORDER_CANCELLED
    assert order.payment_details["cancel_reason"] == "Changed my mind"
    assert order.payment_details["cancelled_by"] == "user"
    assert "order_cancelled" in _audit_events(db, pending.id)


def test_cancel_paid_order_rejected(db, pending):
    purchase.complete_payment(db, pending.id, "pi_1")
    with pytest.raises(InvalidTransitionError):
        purchase.cancel_order(db, pending.id, user_id="user-1")


def test_cancel_other_users_order_not_found(db, pending):
    with pytest.raises(NotFoundError):
        purchase.cancel_order(db, pending.id, user_id="user-2")


class _Gateway:
    def __init__(self):
        self.calls = 0

    def create_intent(self, order, attempt_id=None):
        self.calls += 1
        raise GatewayUnavailableError("Stripe error: timeout")


def test_prepare_payment_requires_pending(db, pending):
    gateway = _Gateway()
    purchase.complete_payment(db, pending.id, "pi_1")
    with pytest.raises(InvalidTransitionError):
        purchase.prepare_payment(db, gateway, pending.id, "user-1")
    assert gateway.calls == 0


def test_prepare_payment_gateway_error_leaves_order_pending(db, pending):
    gateway = _Gateway()
    with pytest.raises(GatewayUnavailableError):
        purchase.prepare_payment(db, gateway, pending.id, "user-1")
    assert gateway.calls == 1
    db.expire_all()
    assert order_store.get_order(db, pending.id).status == ORDER_PENDING


def test_library_lists_paid_templates_once(db, make_template):
    a = make_template(name="Certificate", price="150.00")
    b = make_template(name="Plan", price="20.00")
    first = purchase.checkout(db, "user-1", [a.id])
    second = purchase.checkout(db, "user-1", [a.id, b.id])
    unpaid = purchase.checkout(db, "user-1", [b.id])
    purchase.complete_payment(db, first.id, "pi_1")
    purchase.complete_payment(db, second.id, "pi_2")

    library = purchase.list_library(db, "user-1")
    assert [item.template_id for item in library] == [a.id, b.id]
    assert library[0].order_id == first.id
    assert purchase.list_library(db, "user-2") == []
    assert unpaid.status == ORDER_PENDING


def test_template_access(db, make_template):
    free = make_template(name="Free form", price="0.00", is_free=True)
    paid = make_template(name="Certificate", price="150.00")
    assert purchase.template_access(db, "user-1", free.id) == (True, "free")
    assert purchase.template_access(db, "user-1", paid.id) == (False, "payment_required")

    order = purchase.checkout(db, "user-1", [paid.id])
    assert purchase.template_access(db, "user-1", paid.id) == (False, "payment_required")
    purchase.complete_payment(db, order.id, "pi_1")
    assert purchase.template_access(db, "user-1", paid.id) == (True, "purchased")
    assert purchase.template_access(db, "user-2", paid.id) == (False, "payment_required")

    with pytest.raises(NotFoundError):
        purchase.template_access(db, "user-1", "missing")


@pytest.fixture
def two_sessions(tmp_path):
    """Two sessions on one file database that both read the order as pending."""
    engine = create_engine(f"sqlite:///{tmp_path / 'deliveries.db'}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    with Session(engine) as setup:
        template = Template(name="Certificate", price=Decimal("150.00"))
        setup.add(template)
        setup.commit()
        order_id = purchase.checkout(setup, "user-1", [template.id]).id

    with Session(engine) as first, Session(engine) as second:
        assert order_store.get_order(first, order_id).status == ORDER_PENDING
        assert order_store.get_order(second, order_id).status == ORDER_PENDING
        yield order_id, first, second
    engine.dispose()


def test_concurrent_delivery_of_same_payment_is_swallowed(two_sessions):
    order_id, first, second = two_sessions
    purchase.complete_payment(first, order_id, "pi_1", event_id="evt_1")

    order = purchase.complete_payment(second, order_id, "pi_1", event_id="evt_1")
    assert order.status == ORDER_PAID
    assert order.payment_reference == "pi_1"


def test_concurrent_delivery_of_other_payment_conflicts(two_sessions):
    order_id, first, second = two_sessions
    purchase.complete_payment(first, order_id, "pi_1")

    with pytest.raises(ConflictError):
        purchase.complete_payment(second, order_id, "pi_2")
    order = order_store.get_order(second, order_id)
    assert order.payment_reference == "pi_1"
