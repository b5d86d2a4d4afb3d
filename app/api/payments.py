"""
Payments: Stripe payment intents and the Stripe webhook.

The webhook is the trust boundary. Nothing reaches the purchase workflow
unless the Stripe-Signature header verifies against our endpoint secret.
After that every event is acknowledged with 2xx, including types we do not
handle, so Stripe does not keep redelivering them.
"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.api.deps import get_current_user_id
from app.core.database import get_db
from app.core.errors import ConflictError, InvalidSignatureError, MalformedEventError, NotFoundError
from app.core.rate_limit import client_ip, limiter, write_rate_limit
from app.models import PaymentEventLog, SecurityLog
from app.models.payment_event import EVENT_CONFLICT, EVENT_IGNORED, EVENT_PROCESSED
from app.schemas import CreateIntentRequest, CreateIntentResponse, WebhookAck
from app.services import order_store, purchase
from app.services.payment_gateway import (
    EVENT_PAYMENT_FAILED,
    EVENT_PAYMENT_SUCCEEDED,
    PaymentEvent,
    PaymentGateway,
    get_gateway,
)

log = logging.getLogger("marketplace")

router = APIRouter(tags=["payments"])


@router.post("/payments/create-intent", response_model=CreateIntentResponse)
@limiter.limit(write_rate_limit)
def create_payment_intent(
    request: Request,
    body: CreateIntentRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Gateway errors come back as 500 for the buyer to retry; we never retry on their behalf."""
    intent = purchase.prepare_payment(
        db, gateway, body.order_id, user_id, attempt_id=getattr(request.state, "request_id", None)
    )
    order = order_store.get_order(db, body.order_id, user_id)
    return CreateIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.external_intent_id,
        amount=f"{order.total:.2f}",
        currency=intent.currency.upper(),
    )


def _security_log(db: Session, request: Request, detail: str) -> None:
    try:
        db.add(SecurityLog(event="invalid_signature", ip=client_ip(request) or None, endpoint=request.url.path, detail=detail[:500]))
        db.commit()
    except Exception as e:
        db.rollback()
        log.warning("SecurityLog invalid_signature write failed: %s", e)


def _record_event(db: Session, event: PaymentEvent, outcome: str) -> None:
    try:
        db.add(
            PaymentEventLog(
                event_id=event.event_id,
                event_type=event.type,
                order_id=event.order_id,
                payment_reference=event.payment_reference,
                outcome=outcome,
            )
        )
        db.commit()
    except IntegrityError:
        # A concurrent delivery of the same event recorded it first
        db.rollback()
        log.info("Stripe event already recorded: event_id=%s", event.event_id)


def dispatch_event(db: Session, event: PaymentEvent) -> tuple[WebhookAck, str]:
    """Routes a verified event to the purchase workflow. Returns (ack, ledger outcome)."""
    if event.type not in (EVENT_PAYMENT_SUCCEEDED, EVENT_PAYMENT_FAILED):
        log.info("Unhandled Stripe event: type=%s event_id=%s", event.type, event.event_id)
        return WebhookAck(handled=False, event_type=event.type), EVENT_IGNORED
    if not event.order_id:
        log.warning(
            "Stripe event without order_id metadata: type=%s event_id=%s reference=%s",
            event.type,
            event.event_id,
            event.payment_reference,
        )
        return WebhookAck(handled=False, event_type=event.type), EVENT_IGNORED

    try:
        if event.type == EVENT_PAYMENT_SUCCEEDED:
            if not event.payment_reference:
                raise MalformedEventError("payment_intent.succeeded without a PaymentIntent id.")
            purchase.complete_payment(
                db,
                event.order_id,
                event.payment_reference,
                event.event_id,
                details={
                    "payment_intent_id": event.payment_reference,
                    "amount": event.amount,
                    "currency": event.currency,
                },
            )
        else:
            purchase.handle_payment_failure(
                db,
                event.order_id,
                event.failure_message,
                payment_reference=event.payment_reference,
                event_id=event.event_id,
            )
    except NotFoundError:
        log.warning("Order not found for Stripe event: order_id=%s event_id=%s", event.order_id, event.event_id)
        return WebhookAck(handled=False, event_type=event.type), EVENT_IGNORED
    except ConflictError:
        # Already logged and audited for operator review; redelivery cannot fix it
        return WebhookAck(handled=False, conflict=True, event_type=event.type), EVENT_CONFLICT
    return WebhookAck(handled=True, event_type=event.type), EVENT_PROCESSED


@router.post("/payments/webhook", response_model=WebhookAck)
@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Stripe webhook. Unauthenticated; the signature is the authentication."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    try:
        event = gateway.verify_webhook_signature(payload, signature)
    except InvalidSignatureError as e:
        # Reason stays in the server log; the response only says "Invalid signature"
        log.warning("Stripe webhook rejected: ip=%s reason=%s", client_ip(request), e)
        _security_log(db, request, str(e))
        raise

    seen = db.exec(select(PaymentEventLog).where(PaymentEventLog.event_id == event.event_id)).first()
    if seen is not None:
        log.info("Stripe event redelivered, skipping: event_id=%s type=%s", event.event_id, event.type)
        return WebhookAck(duplicate=True, event_type=event.type)

    log.info(
        "Stripe webhook received: event_id=%s type=%s order_id=%s reference=%s",
        event.event_id,
        event.type,
        event.order_id,
        event.payment_reference,
    )
    ack, outcome = dispatch_event(db, event)
    _record_event(db, event, outcome)
    return ack
