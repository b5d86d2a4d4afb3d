"""
Stripe behind a narrow interface: payment intent creation and webhook verification.

The purchase workflow only sees PaymentIntent / PaymentEvent tuples, never
Stripe objects. Credentials come in through the constructor; stripe.api_key
is never assigned, so a fake gateway can replace this one without touching
process-wide state.
"""
from __future__ import annotations

import json
import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

import stripe

from app.core.config import settings
from app.core.errors import GatewayUnavailableError, InvalidSignatureError, MalformedEventError

logger = logging.getLogger(__name__)

# Stripe charges these in whole units (no cents)
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}
)

EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"


class PaymentIntent(NamedTuple):
    client_secret: str
    external_intent_id: str
    amount: int  # minor units
    currency: str


class PaymentEvent(NamedTuple):
    event_id: str
    type: str
    payment_reference: str | None  # PaymentIntent id (pi_...)
    order_id: str | None  # echoed back from our metadata
    amount: int | None = None
    currency: str | None = None
    failure_message: str | None = None


def to_minor_units(amount: Decimal | int | float | str, currency: str) -> int:
    """150.00 SAR -> 15000; 1000 JPY -> 1000. Half-up rounding on the last unit."""
    value = Decimal(str(amount))
    if (currency or "").lower() in ZERO_DECIMAL_CURRENCIES:
        return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_event(payload: str) -> PaymentEvent:
    """Verified webhook body -> PaymentEvent. Only call after the signature check."""
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise MalformedEventError("Webhook body is not valid JSON.") from e
    if not isinstance(data, dict) or not data.get("id") or not data.get("type"):
        raise MalformedEventError("Webhook body has no event id or type.")

    envelope = data.get("data") if isinstance(data.get("data"), dict) else {}
    obj = envelope.get("object") if isinstance(envelope.get("object"), dict) else {}
    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    last_error = obj.get("last_payment_error") if isinstance(obj.get("last_payment_error"), dict) else {}
    order_id = metadata.get("order_id")
    return PaymentEvent(
        event_id=str(data["id"]),
        type=str(data["type"]),
        payment_reference=obj.get("id"),
        order_id=str(order_id) if order_id else None,
        amount=obj.get("amount"),
        currency=obj.get("currency"),
        failure_message=last_error.get("message"),
    )


class PaymentGateway:
    """What the purchase workflow needs from a payment provider."""

    def create_intent(self, order, attempt_id: str | None = None) -> PaymentIntent:
        raise NotImplementedError

    def verify_webhook_signature(
        self,
        raw_body: bytes | str,
        signature_header: str | None,
        secret: str | None = None,
    ) -> PaymentEvent:
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        currency: str = "sar",
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = (currency or "sar").lower()
        self.tolerance = tolerance

    def create_intent(self, order, attempt_id: str | None = None) -> PaymentIntent:
        """
        One Stripe call with the SDK's network retries off; a second attempt is
        the buyer's decision. The idempotency key covers one attempt only
        (attempt_id, usually the request id): Stripe replays a stored 5xx for a
        reused key.
        """
        if not self.api_key:
            raise GatewayUnavailableError("Stripe secret key is not configured.")
        currency = (order.currency or self.currency).lower()
        amount = to_minor_units(order.total, currency)
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                idempotency_key=f"order-{order.id}-intent-{attempt_id or uuid.uuid4().hex}",
                max_network_retries=0,
                amount=amount,
                currency=currency,
                metadata={
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "user_id": order.user_id,
                },
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error(
                "Stripe intent creation failed: order_id=%s error_type=%s error=%s",
                order.id,
                type(e).__name__,
                e,
            )
            raise GatewayUnavailableError(f"Stripe error: {e}") from e
        logger.info(
            "Payment intent created: order_id=%s intent=%s amount=%s %s",
            order.id,
            intent.id,
            amount,
            currency,
        )
        return PaymentIntent(
            client_secret=intent.client_secret,
            external_intent_id=intent.id,
            amount=amount,
            currency=currency,
        )

    def verify_webhook_signature(
        self,
        raw_body: bytes | str,
        signature_header: str | None,
        secret: str | None = None,
    ) -> PaymentEvent:
        """Raises InvalidSignatureError for anything not signed with our endpoint secret."""
        secret = secret if secret is not None else self.webhook_secret
        if not secret:
            raise InvalidSignatureError("Webhook secret is not configured.")
        if not signature_header:
            raise InvalidSignatureError("Missing Stripe-Signature header.")
        try:
            payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        except UnicodeDecodeError as e:
            raise InvalidSignatureError("Webhook body is not UTF-8.") from e
        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignatureError(str(e)) from e
        return parse_event(payload)


def get_gateway() -> PaymentGateway:
    """FastAPI dependency; tests replace it through app.dependency_overrides."""
    return StripeGateway(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        currency=settings.stripe_currency,
        tolerance=settings.stripe_webhook_tolerance,
    )
