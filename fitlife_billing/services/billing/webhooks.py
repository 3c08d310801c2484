"""Inbound Stripe webhook handling: verify, parse, dispatch."""
from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from fitlife_billing.exceptions import MalformedEventError, SignatureVerificationError
from fitlife_billing.metrics import WEBHOOK_EVENTS
from fitlife_billing.models.billing import PaymentOutcome
from fitlife_billing.services.billing.reconciler import SubscriptionReconciler
from fitlife_billing.services.common import from_unix
from fitlife_billing.services.payment_gateway import StripeGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundEvent:
    """One delivery from Stripe, alive only for the handling call."""

    id: str
    type: str
    created: datetime | None
    data_object: dict[str, Any] = field(default_factory=dict)
    livemode: bool = False


def parse_event(payload: bytes) -> InboundEvent:
    try:
        envelope = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedEventError("Invalid JSON") from exc
    if not isinstance(envelope, dict):
        raise MalformedEventError("Event envelope must be an object")
    event_id = envelope.get("id")
    event_type = envelope.get("type")
    data = envelope.get("data")
    if not event_id or not event_type:
        raise MalformedEventError("Event is missing id or type")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise MalformedEventError("Event is missing data.object")
    try:
        created = from_unix(envelope.get("created"))
    except (TypeError, ValueError, OverflowError) as exc:
        raise MalformedEventError("Event has an invalid created timestamp") from exc
    return InboundEvent(
        id=str(event_id),
        type=str(event_type),
        created=created,
        data_object=data["object"],
        livemode=bool(envelope.get("livemode", False)),
    )


# ── Handlers ─────────────────────────────────────────────


def _checkout_completed(reconciler: SubscriptionReconciler, event: InboundEvent) -> None:
    reconciler.apply_checkout_completed(
        event.data_object, event_id=event.id, event_created=event.created
    )


def _subscription_changed(reconciler: SubscriptionReconciler, event: InboundEvent) -> None:
    reconciler.apply_subscription_snapshot(
        event.data_object, event_id=event.id, event_created=event.created
    )


def _subscription_deleted(reconciler: SubscriptionReconciler, event: InboundEvent) -> None:
    reconciler.apply_subscription_deleted(
        event.data_object, event_id=event.id, event_created=event.created
    )


def _invoice_paid(reconciler: SubscriptionReconciler, event: InboundEvent) -> None:
    reconciler.record_invoice_payment(
        event.data_object,
        PaymentOutcome.succeeded,
        event_id=event.id,
        event_created=event.created,
    )


def _invoice_failed(reconciler: SubscriptionReconciler, event: InboundEvent) -> None:
    reconciler.record_invoice_payment(
        event.data_object,
        PaymentOutcome.failed,
        event_id=event.id,
        event_created=event.created,
    )


EventHandler = Callable[[SubscriptionReconciler, InboundEvent], None]

EVENT_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": _checkout_completed,
    "customer.subscription.created": _subscription_changed,
    "customer.subscription.updated": _subscription_changed,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_succeeded": _invoice_paid,
    "invoice.payment_failed": _invoice_failed,
}


def dispatch_event(db: Session, event: InboundEvent) -> bool:
    """Run the registered handler for ``event``.

    Returns ``False`` for event types with no handler; those are acknowledged
    so Stripe stops redelivering them.
    """
    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.info(
            "Ignoring unhandled Stripe event %s",
            event.type,
            extra={"event_id": event.id, "event_type": event.type},
        )
        return False
    handler(SubscriptionReconciler(db), event)
    return True


def handle_stripe_webhook(
    db: Session,
    payload: bytes,
    signature: str | None,
    gateway: StripeGateway,
) -> dict[str, Any]:
    """Verify, parse and dispatch one raw webhook delivery.

    Nothing is read from or written to the database before the signature
    checks out.
    """
    try:
        gateway.verify_webhook_signature(payload, signature)
    except SignatureVerificationError as exc:
        WEBHOOK_EVENTS.labels("unknown", "rejected").inc()
        logger.warning("Rejected Stripe webhook: %s", exc.message)
        raise
    try:
        event = parse_event(payload)
    except MalformedEventError:
        WEBHOOK_EVENTS.labels("unknown", "malformed").inc()
        raise

    log_extra = {"event_id": event.id, "event_type": event.type}
    try:
        handled = dispatch_event(db, event)
    except MalformedEventError as exc:
        WEBHOOK_EVENTS.labels(event.type, "malformed").inc()
        logger.warning("Malformed Stripe event: %s", exc.message, extra=log_extra)
        raise
    except Exception:
        WEBHOOK_EVENTS.labels(event.type, "failed").inc()
        logger.exception("Failed to apply Stripe event", extra=log_extra)
        raise
    WEBHOOK_EVENTS.labels(event.type, "handled" if handled else "ignored").inc()
    logger.info("Processed Stripe event", extra=log_extra)
    return {"received": True, "event_id": event.id, "type": event.type, "handled": handled}
