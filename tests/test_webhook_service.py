"""Tests for webhook parsing and dispatch."""

import json

import pytest

from fitlife_billing.exceptions import MalformedEventError, SignatureVerificationError
from fitlife_billing.models.billing import Account, SubscriptionStatus
from fitlife_billing.services.billing import (
    EVENT_HANDLERS,
    dispatch_event,
    handle_stripe_webhook,
    parse_event,
)
from fitlife_billing.services.payment_gateway import StripeGateway


def test_registry_covers_lifecycle_events():
    assert set(EVENT_HANDLERS) == {
        "checkout.session.completed",
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "invoice.payment_succeeded",
        "invoice.payment_failed",
    }


def test_parse_event_reads_envelope(make_event):
    event = parse_event(
        json.dumps(make_event("invoice.paid", {"id": "in_1"}, event_id="evt_9", created=1700000000)).encode()
    )

    assert event.id == "evt_9"
    assert event.type == "invoice.paid"
    assert event.data_object == {"id": "in_1"}
    assert int(event.created.timestamp()) == 1700000000


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"[]",
        b'{"type": "invoice.paid", "data": {"object": {}}}',
        b'{"id": "evt_1", "data": {"object": {}}}',
        b'{"id": "evt_1", "type": "invoice.paid"}',
        b'{"id": "evt_1", "type": "invoice.paid", "data": {"object": "in_1"}}',
    ],
)
def test_parse_event_rejects_malformed_envelopes(payload):
    with pytest.raises(MalformedEventError):
        parse_event(payload)


def test_unknown_type_is_acknowledged_without_mutation(db_session, account, make_event):
    event = parse_event(
        json.dumps(make_event("customer.created", {"id": "cus_1", "customer": "cus_1"})).encode()
    )

    assert dispatch_event(db_session, event) is False

    db_session.refresh(account)
    assert account.subscription_status == SubscriptionStatus.active


def test_handle_stripe_webhook_applies_verified_event(
    db_session, account, make_event, sign_payload
):
    body = json.dumps(
        make_event(
            "customer.subscription.updated",
            {"id": "sub_1", "customer": "cus_1", "status": "past_due"},
            event_id="evt_42",
        )
    ).encode()

    ack = handle_stripe_webhook(db_session, body, sign_payload(body), StripeGateway())

    assert ack == {
        "received": True,
        "event_id": "evt_42",
        "type": "customer.subscription.updated",
        "handled": True,
    }
    db_session.refresh(account)
    assert account.subscription_status == SubscriptionStatus.past_due


def test_invalid_signature_changes_nothing(db_session, account, make_event, sign_payload):
    body = json.dumps(
        make_event(
            "customer.subscription.deleted",
            {"id": "sub_1", "customer": "cus_1", "status": "canceled"},
        )
    ).encode()

    with pytest.raises(SignatureVerificationError):
        handle_stripe_webhook(
            db_session, body, sign_payload(body, secret="whsec_forged"), StripeGateway()
        )

    db_session.refresh(account)
    assert account.subscription_status == SubscriptionStatus.active
    assert db_session.get(Account, "u1").subscription_id == "sub_1"
