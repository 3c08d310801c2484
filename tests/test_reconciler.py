"""Tests for applying Stripe snapshots to accounts and the payment ledger."""

import logging
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from fitlife_billing.exceptions import (
    MalformedEventError,
    NotFoundError,
    UpstreamServiceError,
)
from fitlife_billing.models.billing import (
    Account,
    PaymentLedgerEntry,
    PaymentOutcome,
    SubscriptionStatus,
)
from fitlife_billing.services.billing import SubscriptionReconciler, normalize_status
from fitlife_billing.services.common import to_unix


def _subscription(**overrides):
    data = {
        "id": "sub_1",
        "object": "subscription",
        "customer": "cus_1",
        "status": "past_due",
        "current_period_start": 1700000000,
        "current_period_end": 1702592000,
        "trial_end": None,
        "cancel_at_period_end": False,
    }
    data.update(overrides)
    return data


def _invoice(**overrides):
    data = {
        "id": "in_1",
        "object": "invoice",
        "customer": "cus_1",
        "subscription": "sub_1",
        "amount_due": 4900,
        "amount_paid": 4900,
        "currency": "usd",
        "status": "paid",
        "period_start": 1700000000,
        "period_end": 1702592000,
        "status_transitions": {"paid_at": 1700000100},
    }
    data.update(overrides)
    return data


def _projection(account: Account) -> dict:
    return {
        "status": account.subscription_status,
        "subscription_id": account.subscription_id,
        "period_start": to_unix(account.current_period_start),
        "period_end": to_unix(account.current_period_end),
        "trial_end": to_unix(account.trial_end),
        "cancel_at_period_end": account.cancel_at_period_end,
        "customer_id": account.customer_id,
    }


def _ledger_count(db_session, invoice_id: str = "in_1") -> int:
    return db_session.scalar(
        select(func.count())
        .select_from(PaymentLedgerEntry)
        .where(PaymentLedgerEntry.invoice_id == invoice_id)
    )


# ── Status mapping ───────────────────────────────────────


def test_normalize_status_maps_stripe_spelling():
    assert normalize_status("canceled") == SubscriptionStatus.cancelled
    assert normalize_status("trialing") == SubscriptionStatus.trialing


@pytest.mark.parametrize("value", [None, "", "exploded"])
def test_normalize_status_rejects_unknown_values(value):
    with pytest.raises(MalformedEventError):
        normalize_status(value)


# ── Checkout ─────────────────────────────────────────────


class TestCheckoutCompleted:
    def test_links_customer_and_subscription(self, db_session, unlinked_account):
        session = {
            "id": "cs_1",
            "mode": "subscription",
            "customer": "cus_9",
            "subscription": "sub_9",
            "metadata": {"userId": "u2", "planType": "premium", "trial": "true"},
        }

        account = SubscriptionReconciler(db_session).apply_checkout_completed(
            session, event_id="evt_1"
        )

        db_session.refresh(account)
        assert account.customer_id == "cus_9"
        assert account.subscription_id == "sub_9"
        assert account.plan_type == "premium"
        assert account.trial is True
        assert account.subscription_status == SubscriptionStatus.trialing
        assert account.last_event_id == "evt_1"

    def test_creates_account_for_unknown_user(self, db_session):
        session = {
            "id": "cs_1",
            "mode": "subscription",
            "customer": "cus_1",
            "subscription": "sub_1",
            "customer_details": {"email": "u1@example.com"},
            "metadata": {"userId": "u1", "planType": "premium", "trial": "true"},
        }

        SubscriptionReconciler(db_session).apply_checkout_completed(session)

        account = db_session.get(Account, "u1")
        assert account is not None
        assert account.customer_id == "cus_1"
        assert account.subscription_id == "sub_1"
        assert account.plan_type == "premium"
        assert account.trial is True
        assert account.email == "u1@example.com"

    def test_non_trial_checkout_becomes_active(self, db_session, unlinked_account):
        session = {
            "mode": "subscription",
            "customer": "cus_9",
            "subscription": "sub_9",
            "metadata": {"userId": "u2", "planType": "basic", "trial": "false"},
        }

        account = SubscriptionReconciler(db_session).apply_checkout_completed(session)

        assert account.subscription_status == SubscriptionStatus.active
        assert account.trial is False

    def test_does_not_overwrite_status_already_projected(self, db_session, account):
        account.subscription_status = SubscriptionStatus.past_due
        db_session.commit()
        session = {
            "mode": "subscription",
            "customer": "cus_1",
            "subscription": "sub_1",
            "metadata": {"userId": "u1", "planType": "standard", "trial": "false"},
        }

        SubscriptionReconciler(db_session).apply_checkout_completed(session)

        db_session.refresh(account)
        assert account.subscription_status == SubscriptionStatus.past_due

    def test_refuses_to_rebind_customer_to_another_account(
        self, db_session, account, unlinked_account
    ):
        session = {
            "mode": "subscription",
            "customer": "cus_1",
            "subscription": "sub_2",
            "metadata": {"userId": "u2", "planType": "basic", "trial": "false"},
        }

        result = SubscriptionReconciler(db_session).apply_checkout_completed(session)

        assert result is None
        db_session.refresh(unlinked_account)
        db_session.refresh(account)
        assert unlinked_account.customer_id is None
        assert account.customer_id == "cus_1"
        assert account.subscription_id == "sub_1"

    def test_ignores_payment_mode_sessions(self, db_session, unlinked_account):
        session = {
            "mode": "payment",
            "customer": "cus_9",
            "metadata": {"userId": "u2"},
        }

        assert SubscriptionReconciler(db_session).apply_checkout_completed(session) is None
        db_session.refresh(unlinked_account)
        assert unlinked_account.customer_id is None

    def test_ignores_session_without_user(self, db_session):
        session = {"mode": "subscription", "customer": "cus_9", "metadata": {}}

        assert SubscriptionReconciler(db_session).apply_checkout_completed(session) is None
        assert db_session.scalar(select(func.count()).select_from(Account)) == 0


# ── Subscription snapshots ───────────────────────────────


class TestSubscriptionSnapshot:
    def test_overwrites_status_and_period_bounds(self, db_session, account):
        SubscriptionReconciler(db_session).apply_subscription_snapshot(_subscription())

        db_session.refresh(account)
        assert account.subscription_status == SubscriptionStatus.past_due
        assert to_unix(account.current_period_start) == 1700000000
        assert to_unix(account.current_period_end) == 1702592000
        assert account.cancel_at_period_end is False

    def test_replaying_the_same_event_is_idempotent(self, db_session, account):
        reconciler = SubscriptionReconciler(db_session)
        created = datetime(2024, 1, 1, tzinfo=UTC)
        snapshot = _subscription(cancel_at_period_end=True, trial_end=1700500000)

        reconciler.apply_subscription_snapshot(
            snapshot, event_id="evt_1", event_created=created
        )
        db_session.refresh(account)
        once = _projection(account)

        for _ in range(3):
            reconciler.apply_subscription_snapshot(
                snapshot, event_id="evt_1", event_created=created
            )
        db_session.refresh(account)

        assert _projection(account) == once
        assert account.last_event_id == "evt_1"

    def test_period_bounds_fall_back_to_subscription_item(self, db_session, account):
        snapshot = _subscription(status="active")
        del snapshot["current_period_start"]
        del snapshot["current_period_end"]
        snapshot["items"] = {
            "object": "list",
            "data": [{"current_period_start": 1710000000, "current_period_end": 1712592000}],
        }

        SubscriptionReconciler(db_session).apply_subscription_snapshot(snapshot)

        db_session.refresh(account)
        assert to_unix(account.current_period_start) == 1710000000
        assert to_unix(account.current_period_end) == 1712592000

    def test_canceled_status_is_normalized(self, db_session, account):
        SubscriptionReconciler(db_session).apply_subscription_snapshot(
            _subscription(status="canceled")
        )

        db_session.refresh(account)
        assert account.subscription_status == SubscriptionStatus.cancelled

    def test_unknown_customer_is_dropped(self, db_session, account):
        result = SubscriptionReconciler(db_session).apply_subscription_snapshot(
            _subscription(customer="cus_unknown")
        )

        assert result is None
        db_session.refresh(account)
        assert account.subscription_status == SubscriptionStatus.active

    def test_unknown_status_is_malformed(self, db_session, account):
        with pytest.raises(MalformedEventError):
            SubscriptionReconciler(db_session).apply_subscription_snapshot(
                _subscription(status="exploded")
            )
        db_session.refresh(account)
        assert account.subscription_status == SubscriptionStatus.active

    def test_older_event_still_overwrites_and_is_logged(self, db_session, account, caplog):
        reconciler = SubscriptionReconciler(db_session)
        reconciler.apply_subscription_snapshot(
            _subscription(status="active"),
            event_id="evt_new",
            event_created=datetime(2024, 2, 1, tzinfo=UTC),
        )

        with caplog.at_level(logging.WARNING):
            reconciler.apply_subscription_snapshot(
                _subscription(status="past_due"),
                event_id="evt_old",
                event_created=datetime(2024, 1, 1, tzinfo=UTC),
            )

        db_session.refresh(account)
        assert account.subscription_status == SubscriptionStatus.past_due
        assert account.last_event_id == "evt_old"
        assert any("over newer event evt_new" in r.getMessage() for r in caplog.records)

    def test_deleted_forces_cancelled(self, db_session, account):
        account.cancel_at_period_end = True
        db_session.commit()

        SubscriptionReconciler(db_session).apply_subscription_deleted(
            _subscription(status="canceled")
        )

        db_session.refresh(account)
        assert account.subscription_status == SubscriptionStatus.cancelled
        assert account.subscription_id is None
        assert account.cancel_at_period_end is False

    def test_database_failure_surfaces_as_upstream_error(
        self, db_session, account, monkeypatch
    ):
        monkeypatch.setattr(
            db_session,
            "commit",
            MagicMock(side_effect=OperationalError("UPDATE accounts", {}, Exception("db down"))),
        )

        with pytest.raises(UpstreamServiceError):
            SubscriptionReconciler(db_session).apply_subscription_snapshot(_subscription())

        monkeypatch.undo()
        db_session.refresh(account)
        assert account.subscription_status == SubscriptionStatus.active


# ── Ledger ───────────────────────────────────────────────


class TestInvoiceLedger:
    def test_failed_payment_recorded(self, db_session, account):
        invoice = {"id": "in_1", "customer": "cus_1", "amount_due": 4900, "currency": "usd"}

        entry = SubscriptionReconciler(db_session).record_invoice_payment(
            invoice, PaymentOutcome.failed
        )

        assert entry.invoice_id == "in_1"
        assert entry.amount == 4900
        assert entry.outcome == PaymentOutcome.failed
        assert entry.account_id == "u1"
        assert entry.invoice_status == "failed"
        assert _ledger_count(db_session) == 1

    def test_succeeded_payment_uses_paid_at(self, db_session, account):
        entry = SubscriptionReconciler(db_session).record_invoice_payment(
            _invoice(), PaymentOutcome.succeeded
        )

        assert entry.amount == 4900
        assert entry.currency == "usd"
        assert to_unix(entry.occurred_at) == 1700000100
        assert to_unix(entry.period_start) == 1700000000

    def test_same_invoice_twice_yields_one_entry(self, db_session, account):
        reconciler = SubscriptionReconciler(db_session)

        first = reconciler.record_invoice_payment(_invoice(), PaymentOutcome.succeeded)
        second = reconciler.record_invoice_payment(_invoice(), PaymentOutcome.succeeded)

        assert first.id == second.id
        assert _ledger_count(db_session) == 1

    def test_failure_then_success_are_distinct_entries(self, db_session, account):
        reconciler = SubscriptionReconciler(db_session)

        reconciler.record_invoice_payment(_invoice(), PaymentOutcome.failed)
        reconciler.record_invoice_payment(_invoice(), PaymentOutcome.succeeded)

        assert _ledger_count(db_session) == 2

    def test_paid_invoice_without_subscription_is_ignored(self, db_session, account):
        result = SubscriptionReconciler(db_session).record_invoice_payment(
            _invoice(subscription=None), PaymentOutcome.succeeded
        )

        assert result is None
        assert _ledger_count(db_session) == 0

    def test_subscription_reference_under_parent_is_accepted(self, db_session, account):
        invoice = _invoice(subscription=None)
        invoice["parent"] = {"subscription_details": {"subscription": "sub_1"}}

        entry = SubscriptionReconciler(db_session).record_invoice_payment(
            invoice, PaymentOutcome.succeeded
        )

        assert entry is not None

    def test_unknown_customer_is_dropped(self, db_session, account):
        result = SubscriptionReconciler(db_session).record_invoice_payment(
            _invoice(customer="cus_unknown"), PaymentOutcome.failed
        )

        assert result is None
        assert _ledger_count(db_session) == 0

    def test_invoice_without_id_is_malformed(self, db_session, account):
        with pytest.raises(MalformedEventError):
            SubscriptionReconciler(db_session).record_invoice_payment(
                _invoice(id=None), PaymentOutcome.failed
            )

    def test_database_failure_leaves_no_row(self, db_session, account, monkeypatch):
        monkeypatch.setattr(
            db_session,
            "commit",
            MagicMock(side_effect=OperationalError("INSERT", {}, Exception("db down"))),
        )

        with pytest.raises(UpstreamServiceError):
            SubscriptionReconciler(db_session).record_invoice_payment(
                _invoice(), PaymentOutcome.failed
            )

        monkeypatch.undo()
        assert _ledger_count(db_session) == 0


# ── Resync ───────────────────────────────────────────────


class TestResync:
    def test_applies_newest_subscription(self, db_session, account, gateway):
        gateway.list_subscriptions.return_value = {
            "data": [_subscription(status="active", cancel_at_period_end=True)],
            "has_more": False,
        }

        SubscriptionReconciler(db_session).resync_account("u1", gateway)

        gateway.list_subscriptions.assert_called_once_with("cus_1", status="all", limit=1)
        db_session.refresh(account)
        assert account.cancel_at_period_end is True

    def test_no_subscriptions_leaves_account_untouched(self, db_session, account, gateway):
        gateway.list_subscriptions.return_value = {"data": [], "has_more": False}

        SubscriptionReconciler(db_session).resync_account("u1", gateway)

        db_session.refresh(account)
        assert account.subscription_status == SubscriptionStatus.active

    def test_account_without_customer_raises(self, db_session, unlinked_account, gateway):
        with pytest.raises(NotFoundError):
            SubscriptionReconciler(db_session).resync_account("u2", gateway)
        gateway.list_subscriptions.assert_not_called()
