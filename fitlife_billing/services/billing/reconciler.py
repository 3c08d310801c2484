"""Merge Stripe snapshots into the local Account projection and payment ledger.

Every write is keyed by a natural Stripe id (customer id for account state,
invoice id + outcome for ledger rows), so redelivered events converge on the
same state. Snapshots are applied wholesale: there is no ordering guard, and an
older snapshot that arrives late overwrites a newer one. A warning is logged
when that happens.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fitlife_billing.config import settings
from fitlife_billing.exceptions import (
    MalformedEventError,
    NotFoundError,
    UpstreamServiceError,
)
from fitlife_billing.metrics import LEDGER_ENTRIES
from fitlife_billing.models.billing import (
    Account,
    PaymentLedgerEntry,
    PaymentOutcome,
    SubscriptionStatus,
)
from fitlife_billing.services.billing.accounts import Accounts
from fitlife_billing.services.common import first_item, from_unix, make_aware, object_id
from fitlife_billing.services.payment_gateway import StripeGateway

logger = logging.getLogger(__name__)

_STATUS_ALIASES = {"canceled": SubscriptionStatus.cancelled}


def normalize_status(value: Any) -> SubscriptionStatus:
    """Map a Stripe subscription status onto the local status set."""
    if not value:
        raise MalformedEventError("Subscription snapshot has no status")
    key = str(value)
    if key in _STATUS_ALIASES:
        return _STATUS_ALIASES[key]
    try:
        return SubscriptionStatus(key)
    except ValueError as exc:
        raise MalformedEventError(f"Unknown subscription status: {key}") from exc


def _mapping(value: Any, field: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedEventError(f"{field} must be an object")
    return value


def _timestamp(value: Any, field: str) -> datetime | None:
    try:
        return from_unix(value)
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        raise MalformedEventError(f"{field} is not a Unix timestamp") from exc


def _amount(value: Any, field: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedEventError(f"{field} must be an integer amount")
    return value


def _period_bound(subscription: dict[str, Any], key: str) -> datetime | None:
    # Newer API versions report billing periods on the subscription items.
    value = subscription.get(key)
    if value is None:
        value = first_item(subscription).get(key)
    return _timestamp(value, key)


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    ref = object_id(invoice.get("subscription"))
    if ref:
        return ref
    parent = _mapping(invoice.get("parent"), "parent")
    details = _mapping(parent.get("subscription_details"), "parent.subscription_details")
    return object_id(details.get("subscription"))


class SubscriptionReconciler:
    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _write(self, what: str) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to persist %s: %s", what, exc)
            raise UpstreamServiceError(f"Failed to persist {what}") from exc

    def _find_account(self, customer_id: str, event_id: str | None) -> Account | None:
        try:
            account = Accounts.get_by_customer_id(self.db, customer_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise UpstreamServiceError("Failed to look up account") from exc
        if account is None:
            logger.warning(
                "No account linked to customer %s; dropping event",
                customer_id,
                extra={"customer_id": customer_id, "event_id": event_id},
            )
        return account

    def _stamp(
        self,
        account: Account,
        event_id: str | None,
        event_created: datetime | None,
    ) -> None:
        previous = make_aware(account.last_event_created)
        if event_created and previous and event_created < previous:
            logger.warning(
                "Applying event %s created %s over newer event %s created %s",
                event_id,
                event_created.isoformat(),
                account.last_event_id,
                previous.isoformat(),
                extra={"account_id": account.id, "event_id": event_id},
            )
        if event_id:
            account.last_event_id = event_id
        if event_created:
            account.last_event_created = event_created

    # ── Checkout ─────────────────────────────────────────

    def apply_checkout_completed(
        self,
        session: dict[str, Any],
        *,
        event_id: str | None = None,
        event_created: datetime | None = None,
    ) -> Account | None:
        """Link the checkout's customer and subscription to the paying account."""
        if session.get("mode") != "subscription":
            logger.info(
                "Ignoring checkout session %s in mode %s",
                session.get("id"),
                session.get("mode"),
                extra={"event_id": event_id},
            )
            return None
        metadata = _mapping(session.get("metadata"), "metadata")
        customer_details = _mapping(session.get("customer_details"), "customer_details")
        account_id = metadata.get("userId")
        customer_id = object_id(session.get("customer"))
        if not account_id or not customer_id:
            logger.warning(
                "Checkout session %s has no userId or customer",
                session.get("id"),
                extra={"event_id": event_id},
            )
            return None
        if not isinstance(account_id, str):
            raise MalformedEventError("Checkout metadata userId must be a string")

        try:
            owner = Accounts.get_by_customer_id(self.db, customer_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise UpstreamServiceError("Failed to look up account") from exc
        if owner is not None and owner.id != account_id:
            logger.error(
                "Customer %s is linked to account %s; refusing to link it to %s",
                customer_id,
                owner.id,
                account_id,
                extra={"customer_id": customer_id, "event_id": event_id},
            )
            return None

        trial = str(metadata.get("trial", "")).lower() == "true"
        subscription = session.get("subscription")
        if isinstance(subscription, dict) and subscription.get("status"):
            initial_status = normalize_status(subscription["status"])
        else:
            initial_status = (
                SubscriptionStatus.trialing if trial else SubscriptionStatus.active
            )

        with self._write("checkout linkage"):
            account = self.db.get(Account, account_id)
            if account is None:
                account = Account(
                    id=account_id,
                    email=customer_details.get("email") or session.get("customer_email"),
                    subscription_status=SubscriptionStatus.none,
                )
                self.db.add(account)
            account.customer_id = customer_id
            account.subscription_id = object_id(subscription)
            if metadata.get("planType"):
                account.plan_type = metadata["planType"]
            account.trial = trial
            if account.subscription_status in (None, SubscriptionStatus.none):
                account.subscription_status = initial_status
            self._stamp(account, event_id, event_created)
        logger.info(
            "Linked customer %s to account %s",
            customer_id,
            account_id,
            extra={"account_id": account_id, "event_id": event_id},
        )
        return account

    # ── Subscriptions ────────────────────────────────────

    def apply_subscription_snapshot(
        self,
        subscription: dict[str, Any],
        *,
        event_id: str | None = None,
        event_created: datetime | None = None,
    ) -> Account | None:
        """Overwrite the account's subscription fields with the snapshot."""
        customer_id = object_id(subscription.get("customer"))
        if not customer_id:
            raise MalformedEventError("Subscription snapshot has no customer")
        status = normalize_status(subscription.get("status"))
        subscription_id = subscription.get("id")
        if subscription_id is not None and not isinstance(subscription_id, str):
            raise MalformedEventError("Subscription id must be a string")
        period_start = _period_bound(subscription, "current_period_start")
        period_end = _period_bound(subscription, "current_period_end")
        trial_end = _timestamp(subscription.get("trial_end"), "trial_end")
        account = self._find_account(customer_id, event_id)
        if account is None:
            return None
        with self._write("subscription snapshot"):
            account.subscription_status = status
            account.subscription_id = subscription_id
            account.current_period_start = period_start
            account.current_period_end = period_end
            account.trial_end = trial_end
            account.cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
            self._stamp(account, event_id, event_created)
        logger.info(
            "Applied subscription %s snapshot (%s) to account %s",
            subscription.get("id"),
            status.value,
            account.id,
            extra={"account_id": account.id, "event_id": event_id},
        )
        return account

    def apply_subscription_deleted(
        self,
        subscription: dict[str, Any],
        *,
        event_id: str | None = None,
        event_created: datetime | None = None,
    ) -> Account | None:
        customer_id = object_id(subscription.get("customer"))
        if not customer_id:
            raise MalformedEventError("Subscription snapshot has no customer")
        account = self._find_account(customer_id, event_id)
        if account is None:
            return None
        with self._write("subscription cancellation"):
            account.subscription_status = SubscriptionStatus.cancelled
            account.subscription_id = None
            account.cancel_at_period_end = False
            self._stamp(account, event_id, event_created)
        logger.info(
            "Cancelled subscription for account %s",
            account.id,
            extra={"account_id": account.id, "event_id": event_id},
        )
        return account

    # ── Ledger ───────────────────────────────────────────

    def _ledger_entry(
        self, invoice_id: str, outcome: PaymentOutcome
    ) -> PaymentLedgerEntry | None:
        stmt = select(PaymentLedgerEntry).where(
            PaymentLedgerEntry.invoice_id == invoice_id,
            PaymentLedgerEntry.outcome == outcome,
        )
        return self.db.scalar(stmt)

    def record_invoice_payment(
        self,
        invoice: dict[str, Any],
        outcome: PaymentOutcome,
        *,
        event_id: str | None = None,
        event_created: datetime | None = None,
    ) -> PaymentLedgerEntry | None:
        """Append one ledger row per (invoice, outcome); repeats return the existing row."""
        invoice_id = invoice.get("id")
        customer_id = object_id(invoice.get("customer"))
        if not invoice_id or not customer_id:
            raise MalformedEventError("Invoice snapshot has no id or customer")
        if not isinstance(invoice_id, str):
            raise MalformedEventError("Invoice id must be a string")
        if outcome == PaymentOutcome.succeeded and not _invoice_subscription_id(invoice):
            logger.info(
                "Ignoring paid invoice %s without a subscription",
                invoice_id,
                extra={"event_id": event_id},
            )
            return None

        if outcome == PaymentOutcome.succeeded:
            amount = _amount(invoice.get("amount_paid"), "amount_paid")
            transitions = _mapping(invoice.get("status_transitions"), "status_transitions")
            paid_at = _timestamp(transitions.get("paid_at"), "status_transitions.paid_at")
            invoice_status = invoice.get("status")
        else:
            amount = _amount(invoice.get("amount_due"), "amount_due")
            paid_at = None
            invoice_status = "failed"
        currency = invoice.get("currency") or settings.billing_currency
        if not isinstance(currency, str):
            raise MalformedEventError("Invoice currency must be a string")
        period_start = _timestamp(invoice.get("period_start"), "period_start")
        period_end = _timestamp(invoice.get("period_end"), "period_end")

        account = self._find_account(customer_id, event_id)
        if account is None:
            return None

        try:
            existing = self._ledger_entry(invoice_id, outcome)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise UpstreamServiceError("Failed to read payment ledger") from exc
        if existing is not None:
            LEDGER_ENTRIES.labels(outcome.value, "duplicate").inc()
            logger.info(
                "Ledger already has %s entry for invoice %s",
                outcome.value,
                invoice_id,
                extra={"account_id": account.id, "event_id": event_id},
            )
            return existing

        entry = PaymentLedgerEntry(
            account_id=account.id,
            invoice_id=invoice_id,
            outcome=outcome,
            amount=amount,
            currency=currency.lower(),
            invoice_status=invoice_status if isinstance(invoice_status, str) else None,
            period_start=period_start,
            period_end=period_end,
            occurred_at=paid_at or event_created or datetime.now(UTC),
        )
        self.db.add(entry)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # A concurrent delivery of the same invoice won the insert.
            self.db.rollback()
            existing = self._ledger_entry(invoice_id, outcome)
            if existing is None:
                raise UpstreamServiceError("Failed to record payment") from exc
            LEDGER_ENTRIES.labels(outcome.value, "duplicate").inc()
            return existing
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to record payment for invoice %s: %s", invoice_id, exc)
            raise UpstreamServiceError("Failed to record payment") from exc
        self.db.refresh(entry)
        LEDGER_ENTRIES.labels(outcome.value, "recorded").inc()
        logger.info(
            "Recorded %s payment for invoice %s (%s %s)",
            outcome.value,
            invoice_id,
            entry.amount,
            entry.currency,
            extra={"account_id": account.id, "event_id": event_id},
        )
        return entry

    # ── Resync ───────────────────────────────────────────

    def resync_account(self, account_id: str, gateway: StripeGateway) -> Account | None:
        """Re-read the newest subscription from Stripe and apply it as a snapshot."""
        account = self.db.get(Account, account_id)
        if account is None or not account.customer_id:
            raise NotFoundError("No customer found")
        listing = gateway.list_subscriptions(account.customer_id, status="all", limit=1)
        data = listing.get("data") or []
        if not data:
            logger.info(
                "Customer %s has no subscriptions to resync",
                account.customer_id,
                extra={"account_id": account.id},
            )
            return account
        return self.apply_subscription_snapshot(data[0])
