import logging
from typing import Any

from sqlalchemy.orm import Session

from fitlife_billing.exceptions import UpstreamServiceError
from fitlife_billing.schemas.billing import (
    BillingStatusRead,
    PlanRead,
    SubscriptionRead,
    UpcomingInvoiceRead,
)
from fitlife_billing.services.billing.accounts import Accounts
from fitlife_billing.services.billing.actions import select_subscription
from fitlife_billing.services.common import first_item
from fitlife_billing.services.identity import CallerIdentity
from fitlife_billing.services.payment_gateway import StripeGateway

logger = logging.getLogger(__name__)


def _plan(subscription: dict[str, Any]) -> PlanRead:
    price = first_item(subscription).get("price") or {}
    recurring = price.get("recurring") or {}
    return PlanRead(
        nickname=price.get("nickname"),
        amount=price.get("unit_amount"),
        interval=recurring.get("interval"),
    )


def _subscription_read(subscription: dict[str, Any]) -> SubscriptionRead:
    item = first_item(subscription)
    return SubscriptionRead(
        id=subscription["id"],
        status=subscription["status"],
        current_period_start=subscription.get("current_period_start")
        or item.get("current_period_start"),
        current_period_end=subscription.get("current_period_end")
        or item.get("current_period_end"),
        trial_end=subscription.get("trial_end"),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        plan=_plan(subscription),
    )


class BillingStatus:
    @staticmethod
    def upcoming_invoice(
        gateway: StripeGateway, customer_id: str, subscription_id: str | None = None
    ) -> UpcomingInvoiceRead | None:
        """Best effort: no upcoming invoice is not an error."""
        try:
            invoice = gateway.retrieve_upcoming_invoice(customer_id, subscription_id)
        except UpstreamServiceError as exc:
            logger.info(
                "No upcoming invoice for customer %s: %s",
                customer_id,
                exc.message,
                extra={"customer_id": customer_id},
            )
            return None
        return UpcomingInvoiceRead(
            amount_due=invoice.get("amount_due") or 0,
            currency=invoice.get("currency"),
            period_start=invoice.get("period_start"),
            period_end=invoice.get("period_end"),
        )

    @staticmethod
    def project(
        db: Session, caller: CallerIdentity, gateway: StripeGateway
    ) -> BillingStatusRead:
        account = Accounts.get(db, caller.account_id)
        if account is None or not account.customer_id:
            return BillingStatusRead(subscription=None)
        listing = gateway.list_subscriptions(account.customer_id, status="all", limit=1)
        subscription = select_subscription(listing, account.customer_id)
        if subscription is None:
            return BillingStatusRead(subscription=None)
        try:
            read = _subscription_read(subscription)
        except (KeyError, TypeError, AttributeError) as exc:
            raise UpstreamServiceError(
                "Payment processor returned an incomplete subscription"
            ) from exc
        return BillingStatusRead(
            subscription=read,
            upcoming_invoice=BillingStatus.upcoming_invoice(
                gateway, account.customer_id, read.id
            ),
        )


billing_status = BillingStatus()
