import logging
from typing import Any

from sqlalchemy.orm import Session

from fitlife_billing.config import settings
from fitlife_billing.exceptions import (
    BillingError,
    UpstreamServiceError,
    ValidationError,
)
from fitlife_billing.metrics import BILLING_ACTIONS
from fitlife_billing.services.billing.accounts import Accounts
from fitlife_billing.services.identity import CallerIdentity
from fitlife_billing.services.payment_gateway import StripeGateway

logger = logging.getLogger(__name__)

PORTAL_RETURN_PATH = "/dashboard/billing"


def select_subscription(listing: dict[str, Any], customer_id: str) -> dict[str, Any] | None:
    """First subscription in Stripe's newest-first order."""
    data = listing.get("data") or []
    if listing.get("has_more"):
        logger.warning(
            "Customer %s has more than one matching subscription; using %s",
            customer_id,
            data[0].get("id") if data else None,
            extra={"customer_id": customer_id},
        )
    return data[0] if data else None


class BillingActions:
    @staticmethod
    def _set_cancel_flag(
        gateway: StripeGateway, customer_id: str, cancel_at_period_end: bool
    ) -> dict[str, Any]:
        listing = gateway.list_subscriptions(customer_id, status="active", limit=1)
        subscription = select_subscription(listing, customer_id)
        if subscription is None:
            logger.info(
                "Customer %s has no active subscription to update",
                customer_id,
                extra={"customer_id": customer_id},
            )
            return {"success": True}
        gateway.update_subscription(
            subscription["id"], cancel_at_period_end=cancel_at_period_end
        )
        return {"success": True}

    @staticmethod
    def cancel(db: Session, caller: CallerIdentity, gateway: StripeGateway) -> dict[str, Any]:
        customer_id = Accounts.require_customer_id(db, caller.account_id)
        return BillingActions._set_cancel_flag(gateway, customer_id, True)

    @staticmethod
    def reactivate(
        db: Session, caller: CallerIdentity, gateway: StripeGateway
    ) -> dict[str, Any]:
        customer_id = Accounts.require_customer_id(db, caller.account_id)
        return BillingActions._set_cancel_flag(gateway, customer_id, False)

    @staticmethod
    def portal(db: Session, caller: CallerIdentity, gateway: StripeGateway) -> dict[str, Any]:
        customer_id = Accounts.require_customer_id(db, caller.account_id)
        return_url = f"{settings.app_base_url.rstrip('/')}{PORTAL_RETURN_PATH}"
        session = gateway.create_billing_portal_session(customer_id, return_url)
        url = session.get("url")
        if not url:
            raise UpstreamServiceError("Payment processor returned no portal URL")
        return {"url": url}

    @staticmethod
    def perform(
        db: Session,
        caller: CallerIdentity,
        action: str,
        gateway: StripeGateway,
    ) -> dict[str, Any]:
        """Run a caller-initiated action; local state is left to the webhook feed."""
        handlers = {
            "cancel": BillingActions.cancel,
            "reactivate": BillingActions.reactivate,
            "portal": BillingActions.portal,
        }
        handler = handlers.get(action)
        if handler is None:
            raise ValidationError(f"Unknown action: {action}")
        try:
            result = handler(db, caller, gateway)
        except BillingError as exc:
            BILLING_ACTIONS.labels(action, exc.code).inc()
            raise
        BILLING_ACTIONS.labels(action, "ok").inc()
        logger.info(
            "Billing action %s completed for account %s",
            action,
            caller.account_id,
            extra={"account_id": caller.account_id},
        )
        return result


billing_actions = BillingActions()
