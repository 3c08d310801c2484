import logging
from typing import Any

from sqlalchemy.orm import Session

from fitlife_billing.config import settings
from fitlife_billing.exceptions import UpstreamServiceError
from fitlife_billing.metrics import BILLING_ACTIONS
from fitlife_billing.services.billing.accounts import Accounts
from fitlife_billing.services.billing.plans import get_plan
from fitlife_billing.services.identity import CallerIdentity
from fitlife_billing.services.payment_gateway import StripeGateway

logger = logging.getLogger(__name__)


class CheckoutSessions:
    @staticmethod
    def build_params(
        account_id: str,
        plan_type: str,
        trial: bool,
        customer_id: str | None = None,
        email: str | None = None,
    ) -> dict[str, Any]:
        """Stripe Checkout parameters for a monthly membership subscription."""
        plan = get_plan(plan_type)
        base_url = settings.app_base_url.rstrip("/")
        metadata = {
            "userId": account_id,
            "planType": plan.key,
            "trial": "true" if trial else "false",
        }
        params: dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": settings.billing_currency,
                        "product_data": {
                            "name": f"FitLife {plan.name} Membership",
                            "description": f"Monthly {plan.name} gym membership",
                        },
                        "unit_amount": plan.unit_amount,
                        "recurring": {"interval": plan.interval},
                    },
                    "quantity": 1,
                }
            ],
            "allow_promotion_codes": True,
            "subscription_data": {
                "trial_period_days": settings.trial_period_days if trial else None,
                "metadata": metadata,
            },
            "metadata": metadata,
            "client_reference_id": account_id,
            "success_url": f"{base_url}/dashboard?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{base_url}/join?cancelled=true",
        }
        if customer_id:
            params["customer"] = customer_id
        elif email:
            params["customer_email"] = email
        return params

    @staticmethod
    def create(
        db: Session,
        caller: CallerIdentity,
        plan_type: str,
        trial: bool,
        gateway: StripeGateway,
    ) -> dict[str, Any]:
        plan = get_plan(plan_type)
        account = Accounts.get_or_create(db, caller.account_id, email=caller.email)
        params = CheckoutSessions.build_params(
            account.id,
            plan.key,
            trial,
            customer_id=account.customer_id,
            email=account.email,
        )
        try:
            session = gateway.create_checkout_session(params)
        except UpstreamServiceError:
            BILLING_ACTIONS.labels("checkout", "upstream_error").inc()
            raise
        if not session.get("id"):
            raise UpstreamServiceError("Payment processor returned no checkout session")
        BILLING_ACTIONS.labels("checkout", "ok").inc()
        logger.info(
            "Started %s checkout for account %s (trial=%s)",
            plan.key,
            account.id,
            trial,
            extra={"account_id": account.id},
        )
        return {"session_id": session["id"], "url": session.get("url")}


checkout_sessions = CheckoutSessions()
