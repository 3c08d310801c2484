from fitlife_billing.services.billing.accounts import Accounts, accounts
from fitlife_billing.services.billing.actions import BillingActions, billing_actions
from fitlife_billing.services.billing.checkout import CheckoutSessions, checkout_sessions
from fitlife_billing.services.billing.plans import PLANS, MembershipPlan, get_plan, list_plans
from fitlife_billing.services.billing.reconciler import (
    SubscriptionReconciler,
    normalize_status,
)
from fitlife_billing.services.billing.status import BillingStatus, billing_status
from fitlife_billing.services.billing.webhooks import (
    EVENT_HANDLERS,
    InboundEvent,
    dispatch_event,
    handle_stripe_webhook,
    parse_event,
)

__all__ = [
    "EVENT_HANDLERS",
    "PLANS",
    "Accounts",
    "BillingActions",
    "BillingStatus",
    "CheckoutSessions",
    "InboundEvent",
    "MembershipPlan",
    "SubscriptionReconciler",
    "accounts",
    "billing_actions",
    "billing_status",
    "checkout_sessions",
    "dispatch_event",
    "get_plan",
    "handle_stripe_webhook",
    "list_plans",
    "normalize_status",
    "parse_event",
]
