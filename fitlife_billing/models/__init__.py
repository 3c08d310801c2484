from fitlife_billing.models.billing import (  # noqa: F401
    Account,
    PaymentLedgerEntry,
    PaymentOutcome,
    SubscriptionStatus,
)
