"""Re-apply each linked account's newest Stripe subscription.

Repairs accounts that an out-of-order webhook delivery rolled back.
"""

import argparse
import logging

from dotenv import load_dotenv
from sqlalchemy import select

from fitlife_billing.db import SessionLocal
from fitlife_billing.exceptions import BillingError
from fitlife_billing.logging import configure_logging
from fitlife_billing.models.billing import Account
from fitlife_billing.services.billing import SubscriptionReconciler
from fitlife_billing.services.payment_gateway import StripeGateway

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resync subscription state from Stripe.")
    parser.add_argument(
        "--account-id",
        action="append",
        dest="account_ids",
        help="Account to resync; repeatable. Defaults to every linked account.",
    )
    return parser.parse_args()


def main() -> int:
    load_dotenv()
    configure_logging()
    args = parse_args()
    gateway = StripeGateway()
    db = SessionLocal()
    failures = 0
    try:
        account_ids = args.account_ids or list(
            db.scalars(select(Account.id).where(Account.customer_id.is_not(None)))
        )
        reconciler = SubscriptionReconciler(db)
        for account_id in account_ids:
            try:
                reconciler.resync_account(account_id, gateway)
            except BillingError as exc:
                failures += 1
                logger.error(
                    "Resync failed for account %s: %s",
                    account_id,
                    exc.message,
                    extra={"account_id": account_id},
                )
        print(f"Resynced {len(account_ids) - failures}/{len(account_ids)} accounts.")
    finally:
        db.close()
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
