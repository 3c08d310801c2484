import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from fitlife_billing.exceptions import NotFoundError
from fitlife_billing.models.billing import Account

logger = logging.getLogger(__name__)


class Accounts:
    @staticmethod
    def get(db: Session, account_id: str) -> Account | None:
        return db.get(Account, account_id)

    @staticmethod
    def get_by_customer_id(db: Session, customer_id: str) -> Account | None:
        stmt = select(Account).where(Account.customer_id == customer_id).limit(1)
        return db.scalar(stmt)

    @staticmethod
    def get_or_create(db: Session, account_id: str, email: str | None = None) -> Account:
        account = db.get(Account, account_id)
        if account:
            if email and not account.email:
                account.email = email
                db.commit()
            return account
        account = Account(id=account_id, email=email)
        db.add(account)
        db.commit()
        db.refresh(account)
        logger.info("Created Account: %s", account.id, extra={"account_id": account.id})
        return account

    @staticmethod
    def require_customer_id(db: Session, account_id: str) -> str:
        account = db.get(Account, account_id)
        if not account or not account.customer_id:
            raise NotFoundError("No customer found")
        return account.customer_id


accounts = Accounts()
