from collections.abc import Generator

from sqlalchemy.orm import Session

from fitlife_billing.db import SessionLocal
from fitlife_billing.services.payment_gateway import StripeGateway, stripe_gateway


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_gateway() -> StripeGateway:
    return stripe_gateway
