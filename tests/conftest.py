import hashlib
import hmac
import json
import os
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt

# Configure the service BEFORE any fitlife_billing imports
JWT_SECRET = "test-jwt-secret-with-at-least-32-chars"
WEBHOOK_SECRET = "whsec_test_fitlife"
STRIPE_SECRET_KEY = "sk_test_fitlife"

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["JWT_SECRET"] = JWT_SECRET
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["STRIPE_SECRET_KEY"] = STRIPE_SECRET_KEY
os.environ["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["APP_BASE_URL"] = "https://fitlife.test"
os.environ["BILLING_CURRENCY"] = "usd"
os.environ["TRIAL_PERIOD_DAYS"] = "7"
os.environ.pop("JWT_AUDIENCE", None)
os.environ.pop("JWT_ISSUER", None)
os.environ.pop("STRIPE_MAX_NETWORK_RETRIES", None)
os.environ.pop("STRIPE_API_VERSION", None)

from sqlalchemy import delete  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from fitlife_billing.db import Base, engine as _engine  # noqa: E402
from fitlife_billing.models.billing import (  # noqa: E402
    Account,
    PaymentLedgerEntry,
    SubscriptionStatus,
)
from fitlife_billing.services.payment_gateway import StripeGateway  # noqa: E402

Base.metadata.create_all(_engine)


@pytest.fixture(scope="session")
def engine():
    return _engine


@pytest.fixture()
def db_session(engine):
    """Session on the shared in-memory database; rows are wiped after each test."""
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = Session()
    try:
        yield session
    finally:
        session.rollback()
        session.execute(delete(PaymentLedgerEntry))
        session.execute(delete(Account))
        session.commit()
        session.close()


@pytest.fixture()
def account(db_session):
    """Account linked to customer ``cus_1`` with an active subscription."""
    account = Account(
        id="u1",
        email="member@example.com",
        customer_id="cus_1",
        subscription_id="sub_1",
        plan_type="standard",
        trial=False,
        subscription_status=SubscriptionStatus.active,
        cancel_at_period_end=False,
    )
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


@pytest.fixture()
def unlinked_account(db_session):
    account = Account(
        id="u2",
        email="new-member@example.com",
        subscription_status=SubscriptionStatus.none,
    )
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


@pytest.fixture()
def gateway() -> MagicMock:
    """Stripe gateway double; webhook signatures are still verified for real."""
    mock = MagicMock(spec=StripeGateway)
    mock.verify_webhook_signature.side_effect = StripeGateway().verify_webhook_signature
    return mock


# ============ FastAPI Test Client Fixtures ============


@pytest.fixture()
def client(db_session, gateway):
    """Create a test client with database and gateway dependency overrides."""
    from fitlife_billing.api.deps import get_db, get_gateway
    from fitlife_billing.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _create_id_token(account_id: str, email: str | None = None, **claims: Any) -> str:
    """Create an identity-provider JWT for testing."""
    now = datetime.now(UTC)
    payload = {
        "sub": account_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=15)).timestamp()),
        **claims,
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


@pytest.fixture()
def id_token_factory() -> Callable[..., str]:
    return _create_id_token


@pytest.fixture()
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {_create_id_token('u1', 'member@example.com')}"}


# ============ Webhook Fixtures ============


def _sign(payload: bytes, timestamp: int | None = None, secret: str = WEBHOOK_SECRET) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture()
def sign_payload() -> Callable[..., str]:
    return _sign


@pytest.fixture()
def make_event() -> Callable[..., dict[str, Any]]:
    counter = iter(range(1, 10_000))

    def _build(
        event_type: str,
        data_object: dict[str, Any],
        event_id: str | None = None,
        created: int | None = None,
    ) -> dict[str, Any]:
        return {
            "id": event_id or f"evt_{next(counter)}",
            "object": "event",
            "type": event_type,
            "created": created if created is not None else int(time.time()),
            "livemode": False,
            "data": {"object": data_object},
        }

    return _build


@pytest.fixture()
def post_webhook(client, sign_payload) -> Callable[..., Any]:
    def _post(event: dict[str, Any] | bytes, signature: str | None = None, path: str = "/webhooks/stripe"):
        body = event if isinstance(event, bytes) else json.dumps(event).encode()
        headers = {"Content-Type": "application/json"}
        headers["Stripe-Signature"] = signature if signature is not None else sign_payload(body)
        return client.post(path, content=body, headers=headers)

    return _post
