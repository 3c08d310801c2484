import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fitlife_billing.db import Base, TimestampMixin

# ── Enums ────────────────────────────────────────────────


class SubscriptionStatus(str, enum.Enum):
    none = "none"
    incomplete = "incomplete"
    incomplete_expired = "incomplete_expired"
    trialing = "trialing"
    active = "active"
    past_due = "past_due"
    unpaid = "unpaid"
    paused = "paused"
    cancelled = "cancelled"


class PaymentOutcome(str, enum.Enum):
    succeeded = "succeeded"
    failed = "failed"


# ── Account projection ───────────────────────────────────


class Account(TimestampMixin, Base):
    """Local projection of a member's billing linkage and subscription state.

    ``id`` is the identity provider's user id. ``customer_id`` is unique: a
    Stripe customer belongs to exactly one account.
    """

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255))

    customer_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, index=True
    )
    subscription_id: Mapped[str | None] = mapped_column(String(255))
    plan_type: Mapped[str | None] = mapped_column(String(40))
    trial: Mapped[bool] = mapped_column(Boolean, default=False)

    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus), default=SubscriptionStatus.none
    )
    current_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    trial_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False)

    last_event_id: Mapped[str | None] = mapped_column(String(255))
    last_event_created: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    ledger_entries = relationship("PaymentLedgerEntry", back_populates="account")


# ── Payment ledger ───────────────────────────────────────


class PaymentLedgerEntry(Base):
    """One invoice outcome. Rows are inserted once and never modified."""

    __tablename__ = "payment_ledger"
    __table_args__ = (
        UniqueConstraint(
            "invoice_id",
            "outcome",
            name="uq_payment_ledger_invoice_outcome",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("accounts.id"), nullable=False, index=True
    )
    invoice_id: Mapped[str] = mapped_column(String(255), nullable=False)
    outcome: Mapped[PaymentOutcome] = mapped_column(
        Enum(PaymentOutcome), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    invoice_status: Mapped[str | None] = mapped_column(String(40))
    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    account = relationship("Account", back_populates="ledger_entries")
