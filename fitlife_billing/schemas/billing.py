from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# ── Caller requests ──────────────────────────────────────


class BillingActionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    action: Literal["cancel", "reactivate", "portal"]


class CheckoutSessionRequest(BaseModel):
    plan_type: str = Field(
        min_length=1, max_length=40, validation_alias="planType"
    )
    trial: bool = False

    model_config = ConfigDict(populate_by_name=True)


# ── Responses ────────────────────────────────────────────


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str | None = None


class PlanRead(BaseModel):
    nickname: str | None = None
    amount: int | None = None
    interval: str | None = None


class SubscriptionRead(BaseModel):
    id: str
    status: str
    current_period_start: int | None = None
    current_period_end: int | None = None
    trial_end: int | None = None
    cancel_at_period_end: bool = False
    plan: PlanRead


class UpcomingInvoiceRead(BaseModel):
    amount_due: int
    currency: str | None = None
    period_start: int | None = None
    period_end: int | None = None


class BillingStatusRead(BaseModel):
    subscription: SubscriptionRead | None = None
    upcoming_invoice: UpcomingInvoiceRead | None = None


class MembershipPlanRead(BaseModel):
    key: str
    name: str
    price: int
    interval: str
    features: list[str]


class WebhookAck(BaseModel):
    received: bool = True
    event_id: str
    type: str
    handled: bool
