"""Caller-facing billing routes. Every route requires a verified bearer token."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fitlife_billing.api.deps import get_db, get_gateway
from fitlife_billing.schemas.billing import (
    BillingActionRequest,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    MembershipPlanRead,
)
from fitlife_billing.services import billing as billing_service
from fitlife_billing.services.auth_dependencies import require_caller
from fitlife_billing.services.identity import CallerIdentity
from fitlife_billing.services.payment_gateway import StripeGateway

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("")
def get_billing_status(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
    caller: CallerIdentity = Depends(require_caller),
) -> dict:
    status = billing_service.billing_status.project(db, caller, gateway)
    if status.subscription is None:
        return {"subscription": None}
    return status.model_dump()


@router.post("")
def perform_billing_action(
    payload: BillingActionRequest,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
    caller: CallerIdentity = Depends(require_caller),
) -> dict:
    return billing_service.billing_actions.perform(db, caller, payload.action, gateway)


@router.get("/plans", response_model=list[MembershipPlanRead])
def list_membership_plans():
    return billing_service.list_plans()


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
def create_checkout_session(
    payload: CheckoutSessionRequest,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
    caller: CallerIdentity = Depends(require_caller),
):
    return billing_service.checkout_sessions.create(
        db, caller, payload.plan_type, payload.trial, gateway
    )
