"""Stripe webhook route: no caller auth, the signature is the credential."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from fitlife_billing.api.deps import get_db, get_gateway
from fitlife_billing.schemas.billing import WebhookAck
from fitlife_billing.services.billing import handle_stripe_webhook
from fitlife_billing.services.payment_gateway import StripeGateway

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    # Signatures cover the exact bytes Stripe sent.
    body = await request.body()
    signature = request.headers.get("stripe-signature")
    return await run_in_threadpool(handle_stripe_webhook, db, body, signature, gateway)
