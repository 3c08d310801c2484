"""Stripe payment gateway integration."""

import json
import logging
from collections.abc import Callable
from typing import Any

import stripe

from fitlife_billing.config import settings
from fitlife_billing.exceptions import (
    GatewayNotConfiguredError,
    SignatureVerificationError,
    UpstreamServiceError,
)

logger = logging.getLogger(__name__)


def _as_dict(obj: Any) -> dict[str, Any]:
    # StripeObject renders itself as JSON; callers work on plain dicts.
    result: dict[str, Any] = json.loads(str(obj))
    return result


def _error_details(exc: stripe.StripeError) -> dict[str, Any]:
    return {"type": getattr(exc.error, "type", None), "code": exc.code}


class StripeGateway:
    """Thin wrapper around the Stripe SDK pinned to one API version."""

    def __init__(self) -> None:
        self._secret_key = settings.stripe_secret_key
        self._webhook_secret = settings.stripe_webhook_secret
        self._api_version = settings.stripe_api_version
        self._tolerance = settings.stripe_webhook_tolerance_seconds
        stripe.max_network_retries = settings.stripe_max_network_retries

    def is_configured(self) -> bool:
        return bool(self._secret_key)

    def webhooks_configured(self) -> bool:
        return bool(self._webhook_secret)

    def _request(
        self, operation: str, call: Callable[..., Any], *args: Any, **params: Any
    ) -> dict[str, Any]:
        if not self.is_configured():
            raise GatewayNotConfiguredError()
        try:
            result = call(
                *args,
                api_key=self._secret_key,
                stripe_version=self._api_version,
                **params,
            )
        except stripe.APIConnectionError as exc:
            logger.error("Stripe %s unreachable: %s", operation, exc.user_message)
            raise UpstreamServiceError("Payment processor unreachable") from exc
        except stripe.StripeError as exc:
            message = exc.user_message or "Payment processor request failed"
            logger.error("Stripe %s failed (%s): %s", operation, exc.http_status, message)
            raise UpstreamServiceError(message, details=_error_details(exc)) from exc
        return _as_dict(result)

    # ── Subscriptions ────────────────────────────────────

    def list_subscriptions(
        self, customer_id: str, status: str = "all", limit: int = 1
    ) -> dict[str, Any]:
        """List a customer's subscriptions, newest first."""
        return self._request(
            "list_subscriptions",
            stripe.Subscription.list,
            customer=customer_id,
            status=status,
            limit=limit,
        )

    def update_subscription(self, subscription_id: str, **fields: Any) -> dict[str, Any]:
        result = self._request(
            "update_subscription", stripe.Subscription.modify, subscription_id, **fields
        )
        logger.info("Updated Stripe subscription %s: %s", subscription_id, sorted(fields))
        return result

    # ── Invoices ─────────────────────────────────────────

    def retrieve_upcoming_invoice(
        self, customer_id: str, subscription_id: str | None = None
    ) -> dict[str, Any]:
        """Preview the next invoice Stripe will issue for the customer."""
        params: dict[str, Any] = {"customer": customer_id}
        if subscription_id:
            params["subscription"] = subscription_id
        return self._request(
            "retrieve_upcoming_invoice", stripe.Invoice.create_preview, **params
        )

    # ── Hosted pages ─────────────────────────────────────

    def create_billing_portal_session(
        self, customer_id: str, return_url: str
    ) -> dict[str, Any]:
        return self._request(
            "create_billing_portal_session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )

    def create_checkout_session(self, params: dict[str, Any]) -> dict[str, Any]:
        result = self._request(
            "create_checkout_session", stripe.checkout.Session.create, **params
        )
        logger.info("Created Stripe checkout session: %s", result.get("id"))
        return result

    # ── Webhook ──────────────────────────────────────────

    def verify_webhook_signature(self, payload: bytes, signature_header: str | None) -> None:
        """Validate a ``Stripe-Signature`` header against the raw body.

        Raises :class:`SignatureVerificationError` when the header is missing
        or malformed, when no ``v1`` signature matches, or when the signed
        timestamp is older than the tolerance window.
        """
        if not self.webhooks_configured():
            raise GatewayNotConfiguredError("Webhook secret not configured")
        if not signature_header:
            raise SignatureVerificationError("No signature found")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureVerificationError("Payload is not valid UTF-8") from exc
        try:
            stripe.WebhookSignature.verify_header(
                body, signature_header, self._webhook_secret, tolerance=self._tolerance
            )
        except stripe.SignatureVerificationError as exc:
            raise SignatureVerificationError(exc.user_message) from exc


stripe_gateway = StripeGateway()
