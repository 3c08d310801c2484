"""Billing error taxonomy.

Each error carries the HTTP status and the stable ``code`` rendered in the
error envelope by :func:`fitlife_billing.errors.register_error_handlers`.
"""
from __future__ import annotations


class BillingError(Exception):
    status_code = 500
    code = "billing_error"
    default_message = "Billing request failed"

    def __init__(self, message: str | None = None, details: object = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class SignatureVerificationError(BillingError):
    """Webhook signature missing, malformed, mismatched or outside tolerance."""

    status_code = 400
    code = "invalid_signature"
    default_message = "Invalid signature"


class MalformedEventError(BillingError):
    status_code = 400
    code = "malformed_event"
    default_message = "Malformed event payload"


class ValidationError(BillingError):
    status_code = 400
    code = "validation_error"
    default_message = "Validation error"


class AuthenticationError(BillingError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class NotFoundError(BillingError):
    status_code = 404
    code = "not_found"
    default_message = "No customer found"


class UpstreamServiceError(BillingError):
    """A call to the database or the payment processor failed."""

    status_code = 500
    code = "upstream_error"
    default_message = "Upstream service failed"


class GatewayNotConfiguredError(BillingError):
    status_code = 503
    code = "gateway_not_configured"
    default_message = "Payment gateway not configured"
