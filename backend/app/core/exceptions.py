"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No sensitive data leaks in error messages

Billing errors follow one propagation rule: write-intent paths (subscribe,
upgrade, portal) raise to the caller, passive reconciliation paths (webhooks,
session sync on read) log and degrade.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        # WHY: Filter out sensitive fields to prevent data leaks
        sensitive_fields = {"password", "token", "secret", "key", "api_key", "signature"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Validation & Resource Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


class PayloadTooLargeError(ValidationError):
    """
    Raised when a request body exceeds the accepted size.

    HTTP Status: 413 Payload Too Large
    """

    status_code = 413
    default_message = "Payload too large"


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class TenantNotFoundError(ResourceNotFoundError):
    default_message = "Tenant not found"


# ============================================================================
# Billing Exceptions
# ============================================================================


class BillingError(AppException):
    """
    Base exception for subscription billing operations.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Billing operation failed"


class PlanNotConfiguredError(BillingError):
    """
    Raised when a tier/interval pair has no configured Stripe price.

    WHY: A missing price is a configuration problem and must never be
    silently defaulted when a tenant tries to subscribe or upgrade.

    HTTP Status: 400 Bad Request
    """

    default_message = "Plan pricing not configured"


class NoActiveSubscriptionError(BillingError):
    """
    Raised when an upgrade is requested without a subscription on file.

    WHY: The upgrade path only swaps prices on an existing subscription;
    initial subscriptions must go through checkout.

    HTTP Status: 400 Bad Request
    """

    default_message = "No active subscription to upgrade. Please subscribe first."


class AlreadyOnPlanError(BillingError):
    """
    Raised when an upgrade targets the subscription's current price.

    WHY: The caller must learn that nothing changed rather than receive
    a silent success.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "You are already on this plan"


class AlreadySubscribedError(BillingError):
    """
    Raised when checkout is requested while a subscription is on file.

    WHY: A second checkout would create a second, separately billed
    subscription; plan changes go through the upgrade path.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Tenant already has an active subscription. Use upgrade to change plans."


# ============================================================================
# External Service Exceptions
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    WHY: External API failures should return 502 Bad Gateway, indicating
    the problem is with an upstream service, not our application.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class StripeError(ExternalServiceError):
    """
    Raised when Stripe API calls fail.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Payment processing error"


# ============================================================================
# Webhook Exceptions
# ============================================================================


class WebhookError(AppException):
    """
    Base exception for inbound webhook processing.

    WHY: A 5xx response tells Stripe to redeliver the event, which is what
    we want for failures a retry can fix.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Webhook processing failed"


class WebhookConfigurationError(WebhookError):
    """Raised when no signing secret is configured for the webhook stream."""

    default_message = "Webhook secret not configured"


class WebhookSignatureError(WebhookError):
    """
    Raised when a webhook signature is missing or does not verify.

    WHY: Authenticity failures are hard rejections; nothing in the payload
    is parsed or acted on.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid webhook signature"
