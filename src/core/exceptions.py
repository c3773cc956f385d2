"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Every exception carries a
machine-readable ``reason`` so API error bodies stay stable.
"""

from typing import Optional, Any, List


class ApplicationException(Exception):
    """Base exception for all application errors."""

    reason = "application_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Structured error body for API responses."""
        return {
            "error": self.message,
            "reason": self.reason,
            "details": self.details,
        }


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    reason = "domain_error"


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""

    reason = "persistence_error"


class ValidationException(ApplicationException):
    """Exception for validation errors."""

    reason = "validation_error"


class InvalidConfigException(ValidationException):
    """Client input failed validation. Never retried automatically."""

    reason = "invalid_config"

    def __init__(
        self,
        field: str,
        message: str,
        allowed: Optional[List[Any]] = None,
        details: Optional[dict] = None
    ):
        self.field = field
        self.allowed = allowed
        details = dict(details or {})
        details["field"] = field
        if allowed is not None:
            details["allowed"] = allowed
        super().__init__(message, details)


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    reason = "not_found"

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConflictException(DomainException):
    """Exception when a resource already exists."""

    reason = "conflict"


class TierLimitExceededException(DomainException):
    """Customer hit the quota of its tier; carries the upgrade path."""

    reason = "tier_limit_exceeded"

    def __init__(
        self,
        customer_id: str,
        watchers_used: int,
        max_watchers: int,
        prompt: str
    ):
        self.customer_id = customer_id
        super().__init__(
            prompt,
            {
                "current": {
                    "watchersUsed": watchers_used,
                    "maxWatchers": max_watchers,
                },
                "upgrade": {
                    "endpoint": f"/customers/{customer_id}/upgrade",
                    "benefits": [
                        "Unlimited watchers",
                        "Faster polling (5-minute minimum)",
                        "Priority support",
                    ],
                },
            }
        )


class AlreadyCancelledException(DomainException):
    """Exception when cancelling a watcher that is already cancelled."""

    reason = "already_cancelled"

    def __init__(self, watcher_id: str):
        self.watcher_id = watcher_id
        super().__init__(
            f"Watcher '{watcher_id}' is already cancelled",
            {"watcherId": watcher_id}
        )


class BillingException(DomainException):
    """Recurring charge could not be settled."""

    reason = "billing_failed"

    def __init__(self, watcher_id: str, message: str, system_error: bool = False):
        self.watcher_id = watcher_id
        self.system_error = system_error
        super().__init__(
            message,
            {"watcherId": watcher_id, "systemError": system_error}
        )


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""

    reason = "configuration_error"


class UnauthorizedException(ApplicationException):
    """Caller failed a shared-secret check."""

    reason = "unauthorized"


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    reason = "external_service_error"

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class ExecutorException(ExternalServiceException):
    """Executor check raised. Treated as a failed check, never fatal to a tick."""

    reason = "executor_error"

    def __init__(self, executor_id: str, message: str, details: Optional[dict] = None):
        self.executor_id = executor_id
        super().__init__(f"Executor {executor_id}", message, details)


class ExecutorTimeoutException(ExecutorException):
    """Executor check exceeded its time budget."""

    reason = "executor_timeout"

    def __init__(self, executor_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            executor_id,
            f"check timed out after {timeout_seconds:g}s",
            {"timeoutSeconds": timeout_seconds}
        )


class WebhookDeliveryException(ExternalServiceException):
    """Webhook delivery exhausted its retry budget."""

    reason = "webhook_delivery_failed"

    def __init__(self, url: str, attempts: int, message: str):
        self.url = url
        self.attempts = attempts
        super().__init__(
            "Webhook",
            f"delivery to {url} failed after {attempts} attempts: {message}",
            {"url": url, "attempts": attempts}
        )
