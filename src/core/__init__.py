"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from src.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    InvalidConfigException,
    ResourceNotFoundException,
    ConflictException,
    TierLimitExceededException,
    AlreadyCancelledException,
    BillingException,
    ConfigurationException,
    UnauthorizedException,
    ExternalServiceException,
    ExecutorException,
    ExecutorTimeoutException,
    WebhookDeliveryException,
)
from src.core.models import DomainModel, generate_id, utc_now

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "InvalidConfigException",
    "ResourceNotFoundException",
    "ConflictException",
    "TierLimitExceededException",
    "AlreadyCancelledException",
    "BillingException",
    "ConfigurationException",
    "UnauthorizedException",
    "ExternalServiceException",
    "ExecutorException",
    "ExecutorTimeoutException",
    "WebhookDeliveryException",
    "DomainModel",
    "generate_id",
    "utc_now",
]
