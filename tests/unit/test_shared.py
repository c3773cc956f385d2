"""
Unit tests for the shared kernel: JSON log formatting and the mapping of
application exceptions to HTTP responses.
"""

import json
import logging

import pytest

from src.core.exceptions import (
    AlreadyCancelledException,
    ApplicationException,
    ConflictException,
    ExecutorTimeoutException,
    InvalidConfigException,
    RepositoryException,
    ResourceNotFoundException,
    TierLimitExceededException,
    UnauthorizedException,
)
from src.shared.api.middleware import error_body, status_for_exception
from src.shared.infrastructure.logging import CustomJsonFormatter


def format_record(**extra) -> dict:
    formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="testing")
    record = logging.LogRecord("sentinel.test", logging.INFO, __file__, 1, "Watcher created", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


class TestCustomJsonFormatter:
    def test_adds_context_fields(self):
        entry = format_record(correlation_id="req-1", watcher_id="w1")
        assert entry["message"] == "Watcher created"
        assert entry["correlation_id"] == "req-1"
        assert entry["environment"] == "testing"
        assert entry["watcher_id"] == "w1"
        assert "timestamp" in entry

    def test_redacts_credentials(self):
        entry = format_record(cron_secret="s3cret", grafana_api_key="glc_123", tokens_used=3)
        assert entry["cron_secret"] == "***REDACTED***"
        assert entry["grafana_api_key"] == "***REDACTED***"
        assert entry["tokens_used"] == 3


class TestExceptionMapping:
    @pytest.mark.parametrize("exc, status", [
        (InvalidConfigException("ttl", "Invalid ttl"), 400),
        (AlreadyCancelledException("w1"), 400),
        (UnauthorizedException("nope"), 401),
        (TierLimitExceededException("c1", 1, 1, "Upgrade"), 402),
        (ResourceNotFoundException("Watcher", "w1"), 404),
        (ConflictException("dup"), 409),
        (ExecutorTimeoutException("token-price", 30), 502),
        (RepositoryException("db down"), 500),
        (ApplicationException("generic"), 400),
        (RuntimeError("boom"), 500),
    ])
    def test_status_codes(self, exc, status):
        assert status_for_exception(exc) == status

    def test_error_body_hides_unknown_errors(self):
        assert error_body(RuntimeError("secret detail")) == {
            "error": "Internal server error",
            "reason": "internal_error",
            "details": {},
        }

    def test_error_body_for_application_errors(self):
        body = error_body(InvalidConfigException("ttl", "Invalid ttl", allowed=[24, None]))
        assert body == {
            "error": "Invalid ttl",
            "reason": "invalid_config",
            "details": {"field": "ttl", "allowed": [24, None]},
        }
