"""
test_core.py — Cross-cutting infrastructure: settings, error hierarchy,
structured logging and health aggregation.

Run with:
    pytest tests/test_core.py -v
"""

from __future__ import annotations

import asyncio
import json
import logging

from backend.app.core.config import Settings
from backend.app.core.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NoContactsError,
    NotFoundError,
    SOSAPIError,
    TransportFailure,
    ValidationError,
)
from backend.app.core.health import HealthStatus, check_sms_gateway, run_health_check
from backend.app.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    bind_request_context,
    get_request_context,
    set_request_context,
)


class TestSettings:

    def test_defaults(self):
        s = Settings()
        assert s.PORT == 3002
        assert s.SMS_TIMEOUT_SECONDS == 15.0
        assert s.FANOUT_MAX_CONCURRENCY == 10

    def test_sms_configured_needs_all_three(self):
        assert not Settings(TWILIO_ACCOUNT_SID="AC1", TWILIO_AUTH_TOKEN="t", TWILIO_PHONE_NUMBER=None).sms_configured
        assert Settings(TWILIO_ACCOUNT_SID="AC1", TWILIO_AUTH_TOKEN="t", TWILIO_PHONE_NUMBER="+1500").sms_configured

    def test_environment_flags(self):
        assert Settings(ENVIRONMENT="production").is_production
        assert Settings(ENVIRONMENT="development").is_development


class TestErrorHierarchy:

    def test_status_codes(self):
        cases = [
            (NotFoundError("SOS alert", alert_id="a1"), 404, "NOT_FOUND"),
            (ValidationError("bad", field="latitude"), 422, "VALIDATION_ERROR"),
            (ForbiddenError("no"), 403, "FORBIDDEN"),
            (InvalidTransitionError("a1", "resolved", "active"), 400, "INVALID_TRANSITION"),
            (NoContactsError("u1"), 400, "NO_CONTACTS"),
            (TransportFailure("down"), 502, "TRANSPORT_FAILURE"),
        ]
        for exc, status, code in cases:
            assert isinstance(exc, SOSAPIError)
            assert exc.status_code == status
            assert exc.error_code == code

    def test_not_found_details(self):
        exc = NotFoundError("SOS alert", alert_id="a1")
        assert exc.message == "SOS alert not found"
        assert exc.details == {"resource": "SOS alert", "alert_id": "a1"}

    def test_invalid_transition_message(self):
        exc = InvalidTransitionError("a1", "resolved", "false_alarm")
        assert exc.message == "Can only update active alerts"
        assert exc.details["current_status"] == "resolved"

    def test_validation_field(self):
        assert ValidationError("bad").field is None
        assert ValidationError("bad", field="radius").field == "radius"


class TestLogContext:

    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("sos", logging.INFO, __file__, 10, "Alert %s", ("a1",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_merges_context_and_extra_fields(self):
        set_request_context(request_id="req-1", user_id="u-alice", endpoint="/api/v1/sos/create")
        try:
            entry = json.loads(JSONFormatter().format(
                self._record(alert_id="a1", recipient_count=3, unrelated="x")
            ))
        finally:
            set_request_context()

        assert entry["message"] == "Alert a1"
        assert entry["request_id"] == "req-1"
        assert entry["user_id"] == "u-alice"
        assert entry["endpoint"] == "/api/v1/sos/create"
        assert entry["alert_id"] == "a1"
        assert entry["recipient_count"] == 3
        assert "unrelated" not in entry

    def test_bound_alert_reaches_records_without_extra(self):
        set_request_context(request_id="req-2", user_id=None)
        try:
            bind_request_context(alert_id="a9")
            entry = json.loads(JSONFormatter().format(self._record()))
            tags = PrettyFormatter.tags(get_request_context())
        finally:
            set_request_context()

        assert entry["alert_id"] == "a9"
        assert "user_id" not in entry
        assert tags == " [req-2 alert=a9]"

    def test_bind_outside_request_is_ignored(self):
        set_request_context()
        bind_request_context(alert_id="a1")
        assert get_request_context() == {}


class TestHealth:

    def test_unconfigured_sms_is_degraded(self):
        comp = asyncio.run(check_sms_gateway(False))
        assert comp.status == HealthStatus.DEGRADED

    def test_missing_database_is_unhealthy(self):
        report = asyncio.run(run_health_check(engine=None, sms_configured=True))
        assert report.status == HealthStatus.UNHEALTHY
        data = report.to_dict()
        db = [c for c in data["components"] if c["name"] == "database"][0]
        assert db["status"] == "unhealthy"
