"""Tests for tenant catalogue and result models."""

from datetime import datetime, timezone

import pytest

from sm_automation.core.exceptions import ValidationError
from sm_automation.models.results import (
    AutomationResult,
    LoginAttempt,
    SnapshotResult,
    isoformat_utc,
)
from sm_automation.models.tenants import (
    TARGETS,
    TENANTS,
    Target,
    get_tenant,
    resolve_target,
    service_id_for,
)
from sm_automation.state_machine.states import FailureReason, LoginState


class TestTenants:
    """Tests for tenant lookup."""

    def test_lookup_by_store_key(self):
        assert get_tenant("sefton").label == "Sefton Park"

    def test_lookup_by_window_key(self):
        assert get_tenant("trail-oldswan") is TENANTS["oldswan"]

    def test_lookup_is_case_insensitive(self):
        assert get_tenant(" ALLERTON ").key == "allerton"

    def test_unknown_tenant(self):
        with pytest.raises(ValidationError) as exc_info:
            get_tenant("bootle")
        assert exc_info.value.field == "account"

    def test_default_targets_exist(self):
        for tenant in TENANTS.values():
            assert tenant.default_target in TARGETS

    def test_service_ids(self):
        assert service_id_for("allerton") == "sushimetrics-trail-allerton"
        assert service_id_for("attensi") == "sushimetrics-attensi"
        assert service_id_for("Pop-Up") == "sushimetrics-pop-up"

    def test_partitions(self):
        assert TENANTS["sefton"].partition == "persist:trail-sefton"

    def test_dashboard_hosts(self):
        assert TENANTS["oldswan"].dashboard_host == "web.trailapp.com"
        assert TENANTS["attensi"].dashboard_host == "admin.attensi.com"


class TestResolveTarget:
    """Tests for target resolution."""

    def test_known_key(self):
        assert resolve_target("daily-report").url == "https://web.trailapp.com/reports#/scores"

    def test_absolute_url_when_allowed(self):
        target = resolve_target("https://admin.attensi.com/yo/reports", allow_urls=True)
        assert target.url == "https://admin.attensi.com/yo/reports"
        assert target.label == "admin.attensi.com"

    def test_absolute_url_rejected_by_default(self):
        with pytest.raises(ValidationError):
            resolve_target("https://admin.attensi.com/yo/reports")

    def test_target_passthrough(self):
        target = Target("custom", "Custom", "https://example.com/")
        assert resolve_target(target, allow_urls=True) is target
        assert resolve_target(TARGETS["daily-report"]) is TARGETS["daily-report"]

    def test_lookalike_target_rejected(self):
        """Test that a Target reusing a catalogue key with another URL is refused."""
        with pytest.raises(ValidationError):
            resolve_target(Target("daily-report", "Daily Report", "https://evil.example/"))

    @pytest.mark.parametrize("value", ["weekly", "", "ftp://example.com/file", "/relative/path"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError) as exc_info:
            resolve_target(value)
        assert exc_info.value.field == "reportType"


class TestResults:
    """Tests for result serialization."""

    def test_isoformat_utc(self):
        value = datetime(2025, 3, 1, 12, 30, 5, 123456, tzinfo=timezone.utc)
        assert isoformat_utc(value) == "2025-03-01T12:30:05.123Z"

    def test_naive_timestamp_treated_as_utc(self):
        assert isoformat_utc(datetime(2025, 3, 1)) == "2025-03-01T00:00:00.000Z"

    def test_success_shape(self):
        result = AutomationResult(
            success=True,
            url="https://web.trailapp.com/trail#/",
            snapshot=SnapshotResult(encoded_image=b"abc"),
        )
        data = result.to_dict()
        assert set(data) == {"success", "timestamp", "url", "screenshot"}
        assert data["screenshot"] == "data:image/jpeg;base64,YWJj"

    def test_failure_shape(self):
        data = AutomationResult(success=False, error="Login failed").to_dict()
        assert data == {"success": False, "error": "Login failed"}

    def test_final_state(self):
        attempt = LoginAttempt(target="https://example.com", state=LoginState.FAILED)
        assert AutomationResult(success=False, attempt=attempt).final_state == "failed"
        assert AutomationResult(success=False).final_state == ""

    def test_attempt_to_dict(self):
        attempt = LoginAttempt(
            target="https://example.com",
            state=LoginState.FAILED,
            failure=FailureReason.FIELDS_NOT_FOUND,
            history=[LoginState.NOT_STARTED, LoginState.FAILED],
        )
        data = attempt.to_dict()
        assert data["failure"] == "fields_not_found"
        assert data["history"] == ["not_started", "failed"]
        assert attempt.failed and not attempt.confirmed
