"""Tests for runner state value types and pod inspection."""

from datetime import datetime, timedelta, timezone

import pytest
from kubernetes.client import V1Pod

from runner_orchestrator.runner_state import (
    RemoteRegistration,
    RetrySignal,
    RunnerScope,
    TickResult,
    format_marker_timestamp,
    parse_marker_timestamp,
    runner_container_stopped,
)

from helpers import make_pod


class TestRunnerScope:
    @pytest.mark.parametrize("kwargs", [
        {},
        {"enterprise": "acme", "organization": "octo"},
        {"organization": "octo", "repository": "octo/hello"},
        {"repository": "hello"},
    ])
    def test_invalid_scopes(self, kwargs):
        with pytest.raises(ValueError):
            RunnerScope(**kwargs)

    def test_api_paths(self):
        assert RunnerScope(enterprise="acme").api_path == "enterprises/acme"
        assert RunnerScope(organization="octo").api_path == "orgs/octo"
        assert RunnerScope(repository="octo/hello").api_path == "repos/octo/hello"


class TestRemoteRegistration:
    def test_from_api_defaults(self):
        assert RemoteRegistration.from_api({"id": 5, "name": "w1"}) == RemoteRegistration(id=5, name="w1")

    def test_missing_id_is_zero(self):
        assert RemoteRegistration.from_api({"name": "w1"}).id == 0


class TestMarkerTimestamps:
    def test_format_is_utc_rfc3339(self):
        ts = datetime(2024, 5, 1, 14, 0, 0, 123456, tzinfo=timezone(timedelta(hours=2)))
        assert format_marker_timestamp(ts) == "2024-05-01T12:00:00Z"

    def test_format_naive_as_utc(self):
        assert format_marker_timestamp(datetime(2024, 5, 1, 12, 0, 0)) == "2024-05-01T12:00:00Z"

    @pytest.mark.parametrize("value", [
        "2024-05-01T12:00:00Z",
        "2024-05-01T14:00:00+02:00",
        "2024-05-01T12:00:00",
    ])
    def test_parse(self, value):
        assert parse_marker_timestamp(value) == datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", "yesterday", "2024-13-01T00:00:00Z"])
    def test_parse_malformed(self, value):
        with pytest.raises(ValueError):
            parse_marker_timestamp(value)


class TestRunnerContainerStopped:
    def test_running_container(self):
        assert not runner_container_stopped(make_pod(), "runner")

    def test_runner_exited_zero_while_sidecar_runs(self):
        assert runner_container_stopped(make_pod(runner_exit_code=0), "runner")

    def test_runner_exited_non_zero(self):
        assert not runner_container_stopped(make_pod(runner_exit_code=1), "runner")

    def test_other_container_exited_zero(self):
        pod = make_pod(runner_exit_code=0, container_name="docker")
        assert not runner_container_stopped(pod, "runner")

    def test_pod_succeeded(self):
        assert runner_container_stopped(make_pod(phase="Succeeded"), "runner")

    def test_pod_failed(self):
        assert not runner_container_stopped(make_pod(phase="Failed", runner_exit_code=0), "runner")

    def test_no_status(self):
        assert not runner_container_stopped(V1Pod(), "runner")


class TestTickResult:
    def test_safe_to_delete(self):
        result = TickResult(pod=make_pod())
        assert result.safe_to_delete
        assert result.error is None

    def test_retry_exposes_error(self):
        err = RuntimeError("boom")
        result = TickResult(retry=RetrySignal(0, err))
        assert not result.safe_to_delete
        assert result.error is err


class TestLenientMarkerParsing:
    """Other writers may use any valid RFC3339 form."""

    @pytest.mark.parametrize("value,expected", [
        ("2024-05-01t12:00:00z", datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)),
        ("2024-05-01T12:00:00.5Z", datetime(2024, 5, 1, 12, 0, 0, 500000, tzinfo=timezone.utc)),
        ("2024-05-01T12:00:00.123456789Z", datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)),
    ])
    def test_parse_rfc3339_variants(self, value, expected):
        assert parse_marker_timestamp(value) == expected
