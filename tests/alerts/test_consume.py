"""
Tests for alert worker configuration and CLI.
"""

from unittest.mock import patch

import pytest

from src.alerts.consume import build_config, main, parse_arguments
from src.alerts.models import AlertPolicy, AlertWorkerConfig
from src.anomaly.errors import ConfigurationError

ENV_VARS = [
    "EVENT_BUS_SOURCE",
    "ALERT_CHANNEL",
    "ALERT_ON_ALARM",
    "ALERT_ON_OK",
    "WEBHOOK_TIMEOUT_SECONDS",
    "KAFKA_GROUP_ID",
    "REDELIVERY_BACKOFF_SECONDS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestAlertPolicy:
    """Tests for AlertPolicy."""

    def test_defaults_allow_both(self):
        policy = AlertPolicy(channel_ref="alerts")

        assert policy.allows("alarm") is True
        assert policy.allows("ok") is True

    def test_alarms_only(self):
        policy = AlertPolicy(notify_on_ok=False, channel_ref="alerts")

        assert policy.allows("alarm") is True
        assert policy.allows("ok") is False

    def test_unknown_detail_type(self):
        assert AlertPolicy(channel_ref="alerts").allows("warning") is False


class TestAlertWorkerConfig:
    """Tests for AlertWorkerConfig validation."""

    def test_missing_channel(self):
        with pytest.raises(ConfigurationError, match="channel_ref"):
            AlertWorkerConfig(event_bus_source="analytics-test")

    def test_invalid_offset_reset(self):
        with pytest.raises(ConfigurationError, match="kafka_auto_offset_reset"):
            AlertWorkerConfig(
                event_bus_source="analytics-test",
                policy=AlertPolicy(channel_ref="alerts"),
                kafka_auto_offset_reset="middle",
            )

    @pytest.mark.parametrize(
        "channel_ref, webhook",
        [("https://hooks.example.com/a", True), ("http://localhost:8080/a", True), ("alerts", False)],
    )
    def test_uses_webhook(self, channel_ref, webhook):
        config = AlertWorkerConfig(
            event_bus_source="analytics-test",
            policy=AlertPolicy(channel_ref=channel_ref),
        )

        assert config.uses_webhook is webhook


class TestBuildConfig:
    """Tests for configuration from arguments and environment."""

    def test_from_arguments(self):
        args = parse_arguments(
            ["--source", "analytics-prod", "--channel", "alerts", "--alert-on-ok", "false"]
        )

        config = build_config(args)

        assert config.event_bus_source == "analytics-prod"
        assert config.policy == AlertPolicy(
            notify_on_alarm=True, notify_on_ok=False, channel_ref="alerts"
        )
        assert config.kafka_group_id == "anomaly-alert-worker"
        assert config.webhook_timeout_seconds == 10.0
        assert config.redelivery_backoff_seconds == 5.0

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("EVENT_BUS_SOURCE", "analytics-prod")
        monkeypatch.setenv("ALERT_CHANNEL", "https://hooks.example.com/alerts")
        monkeypatch.setenv("ALERT_ON_ALARM", "false")
        monkeypatch.setenv("WEBHOOK_TIMEOUT_SECONDS", "2.5")

        config = build_config(parse_arguments([]))

        assert config.uses_webhook
        assert config.policy.notify_on_alarm is False
        assert config.webhook_timeout_seconds == 2.5

    def test_missing_source(self):
        with pytest.raises(ConfigurationError, match="EVENT_BUS_SOURCE"):
            build_config(parse_arguments(["--channel", "alerts"]))

    def test_missing_channel(self):
        with pytest.raises(ConfigurationError, match="ALERT_CHANNEL"):
            build_config(parse_arguments(["--source", "analytics-prod"]))

    def test_invalid_flag(self):
        with pytest.raises(ConfigurationError, match="ALERT_ON_OK"):
            build_config(
                parse_arguments(
                    ["--source", "analytics-prod", "--channel", "alerts", "--alert-on-ok", "maybe"]
                )
            )


class TestMain:
    """Tests for CLI exit codes."""

    def test_configuration_error_exit_code(self):
        assert main(["--source", "analytics-prod"]) == 2

    @patch("src.alerts.consume.AlertWorker")
    def test_runs_worker(self, mock_worker_class):
        assert main(["--source", "analytics-prod", "--channel", "alerts", "--duration", "5"]) == 0

        mock_worker_class.return_value.run.assert_called_once_with(duration_seconds=5)

    @patch("src.alerts.consume.AlertWorker")
    def test_worker_failure_exit_code(self, mock_worker_class):
        mock_worker_class.side_effect = Exception("NoBrokersAvailable")

        assert main(["--source", "analytics-prod", "--channel", "alerts"]) == 1
