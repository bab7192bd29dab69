"""Tests for configuration handling."""

import tempfile
from pathlib import Path

import pytest

from service_guard.config import (
    ConfigurationError,
    GuardConfig,
    ProbeKind,
    TargetConfig,
    parse_target_list,
)


class TestParseTargetList:
    """Test target list parsing."""

    def test_mixed_separators(self):
        """Names split on spaces, commas and semicolons."""
        assert parse_target_list("nginx, api;worker  db") == ["nginx", "api", "worker", "db"]

    def test_empty(self):
        assert parse_target_list("") == []
        assert parse_target_list(None) == []
        assert parse_target_list(" ,; ") == []

    def test_duplicates_case_insensitive(self):
        """Later duplicates differing only in case are dropped."""
        assert parse_target_list("Nginx nginx NGINX api") == ["Nginx", "api"]


class TestProbeKind:
    """Test DiagnosticType parsing."""

    def test_missing_defaults_to_native(self):
        assert ProbeKind.parse(None) is ProbeKind.NATIVE_SERVICE
        assert ProbeKind.parse("") is ProbeKind.NATIVE_SERVICE

    def test_aliases(self):
        assert ProbeKind.parse("ServiceController") is ProbeKind.NATIVE_SERVICE
        assert ProbeKind.parse("process") is ProbeKind.PROCESS_NAME
        assert ProbeKind.parse("ProcessName") is ProbeKind.PROCESS_NAME
        assert ProbeKind.parse("HTTPREQUEST") is ProbeKind.HTTP_REQUEST

    def test_unknown(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ProbeKind.parse("Telepathy")
        assert "Telepathy" in str(exc_info.value)


class TestTargetConfig:
    """Test TargetConfig validation."""

    def test_native_service_needs_nothing(self):
        """Native service targets are valid without extra settings."""
        assert TargetConfig(name="nginx").validate() == []

    def test_process_without_rescue_path(self):
        """Process targets need a rescue command."""
        config = TargetConfig(
            name="worker",
            probe_kind=ProbeKind.PROCESS_NAME,
            probe_argument="worker",
        )
        errors = config.validate()
        assert len(errors) == 1
        assert "RescueCmdPath" in errors[0]

    def test_http_without_argument(self):
        """HTTP targets need a URL."""
        config = TargetConfig(
            name="api",
            probe_kind=ProbeKind.HTTP_REQUEST,
            rescue_cmd_path="rescue.sh",
        )
        errors = config.validate()
        assert len(errors) == 1
        assert "DiagnosticArgument" in errors[0]

    def test_interval_clamped(self):
        """Poll interval never drops below one second."""
        assert TargetConfig(name="a", duration_ms=200).interval == 1.0
        assert TargetConfig(name="a", duration_ms=2500).interval == 2.5

    def test_service_name_defaults_to_target_name(self):
        assert TargetConfig(name="nginx").service_name == "nginx"
        assert TargetConfig(name="web", probe_argument="nginx").service_name == "nginx"


class TestGuardConfig:
    """Test GuardConfig loading and validation."""

    def test_load_from_yaml(self):
        """Load config from YAML file."""
        yaml_content = """
targets: api nginx
duration: 3000
log_level: DEBUG
settings:
  RestartSeconds: 15
  api.DiagnosticType: HttpRequest
  api.DiagnosticArgument: http://localhost:8080/health
  api.RescueCmdPath: rescue/api.sh
"""
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write(yaml_content)
            f.flush()

            config = GuardConfig.from_yaml(f.name)

            assert config.log_level == "DEBUG"
            assert config.target_names() == ["api", "nginx"]
            assert config.base_dir == str(Path(f.name).resolve().parent)

            api = config.target("api")
            assert api.probe_kind is ProbeKind.HTTP_REQUEST
            assert api.probe_argument == "http://localhost:8080/health"
            assert api.rescue_cmd_path == "rescue/api.sh"
            assert api.restart_seconds == 15
            assert api.interval == 3.0

            Path(f.name).unlink()

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            GuardConfig.from_yaml("/nonexistent/guard.yaml")

    def test_settings_case_insensitive(self):
        """Setting keys match regardless of case."""
        config = GuardConfig(settings={"NGINX.duration": 2000, "restartseconds": 4})
        target = config.target("nginx")
        assert target.duration_ms == 2000
        assert target.restart_seconds == 4

    def test_target_defaults(self):
        """Unset values fall back to globals."""
        config = GuardConfig(duration=7000)
        target = config.target("nginx")
        assert target.duration_ms == 7000
        assert target.probe_kind is ProbeKind.NATIVE_SERVICE
        assert target.restart_seconds == 10
        assert target.http_timeout_ms == 2000

    def test_default_duration_override(self):
        """Duration given on the command line beats the config default."""
        config = GuardConfig(duration=7000, settings={"api.Duration": 1500})
        assert config.target("nginx", default_duration=2000).duration_ms == 2000
        assert config.target("api", default_duration=2000).duration_ms == 1500

    def test_per_target_restart_seconds(self):
        config = GuardConfig(settings={"RestartSeconds": 10, "worker.RestartSeconds": 30})
        assert config.target("worker").restart_seconds == 30
        assert config.target("other").restart_seconds == 10

    def test_bad_number(self):
        config = GuardConfig(settings={"nginx.Duration": "soon"})
        with pytest.raises(ConfigurationError) as exc_info:
            config.target("nginx")
        assert "nginx" in str(exc_info.value)

    def test_validate_empty_targets(self):
        """Validate error when no targets configured."""
        errors = GuardConfig().validate()
        assert any("target" in e.lower() for e in errors)

    def test_validate_collects_target_errors(self):
        config = GuardConfig(
            targets="nginx worker",
            settings={"worker.DiagnosticType": "ProcessName", "worker.DiagnosticArgument": "worker"},
        )
        errors = config.validate()
        assert len(errors) == 1
        assert "worker" in errors[0]

    def test_validate_rescue_timeout_floor(self):
        config = GuardConfig(targets="nginx", rescue_timeout=5)
        errors = config.validate()
        assert any("rescue_timeout" in e for e in errors)

    def test_to_dict(self):
        """Export config to dictionary."""
        config = GuardConfig(targets="nginx", log_level="DEBUG", settings={"nginx.Duration": 1000})
        data = config.to_dict()

        assert data["log_level"] == "DEBUG"
        assert data["targets"] == "nginx"
        assert data["settings"] == {"nginx.Duration": 1000}


class TestConfigFromDict:
    """Test config creation from dictionary."""

    def test_minimal_config(self):
        """Create config from minimal dictionary."""
        config = GuardConfig.from_dict({"targets": "nginx"})

        assert config.target_names() == ["nginx"]
        # Check defaults
        assert config.duration == 5000
        assert config.rescue_timeout == 20
        assert config.service_wait_timeout == 60
        assert config.settings == {}

    def test_targets_as_list(self):
        config = GuardConfig.from_dict({"targets": ["nginx", "api"]})
        assert config.target_names() == ["nginx", "api"]

    def test_full_config(self):
        """Create config with all options."""
        data = {
            "targets": "a;b",
            "duration": 2000,
            "log_file": "/custom/log.txt",
            "log_level": "WARNING",
            "base_dir": "/opt/guard",
            "dry_run": True,
            "rescue_timeout": 45,
            "service_wait_timeout": 30,
            "max_workers": 4,
            "settings": {"a.DiagnosticType": "ProcessName"},
        }
        config = GuardConfig.from_dict(data)

        assert config.log_file == "/custom/log.txt"
        assert config.dry_run is True
        assert config.base_path == Path("/opt/guard")
        assert config.rescue_timeout == 45
        assert config.service_wait_timeout == 30
        assert config.max_workers == 4
        assert config.target("a").probe_kind is ProbeKind.PROCESS_NAME
