"""Configuration management for Service Guard."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import yaml

DEFAULT_DURATION_MS = 5000
DEFAULT_RESTART_SECONDS = 10.0
DEFAULT_HTTP_TIMEOUT_MS = 2000
DEFAULT_RESCUE_TIMEOUT = 20
DEFAULT_SERVICE_WAIT_TIMEOUT = 60.0
MIN_INTERVAL_SECONDS = 1.0

_TARGET_SEPARATORS = re.compile(r"[\s,;]+")


class ConfigurationError(ValueError):
    """A target's settings are missing or invalid."""


class ProbeKind(str, Enum):
    """How a target's health is determined."""

    NATIVE_SERVICE = "NativeService"
    PROCESS_NAME = "ProcessName"
    HTTP_REQUEST = "HttpRequest"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProbeKind":
        """Parse a DiagnosticType setting. Missing means NativeService."""
        if value is None or not str(value).strip():
            return cls.NATIVE_SERVICE

        key = str(value).strip().lower()
        kind = _PROBE_KIND_ALIASES.get(key)
        if kind is None:
            raise ConfigurationError(f"Unknown DiagnosticType: {value!r}")
        return kind


_PROBE_KIND_ALIASES = {
    "nativeservice": ProbeKind.NATIVE_SERVICE,
    "servicecontroller": ProbeKind.NATIVE_SERVICE,
    "processname": ProbeKind.PROCESS_NAME,
    "process": ProbeKind.PROCESS_NAME,
    "httprequest": ProbeKind.HTTP_REQUEST,
}


def parse_target_list(value: Optional[str]) -> list[str]:
    """Split a target list on whitespace, ',' and ';'.

    Names compare case-insensitively; later duplicates are dropped.
    """
    if not value:
        return []

    names = []
    seen = set()
    for name in _TARGET_SEPARATORS.split(value):
        if not name or name.casefold() in seen:
            continue
        seen.add(name.casefold())
        names.append(name)
    return names


@dataclass(frozen=True)
class TargetConfig:
    """Settings for a single monitored target, fixed for the monitor's lifetime."""

    name: str
    duration_ms: float = DEFAULT_DURATION_MS
    probe_kind: ProbeKind = ProbeKind.NATIVE_SERVICE
    probe_argument: Optional[str] = None
    rescue_cmd_path: Optional[str] = None
    restart_seconds: float = DEFAULT_RESTART_SECONDS
    http_timeout_ms: int = DEFAULT_HTTP_TIMEOUT_MS

    @property
    def interval(self) -> float:
        """Poll interval in seconds, never below one second."""
        return max(self.duration_ms / 1000.0, MIN_INTERVAL_SECONDS)

    @property
    def service_name(self) -> str:
        """Native service name; defaults to the target name."""
        return self.probe_argument or self.name

    def validate(self) -> list[str]:
        """Validate target configuration, return list of errors."""
        errors = []

        if self.probe_kind is ProbeKind.NATIVE_SERVICE:
            return errors

        if not self.probe_argument:
            errors.append(
                f"Target '{self.name}': {self.name}.DiagnosticArgument required "
                f"for {self.probe_kind.value} diagnostics"
            )

        if not self.rescue_cmd_path:
            errors.append(
                f"Target '{self.name}': {self.name}.RescueCmdPath required "
                f"for {self.probe_kind.value} diagnostics"
            )

        if self.http_timeout_ms <= 0:
            errors.append(f"Target '{self.name}': HttpRequest.Timeout must be positive")

        return errors


@dataclass
class GuardConfig:
    """Main configuration for the guard process."""

    # Host defaults
    targets: str = ""
    duration: float = DEFAULT_DURATION_MS

    # Flat per-target settings: "<name>.Duration", "<name>.DiagnosticType", ...
    settings: dict[str, Any] = field(default_factory=dict)

    # Global settings
    log_file: Optional[str] = "/var/log/service-guard.log"
    log_level: str = "INFO"
    base_dir: Optional[str] = None
    dry_run: bool = False
    rescue_timeout: int = DEFAULT_RESCUE_TIMEOUT
    service_wait_timeout: float = DEFAULT_SERVICE_WAIT_TIMEOUT
    max_workers: Optional[int] = None

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "GuardConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        config = cls.from_dict(data)
        if config.base_dir is None:
            config.base_dir = str(path.resolve().parent)
        elif not Path(config.base_dir).is_absolute():
            config.base_dir = str((path.resolve().parent / config.base_dir).resolve())
        return config

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GuardConfig":
        """Create configuration from dictionary."""
        config = cls()

        targets = data.get("targets", config.targets) or ""
        if isinstance(targets, (list, tuple)):
            targets = " ".join(str(name) for name in targets)
        config.targets = targets
        config.duration = float(data.get("duration", config.duration))
        config.log_file = data.get("log_file", config.log_file)
        config.log_level = data.get("log_level", config.log_level)
        config.base_dir = data.get("base_dir", config.base_dir)
        config.dry_run = data.get("dry_run", config.dry_run)
        config.rescue_timeout = int(data.get("rescue_timeout", config.rescue_timeout))
        config.service_wait_timeout = float(
            data.get("service_wait_timeout", config.service_wait_timeout)
        )
        config.max_workers = data.get("max_workers", config.max_workers)
        config.settings = dict(data.get("settings") or {})

        return config

    @property
    def base_path(self) -> Path:
        """Directory rescue command paths are resolved against."""
        return Path(self.base_dir) if self.base_dir else Path.cwd()

    def setting(self, key: str, default: Any = None) -> Any:
        """Look up a flat setting, ignoring key case."""
        wanted = key.casefold()
        for name, value in self.settings.items():
            if str(name).casefold() == wanted:
                return value
        return default

    def target(self, name: str, default_duration: Optional[float] = None) -> TargetConfig:
        """Build the settings for one target.

        Raises ConfigurationError when a numeric or enum setting cannot be parsed.
        """
        duration = default_duration if default_duration is not None else self.duration
        restart_seconds = self.setting(
            f"{name}.RestartSeconds",
            self.setting("RestartSeconds", DEFAULT_RESTART_SECONDS),
        )

        try:
            return TargetConfig(
                name=name,
                duration_ms=float(self.setting(f"{name}.Duration", duration)),
                probe_kind=ProbeKind.parse(self.setting(f"{name}.DiagnosticType")),
                probe_argument=_optional_str(self.setting(f"{name}.DiagnosticArgument")),
                rescue_cmd_path=_optional_str(self.setting(f"{name}.RescueCmdPath")),
                restart_seconds=float(restart_seconds),
                http_timeout_ms=int(self.setting("HttpRequest.Timeout", DEFAULT_HTTP_TIMEOUT_MS)),
            )
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Target '{name}': {e}") from e

    def target_names(self) -> list[str]:
        """Configured target list."""
        return parse_target_list(self.targets)

    def validate(self, names: Optional[list[str]] = None) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []
        names = self.target_names() if names is None else names

        if not names:
            errors.append("At least one target must be configured")

        if self.rescue_timeout < DEFAULT_RESCUE_TIMEOUT:
            errors.append(f"rescue_timeout must be at least {DEFAULT_RESCUE_TIMEOUT} seconds")

        for name in names:
            try:
                errors.extend(self.target(name).validate())
            except ConfigurationError as e:
                errors.append(str(e))

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Export configuration to dictionary."""
        return {
            "targets": self.targets,
            "duration": self.duration,
            "log_file": self.log_file,
            "log_level": self.log_level,
            "base_dir": self.base_dir,
            "dry_run": self.dry_run,
            "rescue_timeout": self.rescue_timeout,
            "service_wait_timeout": self.service_wait_timeout,
            "max_workers": self.max_workers,
            "settings": dict(self.settings),
        }


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None
