"""Health probes for monitored targets."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import psutil
import requests

from .config import ConfigurationError, ProbeKind, TargetConfig
from .services import ServiceControlError, ServiceManager, ServiceState

logger = logging.getLogger("service-guard.probes")

USER_AGENT = "ServiceGuard/1.0 (HttpPing 1.0)"


class HealthResult(str, Enum):
    """Outcome of a single probe."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProbeResult:
    """Health of a target plus the rescue command to run if it is down."""

    health: HealthResult
    rescue_cmd_path: Optional[str] = None
    detail: Optional[str] = None

    @property
    def healthy(self) -> bool:
        """Check if target is healthy."""
        return self.health is HealthResult.RUNNING


class StatusProbe(ABC):
    """Base class for health probes."""

    kind: ProbeKind

    def __init__(self, target: TargetConfig):
        self.target = target

    @abstractmethod
    def probe(self) -> ProbeResult:
        """Determine the target's current health."""


class NativeServiceProbe(StatusProbe):
    """Ask the service manager whether the service is running.

    Never yields a rescue command; recovery is a native restart.
    """

    kind = ProbeKind.NATIVE_SERVICE

    def __init__(self, target: TargetConfig, service_manager: ServiceManager):
        super().__init__(target)
        self.service_manager = service_manager

    def probe(self) -> ProbeResult:
        try:
            state = self.service_manager.status(self.target.service_name)
        except ServiceControlError as e:
            logger.warning(f"Cannot query service '{self.target.service_name}': {e}")
            return ProbeResult(HealthResult.UNKNOWN, detail=str(e))

        if state is ServiceState.RUNNING:
            return ProbeResult(HealthResult.RUNNING)
        if state is ServiceState.STOPPED:
            return ProbeResult(HealthResult.STOPPED, detail="Service stopped")
        return ProbeResult(HealthResult.UNKNOWN, detail=f"Service {state.value}")


class _RescuedProbe(StatusProbe):
    """A probe that cannot restart natively and needs a rescue command."""

    def __init__(self, target: TargetConfig):
        super().__init__(target)
        if not target.probe_argument:
            raise ConfigurationError(
                f"Target '{target.name}': {target.name}.DiagnosticArgument is required "
                f"for {self.kind.value} diagnostics"
            )
        if not target.rescue_cmd_path:
            raise ConfigurationError(
                f"Target '{target.name}': {target.name}.RescueCmdPath is required "
                f"for {self.kind.value} diagnostics"
            )

    def _result(self, health: HealthResult, detail: Optional[str] = None) -> ProbeResult:
        return ProbeResult(health, rescue_cmd_path=self.target.rescue_cmd_path, detail=detail)


class ProcessNameProbe(_RescuedProbe):
    """Running if at least one process has the configured image name."""

    kind = ProbeKind.PROCESS_NAME

    def probe(self) -> ProbeResult:
        image_name = self.target.probe_argument

        # process_iter with attrs already skips vanished and inaccessible processes
        try:
            for proc in psutil.process_iter(["name", "pid"]):
                if proc.info["name"] == image_name:
                    return self._result(HealthResult.RUNNING, detail=f"pid {proc.info['pid']}")
        except psutil.Error as e:
            logger.warning(f"Cannot list processes for '{self.target.name}': {e}")
            return self._result(HealthResult.UNKNOWN, detail=f"Process query failed: {e}")

        return self._result(HealthResult.STOPPED, detail=f"No process named '{image_name}'")


class HttpProbe(_RescuedProbe):
    """GET the configured URL; 200 and 304 mean the target is alive."""

    kind = ProbeKind.HTTP_REQUEST

    HEALTHY_STATUS = (200, 304)

    @property
    def timeout(self) -> float:
        return self.target.http_timeout_ms / 1000.0

    def probe(self) -> ProbeResult:
        url = self.target.probe_argument

        try:
            response = requests.get(
                url,
                timeout=self.timeout,
                headers={
                    "User-Agent": USER_AGENT,
                    "Cache-Control": "no-cache",
                    "Connection": "close",
                },
            )
        except requests.Timeout:
            logger.info(
                f"Target '{self.target.name}' did not answer within "
                f"{self.target.http_timeout_ms}ms ({url})"
            )
            return self._result(HealthResult.STOPPED, detail="Health check timed out")
        except requests.RequestException as e:
            logger.warning(f"Health check of '{self.target.name}' failed: {e}")
            return self._result(HealthResult.STOPPED, detail=f"Health check failed: {e}")

        try:
            if response.status_code in self.HEALTHY_STATUS:
                return self._result(HealthResult.RUNNING)

            logger.info(
                f"Target '{self.target.name}' returned status {response.status_code} "
                f"{response.reason or ''}".rstrip()
            )
            return self._result(
                HealthResult.STOPPED, detail=f"Health check returned {response.status_code}"
            )
        finally:
            response.close()


class ProbeFactory:
    """Select the probe for a target once, at setup time."""

    _probes = {
        ProbeKind.NATIVE_SERVICE: NativeServiceProbe,
        ProbeKind.PROCESS_NAME: ProcessNameProbe,
        ProbeKind.HTTP_REQUEST: HttpProbe,
    }

    @classmethod
    def create(
        cls,
        target: TargetConfig,
        service_manager: Optional[ServiceManager] = None,
    ) -> StatusProbe:
        """Create a probe for a target.

        Raises ConfigurationError if the target lacks a setting its probe needs.
        """
        probe_class = cls._probes[target.probe_kind]
        if probe_class is NativeServiceProbe:
            return probe_class(target, service_manager or ServiceManager())
        return probe_class(target)
