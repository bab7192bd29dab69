"""Native service control through systemd."""

from __future__ import annotations

import logging
import subprocess
import time
from enum import Enum
from typing import Optional

logger = logging.getLogger("service-guard.services")


class ServiceControlError(RuntimeError):
    """A service manager call failed or did not reach the wanted state."""


class ServiceState(str, Enum):
    """Native service states, collapsed from systemd's ActiveState."""

    RUNNING = "running"
    STOPPED = "stopped"
    START_PENDING = "start_pending"
    STOP_PENDING = "stop_pending"
    UNKNOWN = "unknown"


_ACTIVE_STATES = {
    "active": ServiceState.RUNNING,
    "inactive": ServiceState.STOPPED,
    "failed": ServiceState.STOPPED,
    "activating": ServiceState.START_PENDING,
    "reloading": ServiceState.START_PENDING,
    "deactivating": ServiceState.STOP_PENDING,
}


class ServiceManager:
    """Query and control native services with ``systemctl``."""

    def __init__(
        self,
        systemctl: str = "systemctl",
        command_timeout: float = 30,
        poll_interval: float = 0.5,
        dry_run: bool = False,
    ):
        self.systemctl = systemctl
        self.command_timeout = command_timeout
        self.poll_interval = poll_interval
        self.dry_run = dry_run

    def _systemctl(self, *args: str) -> subprocess.CompletedProcess:
        cmd = [self.systemctl, *args]
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ServiceControlError(f"'{' '.join(cmd)}' timed out") from e
        except OSError as e:
            raise ServiceControlError(f"Cannot run '{' '.join(cmd)}': {e}") from e

    def exists(self, name: str) -> bool:
        """Check whether a unit with this name is known to the service manager."""
        result = self._systemctl("show", "--property=LoadState", "--value", name)
        if result.returncode != 0:
            return False
        return result.stdout.strip() not in ("", "not-found")

    def status(self, name: str) -> ServiceState:
        """Current state of a service."""
        # is-active exits non-zero for anything but "active"; stdout still carries the state
        result = self._systemctl("is-active", name)
        state = result.stdout.strip()
        if not state:
            raise ServiceControlError(
                f"No status for '{name}': {result.stderr.strip() or f'exit {result.returncode}'}"
            )
        return _ACTIVE_STATES.get(state, ServiceState.UNKNOWN)

    def start(self, name: str):
        """Request a service start."""
        self._control("start", name)

    def stop(self, name: str):
        """Request a service stop."""
        self._control("stop", name)

    def _control(self, action: str, name: str):
        if self.dry_run:
            logger.info(f"[DRY-RUN] Would {action} service '{name}'")
            return

        result = self._systemctl("--no-block", action, name)
        if result.returncode != 0:
            raise ServiceControlError(
                f"{action.capitalize()} of '{name}' failed: {result.stderr.strip()}"
            )

    def wait_for_status(
        self,
        name: str,
        desired: ServiceState,
        timeout: Optional[float] = None,
    ):
        """Block until the service reports the desired state.

        Raises ServiceControlError if ``timeout`` seconds pass first.
        """
        if self.dry_run:
            return

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            state = self.status(name)
            if state == desired:
                return
            if deadline is not None and time.monotonic() >= deadline:
                raise ServiceControlError(
                    f"Service '{name}' still {state.value} after {timeout}s "
                    f"(waiting for {desired.value})"
                )
            time.sleep(self.poll_interval)
