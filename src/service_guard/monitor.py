"""Per-target monitoring: probe on a timer, recover with debounce."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from .config import DEFAULT_RESCUE_TIMEOUT, DEFAULT_SERVICE_WAIT_TIMEOUT, ProbeKind, TargetConfig
from .executor import BoundedExecutor
from .probes import StatusProbe
from .scheduler import PeriodicTimer, TimerService
from .services import ServiceControlError, ServiceManager, ServiceState
from .store import LastActionStore

logger = logging.getLogger("service-guard.monitor")


class MonitorState(str, Enum):
    """Where a monitor is in its tick cycle."""

    IDLE = "idle"
    PROBING = "probing"
    RECOVERING = "recovering"
    STOPPED = "stopped"


class TickOutcome(str, Enum):
    """What a single tick ended up doing."""

    SKIPPED = "skipped"  # previous tick still busy
    HEALTHY = "healthy"
    DEBOUNCED = "debounced"
    RECOVERED = "recovered"
    FAILED = "failed"


class TargetMonitor:
    """Watch one target and recover it when its probe reports it down."""

    def __init__(
        self,
        target: TargetConfig,
        probe: StatusProbe,
        store: LastActionStore,
        timer_service: Optional[TimerService] = None,
        executor: Optional[BoundedExecutor] = None,
        service_manager: Optional[ServiceManager] = None,
        base_dir: Optional[Union[str, Path]] = None,
        rescue_timeout: int = DEFAULT_RESCUE_TIMEOUT,
        service_wait_timeout: float = DEFAULT_SERVICE_WAIT_TIMEOUT,
        dry_run: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.target = target
        self.probe = probe
        self.store = store
        self.timer_service = timer_service
        self.executor = executor or BoundedExecutor()
        self.service_manager = service_manager or ServiceManager(dry_run=dry_run)
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        self.rescue_timeout = rescue_timeout
        self.service_wait_timeout = service_wait_timeout
        self.dry_run = dry_run
        self.clock = clock

        self.state = MonitorState.IDLE
        self._busy = threading.Lock()
        self._timer: Optional[PeriodicTimer] = None

    @property
    def name(self) -> str:
        return self.target.name

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.active

    def start(self):
        """Begin ticking every ``target.interval`` seconds."""
        if self.timer_service is None:
            raise RuntimeError(f"Monitor '{self.name}' has no timer service")

        if self._timer is None:
            self._timer = self.timer_service.schedule(self.target.interval, self.tick, name=self.name)
        self.state = MonitorState.IDLE
        self._timer.start()
        logger.debug(f"Monitoring '{self.name}' every {self.target.interval:g}s")

    def stop(self):
        """Stop ticking. A tick already in progress runs to completion."""
        if self._timer is not None:
            self._timer.stop()
        self.state = MonitorState.STOPPED

    def tick(self) -> TickOutcome:
        """Run one probe-and-maybe-recover cycle."""
        if not self._busy.acquire(blocking=False):
            logger.debug(f"Previous check of '{self.name}' still running, skipping tick")
            return TickOutcome.SKIPPED

        try:
            return self._tick()
        except Exception:
            logger.exception(f"Unexpected error while checking '{self.name}'")
            return TickOutcome.FAILED
        finally:
            if self.state is not MonitorState.STOPPED:
                self.state = MonitorState.IDLE
            self._busy.release()

    def _tick(self) -> TickOutcome:
        self.state = MonitorState.PROBING
        result = self.probe.probe()
        if result.healthy:
            return TickOutcome.HEALTHY

        last_action = self.store.get(self.name)
        elapsed = None if last_action is None else self.clock() - last_action
        if elapsed is not None and elapsed < self.target.restart_seconds:
            logger.debug(
                f"Target '{self.name}' is {result.health.value}, last recovery "
                f"{elapsed:.1f}s ago, waiting"
            )
            return TickOutcome.DEBOUNCED

        logger.info(
            f"Target '{self.name}' is {result.health.value}"
            + (f" ({result.detail})" if result.detail else "")
            + ", attempting recovery"
        )
        return TickOutcome.RECOVERED if self._recover(result.rescue_cmd_path) else TickOutcome.FAILED

    def recover(self) -> bool:
        """Run recovery now, ignoring the debounce window."""
        rescue_cmd_path = None
        if self.target.probe_kind is not ProbeKind.NATIVE_SERVICE:
            rescue_cmd_path = self.target.rescue_cmd_path

        with self._busy:
            try:
                return self._recover(rescue_cmd_path)
            finally:
                if self.state is not MonitorState.STOPPED:
                    self.state = MonitorState.IDLE

    def _recover(self, rescue_cmd_path: Optional[str]) -> bool:
        self.state = MonitorState.RECOVERING
        try:
            if rescue_cmd_path:
                return self._run_rescue(rescue_cmd_path)
            return self._restart_service()
        except Exception:
            logger.exception(f"Recovery of '{self.name}' failed")
            return False
        finally:
            # recorded after failed attempts too
            self.store.upsert(self.name, self.clock())

    def resolve_rescue_path(self, rescue_cmd_path: str) -> Path:
        path = Path(rescue_cmd_path)
        if not path.is_absolute():
            path = self.base_dir / path
        return path

    def _run_rescue(self, rescue_cmd_path: str) -> bool:
        path = self.resolve_rescue_path(rescue_cmd_path)
        if not path.is_file():
            logger.warning(f"Rescue command for '{self.name}' not found: {path}")
            return False

        if self.dry_run:
            logger.info(f"[DRY-RUN] Would execute rescue command for '{self.name}': {path}")
            return True

        logger.info(f"Running rescue command for '{self.name}': {path}")
        execution = self.executor.run(path, work_dir=path.parent, timeout_seconds=self.rescue_timeout)

        if execution.timed_out:
            logger.error(f"Rescue command for '{self.name}' timed out: {execution.output.strip()}")
            return False

        if execution.exit_code != 0:
            logger.error(
                f"Rescue command for '{self.name}' exited with {execution.exit_code}: "
                f"{execution.output.strip()}"
            )
            return False

        logger.info(f"Rescue command for '{self.name}' completed")
        return True

    def _restart_service(self) -> bool:
        """Stop the native service if needed, then start it."""
        service = self.target.service_name
        manager = self.service_manager

        state = manager.status(service)
        if state is not ServiceState.STOPPED:
            logger.info(f"Service '{service}' is {state.value}, stopping it")
            try:
                manager.stop(service)
                manager.wait_for_status(service, ServiceState.STOPPED, self.service_wait_timeout)
            except ServiceControlError as e:
                logger.error(f"Failed to stop service '{service}': {e}")
                return False

        logger.info(f"Starting service '{service}'")
        try:
            manager.start(service)
            manager.wait_for_status(service, ServiceState.RUNNING, self.service_wait_timeout)
        except ServiceControlError as e:
            logger.error(f"Failed to start service '{service}': {e}")
            return False

        logger.info(f"Service '{service}' restarted")
        return True
