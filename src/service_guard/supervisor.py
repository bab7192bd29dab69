"""Supervisor that runs one monitor per configured target."""

from __future__ import annotations

import logging
import signal
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .config import (
    DEFAULT_RESCUE_TIMEOUT,
    ConfigurationError,
    GuardConfig,
    ProbeKind,
    parse_target_list,
)
from .executor import BoundedExecutor
from .monitor import TargetMonitor
from .probes import ProbeFactory
from .scheduler import TimerService
from .services import ServiceControlError, ServiceManager
from .store import LastActionStore

logger = logging.getLogger("service-guard")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(config: GuardConfig):
    """Configure console and file logging for the guard process."""
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    logger.setLevel(level)

    # Console handler
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(console)

    # File handler
    if config.log_file and not config.dry_run:
        try:
            log_path = Path(config.log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path)
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            logger.addHandler(file_handler)
        except PermissionError:
            logger.warning(f"Cannot write to log file: {config.log_file}")


class MonitorSupervisor:
    """Create, start and stop the monitors for a list of targets."""

    def __init__(
        self,
        config: GuardConfig,
        targets: Optional[Union[str, Iterable[str]]] = None,
        duration: Optional[float] = None,
        store: Optional[LastActionStore] = None,
        service_manager: Optional[ServiceManager] = None,
        executor: Optional[BoundedExecutor] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        if targets is None:
            self.target_names = config.target_names()
        elif isinstance(targets, str):
            self.target_names = parse_target_list(targets)
        else:
            self.target_names = parse_target_list(" ".join(targets))
        self.duration = config.duration if duration is None else duration
        self.store = store or LastActionStore()
        self.service_manager = service_manager or ServiceManager(dry_run=config.dry_run)
        # rescue commands always get at least the default timeout
        self.rescue_timeout = max(config.rescue_timeout, DEFAULT_RESCUE_TIMEOUT)
        self.executor = executor or BoundedExecutor(min_timeout=self.rescue_timeout)
        self.clock = clock

        self.monitors: list[TargetMonitor] = []
        self.rejected: dict[str, str] = {}
        self.started_at: Optional[float] = None
        self._timer_service: Optional[TimerService] = None
        self._lock = threading.Lock()
        self._stop_requested = threading.Event()

    @property
    def running(self) -> bool:
        return self._timer_service is not None

    def create_monitor(self, name: str, timer_service: Optional[TimerService] = None) -> Optional[TargetMonitor]:
        """Build the monitor for one target, or None if it cannot be monitored."""
        try:
            target = self.config.target(name, self.duration)
            if target.probe_kind is ProbeKind.NATIVE_SERVICE and not self.service_manager.exists(
                target.service_name
            ):
                logger.debug(f"Skipping '{name}': no such service")
                return None
            probe = ProbeFactory.create(target, self.service_manager)
        except ConfigurationError as e:
            logger.error(f"Not monitoring '{name}': {e}")
            self.rejected[name] = str(e)
            return None
        except ServiceControlError as e:
            logger.warning(f"Not monitoring '{name}': {e}")
            return None

        return TargetMonitor(
            target,
            probe,
            self.store,
            timer_service=timer_service,
            executor=self.executor,
            service_manager=self.service_manager,
            base_dir=self.config.base_path,
            rescue_timeout=self.rescue_timeout,
            service_wait_timeout=self.config.service_wait_timeout,
            dry_run=self.config.dry_run,
            clock=self.clock,
        )

    def start(self):
        """Create a monitor per target and start their timers."""
        with self._lock:
            if self._timer_service is not None:
                return

            self._timer_service = TimerService(max_workers=self.config.max_workers)
            self.rejected.clear()
            for name in self.target_names:
                monitor = self.create_monitor(name, self._timer_service)
                if monitor is None:
                    continue
                self.monitors.append(monitor)
                monitor.start()

            self.started_at = time.time()
            logger.info(f"Monitoring {len(self.monitors)} of {len(self.target_names)} targets")

    def stop(self):
        """Stop every monitor and wait for in-flight ticks. Safe to call repeatedly."""
        with self._lock:
            if self._timer_service is None and not self.monitors:
                return

            for monitor in self.monitors:
                monitor.stop()
            if self._timer_service is not None:
                self._timer_service.shutdown(wait=True)

            logger.info(f"Stopped monitoring {len(self.monitors)} targets")
            self.monitors.clear()
            self._timer_service = None

    def get_monitor(self, name: str) -> Optional[TargetMonitor]:
        for monitor in self.monitors:
            if monitor.name.casefold() == name.casefold():
                return monitor
        return None

    def recover(self, name: str) -> bool:
        """Run recovery for one target immediately."""
        monitor = self.get_monitor(name) or self.create_monitor(name)
        if monitor is None:
            raise ConfigurationError(f"Target '{name}' cannot be monitored")
        return monitor.recover()

    def status(self) -> dict:
        """Probe every target once and report the result."""
        result = {
            "guard": {
                "running": self.running,
                "started_at": datetime.fromtimestamp(self.started_at).isoformat()
                if self.started_at
                else None,
                "dry_run": self.config.dry_run,
            },
            "targets": {},
        }

        for name in self.target_names:
            monitor = self.get_monitor(name) or self.create_monitor(name)
            if monitor is None:
                result["targets"][name] = {
                    "monitored": False,
                    "error": self.rejected.get(name, "No such service"),
                }
                continue

            try:
                probe_result = monitor.probe.probe()
                health, detail = probe_result.health.value, probe_result.detail
            except Exception as e:
                health, detail = "unknown", str(e)

            last_action = self.store.get(name)
            result["targets"][name] = {
                "monitored": True,
                "probe": monitor.target.probe_kind.value,
                "interval": monitor.target.interval,
                "health": health,
                "detail": detail,
                "last_action_seconds_ago": None
                if last_action is None
                else round(self.clock() - last_action, 1),
            }

        return result

    def request_stop(self):
        self._stop_requested.set()

    def run(self, interactive: bool = False):
        """Start monitoring and block until told to stop.

        Interactive runs also stop when a line is read from the console.
        """
        self._stop_requested.clear()

        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.request_stop()

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)

        logger.info("Service Guard started")
        if self.config.dry_run:
            logger.info("Running in DRY-RUN mode")

        self.start()
        if interactive:
            threading.Thread(target=self._wait_for_console, name="console", daemon=True).start()
            logger.info("Press Enter to stop")

        try:
            while not self._stop_requested.wait(1):
                pass
        finally:
            self.stop()
            logger.info("Service Guard stopped")

    def _wait_for_console(self):
        try:
            sys.stdin.readline()
        except (OSError, ValueError):
            return
        self.request_stop()
