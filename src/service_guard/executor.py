"""Run external recovery commands under a hard wall-clock limit."""

from __future__ import annotations

import logging
import os
import select
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import psutil

logger = logging.getLogger("service-guard.executor")

DEFAULT_TIMEOUT = 20


@dataclass
class ExecutionResult:
    """Outcome of a bounded command execution."""

    exit_code: int
    output: str
    timed_out: bool = False
    pid: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0


class BoundedExecutor:
    """Run a command, killing it if it outlives its timeout.

    The child's output is drained on a helper thread while the calling
    thread waits on the child with a deadline, so a command that hangs or
    floods its pipe cannot hold the caller past the timeout.

    Reading stops ``drain_grace`` seconds after the command exits, even if
    a process it left behind still holds the pipe open. Such a process
    loses its stdout once the pipe is closed.
    """

    def __init__(
        self,
        min_timeout: float = DEFAULT_TIMEOUT,
        kill_wait: float = 5,
        drain_grace: float = 0.5,
    ):
        self.min_timeout = min_timeout
        self.kill_wait = kill_wait
        self.drain_grace = drain_grace

    def run(
        self,
        command_path: Union[str, Path],
        work_dir: Optional[Union[str, Path]] = None,
        args: Sequence[str] = (),
        timeout_seconds: Optional[float] = None,
    ) -> ExecutionResult:
        """Execute ``command_path`` with ``args`` and capture stdout and stderr.

        ``timeout_seconds`` defaults to, and may not go below, ``min_timeout``.
        """
        timeout = max(timeout_seconds or self.min_timeout, self.min_timeout)
        cmd = [str(command_path), *args]

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(work_dir) if work_dir else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start '{command_path}': {e}")
            return ExecutionResult(exit_code=-1, output=f"* Failed to start: {e}")

        chunks: list[bytes] = []
        exited = threading.Event()
        reader = threading.Thread(
            target=self._drain,
            args=(proc.stdout.fileno(), chunks, exited),
            name=f"bounded-exec-{proc.pid}",
            daemon=True,
        )
        reader.start()

        timed_out = False
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning(f"'{command_path}' (pid {proc.pid}) exceeded {timeout}s, killing it")
            self._kill(proc)
        finally:
            exited.set()

        reader.join()
        proc.stdout.close()
        output = b"".join(chunks).decode(errors="replace").replace("\r", "")
        if timed_out:
            output += f"* Execution timed out after {timeout}s"

        exit_code = proc.returncode if proc.returncode is not None else -1
        return ExecutionResult(exit_code=exit_code, output=output, timed_out=timed_out, pid=proc.pid)

    def _drain(self, fd: int, chunks: list[bytes], exited: threading.Event):
        """Read ``fd`` until EOF, or until the grace period after exit runs out."""
        deadline = None
        while True:
            if exited.is_set() and deadline is None:
                deadline = time.monotonic() + self.drain_grace
            if deadline is not None:
                wait = deadline - time.monotonic()
                if wait <= 0:
                    break
            else:
                wait = 0.1

            try:
                readable, _, _ = select.select([fd], [], [], min(wait, 0.1))
                if not readable:
                    continue
                chunk = os.read(fd, 4096)
            except (OSError, ValueError):
                # pipe torn down by a kill
                break
            if not chunk:
                break
            chunks.append(chunk)

    def _kill(self, proc: subprocess.Popen):
        """Kill the child and anything it spawned, then reap it."""
        try:
            parent = psutil.Process(proc.pid)
            children = parent.children(recursive=True)
        except psutil.NoSuchProcess:
            children = []
        except psutil.Error as e:
            logger.error(f"Cannot inspect process {proc.pid}: {e}")
            children = []

        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.Error as e:
                logger.error(f"Failed to kill child process {child.pid}: {e}")

        try:
            proc.kill()
            proc.wait(timeout=self.kill_wait)
        except subprocess.TimeoutExpired:
            logger.error(f"Process {proc.pid} did not exit {self.kill_wait}s after kill")
        except OSError as e:
            logger.error(f"Failed to kill process {proc.pid}: {e}")
