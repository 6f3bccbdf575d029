"""Background worker running a single component process.

Each worker owns one child process on its own thread. Output is forwarded as
events on the queue shared with the Supervisor; the Supervisor talks back
through the worker's kill signal only.
"""

from __future__ import annotations

import logging
import os
import queue
import signal
import subprocess
import threading
import uuid
from collections.abc import Mapping
from pathlib import Path

from conductor.core.events import (
    ComponentEvent,
    ErrorEvent,
    OutputEvent,
    ShutdownEvent,
    StartEvent,
)
from conductor.core.models import Component
from conductor.core.utils import build_env, expand_env, resolve_workdir

logger = logging.getLogger(__name__)


def decode_line(raw: bytes) -> str:
    """Decode one line of process output, dropping the line terminator."""
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


def terminate_process(process: subprocess.Popen) -> None:
    """Kill a child process (and its process group on POSIX).

    Safe to call on a process that already exited.
    """
    if process.poll() is None:
        try:
            if os.name == "posix":
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except (ProcessLookupError, PermissionError):
            pass
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {process.pid} did not exit after kill")


class ComponentWorker:
    """
    Runs one component's ``start`` command until it exits or is killed.

    Design:
    - One thread supervises the process, polling its exit status every
      POLL_INTERVAL seconds while waiting on the kill signal
    - A second thread reads merged stdout/stderr line by line
    - A ShutdownEvent is always the last event a worker emits
    """

    POLL_INTERVAL = 0.2
    READER_JOIN_TIMEOUT = 2.0

    def __init__(
        self,
        component: Component,
        root_path: Path,
        events: queue.Queue,
        extra_env: Mapping[str, str] | None = None,
        project_env: Mapping[str, str] | None = None,
    ):
        self.id = uuid.uuid4().hex[:8]
        self.component = component
        self.root_path = Path(root_path)
        self.extra_env = dict(extra_env or {})
        self.project_env = dict(project_env or {})
        self.kill_signal = threading.Event()
        # Set once ShutdownEvent is due; later output lines are dropped
        self._output_closed = False
        self._output_lock = threading.Lock()
        # Bookkeeping owned by the Supervisor (mutated under its lock)
        self.running = True
        self.completed = False
        self._events = events
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name=f"worker-{self.component.name}-{self.id}", daemon=True
        )
        self._thread.start()

    def kill(self) -> None:
        """Ask the worker to stop. Idempotent."""
        self.kill_signal.set()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def has_exited(self) -> bool:
        """True once the thread was started and has finished."""
        return self._thread is not None and not self._thread.is_alive()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _emit(self, event: ComponentEvent) -> None:
        self._events.put(event)

    def _run(self) -> None:
        try:
            self._run_process()
        except Exception as e:
            logger.exception(f"Worker for {self.component.name} failed")
            self._emit(ErrorEvent(self.component, self.id, str(e)))
        finally:
            logger.info(f"ending worker for {self.component.name}")
            self._emit(ShutdownEvent(self.component, self.id))

    def _run_process(self) -> None:
        component = self.component
        if component.delay:
            # Killed while waiting: never spawn
            if self.kill_signal.wait(component.delay):
                return

        env = build_env(self.project_env, component.env, self.extra_env)
        cwd = resolve_workdir(self.root_path, component.get_path(), env)
        command = expand_env(component.start, env)

        try:
            process = subprocess.Popen(
                command,
                shell=True,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=os.name == "posix",
            )
        except (OSError, ValueError) as e:
            self._emit(
                ErrorEvent(component, self.id, f"Could not start {component.name}: {e}")
            )
            return

        self._emit(StartEvent(component, self.id))
        reader = threading.Thread(
            target=self._read_output,
            args=(process,),
            name=f"reader-{component.name}-{self.id}",
            daemon=True,
        )
        reader.start()

        try:
            while True:
                if process.poll() is not None and not component.keep_alive:
                    logger.info(f"{component.name} has exited with {process.returncode}")
                    break
                if self.kill_signal.wait(self.POLL_INTERVAL):
                    logger.info(f"killing {component.name}")
                    break
        finally:
            terminate_process(process)
            reader.join(self.READER_JOIN_TIMEOUT)
            with self._output_lock:
                self._output_closed = True
            if reader.is_alive():
                # A process outside the group still holds the pipe
                logger.warning(f"Output of {component.name} still open after exit, detaching")
            elif process.stdout is not None:
                process.stdout.close()

    def _read_output(self, process: subprocess.Popen) -> None:
        """Forward each output line as an OutputEvent until EOF.

        Lines read after the worker closed its output are dropped.
        """
        stream = process.stdout
        if stream is None:
            return
        while True:
            try:
                raw = stream.readline()
            except (OSError, ValueError) as e:
                # ValueError: stream closed under us after a kill
                if process.poll() is not None or stream.closed:
                    return
                logger.warning(f"Error reading from {self.component.name}: {e}")
                self.kill_signal.wait(self.POLL_INTERVAL)
                continue
            if not raw:
                return
            with self._output_lock:
                if not self._output_closed:
                    self._emit(OutputEvent(self.component, self.id, decode_line(raw)))
