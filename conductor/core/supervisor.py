"""Supervisor: concurrent execution of components.

Launches one ComponentWorker per component, multiplexes every worker's events
into a single ordered console stream, relaunches components flagged for
retry, and stops the services they used once everything has finished.

A single component failing is never fatal to the run: failures are reported
through the event stream and the rest of the batch carries on.
"""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
from collections.abc import Callable, Mapping

from conductor.cli_ui.console import ConsoleRenderer, Renderer
from conductor.core.events import (
    ComponentEvent,
    ErrorEvent,
    OutputEvent,
    ServiceStartedEvent,
    ShutdownEvent,
    StartEvent,
)
from conductor.core.models import Component, Project, Service, Task
from conductor.core.utils import build_env, expand_env, resolve_workdir
from conductor.core.worker import ComponentWorker, decode_line
from conductor.services.containers import (
    ServiceClient,
    ServiceLauncher,
    ServiceTerminator,
    get_service_client,
)

logger = logging.getLogger(__name__)


class Supervisor:
    """
    Owns the worker registry for one run.

    Design:
    - Every worker pushes its events onto one shared queue (fan-in); the
      queue's get timeout is the loop's ticker
    - The registry maps worker id -> ComponentWorker and is only touched
      under ``_lock``
    - A retry retires the old worker and registers a fresh one
    - Cancellation is an explicit Event; once set no retry is honored

    USAGE:
        supervisor = Supervisor(project)
        supervisor.spawn(project.component_by_name("api"))
        supervisor.init()  # blocks until all components finish or Ctrl-C
    """

    LOOP_TIMEOUT = 0.5
    IDLE_SLEEP = 0.5

    def __init__(
        self,
        project: Project,
        renderer: Renderer | None = None,
        service_client: ServiceClient | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.project = project
        self.renderer = renderer or ConsoleRenderer()
        self.service_client = service_client or get_service_client()
        self.cancel_event = cancel_event or threading.Event()
        self._events: queue.Queue[ComponentEvent] = queue.Queue()
        self._lock = threading.Lock()
        self._workers: dict[str, ComponentWorker] = {}
        # Every worker spawned this run, retired ones included
        self._history: list[ComponentWorker] = []
        # Components whose services were started this run
        self._service_users: list[Component] = []
        self._cancel_propagated = False

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def workers(self) -> list[ComponentWorker]:
        """Snapshot of the registered (non-retired) workers."""
        with self._lock:
            return list(self._workers.values())

    # --- Services ---

    def run_component_services(self, component: Component) -> ServiceLauncher:
        """Lazy iterable starting every service the component depends on."""
        return ServiceLauncher(self.project.component_services(component), self.service_client)

    def shutdown_component_services(self, component: Component) -> ServiceTerminator:
        """Lazy iterable stopping every service the component depends on."""
        return ServiceTerminator(self.project.component_services(component), self.service_client)

    # --- Blocking commands ---

    def run_task_command(
        self,
        task: Task,
        command: str,
        path: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> int | None:
        """Run one command of a task to completion, streaming its output.

        Tasks are never run in parallel; this blocks until the command exits.

        Args:
            task: Task the command belongs to
            command: Shell command line
            path: Working directory relative to the project root
                (defaults to the task's own path, then the root)
            env: Extra env layer below the task's env (e.g. component env)

        Returns:
            The command's exit code, or None if it could not be started
        """
        merged = build_env(self.project.env, env, task.env)
        cwd = resolve_workdir(
            self.project.root_path, path if path is not None else task.path, merged
        )
        command = expand_env(command, merged)
        self.renderer.system_message(command)
        return self._run_blocking(
            command, cwd, merged, lambda line: self.renderer.task_message(task.name, line)
        )

    def run_component_command(self, component: Component, command: str) -> int | None:
        """Run one of a component's ``init`` commands in its directory."""
        merged = build_env(self.project.env, component.env)
        cwd = resolve_workdir(self.project.root_path, component.get_path(), merged)
        command = expand_env(command, merged)
        self.renderer.system_message(f"Executing: {command}")
        return self._run_blocking(
            command, cwd, merged, lambda line: self.renderer.component_message(component, line)
        )

    def _run_blocking(
        self, command: str, cwd, env: dict[str, str], emit: Callable[[str], None]
    ) -> int | None:
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except (OSError, ValueError) as e:
            self.renderer.system_error(f"Command error: {e}")
            return None

        with process:
            assert process.stdout is not None
            for raw in process.stdout:
                emit(decode_line(raw))
            returncode = process.wait()

        if returncode != 0:
            self.renderer.system_error(f"Command exited with status {returncode}: {command}")
        return returncode

    # --- Components ---

    def spawn(
        self, component: Component, extra_env: Mapping[str, str] | None = None
    ) -> ComponentWorker | None:
        """Start a component in the background and register its worker.

        Services are started first; a service that fails to start is reported
        as an error event and does not stop the component from launching.

        Returns:
            The new worker, or None if the run has been cancelled
        """
        if self.cancelled:
            logger.info(f"not spawning {component.name}: run is shutting down")
            return None

        worker = ComponentWorker(
            component,
            self.project.root_path,
            self._events,
            extra_env=extra_env,
            project_env=self.project.env,
        )
        with self._lock:
            self._service_users.append(component)
        for result in self.run_component_services(component):
            if result.ok:
                self._events.put(ServiceStartedEvent(component, worker.id, result.service.name))
            else:
                self._events.put(
                    ErrorEvent(
                        component,
                        worker.id,
                        f"Could not start service [{result.service.name}]: {result.error}",
                    )
                )

        with self._lock:
            # cancel() may have snapshotted the registry while services started
            if self.cancelled:
                logger.info(f"not spawning {component.name}: run is shutting down")
                return None
            self._workers[worker.id] = worker
            self._history.append(worker)
        logger.info(f"starting worker {worker.id} for {component.name}")
        worker.start()
        return worker

    def cancel(self) -> int:
        """Stop the run: no more retries, kill every running worker.

        Returns:
            Number of kill signals sent
        """
        self.cancel_event.set()
        return self._propagate_cancel()

    def _propagate_cancel(self) -> int:
        # Snapshot under the same lock spawn() registers under
        with self._lock:
            if self._cancel_propagated:
                return 0
            self._cancel_propagated = True
            running = [w for w in self._workers.values() if w.running]
        self.renderer.system_message("shutting down")
        for worker in running:
            logger.info(f"sending kill signal to {worker.component.name}")
            worker.kill()
        return len(running)

    # --- Event loop ---

    def init(self) -> list[ComponentWorker]:
        """Run the event loop until every registered worker has completed.

        Blocks the calling thread. Ctrl-C cancels the run and the loop keeps
        draining until the killed workers report shutdown. Services used by
        any worker are stopped afterwards.

        Returns:
            Every worker that ran, retired ones included
        """
        while True:
            try:
                if self.cancelled and not self._cancel_propagated:
                    self._propagate_cancel()

                with self._lock:
                    workers = list(self._workers.values())
                if workers and all(w.completed for w in workers):
                    break
                if not any(w.running for w in workers):
                    if self.cancelled:
                        break
                    # Workers may still be registered after the loop starts
                    time.sleep(self.IDLE_SLEEP)
                    continue

                try:
                    event = self._events.get(timeout=self.LOOP_TIMEOUT)
                except queue.Empty:
                    logger.debug("Timeout reading from workers")
                    self._reap_dead_workers()
                    continue
                self._handle_event(event)
            except KeyboardInterrupt:
                logger.info("interrupt caught")
                self.cancel()

        self._stop_services()
        with self._lock:
            history = list(self._history)
            self._workers.clear()
            self._history.clear()
            self._service_users.clear()
        return history

    def _handle_event(self, event: ComponentEvent) -> None:
        name = event.component.name
        if isinstance(event, OutputEvent):
            self.renderer.component_message(event.component, event.line)
        elif isinstance(event, StartEvent):
            with self._lock:
                count = len(self._workers)
                names = [w.component.name for w in self._workers.values()]
            self.renderer.system_message(f"Component started [{count}] {name}")
            logger.debug(f"Current workers: {names}")
        elif isinstance(event, ServiceStartedEvent):
            self.renderer.system_message(f"Service started {event.service_name}")
        elif isinstance(event, ErrorEvent):
            self.renderer.system_error(f"Component error [{name}]: {event.message}")
        elif isinstance(event, ShutdownEvent):
            self._handle_shutdown(event)
        else:
            raise TypeError(f"Unknown component event: {event!r}")

    def _handle_shutdown(self, event: ShutdownEvent) -> None:
        component = event.component
        self.renderer.system_message(f"Component shutdown {component.name}")

        with self._lock:
            worker = self._workers.get(event.worker_id)
            if worker is None or worker.completed:
                return
            worker.running = False
            retry = component.retry and not self.cancelled
            if retry:
                # Retire: the replacement is registered by spawn()
                del self._workers[worker.id]
            worker.completed = True

        if retry:
            logger.info(f"component {component.name} has retry enabled, relaunching")
            self.spawn(component, worker.extra_env)
        else:
            logger.info(f"component {component.name} has completed")

    def _reap_dead_workers(self) -> None:
        """Complete workers whose thread ended without reporting shutdown.

        Only called when the queue was empty. A worker always queues its
        ShutdownEvent before its thread ends, so a dead thread with an empty
        queue means the worker vanished.
        """
        with self._lock:
            dead = [w for w in self._workers.values() if w.running and w.has_exited()]
        if not dead or not self._events.empty():
            return
        with self._lock:
            for worker in dead:
                logger.info(f"worker for {worker.component.name} ended, marking complete")
                worker.running = False
                worker.completed = True
        for worker in dead:
            worker.kill()

    def _stop_services(self) -> None:
        """Stop each service used during the run exactly once."""
        with self._lock:
            users = list(self._service_users)

        seen: set[str] = set()
        services: list[Service] = []
        for component in users:
            for service in self.project.component_services(component):
                key = service.name.lower()
                if key not in seen:
                    seen.add(key)
                    services.append(service)

        for result in ServiceTerminator(services, self.service_client):
            if result.ok:
                self.renderer.system_message(f"Service stopped {result.service.name}")
            else:
                self.renderer.system_error(
                    f"Could not stop service [{result.service.name}]: {result.error}"
                )
