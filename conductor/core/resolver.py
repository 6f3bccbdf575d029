"""Run-target resolution.

Turns the names given on the command line into work:

1. A project task (blocking; its dependencies run first)
2. A ``component:task`` pair (blocking; the component's services are started
   around it)
3. A component (spawned on the Supervisor)
4. A group (every member spawned with the group's env)

The first category a name matches wins. Names matching nothing are skipped;
the run only fails when no name matched at all. Once every name has been
processed, the Supervisor's event loop runs if any component was spawned.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field

from conductor.cli_ui.console import ConsoleRenderer, Renderer
from conductor.core.git import CloneError, clone_repo
from conductor.core.models import Component, Project, Task
from conductor.core.supervisor import Supervisor
from conductor.services.containers import ServiceClient

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Error resolving run targets."""

    pass


class NothingToRunError(ResolutionError):
    """None of the requested names matched a task, component, or group."""

    def __init__(self, names: list[str] | None = None):
        self.names = list(names or [])
        detail = f": {', '.join(self.names)}" if self.names else ""
        super().__init__(f"nothing to run{detail}")


class CircularDependencyError(ResolutionError):
    """A task depends on itself, directly or through other tasks."""

    def __init__(self, chain: list[str]):
        self.chain = chain
        super().__init__(f"Circular dependency detected: {' -> '.join(chain)}")


@dataclass
class _RunState:
    """Bookkeeping for a single run() call."""

    # Task keys currently being resolved, in order (for cycle detection)
    in_progress: list[str] = field(default_factory=list)
    # Task keys already executed (diamond dependencies run once)
    done: set[str] = field(default_factory=set)
    spawned: int = 0


class ProjectRunner:
    """Resolve names against a project and drive the Supervisor.

    USAGE:
        runner = ProjectRunner(project)
        runner.run(["db:migrate", "backend"])  # migrate, then run backend
        runner.run_default(tags=["web"])
    """

    def __init__(
        self,
        project: Project,
        supervisor: Supervisor | None = None,
        renderer: Renderer | None = None,
        service_client: ServiceClient | None = None,
    ):
        self.project = project
        self.renderer = renderer or (supervisor.renderer if supervisor else ConsoleRenderer())
        self.supervisor = supervisor or Supervisor(
            project, renderer=self.renderer, service_client=service_client
        )

    # --- Entry points ---

    def run(self, names: list[str]) -> list[str]:
        """Resolve and run every name, then supervise spawned components.

        If resolving a later name fails (or is interrupted) after components
        were spawned, those components are cancelled and drained before the
        error propagates.

        Returns:
            The names that matched something

        Raises:
            NothingToRunError: If no name matched
            CircularDependencyError: If a task's dependency chain loops
        """
        state = _RunState()
        with self._shutdown_on_error(state):
            matched = [name for name in names if self._run_name(name, state)]
        if not matched:
            raise NothingToRunError(names)

        unmatched = [name for name in names if name not in matched]
        if unmatched:
            logger.warning(f"No task, component, or group named: {', '.join(unmatched)}")

        if state.spawned:
            self.supervisor.init()
        return matched

    def run_default(self, tags: list[str] | None = None) -> list[str]:
        """Run without explicit names.

        With tags, every component carrying one of them; otherwise every
        component flagged ``default``. Components are spawned directly, so a
        task sharing a component's name never shadows it.
        """
        project = self.project.filter_tags(tags) if tags else self.project.filter_default()
        if not project.components:
            raise NothingToRunError()

        state = _RunState()
        with self._shutdown_on_error(state):
            for component in project.components:
                self._spawn(component, None, state)
        if state.spawned:
            self.supervisor.init()
        return [c.name for c in project.components]

    @contextmanager
    def _shutdown_on_error(self, state: _RunState) -> Iterator[None]:
        """Cancel and drain already-spawned components if the body raises."""
        try:
            yield
        except BaseException:
            if state.spawned:
                logger.info("resolution failed, shutting down spawned components")
                self.supervisor.cancel()
                self.supervisor.init()
            raise

    def setup(self, tags: list[str] | None = None) -> None:
        """Clone each component's repository, then run its init commands."""
        for component in self.project.filter_tags(tags).components:
            if component.repo:
                target = self.project.root_path / component.get_path()
                self.renderer.system_message(
                    f"Cloning {component.name} from {component.repo} into {component.get_path()}"
                )
                try:
                    clone_repo(component.repo, target)
                except CloneError as e:
                    self.renderer.system_error(f"Skipping clone: {e}")
                else:
                    self.renderer.system_message(f"{component.name} cloned")
            for command in component.init:
                self.supervisor.run_component_command(component, command)

    # --- Resolution ---

    def _run_name(self, name: str, state: _RunState) -> bool:
        """Run whatever ``name`` refers to. Returns False if it matched nothing."""
        task = self.project.task_by_name(name)
        if task is not None:
            self._run_task(task, state)
            return True

        scoped = self.project.component_task(name)
        if scoped is not None:
            component, task = scoped
            self._run_component_task(component, task, state)
            return True

        component = self.project.component_by_name(name)
        if component is not None:
            self._spawn(component, None, state)
            return True

        group = self.project.group_by_name(name)
        if group is not None:
            for member in self.project.group_components(group):
                self._spawn(member, group.env, state)
            return True

        logger.debug(f"'{name}' did not match anything")
        return False

    def _spawn(
        self, component: Component, extra_env: Mapping[str, str] | None, state: _RunState
    ) -> None:
        if self.supervisor.spawn(component, extra_env) is not None:
            state.spawned += 1

    def run_task(self, task: Task) -> None:
        """Run a project task and its dependency chain, blocking until done."""
        self._run_task(task, _RunState())

    def run_component_task(self, component: Component, task: Task) -> None:
        """Run a component-scoped task with the component's services up."""
        self._run_component_task(component, task, _RunState())

    def _run_task(
        self,
        task: Task,
        state: _RunState,
        component: Component | None = None,
    ) -> None:
        key = f"{component.name}:{task.name}" if component else task.name
        key = key.lower()
        if key in state.in_progress:
            chain = state.in_progress[state.in_progress.index(key):] + [key]
            raise CircularDependencyError(chain)
        if key in state.done:
            logger.debug(f"task {key} already ran")
            return

        state.in_progress.append(key)
        try:
            for dependency in task.dependencies:
                if not self._run_name(dependency, state):
                    logger.warning(f"Task '{task.name}' dependency '{dependency}' not found")

            if component is not None:
                path = component.task_path(task)
                env = component.env
            else:
                path, env = task.path, None
            for command in task.commands:
                self.supervisor.run_task_command(task, command, path=path, env=env)
        finally:
            state.in_progress.pop()
        state.done.add(key)

    def _run_component_task(self, component: Component, task: Task, state: _RunState) -> None:
        for result in self.supervisor.run_component_services(component):
            if result.ok:
                self.renderer.system_message(f"Service started {result.service.name}")
            else:
                self.renderer.system_error(
                    f"Could not start service [{result.service.name}]: {result.error}"
                )
        try:
            self._run_task(task, state, component=component)
        finally:
            for result in self.supervisor.shutdown_component_services(component):
                if result.ok:
                    self.renderer.system_message(f"Service stopped {result.service.name}")
                else:
                    self.renderer.system_error(
                        f"Could not stop service [{result.service.name}]: {result.error}"
                    )
