# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the Conductor test suite.

This module provides foundational fixtures used across all test modules:
- Temporary project directories and project files
- A recording renderer capturing everything the Supervisor prints
- A fake service client recording container start/stop calls

Usage:
    Import fixtures implicitly via pytest's fixture discovery.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from conductor.core.models import Component, Project
from conductor.services.containers import ServiceError


# =============================================================================
# Test Doubles
# =============================================================================


class RecordingRenderer:
    """Renderer that stores every line instead of printing it.

    ``on_message`` is called with each system message, which lets tests react
    to lifecycle messages (e.g. cancel after the second shutdown).
    """

    def __init__(self, on_message: Callable[[str], None] | None = None):
        self.system: list[str] = []
        self.errors: list[str] = []
        self.components: list[tuple[str, str]] = []
        self.tasks: list[tuple[str, str]] = []
        self.on_message = on_message
        self._lock = threading.Lock()

    def system_message(self, message: str) -> None:
        with self._lock:
            self.system.append(message)
        if self.on_message:
            self.on_message(message)

    def system_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    def component_message(self, component: Component, line: str) -> None:
        with self._lock:
            self.components.append((component.name, line))

    def task_message(self, task_name: str, line: str) -> None:
        with self._lock:
            self.tasks.append((task_name, line))

    def count(self, prefix: str) -> int:
        with self._lock:
            return sum(1 for m in self.system if m.startswith(prefix))

    def lines_for(self, name: str) -> list[str]:
        with self._lock:
            return [line for owner, line in self.components if owner == name]


class FakeServiceClient:
    """Service client that records calls; names in ``failing`` raise."""

    def __init__(self, failing: set[str] | None = None):
        self.calls: list[tuple[str, str]] = []
        self.failing = failing or set()

    def start(self, container: str) -> str:
        self.calls.append(("start", container))
        if container in self.failing:
            raise ServiceError(f"No such container: {container}")
        return container

    def stop(self, container: str) -> str:
        self.calls.append(("stop", container))
        if container in self.failing:
            raise ServiceError(f"No such container: {container}")
        return container

    def started(self) -> list[str]:
        return [name for action, name in self.calls if action == "start"]

    def stopped(self) -> list[str]:
        return [name for action, name in self.calls if action == "stop"]


def wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def service_client() -> FakeServiceClient:
    return FakeServiceClient()


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Project root directory containing a few component directories."""
    for name in ("api", "web", "worker"):
        (tmp_path / name).mkdir()
    return tmp_path


@pytest.fixture
def make_project(project_root: Path) -> Callable[..., Project]:
    """Build a Project rooted at ``project_root`` from plain dicts.

    Example:
        def test_something(make_project):
            project = make_project(components=[{"name": "api", "start": "echo hi"}])
    """

    def _make(**data: Any) -> Project:
        return Project.model_validate({**data, "root_path": project_root})

    return _make


@pytest.fixture
def sample_config() -> dict[str, Any]:
    """A representative project file as a dict."""
    return {
        "name": "Shop",
        "env": {"API_URL": "http://localhost:8080"},
        "components": [
            {
                "name": "api",
                "start": "echo api",
                "services": ["postgres"],
                "tags": ["backend"],
                "tasks": [{"name": "migrate", "commands": "echo migrating"}],
            },
            {
                "name": "web",
                "color": "Cyan",
                "start": "echo web",
                "tags": ["frontend"],
            },
            {
                "name": "worker",
                "start": "echo worker",
                "default": False,
                "tags": ["backend"],
            },
        ],
        "groups": [{"name": "stack", "components": ["api", "web"], "env": {"STACK": "1"}}],
        "services": [{"name": "postgres", "container": "shop-postgres"}],
        "tasks": [
            {"name": "build", "dependencies": ["api:migrate"], "commands": ["echo build"]},
        ],
    }


@pytest.fixture
def config_file(tmp_path: Path, sample_config: dict[str, Any]) -> Path:
    """Write ``sample_config`` to conductor.yml and return its path."""
    path = tmp_path / "conductor.yml"
    path.write_text(yaml.safe_dump(sample_config))
    return path


@pytest.fixture
def make_renderer() -> Callable[..., RecordingRenderer]:
    """Factory for renderers with an ``on_message`` hook."""
    return RecordingRenderer


@pytest.fixture
def make_service_client() -> Callable[..., FakeServiceClient]:
    """Factory for service clients with failing container names."""
    return FakeServiceClient


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    return wait_for


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "docker: marks tests requiring Docker")
    config.addinivalue_line("markers", "git: marks tests requiring git")
