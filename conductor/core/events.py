"""Events emitted by running components.

``ComponentEvent`` is a closed union: every event is one of the dataclasses
below and carries a full copy of the originating component, so renderers
never need to look anything up in shared state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from conductor.core.models import Component


@dataclass(frozen=True)
class OutputEvent:
    """One line of merged stdout/stderr."""

    component: Component
    worker_id: str
    line: str


@dataclass(frozen=True)
class StartEvent:
    """The component's process was spawned."""

    component: Component
    worker_id: str


@dataclass(frozen=True)
class ShutdownEvent:
    """The worker finished; no more events follow from it."""

    component: Component
    worker_id: str


@dataclass(frozen=True)
class ServiceStartedEvent:
    component: Component
    worker_id: str
    service_name: str


@dataclass(frozen=True)
class ErrorEvent:
    """Non-fatal failure (spawn error, service error)."""

    component: Component
    worker_id: str
    message: str


ComponentEvent = Union[OutputEvent, StartEvent, ShutdownEvent, ServiceStartedEvent, ErrorEvent]
