"""Core modules for the Conductor orchestrator."""

from conductor.core.events import (
    ComponentEvent,
    ErrorEvent,
    OutputEvent,
    ServiceStartedEvent,
    ShutdownEvent,
    StartEvent,
)
from conductor.core.models import (
    Component,
    Group,
    Project,
    Service,
    ServiceType,
    Task,
    TerminalColor,
)

__all__ = [
    "Component",
    "ComponentEvent",
    "ErrorEvent",
    "Group",
    "OutputEvent",
    "Project",
    "Service",
    "ServiceStartedEvent",
    "ServiceType",
    "ShutdownEvent",
    "StartEvent",
    "Task",
    "TerminalColor",
]
