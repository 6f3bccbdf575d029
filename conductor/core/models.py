"""Data models for the Conductor orchestrator.

Uses Pydantic so project files are validated when they are loaded.

Name lookups are case-insensitive and first-match-wins. Duplicate names are
not rejected; whichever definition appears first in the file is used.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class TerminalColor(str, Enum):
    """Colors a component's name can be rendered in."""

    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"
    PURPLE = "purple"
    WHITE = "white"
    RED = "red"
    CYAN = "cyan"


class ServiceType(str, Enum):
    """Kinds of external services. Only containers are supported."""

    CONTAINER = "container"


def _env_strings(v):
    """YAML scalars (ports, flags) become strings; None means empty."""
    if v is None:
        return {}
    if isinstance(v, dict):
        return {str(k): "" if val is None else str(val) for k, val in v.items()}
    return v


# Environment mapping as written in YAML
EnvMap = Annotated[dict[str, str], BeforeValidator(_env_strings)]


def _find(items: list[Any], name: str) -> Any | None:
    """Return the first item whose name matches case-insensitively."""
    key = name.lower()
    matches = [item for item in items if item.name.lower() == key]
    if len(matches) > 1:
        logger.debug(f"Duplicate name '{name}', using first definition")
    return matches[0] if matches else None


class Task(BaseModel):
    """A named, ordered list of one-shot shell commands."""

    model_config = ConfigDict(frozen=True)

    name: str = "Unnamed"
    description: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    path: str | None = None
    commands: list[str] = Field(default_factory=list)
    env: EnvMap = Field(default_factory=dict)

    @field_validator("commands", mode="before")
    @classmethod
    def normalize_commands(cls, v):
        """A single command string is shorthand for a one-element list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class Component(BaseModel):
    """An independently runnable unit of the project (e.g. one microservice)."""

    model_config = ConfigDict(frozen=True)

    name: str = "Unknown"
    path: str | None = None
    color: TerminalColor = TerminalColor.YELLOW
    env: EnvMap = Field(default_factory=dict)
    tasks: list[Task] = Field(default_factory=list)
    repo: str = ""
    delay: float | None = None
    start: str = ""
    init: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    retry: bool = False
    keep_alive: bool = False
    default: bool = True
    services: list[str] = Field(default_factory=list)

    @field_validator("color", mode="before")
    @classmethod
    def normalize_color(cls, v):
        # Accept "Blue", "BLUE", etc.
        return v.lower() if isinstance(v, str) else v

    @field_validator("init", mode="before")
    @classmethod
    def normalize_init(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    def get_path(self) -> str:
        """Working directory relative to the project root."""
        return self.path if self.path is not None else self.name

    def has_tag(self, tags: list[str]) -> bool:
        return any(tag in tags for tag in self.tags)

    def task_by_name(self, name: str) -> Task | None:
        return _find(self.tasks, name)

    def task_path(self, task: Task) -> str:
        """A task's own path overrides the component path."""
        return task.path if task.path is not None else self.get_path()


class Group(BaseModel):
    """A named set of components run together with a shared env overlay."""

    model_config = ConfigDict(frozen=True)

    name: str
    components: list[str] = Field(default_factory=list)
    env: EnvMap = Field(default_factory=dict)


class Service(BaseModel):
    """An externally managed dependency such as a container."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    service_type: ServiceType = ServiceType.CONTAINER
    container: str | None = None

    @field_validator("service_type", mode="before")
    @classmethod
    def normalize_service_type(cls, v):
        if isinstance(v, str) and v.lower() in ("container", "dockercontainer", "docker"):
            return ServiceType.CONTAINER
        return v

    def get_container_name(self) -> str:
        return self.container or self.name


class Project(BaseModel):
    """Root aggregate loaded from the project file."""

    model_config = ConfigDict(frozen=True)

    name: str = "Unnamed Project"
    components: list[Component] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)
    services: list[Service] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    env: EnvMap = Field(default_factory=dict)
    # Directory containing the project file. Not read from YAML.
    root_path: Path = Field(default_factory=Path.cwd, exclude=True)

    @field_validator("components", "groups", "services", "tasks", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return [] if v is None else v

    # --- Lookups ---

    def component_by_name(self, name: str) -> Component | None:
        return _find(self.components, name)

    def group_by_name(self, name: str) -> Group | None:
        return _find(self.groups, name)

    def task_by_name(self, name: str) -> Task | None:
        return _find(self.tasks, name)

    def service_by_name(self, name: str) -> Service | None:
        return _find(self.services, name)

    def component_task(self, qualified: str) -> tuple[Component, Task] | None:
        """Resolve a ``component:task`` name."""
        if ":" not in qualified:
            return None
        component_name, task_name = qualified.split(":", 1)
        component = self.component_by_name(component_name)
        if component is None:
            return None
        task = component.task_by_name(task_name)
        if task is None:
            return None
        return component, task

    def group_components(self, group: Group) -> list[Component]:
        """Members of a group. Unknown member names are skipped."""
        members = []
        for name in group.components:
            component = self.component_by_name(name)
            if component is None:
                logger.warning(f"Group '{group.name}' references unknown component '{name}'")
                continue
            members.append(component)
        return members

    def component_services(self, component: Component) -> list[Service]:
        """Service definitions referenced by a component, unknown names skipped."""
        services = []
        for name in component.services:
            service = self.service_by_name(name)
            if service is None:
                logger.warning(
                    f"Component '{component.name}' references unknown service '{name}'"
                )
                continue
            services.append(service)
        return services

    def target_names(self) -> list[str]:
        """Every name that can be passed to ``run``."""
        names = [c.name for c in self.components]
        names.extend(g.name for g in self.groups)
        names.extend(t.name for t in self.tasks)
        for component in self.components:
            names.extend(f"{component.name}:{t.name}" for t in component.tasks)
        return names

    # --- Filtering ---

    def filter_tags(self, tags: list[str] | None) -> Project:
        """Keep components carrying any of ``tags``; keep all when none given."""
        if not tags:
            return self
        return self.model_copy(
            update={"components": [c for c in self.components if c.has_tag(tags)]}
        )

    def filter_default(self) -> Project:
        """Keep only components flagged ``default``."""
        return self.model_copy(
            update={"components": [c for c in self.components if c.default]}
        )
