"""Project file discovery and loading.

The project file is YAML, looked up from the working directory upwards so
conductor can be run from anywhere inside a project.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pydantic
import yaml

from conductor.core.models import Project

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "conductor.yml"


class ProjectLoadError(Exception):
    """The project file is missing or malformed."""

    pass


def find_config(name: str = DEFAULT_CONFIG_NAME, start: Path | None = None) -> Path | None:
    """Find ``name`` in ``start`` or the closest parent directory containing it.

    Absolute paths are returned as-is when they exist.
    """
    candidate = Path(name)
    if candidate.is_absolute():
        return candidate if candidate.is_file() else None

    directory = (start or Path.cwd()).resolve()
    for parent in (directory, *directory.parents):
        path = parent / candidate
        if path.is_file():
            return path
    return None


def load_project(path: Path) -> Project:
    """Load and validate a project file.

    Raises:
        ProjectLoadError: If the file can't be read, parsed, or validated
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ProjectLoadError(f"Could not read project file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ProjectLoadError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProjectLoadError(f"Project file {path} must contain a mapping at the top level")

    # root_path always comes from the file location
    data.pop("root_path", None)
    try:
        project = Project.model_validate({**data, "root_path": path.resolve().parent})
    except pydantic.ValidationError as e:
        raise ProjectLoadError(f"Invalid project file {path}:\n{e}") from e

    logger.debug(
        f"Loaded project '{project.name}': {len(project.components)} components, "
        f"{len(project.groups)} groups, {len(project.tasks)} tasks"
    )
    return project


def discover_project(name: str = DEFAULT_CONFIG_NAME, start: Path | None = None) -> Project:
    """find_config + load_project.

    Raises:
        ProjectLoadError: If no project file is found or it can't be loaded
    """
    path = find_config(name, start)
    if path is None:
        raise ProjectLoadError(f"Could not find config file {name}")
    return load_project(path)
