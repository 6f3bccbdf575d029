"""CLI entry point for Conductor.

Commands:
- conductor setup: Clone every component and run its init commands
- conductor run [NAMES...]: Run components, groups, or tasks
- conductor NAME: Shortcut for ``conductor run NAME``; one subcommand is
  generated for every component, group, task and ``component:task`` pair
  in the project file

Running with no command runs every default component (or every component
matching ``--tags``).
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console

from conductor import __version__
from conductor.core.loader import (
    DEFAULT_CONFIG_NAME,
    ProjectLoadError,
    discover_project,
)
from conductor.core.models import Project
from conductor.core.resolver import ProjectRunner, ResolutionError

console = Console()

COMMAND_ALIASES = {
    "clone": "setup",
    "soundcheck": "setup",
    "start": "run",
    "play": "run",
}


@dataclass
class CliState:
    """Options shared by every command."""

    config: str = DEFAULT_CONFIG_NAME
    tags: list[str] = field(default_factory=list)
    _project: Project | None = None

    def project(self) -> Project:
        if self._project is None:
            self._project = discover_project(self.config, Path.cwd())
        return self._project


def _split_tags(value: str | None) -> list[str]:
    if not value:
        return []
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def _state(ctx: click.Context) -> CliState:
    state = ctx.find_object(CliState)
    if state is None:
        state = CliState(config=ctx.params.get("config") or DEFAULT_CONFIG_NAME)
        ctx.obj = state
    return state


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


def _load_project(state: CliState) -> Project:
    try:
        return state.project()
    except ProjectLoadError as e:
        console.print("[red]Could not load project[/red]")
        _fail(str(e))


def _execute(state: CliState, names: list[str], extra_tags: list[str] | None = None) -> None:
    """Resolve and run ``names`` (or the defaults) against the loaded project."""
    tags = state.tags + list(extra_tags or [])
    project = _load_project(state).filter_tags(tags)
    runner = ProjectRunner(project)
    try:
        if names:
            runner.run(names)
        else:
            runner.run_default(tags)
    except ResolutionError as e:
        _fail(str(e))
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        sys.exit(130)


class ConductorGroup(click.Group):
    """Click group with command aliases and one subcommand per run target."""

    def _targets(self, ctx: click.Context) -> list[str]:
        try:
            return _state(ctx).project().target_names()
        except ProjectLoadError:
            return []

    def list_commands(self, ctx: click.Context) -> list[str]:
        builtin = super().list_commands(ctx)
        return builtin + [name for name in self._targets(ctx) if name not in builtin]

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        cmd_name = COMMAND_ALIASES.get(cmd_name, cmd_name)
        command = super().get_command(ctx, cmd_name)
        if command is not None:
            return command

        lowered = cmd_name.lower()
        for target in self._targets(ctx):
            if target.lower() == lowered:
                return _target_command(target)
        return None


def _target_command(target: str) -> click.Command:
    @click.pass_obj
    def callback(state: CliState) -> None:
        _execute(state, [target])

    return click.Command(target, callback=callback, help=f"Run {target}")


@click.group(cls=ConductorGroup, invoke_without_command=True)
@click.version_option(version=__version__)
@click.option(
    "--config",
    "-c",
    default=DEFAULT_CONFIG_NAME,
    show_default=True,
    metavar="FILE",
    help="The conductor project configuration",
)
@click.option(
    "--tags",
    "-t",
    metavar="TAG1,TAG2",
    help="Limit the operation to components with one of these tags",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config: str, tags: str | None, verbose: bool) -> None:
    """Conductor - orchestrate local development environments.

    Runs projects made of many separate components. The project structure is
    defined in conductor.yml; conductor can clone, initialize and launch all
    of the components at once.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    state = _state(ctx)
    state.config = config
    state.tags = _split_tags(tags)

    if ctx.invoked_subcommand is None:
        _execute(state, [])


@main.command()
@click.option("--tags", "-t", metavar="TAG1,TAG2", help="Limit to components with these tags")
@click.pass_obj
def setup(state: CliState, tags: str | None) -> None:
    """Clone and initialize the project."""
    project = _load_project(state).filter_tags(state.tags + _split_tags(tags))
    try:
        ProjectRunner(project).setup()
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        sys.exit(130)


@main.command()
@click.argument("names", nargs=-1)
@click.option("--tags", "-t", metavar="TAG1,TAG2", help="Limit to components with these tags")
@click.pass_obj
def run(state: CliState, names: tuple[str, ...], tags: str | None) -> None:
    """Launch project components.

    NAMES may be components, groups, tasks, or component:task pairs. With no
    names, every default component is run.

    Example:
        conductor run api web db:migrate
    """
    _execute(state, list(names), _split_tags(tags))


if __name__ == "__main__":
    main()
