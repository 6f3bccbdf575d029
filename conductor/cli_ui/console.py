"""Console rendering for the multiplexed output stream.

System lines are framed as ``-=[ message ]=-``; component and task lines are
prefixed with a bold ``[name]`` tag in the owner's color.
"""

from typing import Protocol

from rich.console import Console
from rich.markup import escape

from conductor.core.models import Component, TerminalColor


class Renderer(Protocol):
    """Anything the Supervisor can write output to."""

    def system_message(self, message: str) -> None: ...

    def system_error(self, message: str) -> None: ...

    def component_message(self, component: Component, line: str) -> None: ...

    def task_message(self, task_name: str, line: str) -> None: ...


class ConsoleRenderer:
    """
    Renders output lines with Rich.

    Process output is escaped so brackets in it are not read as markup, and
    highlighting is disabled so lines are printed as the process wrote them.
    """

    # TerminalColor -> Rich style name
    COLOR_STYLES = {
        TerminalColor.BLUE: "blue",
        TerminalColor.GREEN: "green",
        TerminalColor.YELLOW: "yellow",
        TerminalColor.PURPLE: "magenta",
        TerminalColor.WHITE: "white",
        TerminalColor.RED: "red",
        TerminalColor.CYAN: "cyan",
    }

    def __init__(self, console: Console | None = None):
        self.console = console or Console(highlight=False)

    def system_message(self, message: str) -> None:
        self.console.print(
            f"[bold red]-=\\[[/bold red] [bold white]{escape(message)}[/bold white] "
            f"[bold red]]=-[/bold red]"
        )

    def system_error(self, message: str) -> None:
        self.console.print(f"[bold red]-=\\[ {escape(message)} ]=-[/bold red]")

    def component_message(self, component: Component, line: str) -> None:
        style = self.COLOR_STYLES.get(component.color, "yellow")
        self._tagged(component.name, style, line)

    def task_message(self, task_name: str, line: str) -> None:
        self._tagged(task_name, "magenta", line)

    def _tagged(self, name: str, style: str, line: str) -> None:
        self.console.print(
            f"[bold white]\\[[/bold white][bold {style}]{escape(name)}[/bold {style}]"
            f"[bold white]][/bold white] {escape(line)}",
            soft_wrap=True,
        )
