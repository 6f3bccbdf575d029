"""Terminal output for conductor.

Renders the multiplexed stream of system, component and task lines with Rich.
"""

from conductor.cli_ui.console import ConsoleRenderer, Renderer

__all__ = ["ConsoleRenderer", "Renderer"]
