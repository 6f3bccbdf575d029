"""Conductor - local multi-component process orchestrator.

Clones, initializes and runs every component of a project described in
conductor.yml, multiplexing their output into one console stream.
"""

__version__ = "0.1.0"
