"""Shared utility functions for conductor core modules.

Environment expansion understands ``%VAR%`` tokens. ``$VAR`` is left alone so
the shell running a command still sees it, quoting included. Tokens naming
unknown variables are left verbatim.
"""

import os
import re
from collections.abc import Mapping
from pathlib import Path

_ENV_TOKEN = re.compile(r"%(?P<name>[A-Za-z_][A-Za-z0-9_]*)%")


def expand_env(value: str, env: Mapping[str, str] | None = None) -> str:
    """Expand ``%VAR%`` tokens in ``value``.

    Args:
        value: String possibly containing ``%VAR%`` tokens
        env: Variables to substitute from (defaults to ``os.environ``)

    Returns:
        The expanded string. Unknown tokens are kept as written.
    """
    source = os.environ if env is None else env

    def _replace(match: re.Match) -> str:
        return source.get(match.group("name"), match.group(0))

    return _ENV_TOKEN.sub(_replace, value)


def build_env(*layers: Mapping[str, str] | None) -> dict[str, str]:
    """Merge env layers over the process environment.

    Later layers win. Values coming from the layers are expanded against the
    fully merged mapping, so a component value may reference an ambient or
    group variable. Inherited process values are passed through untouched.
    """
    merged: dict[str, str] = dict(os.environ)
    layered: set[str] = set()
    for layer in layers:
        if layer:
            merged.update({str(k): str(v) for k, v in layer.items()})
            layered.update(str(k) for k in layer)
    return {
        key: expand_env(value, merged) if key in layered else value
        for key, value in merged.items()
    }


def resolve_workdir(root_path: Path, relative: str | None, env: Mapping[str, str]) -> Path:
    """Resolve a (possibly tokenised) relative directory against the project root."""
    if not relative:
        return Path(root_path)
    return Path(root_path) / expand_env(relative, env)
