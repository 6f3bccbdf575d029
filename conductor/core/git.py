"""Repository cloning for ``conductor setup``."""

import logging
import os
import subprocess
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

# Timeout for git clone (seconds)
GIT_TIMEOUT = 600


class CloneError(Exception):
    """A repository could not be cloned."""

    pass


def _with_credentials(repo_url: str) -> str:
    """Embed GIT_USER / GIT_PAT into an https URL when they are set.

    URLs that already carry credentials, and non-https URLs (ssh, local
    paths), are returned unchanged.
    """
    user = os.environ.get("GIT_USER", "")
    token = os.environ.get("GIT_PAT", "")
    if not token:
        return repo_url
    parts = urlsplit(repo_url)
    if parts.scheme not in ("http", "https") or "@" in parts.netloc:
        return repo_url
    userinfo = f"{quote(user, safe='')}:{quote(token, safe='')}" if user else quote(token, safe="")
    return urlunsplit(parts._replace(netloc=f"{userinfo}@{parts.netloc}"))


def clone_repo(repo_url: str, target: Path) -> Path:
    """Clone ``repo_url`` into ``target``.

    Args:
        repo_url: Anything ``git clone`` accepts
        target: Destination directory; must not exist yet

    Returns:
        The target path

    Raises:
        CloneError: If the directory exists, git is missing, or the clone fails
    """
    target = Path(target)
    if target.exists():
        raise CloneError(f"Directory already exists at {target}")
    target.parent.mkdir(parents=True, exist_ok=True)

    try:
        result = subprocess.run(
            ["git", "clone", _with_credentials(repo_url), str(target)],
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
            env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
        )
    except subprocess.TimeoutExpired:
        raise CloneError(f"Cloning {repo_url} timed out after {GIT_TIMEOUT}s")
    except OSError as e:
        raise CloneError(f"Could not run git: {e}") from e

    if result.returncode != 0:
        stderr = result.stderr.strip()
        token = os.environ.get("GIT_PAT")
        if token:
            stderr = stderr.replace(token, "***")
        raise CloneError(f"Could not clone repository: {stderr}")
    logger.info(f"cloned {repo_url} into {target}")
    return target
