"""Environment helpers for proxied subprocesses."""

from __future__ import annotations

import os
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


def sanitize_environment(
    additional: Mapping[str, str] | None = None,
    *,
    nested_tmux: bool = False,
) -> dict[str, str]:
    """Return the environment for a child process.

    With ``nested_tmux`` the ``TMUX`` variable is dropped so that
    ``tmux attach`` works from inside an existing tmux client.
    """

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if nested_tmux:
        env.pop("TMUX", None)
    if additional:
        env.update(additional)
    return env
