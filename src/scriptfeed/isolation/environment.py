"""Explicit construction of the driven program's environment.

The child environment is always built explicitly -- the parent
environment is never inherited in full.  By default the child gets an
empty environment; callers list the variables that should pass through.
"""
from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping

from scriptfeed.core.errors import InvalidConfiguration

_ENV_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def check_env_name(name: str) -> str:
    """Return *name* if it is a valid environment variable name.

    Raises
    ------
    InvalidConfiguration
        If *name* is empty or contains characters other than letters,
        digits and underscores, or starts with a digit.
    """
    if not _ENV_NAME_RE.fullmatch(name):
        raise InvalidConfiguration(
            f"Invalid environment variable name {name!r}",
            details={"name": name},
        )
    return name


def build_child_env(
    inherit: Iterable[str] = (),
    *,
    extra_vars: Mapping[str, str] | None = None,
    source: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Construct the child process environment.

    Parameters
    ----------
    inherit:
        Names copied from *source* when present there.
    extra_vars:
        Literal variables set in the child; they override inherited ones.
    source:
        Environment to inherit from; defaults to ``os.environ``.

    Raises
    ------
    InvalidConfiguration
        If any variable name is invalid.
    """
    source = os.environ if source is None else source
    env: dict[str, str] = {}

    for name in inherit:
        check_env_name(name)
        val = source.get(name)
        if val is not None:
            env[name] = val

    if extra_vars:
        for key, val in extra_vars.items():
            check_env_name(key)
            env[key] = val

    return env
