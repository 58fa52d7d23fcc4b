"""scriptfeed shared domain types.

Key design decisions:
* ``ProcessResult`` has exactly two shapes, :class:`Exited` and
  :class:`Signaled`; waiting on a child never yields anything else.
* ``ScriptedCommand`` is a frozen dataclass.  Lines may be plain text or
  :class:`~scriptfeed.isolation.memory.SecretBuffer` objects; the latter
  redact themselves in ``repr()`` so a command can be logged safely.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, TypeAlias

from scriptfeed.core.errors import FAILURE_STATUS

if TYPE_CHECKING:
    from scriptfeed.isolation.memory import SecretBuffer

ScriptLine: TypeAlias = "str | bytes | SecretBuffer"
"""One unit of input text sent to the driven program."""


# ---------------------------------------------------------------------------
# ProcessResult
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Exited:
    """The child exited normally with *code*."""

    code: int

    @property
    def exit_code(self) -> int:
        return self.code


@dataclass(frozen=True, slots=True)
class Signaled:
    """The child was terminated by *signal_number*."""

    signal_number: int

    @property
    def exit_code(self) -> int:
        return FAILURE_STATUS


ProcessResult: TypeAlias = Exited | Signaled
"""Outcome of a driven child process; ``exit_code`` is the outer status."""


# ---------------------------------------------------------------------------
# ScriptedCommand
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ScriptedCommand:
    """An external program plus the lines to type into it.

    Attributes
    ----------
    executable:
        Path of the program image passed to ``execve``.
    argv:
        Argument vector, ``argv[0]`` included.
    lines:
        Ordered lines to transmit.  A line without a trailing newline is
        terminated with one when it is written.  An empty tuple is
        allowed; the program then sees end-of-input at once.
    environment:
        Complete environment of the child.  Nothing is inherited from the
        parent unless it is listed here.
    """

    executable: str
    argv: tuple[str, ...]
    lines: tuple[ScriptLine, ...]
    environment: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "argv", tuple(self.argv))
        object.__setattr__(self, "lines", tuple(self.lines))
        object.__setattr__(
            self, "environment", MappingProxyType(dict(self.environment)),
        )

    @classmethod
    def for_program(
        cls,
        executable: str,
        *args: str,
        lines: list[ScriptLine] | tuple[ScriptLine, ...],
        environment: Mapping[str, str] | None = None,
    ) -> ScriptedCommand:
        """Build a command whose ``argv[0]`` is the executable's basename."""
        return cls(
            executable=executable,
            argv=(os.path.basename(executable), *args),
            lines=tuple(lines),
            environment=environment or {},
        )

