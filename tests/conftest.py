"""Shared fixtures for scriptfeed tests.

Provides driven programs built from ``sys.executable`` and ``/bin/sh``,
and a guard that puts signal dispositions back after tests that install
a :class:`SignalPolicy`.
"""
from __future__ import annotations

import signal
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

from scriptfeed.isolation.signals import (
    IGNORED_SIGNALS,
    NOOP_SIGNALS,
    TERMINATION_SIGNALS,
)

# Copies standard input verbatim to the file named by argv[1].
RECORDER_SCRIPT = (
    "import sys\n"
    "data = sys.stdin.buffer.read()\n"
    "with open(sys.argv[1], 'wb') as fh:\n"
    "    fh.write(data)\n"
)

SH = "/bin/sh"


def drain_then(action: str) -> list[str]:
    """Return ``sh -c`` arguments that read stdin to EOF, then run *action*.

    Only shell builtins are used, so the script works with an empty
    environment.
    """
    return ["-c", f"while read line; do :; done; {action}", "sh"]


@pytest.fixture()
def recorder(tmp_path: Path) -> tuple[str, list[str], Path]:
    """Return ``(executable, args, output_path)`` for the stdin recorder."""
    out = tmp_path / "received.bin"
    return sys.executable, ["-c", RECORDER_SCRIPT, str(out)], out


@pytest.fixture()
def preserve_signals() -> Iterator[None]:
    """Restore every disposition a SignalPolicy may touch."""
    names = NOOP_SIGNALS + IGNORED_SIGNALS + TERMINATION_SIGNALS
    sigs = [getattr(signal, name) for name in names if hasattr(signal, name)]
    saved = {sig: signal.getsignal(sig) for sig in sigs}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, signal.SIG_DFL if handler is None else handler)
