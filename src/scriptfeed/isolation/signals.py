"""Process-wide signal dispositions for the driver.

:class:`SignalPolicy` is installed once at startup, before the pipeline
creates any child, and is not modified afterwards:

* ``SIGCHLD`` and ``SIGPIPE`` get a no-op handler.  The pipeline reaps
  its child with a blocking ``waitpid``; a write to a child that already
  exited raises ``BrokenPipeError`` instead of killing the driver.
* ``SIGTTIN``, ``SIGTTOU`` and ``SIGTRAP`` are ignored so terminal job
  control never stops the driver.
* ``SIGHUP``, ``SIGINT``, ``SIGTERM``, ``SIGQUIT`` and ``SIGUSR1`` raise
  :class:`TerminationRequested`.  The exception unwinds through every
  ``finally`` block, so secret buffers are wiped before the process exits
  with the failure status.

Dispositions are process-wide state.  Two independent drivers must not
run in one process unless their policies are known to be compatible.
"""
from __future__ import annotations

import logging
import signal
from collections.abc import Callable
from types import FrameType
from typing import Any

from scriptfeed.core.errors import (
    SignalPolicyFailure,
    TerminationRequested,
    UnexpectedSignal,
)

logger = logging.getLogger(__name__)

Handler = Callable[[int, FrameType | None], Any] | int | signal.Handlers | None

# Signal names rather than numbers; names missing on a platform are skipped.
NOOP_SIGNALS: tuple[str, ...] = ("SIGCHLD", "SIGPIPE")
IGNORED_SIGNALS: tuple[str, ...] = ("SIGTTOU", "SIGTTIN", "SIGTRAP")
TERMINATION_SIGNALS: tuple[str, ...] = (
    "SIGHUP",
    "SIGINT",
    "SIGTERM",
    "SIGQUIT",
    "SIGUSR1",
)


def _resolve(names: tuple[str, ...]) -> list[signal.Signals]:
    return [getattr(signal, name) for name in names if hasattr(signal, name)]


def _noop(signum: int, frame: FrameType | None) -> None:
    return


class SignalPolicy:
    """Deterministic signal dispositions, installed once before forking.

    Usage::

        policy = SignalPolicy()
        policy.install()
        # ... run the pipeline ...
    """

    def __init__(self) -> None:
        self._noop = _resolve(NOOP_SIGNALS)
        self._ignored = _resolve(IGNORED_SIGNALS)
        self._termination = frozenset(_resolve(TERMINATION_SIGNALS))
        self._saved: dict[signal.Signals, Handler] = {}
        self._installed = False

    @property
    def installed(self) -> bool:
        """Return ``True`` once :meth:`install` has succeeded."""
        return self._installed

    @property
    def termination_signals(self) -> frozenset[signal.Signals]:
        return self._termination

    def handle(self, signum: int, frame: FrameType | None) -> None:
        """Catch-all handler for the termination-request signals.

        Raises
        ------
        TerminationRequested
            For the termination-request signals.
        UnexpectedSignal
            For any other signal; this should never happen.
        """
        if signum in self._termination:
            raise TerminationRequested(signum)
        logger.error("Unexpected signal %d reached the catch-all handler", signum)
        raise UnexpectedSignal(signum)

    def dispositions(self) -> list[tuple[signal.Signals, Handler]]:
        """Return the ``(signal, handler)`` pairs this policy installs, in order."""
        plan: list[tuple[signal.Signals, Handler]] = []
        plan.extend((sig, _noop) for sig in self._noop)
        plan.extend((sig, signal.SIG_IGN) for sig in self._ignored)
        plan.extend((sig, self.handle) for sig in sorted(self._termination))
        return plan

    def install(self) -> None:
        """Install every disposition, or none of them.

        Idempotent: a second call is a no-op.

        Raises
        ------
        SignalPolicyFailure
            If any disposition cannot be installed.  The dispositions
            already changed are rolled back first.
        """
        if self._installed:
            return
        for sig, handler in self.dispositions():
            try:
                self._saved[sig] = signal.signal(sig, handler)
            except (OSError, ValueError) as exc:
                self._rollback()
                raise SignalPolicyFailure(
                    f"Error calling sigaction for {sig.name}: {exc}",
                    details={"signal": int(sig)},
                ) from exc
        self._installed = True
        logger.debug("Installed signal policy for %d signals", len(self._saved))

    def restore(self) -> None:
        """Put back the dispositions saved by :meth:`install`."""
        self._rollback()
        self._installed = False

    def _rollback(self) -> None:
        for sig, previous in reversed(list(self._saved.items())):
            # None means the previous handler was not installed from Python.
            handler = signal.SIG_DFL if previous is None else previous
            try:
                signal.signal(sig, handler)
            except (OSError, ValueError):
                logger.warning("Could not restore disposition of %s", sig.name)
        self._saved.clear()
