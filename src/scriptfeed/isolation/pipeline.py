"""Scripted execution of an interactive program over a stdin pipe.

This module implements the :class:`ScriptedPipeline` which runs an
external program with its standard input connected to a pipe, types a
fixed sequence of lines into it, and waits for it to finish.

Key guarantees:
1. The child's stdin is the read end of a fresh pipe; both original pipe
   descriptors are closed in the child before ``execve``.
2. The parent writes to the pipe's write end directly.  Its own standard
   output is never touched.
3. Each line is written with a single ``write``; an OS error or a short
   write is fatal and never retried.
4. The write end is closed strictly after the last line and strictly
   before waiting, so the child always sees end-of-input.
5. Every buffer that held a secret line is wiped on every exit path.
6. A child killed by a signal is an error, distinct from a nonzero exit.
7. After an execution error the child is reaped before the error
   propagates; a termination request only polls it.
8. Termination signals are blocked across ``fork`` so they never run
   the parent's handler inside the child.
"""
from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from typing import NoReturn

from scriptfeed.core.errors import (
    ChildSignaled,
    DescriptorFailure,
    ExecutionError,
    PipeFailure,
    ShortWrite,
    SpawnFailure,
    UnexpectedWaitStatus,
    WaitFailure,
    WriteFailure,
)
from scriptfeed.core.types import Exited, ScriptedCommand, ScriptLine, Signaled
from scriptfeed.isolation.memory import SecretBuffer, wipe
from scriptfeed.isolation.signals import TERMINATION_SIGNALS

logger = logging.getLogger(__name__)

# Status of a child whose exec failed.
EXEC_FAILURE_STATUS = 127

# Signals Python ignores at startup; the driven program gets the defaults.
_RESTORED_SIGNALS: tuple[str, ...] = ("SIGPIPE", "SIGXFSZ")

# One driven child at a time per process.
_EXECUTE_LOCK = threading.Lock()


def _termination_signals() -> set[signal.Signals]:
    return {getattr(signal, name) for name in TERMINATION_SIGNALS if hasattr(signal, name)}


def _child_setup(disable_core_dumps: bool = True) -> None:
    """Prepare the forked child just before ``execve``.

    * Resets ignored ``SIGPIPE``/``SIGXFSZ`` to their default action.
    * Resets caught termination signals to their default action.
    * Disables core dumps via ``setrlimit(RLIMIT_CORE, 0)``.
    * On Linux, sets ``PR_SET_DUMPABLE = 0`` via ``prctl``.
    """
    for name in _RESTORED_SIGNALS:
        if hasattr(signal, name):
            signal.signal(getattr(signal, name), signal.SIG_DFL)
    for sig in _termination_signals():
        if callable(signal.getsignal(sig)):
            signal.signal(sig, signal.SIG_DFL)

    if not disable_core_dumps:
        return
    try:
        import resource

        resource.setrlimit(resource.RLIMIT_CORE, (0, 0))
    except (ImportError, ValueError, OSError):
        pass

    # Linux-specific: prctl(PR_SET_DUMPABLE, 0)
    if sys.platform.startswith("linux"):
        try:
            import ctypes

            libc = ctypes.CDLL("libc.so.6", use_errno=True)
            PR_SET_DUMPABLE = 4  # noqa: N806
            libc.prctl(PR_SET_DUMPABLE, 0, 0, 0, 0)
        except (OSError, AttributeError):
            pass


def _encode_line(line: ScriptLine, owned: list[bytearray]) -> bytearray:
    """Return the newline-terminated bytes to write for *line*.

    Any buffer created here is appended to *owned* so the caller can wipe
    it.  A :class:`SecretBuffer` that already ends in a newline is written
    from its own storage without a copy.
    """
    if isinstance(line, SecretBuffer):
        if line.wiped:
            raise ValueError("Cannot send a SecretBuffer that was already wiped")
        source = line.data
        if source.endswith(b"\n"):
            return source
    elif isinstance(line, str):
        source = bytearray(line.encode("utf-8"))
        owned.append(source)
        if source.endswith(b"\n"):
            return source
    else:
        source = bytearray(line)
        owned.append(source)
        if source.endswith(b"\n"):
            return source
    data = bytearray(len(source) + 1)
    owned.append(data)
    data[:-1] = source
    data[-1:] = b"\n"
    return data


def _close_quietly(fd: int) -> None:
    try:
        os.close(fd)
    except OSError as exc:
        logger.debug("Ignoring error %d closing descriptor %d", exc.errno, fd)


class ScriptedPipeline:
    """Run a :class:`ScriptedCommand` and type its lines into the program.

    Usage::

        pipeline = ScriptedPipeline()
        result = pipeline.execute(
            ScriptedCommand.for_program(
                "/bin/cat", lines=["cpw alice", SecretBuffer.from_text(pw)],
            )
        )
        # result.code

    Only one ``execute`` call runs at a time within a process; concurrent
    callers are serialised.
    """

    def __init__(
        self,
        *,
        disable_core_dumps: bool = True,
        wipe_secrets: bool = True,
    ) -> None:
        self._disable_core_dumps = disable_core_dumps
        self._wipe_secrets = wipe_secrets

    def execute(self, command: ScriptedCommand) -> Exited:
        """Execute *command*, transmit its lines, and wait for it.

        Returns
        -------
        Exited
            The child's normal exit code.

        Raises
        ------
        PipeFailure, SpawnFailure, DescriptorFailure
            If the pipe or the child cannot be set up.
        WriteFailure, ShortWrite
            If a line cannot be written in full.
        WaitFailure
            If waiting for the child fails.
        ChildSignaled
            If the child was terminated by a signal.
        UnexpectedWaitStatus
            If the wait status is neither an exit nor a signal.
        """
        with _EXECUTE_LOCK:
            owned: list[bytearray] = []
            try:
                payloads = [_encode_line(line, owned) for line in command.lines]
                return self._run(command, payloads)
            finally:
                # CLEANUP: wipe every buffer that may have held a secret.
                for buf in owned:
                    wipe(buf)
                if self._wipe_secrets:
                    for line in command.lines:
                        if isinstance(line, SecretBuffer):
                            line.wipe()

    # -- internal -----------------------------------------------------------

    def _run(self, command: ScriptedCommand, payloads: list[bytearray]) -> Exited:
        try:
            read_fd, write_fd = os.pipe()
        except OSError as exc:
            raise PipeFailure(
                f"Error {exc.errno} creating pipe",
                details={"errno": exc.errno},
            ) from exc

        # Termination signals stay blocked until each side is ready for them.
        mask = signal.pthread_sigmask(signal.SIG_BLOCK, _termination_signals())
        try:
            pid = os.fork()
        except OSError as exc:
            signal.pthread_sigmask(signal.SIG_SETMASK, mask)
            _close_quietly(read_fd)
            _close_quietly(write_fd)
            raise SpawnFailure(
                f"Error {exc.errno} forking",
                details={"errno": exc.errno},
            ) from exc

        if pid == 0:
            self._exec_child(command, read_fd, write_fd, mask)

        logger.debug(
            "Started %s as pid %d, sending %d lines",
            command.executable, pid, len(payloads),
        )
        read_open = True
        open_fd: int | None = write_fd
        reaped = False
        try:
            signal.pthread_sigmask(signal.SIG_SETMASK, mask)

            read_open = False
            try:
                os.close(read_fd)
            except OSError as exc:
                raise DescriptorFailure(
                    f"Error {exc.errno} closing read end of pipe in parent",
                    details={"errno": exc.errno},
                ) from exc

            self._transmit(write_fd, payloads)

            # Close so the child sees end-of-input and can finish.
            open_fd = None
            try:
                os.close(write_fd)
            except OSError as exc:
                raise DescriptorFailure(
                    f"Error {exc.errno} closing output in cmd",
                    details={"errno": exc.errno},
                ) from exc

            try:
                _, status = os.waitpid(pid, 0)
            except OSError as exc:
                raise WaitFailure(
                    f"Error {exc.errno} returned by waitpid",
                    details={"errno": exc.errno, "pid": pid},
                ) from exc
            reaped = True
        except ExecutionError:
            if open_fd is not None:
                _close_quietly(open_fd)
                open_fd = None
            reaped = self._reap(pid)
            raise
        finally:
            if read_open:
                _close_quietly(read_fd)
            if open_fd is not None:
                _close_quietly(open_fd)
            if not reaped:
                # Termination request: do not wait on a child that may
                # ignore end-of-input.
                self._reap_if_done(pid)

        return self._classify(pid, status)

    def _exec_child(
        self,
        command: ScriptedCommand,
        read_fd: int,
        write_fd: int,
        mask: set[signal.Signals],
    ) -> NoReturn:
        """Replace the forked child with the target program.

        Never returns: if anything fails, a diagnostic goes to fd 2 and
        the child exits with :data:`EXEC_FAILURE_STATUS`.  The parent's
        transmission logic must never run in the child.
        """
        try:
            os.dup2(read_fd, 0)
            os.close(write_fd)
            if read_fd != 0:
                os.close(read_fd)
            _child_setup(self._disable_core_dumps)
            # A pending termination signal now takes its default action.
            signal.pthread_sigmask(signal.SIG_SETMASK, mask)
            os.execve(
                command.executable,
                list(command.argv),
                dict(command.environment),
            )
        except OSError as exc:
            _child_report(f"Execve failed with {exc.errno}: {exc.strerror}")
        except BaseException as exc:  # noqa: BLE001
            _child_report(f"Child setup aborted: {type(exc).__name__}")
        finally:
            os._exit(EXEC_FAILURE_STATUS)

    @staticmethod
    def _transmit(fd: int, payloads: list[bytearray]) -> None:
        for index, payload in enumerate(payloads):
            try:
                written = os.write(fd, payload)
            except OSError as exc:
                raise WriteFailure(
                    f"Error {exc.errno} writing in cmd",
                    details={"errno": exc.errno, "line": index},
                ) from exc
            if written != len(payload):
                raise ShortWrite(
                    "Short write in cmd - confused",
                    details={
                        "line": index,
                        "requested": len(payload),
                        "written": written,
                    },
                )

    @staticmethod
    def _reap(pid: int) -> bool:
        """Wait for the child after a failed transmission; it has seen EOF."""
        try:
            os.waitpid(pid, 0)
        except OSError as exc:
            logger.debug("Could not reap child %d: errno %d", pid, exc.errno)
            return False
        return True

    @staticmethod
    def _reap_if_done(pid: int) -> None:
        """Collect the child if it has already exited; never block."""
        try:
            os.waitpid(pid, os.WNOHANG)
        except OSError as exc:
            logger.debug("Could not reap child %d: errno %d", pid, exc.errno)

    @staticmethod
    def _classify(pid: int, status: int) -> Exited:
        if os.WIFEXITED(status):
            code = os.WEXITSTATUS(status)
            logger.info("Child process %d exited with status %d", pid, code)
            return Exited(code)
        if os.WIFSIGNALED(status):
            signum = os.WTERMSIG(status)
            logger.error("Child process %d exited on signal %d", pid, signum)
            raise ChildSignaled(pid, signum, result=Signaled(signum))
        raise UnexpectedWaitStatus(
            "Weird exit from waitpid - confused",
            details={"pid": pid, "status": status},
        )


def _child_report(text: str) -> None:
    try:
        os.write(2, f"{text}\n".encode())
    except OSError:
        pass
