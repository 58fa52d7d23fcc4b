"""Tests for scriptfeed process isolation.

This module covers the isolation subpackage:

1. **Secure memory** -- bytearray wipe, SecretBuffer construction,
   context manager cleanup, idempotent wipe, redaction.
2. **Environment construction** -- explicit child environment, name
   checks, no full inheritance.
3. **Signal policy** -- installed dispositions, catch-all handler,
   rollback on failure, idempotence.
4. **Scripted execution** -- round-trip through a recorder, line order
   and newline handling, exit codes, signal death, wait-status shapes.
5. **Error handling** -- pipe, fork, write and short-write failures,
   with secret buffers wiped on every path.
6. **Signals during execution** -- writes to an exited child, a
   termination request while waiting, the signal mask across fork.
"""
from __future__ import annotations

import contextlib
import errno
import os
import signal
import sys
from pathlib import Path

import pytest

from conftest import SH, drain_then
from scriptfeed.core.errors import (
    ChildSignaled,
    InvalidConfiguration,
    PipeFailure,
    ShortWrite,
    SignalPolicyFailure,
    SpawnFailure,
    TerminationRequested,
    UnexpectedSignal,
    UnexpectedWaitStatus,
    WriteFailure,
)
from scriptfeed.core.types import Exited, ScriptedCommand, Signaled
from scriptfeed.isolation import (
    EXEC_FAILURE_STATUS,
    ScriptedPipeline,
    SecretBuffer,
    SignalPolicy,
    build_child_env,
    check_env_name,
    wipe,
)
from scriptfeed.isolation import pipeline as pipeline_module


@pytest.fixture
def forked(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    """Record the pid of every child the pipeline forks."""
    pids: list[int] = []
    real_fork = os.fork

    def recording_fork() -> int:
        pid = real_fork()
        if pid:
            pids.append(pid)
        return pid

    monkeypatch.setattr(pipeline_module.os, "fork", recording_fork)
    return pids


# ===================================================================
# Secure Memory
# ===================================================================


class TestWipe:
    """Test the wipe() function for bytearray zeroing."""

    def test_wipe_zeros_all_bytes(self) -> None:
        data = bytearray(b"super-secret-value-12345")
        wipe(data)
        assert all(b == 0 for b in data)
        assert len(data) == len(b"super-secret-value-12345")

    def test_wipe_empty_bytearray(self) -> None:
        data = bytearray(b"")
        wipe(data)  # Should not raise.
        assert len(data) == 0

    def test_wipe_large_buffer(self) -> None:
        data = bytearray(os.urandom(4096))
        wipe(data)
        assert all(b == 0 for b in data)

    def test_wipe_rejects_bytes(self) -> None:
        with pytest.raises(TypeError, match="Expected bytearray"):
            wipe(b"immutable")  # type: ignore[arg-type]


class TestSecretBuffer:
    """Test SecretBuffer construction, cleanup and redaction."""

    def test_from_text_appends_newline(self) -> None:
        buf = SecretBuffer.from_text("Secr3t+")
        assert buf.data == bytearray(b"Secr3t+\n")

    def test_from_text_prefix_and_suffix(self) -> None:
        buf = SecretBuffer.from_text("pw", prefix="> ", suffix="\r\n")
        assert buf.data == bytearray(b"> pw\r\n")

    def test_from_text_rejects_non_ascii(self) -> None:
        with pytest.raises(ValueError, match="ASCII"):
            SecretBuffer.from_text("pässword")

    def test_context_manager_wipes_on_exit(self) -> None:
        buf = SecretBuffer(bytearray(b"secret-data"))
        with buf as data:
            assert data == bytearray(b"secret-data")
        assert buf.wiped
        assert all(b == 0 for b in buf.data)

    def test_context_manager_wipes_on_exception(self) -> None:
        buf = SecretBuffer(bytearray(b"secret-data"))
        with pytest.raises(ValueError, match="test"), buf:
            raise ValueError("test")
        assert all(b == 0 for b in buf.data)

    def test_double_wipe_is_safe(self) -> None:
        buf = SecretBuffer(bytearray(b"double"))
        buf.wipe()
        buf.wipe()  # Should not raise.
        assert buf.wiped
        assert buf.data == bytearray(6)

    def test_rejects_non_bytearray(self) -> None:
        with pytest.raises(TypeError, match="requires bytearray"):
            SecretBuffer(b"immutable")  # type: ignore[arg-type]

    def test_redacted_representations(self) -> None:
        buf = SecretBuffer.from_text("hunter2")
        assert "hunter2" not in str(buf)
        assert "hunter2" not in repr(buf)
        assert "hunter2" not in f"{buf}"
        assert len(buf) == len("hunter2\n")


# ===================================================================
# Environment Construction
# ===================================================================


class TestBuildChildEnv:
    """The child environment is built explicitly."""

    def test_empty_by_default(self) -> None:
        assert build_child_env(source={"PATH": "/bin", "HOME": "/root"}) == {}

    def test_inherits_listed_names(self) -> None:
        env = build_child_env(["PATH", "KRB5CCNAME"], source={"PATH": "/bin", "HOME": "/x"})
        assert env == {"PATH": "/bin"}

    def test_extra_vars_override(self) -> None:
        env = build_child_env(
            ["LANG"],
            extra_vars={"LANG": "C"},
            source={"LANG": "en_US.UTF-8"},
        )
        assert env == {"LANG": "C"}

    def test_reads_os_environ(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("_SF_TEST_VAR", "inherited")
        monkeypatch.setenv("_SF_TEST_OTHER", "not-inherited")
        env = build_child_env(["_SF_TEST_VAR"])
        assert env == {"_SF_TEST_VAR": "inherited"}

    @pytest.mark.parametrize("name", ["", "1ABC", "A-B", "A=B", "A B"])
    def test_invalid_names_rejected(self, name: str) -> None:
        with pytest.raises(InvalidConfiguration):
            check_env_name(name)
        with pytest.raises(InvalidConfiguration):
            build_child_env([name], source={})


# ===================================================================
# Signal Policy
# ===================================================================


@pytest.mark.usefixtures("preserve_signals")
class TestSignalPolicy:
    """Dispositions are installed all at once and only once."""

    def test_install_sets_dispositions(self) -> None:
        policy = SignalPolicy()
        policy.install()
        assert policy.installed
        assert signal.getsignal(signal.SIGTTOU) == signal.SIG_IGN
        assert signal.getsignal(signal.SIGTTIN) == signal.SIG_IGN
        assert callable(signal.getsignal(signal.SIGCHLD))
        assert callable(signal.getsignal(signal.SIGPIPE))
        assert signal.getsignal(signal.SIGTERM) == policy.handle
        assert signal.getsignal(signal.SIGUSR1) == policy.handle

    def test_install_is_idempotent(self) -> None:
        policy = SignalPolicy()
        policy.install()
        policy.install()
        assert policy.installed

    def test_termination_signal_raises(self) -> None:
        policy = SignalPolicy()
        with pytest.raises(TerminationRequested) as exc_info:
            policy.handle(signal.SIGTERM, None)
        assert exc_info.value.signum == signal.SIGTERM
        assert exc_info.value.exit_status == 1

    def test_delivered_signal_raises(self) -> None:
        policy = SignalPolicy()
        policy.install()
        with pytest.raises(TerminationRequested):
            signal.raise_signal(signal.SIGUSR1)

    def test_other_signal_is_unexpected(self) -> None:
        policy = SignalPolicy()
        with pytest.raises(UnexpectedSignal, match="confused"):
            policy.handle(signal.SIGUSR2, None)

    def test_noop_handler_swallows_sigchld(self) -> None:
        policy = SignalPolicy()
        policy.install()
        signal.raise_signal(signal.SIGCHLD)  # Should not raise.

    def test_restore_puts_back_previous(self) -> None:
        before = signal.getsignal(signal.SIGTTOU)
        policy = SignalPolicy()
        policy.install()
        policy.restore()
        assert not policy.installed
        assert signal.getsignal(signal.SIGTTOU) == before

    def test_failure_rolls_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        before = signal.getsignal(signal.SIGTTOU)
        real_signal = signal.signal

        def failing(sig: int, handler: object) -> object:
            if sig == signal.SIGQUIT:
                raise OSError(errno.EINVAL, "Invalid argument")
            return real_signal(sig, handler)

        monkeypatch.setattr(signal, "signal", failing)
        policy = SignalPolicy()
        with pytest.raises(SignalPolicyFailure, match="SIGQUIT"):
            policy.install()
        assert not policy.installed
        assert signal.getsignal(signal.SIGTTOU) == before

    def test_plan_covers_every_group(self) -> None:
        planned = {sig for sig, _ in SignalPolicy().dispositions()}
        assert {
            signal.SIGCHLD, signal.SIGPIPE, signal.SIGTTIN, signal.SIGTTOU,
            signal.SIGHUP, signal.SIGINT, signal.SIGTERM, signal.SIGQUIT,
            signal.SIGUSR1,
        } <= planned


# ===================================================================
# Scripted Execution
# ===================================================================


def _command(executable: str, args: list[str], lines: list) -> ScriptedCommand:
    return ScriptedCommand.for_program(executable, *args, lines=lines)


class TestScriptedPipeline:
    """Test ScriptedPipeline.execute against real child processes."""

    @pytest.fixture
    def pipeline(self) -> ScriptedPipeline:
        return ScriptedPipeline()

    def test_round_trip_cpw_scenario(
        self, pipeline: ScriptedPipeline, recorder: tuple[str, list[str], Path],
    ) -> None:
        executable, args, out = recorder
        lines = ["cpw alice\n", "Secr3t!\n", "Secr3t!\n"]
        result = pipeline.execute(_command(executable, args, lines))
        assert result == Exited(0)
        assert out.read_bytes() == b"cpw alice\nSecr3t!\nSecr3t!\n"

    def test_lines_delivered_in_order(
        self, pipeline: ScriptedPipeline, recorder: tuple[str, list[str], Path],
    ) -> None:
        executable, args, out = recorder
        lines = [f"line {i}\n" for i in range(50)]
        pipeline.execute(_command(executable, args, lines))
        assert out.read_text().splitlines() == [f"line {i}" for i in range(50)]

    def test_missing_newline_is_added(
        self, pipeline: ScriptedPipeline, recorder: tuple[str, list[str], Path],
    ) -> None:
        executable, args, out = recorder
        pipeline.execute(_command(executable, args, ["one", b"two", "three\n"]))
        assert out.read_bytes() == b"one\ntwo\nthree\n"

    def test_secret_lines_sent_and_wiped(
        self, pipeline: ScriptedPipeline, recorder: tuple[str, list[str], Path],
    ) -> None:
        executable, args, out = recorder
        first = SecretBuffer.from_text("Secr3t+")
        second = SecretBuffer(bytearray(b"Secr3t+"))
        pipeline.execute(_command(executable, args, ["cpw bob", first, second]))
        assert out.read_bytes() == b"cpw bob\nSecr3t+\nSecr3t+\n"
        assert first.wiped and second.wiped
        assert not any(first.data) and not any(second.data)

    def test_keep_secrets_when_asked(
        self, recorder: tuple[str, list[str], Path],
    ) -> None:
        executable, args, _ = recorder
        buf = SecretBuffer.from_text("keep")
        ScriptedPipeline(wipe_secrets=False).execute(_command(executable, args, [buf]))
        assert not buf.wiped
        buf.wipe()

    def test_wiped_secret_rejected(
        self, pipeline: ScriptedPipeline, recorder: tuple[str, list[str], Path],
    ) -> None:
        executable, args, _ = recorder
        buf = SecretBuffer.from_text("gone")
        buf.wipe()
        with pytest.raises(ValueError, match="already wiped"):
            pipeline.execute(_command(executable, args, [buf]))

    def test_nonzero_exit_code_is_data(self, pipeline: ScriptedPipeline) -> None:
        result = pipeline.execute(_command(SH, drain_then("exit 3"), ["x"]))
        assert result == Exited(3)
        assert result.exit_code == 3

    def test_empty_script_sends_eof(
        self, pipeline: ScriptedPipeline, recorder: tuple[str, list[str], Path],
    ) -> None:
        executable, args, out = recorder
        assert pipeline.execute(_command(executable, args, [])) == Exited(0)
        assert out.read_bytes() == b""

    def test_empty_script_without_reader(self, pipeline: ScriptedPipeline) -> None:
        command = ScriptedCommand(executable=SH, argv=("sh", "-c", "exit 0"), lines=())
        assert pipeline.execute(command) == Exited(0)

    def test_environment_is_explicit(
        self, pipeline: ScriptedPipeline, tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("_SF_PARENT_ONLY", "leak")
        out = tmp_path / "env.txt"
        script = (
            "import os, sys\n"
            "sys.stdin.read()\n"
            "open(sys.argv[1], 'w').write(repr(sorted(k for k in os.environ if k.startswith('_SF'))))\n"
        )
        command = ScriptedCommand.for_program(
            sys.executable, "-c", script, str(out),
            lines=["x"],
            environment={"_SF_CHILD": "1"},
        )
        pipeline.execute(command)
        assert out.read_text() == "['_SF_CHILD']"

    def test_stdout_untouched(
        self, pipeline: ScriptedPipeline, recorder: tuple[str, list[str], Path],
    ) -> None:
        executable, args, _ = recorder
        before = os.fstat(1)
        pipeline.execute(_command(executable, args, ["x"]))
        after = os.fstat(1)
        assert (before.st_dev, before.st_ino) == (after.st_dev, after.st_ino)

    def test_exec_failure_never_reports_success(self, pipeline: ScriptedPipeline) -> None:
        """The child exits 127; the parent may also see the closed pipe first."""
        command = _command("/nonexistent/binary/sf_test_xyz", [], ["x"])
        try:
            result = pipeline.execute(command)
        except WriteFailure:
            return
        assert result == Exited(EXEC_FAILURE_STATUS)

    @pytest.mark.usefixtures("preserve_signals")
    def test_runs_under_installed_policy(
        self, pipeline: ScriptedPipeline, recorder: tuple[str, list[str], Path],
    ) -> None:
        SignalPolicy().install()
        executable, args, out = recorder
        result = pipeline.execute(_command(executable, args, ["a", "b"]))
        assert result == Exited(0)
        assert out.read_bytes() == b"a\nb\n"


class TestChildTermination:
    """A child killed by a signal is a fatal, distinct error."""

    def test_killed_child_raises(self) -> None:
        command = _command(SH, drain_then("kill -KILL $$"), ["x"])
        with pytest.raises(ChildSignaled) as exc_info:
            ScriptedPipeline().execute(command)
        err = exc_info.value
        assert err.signum == signal.SIGKILL
        assert err.result == Signaled(signal.SIGKILL)
        assert err.result.exit_code == 1
        assert err.exit_status == 1
        assert err.details["signal"] == signal.SIGKILL

    def test_secrets_wiped_after_signal_death(self) -> None:
        buf = SecretBuffer.from_text("Secr3t+")
        command = _command(SH, drain_then("kill -KILL $$"), [buf])
        with pytest.raises(ChildSignaled):
            ScriptedPipeline().execute(command)
        assert buf.wiped

    def test_unexpected_wait_status(
        self, monkeypatch: pytest.MonkeyPatch, recorder: tuple[str, list[str], Path],
    ) -> None:
        real_waitpid = os.waitpid

        def stopped(pid: int, options: int) -> tuple[int, int]:
            real_waitpid(pid, options)
            return pid, 0x137F  # WIFSTOPPED with SIGSTOP

        monkeypatch.setattr(pipeline_module.os, "waitpid", stopped)
        executable, args, _ = recorder
        with pytest.raises(UnexpectedWaitStatus) as exc_info:
            ScriptedPipeline().execute(_command(executable, args, ["x"]))
        assert not isinstance(exc_info.value, ChildSignaled)


# ===================================================================
# Error Handling
# ===================================================================


class TestPipelineFailures:
    """OS-level failures are fatal and leave no secret behind."""

    def test_pipe_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def no_pipe() -> tuple[int, int]:
            raise OSError(errno.EMFILE, "Too many open files")

        monkeypatch.setattr(pipeline_module.os, "pipe", no_pipe)
        buf = SecretBuffer.from_text("Secr3t+")
        with pytest.raises(PipeFailure) as exc_info:
            ScriptedPipeline().execute(_command("/bin/cat", [], [buf]))
        assert exc_info.value.details["errno"] == errno.EMFILE
        assert buf.wiped

    def test_fork_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def no_fork() -> int:
            raise OSError(errno.EAGAIN, "Resource temporarily unavailable")

        monkeypatch.setattr(pipeline_module.os, "fork", no_fork)
        buf = SecretBuffer.from_text("Secr3t+")
        with pytest.raises(SpawnFailure):
            ScriptedPipeline().execute(_command("/bin/cat", [], [buf]))
        assert buf.wiped

    def test_short_write_is_fatal(
        self, monkeypatch: pytest.MonkeyPatch, recorder: tuple[str, list[str], Path],
    ) -> None:
        real_write = os.write

        def short(fd: int, data: bytes) -> int:
            return real_write(fd, data[:-1])

        monkeypatch.setattr(pipeline_module.os, "write", short)
        executable, args, _ = recorder
        buf = SecretBuffer.from_text("Secr3t+")
        with pytest.raises(ShortWrite) as exc_info:
            ScriptedPipeline().execute(_command(executable, args, ["cpw alice", buf]))
        assert exc_info.value.details["line"] == 0
        assert exc_info.value.details["written"] == exc_info.value.details["requested"] - 1
        assert buf.wiped

    def test_write_error_is_fatal(
        self, monkeypatch: pytest.MonkeyPatch, recorder: tuple[str, list[str], Path],
    ) -> None:
        def broken(fd: int, data: bytes) -> int:
            raise BrokenPipeError(errno.EPIPE, "Broken pipe")

        monkeypatch.setattr(pipeline_module.os, "write", broken)
        executable, args, _ = recorder
        buf = SecretBuffer.from_text("Secr3t+")
        with pytest.raises(WriteFailure) as exc_info:
            ScriptedPipeline().execute(_command(executable, args, [buf]))
        assert exc_info.value.details["errno"] == errno.EPIPE
        assert buf.wiped
        assert "Secr3t" not in str(exc_info.value)

    def test_child_reaped_after_failed_write(self, forked: list[int]) -> None:
        command = ScriptedCommand.for_program(
            SH, "-c", "exec 0<&-; exec sleep 1",
            lines=[b"x" * (1 << 20)],
            environment={"PATH": "/bin:/usr/bin"},
        )
        with pytest.raises((WriteFailure, ShortWrite)):
            ScriptedPipeline().execute(command)
        (pid,) = forked
        with pytest.raises(ChildProcessError):
            os.waitpid(pid, os.WNOHANG)


@pytest.mark.usefixtures("preserve_signals")
class TestSignalsDuringExecution:
    """Signal dispositions hold up against a real child."""

    def test_write_to_exited_child_is_error(self) -> None:
        SignalPolicy().install()
        buf = SecretBuffer.from_text("a" * (1 << 20))
        command = _command(SH, ["-c", "exec 0<&-; exit 0"], ["cpw alice", buf])
        with pytest.raises((WriteFailure, ShortWrite)):
            ScriptedPipeline().execute(command)
        assert buf.wiped
        assert not any(buf.data)

    def test_termination_request_during_wait(self, forked: list[int]) -> None:
        SignalPolicy().install()
        buf = SecretBuffer.from_text("Secr3t+")
        command = ScriptedCommand.for_program(
            SH, *drain_then("kill -TERM $PPID; exec sleep 5"),
            lines=["cpw alice", buf],
            environment={"PATH": "/bin:/usr/bin"},
        )
        try:
            with pytest.raises(TerminationRequested) as exc_info:
                ScriptedPipeline().execute(command)
        finally:
            for pid in forked:
                with contextlib.suppress(ProcessLookupError, ChildProcessError):
                    os.kill(pid, signal.SIGKILL)
                    os.waitpid(pid, 0)
        assert exc_info.value.signum == signal.SIGTERM
        assert buf.wiped

    def test_termination_signals_blocked_across_fork(
        self, monkeypatch: pytest.MonkeyPatch, recorder: tuple[str, list[str], Path],
    ) -> None:
        SignalPolicy().install()
        seen: list[set[signal.Signals]] = []
        real_fork = os.fork

        def checking_fork() -> int:
            blocked = signal.pthread_sigmask(signal.SIG_BLOCK, [])
            pid = real_fork()
            if pid:
                seen.append(blocked)
            return pid

        monkeypatch.setattr(pipeline_module.os, "fork", checking_fork)
        before = signal.pthread_sigmask(signal.SIG_BLOCK, [])
        executable, args, _ = recorder
        assert ScriptedPipeline().execute(_command(executable, args, ["x"])) == Exited(0)
        assert {signal.SIGHUP, signal.SIGINT, signal.SIGTERM, signal.SIGQUIT} <= seen[0]
        assert signal.pthread_sigmask(signal.SIG_BLOCK, []) == before

    def test_driven_program_starts_unblocked(self, tmp_path: Path) -> None:
        SignalPolicy().install()
        out = tmp_path / "mask.txt"
        script = (
            "import signal, sys\n"
            "sys.stdin.read()\n"
            "blocked = signal.pthread_sigmask(signal.SIG_BLOCK, [])\n"
            "open(sys.argv[1], 'w').write(str(signal.SIGTERM in blocked))\n"
        )
        command = ScriptedCommand.for_program(
            sys.executable, "-c", script, str(out), lines=["x"],
        )
        assert ScriptedPipeline().execute(command) == Exited(0)
        assert out.read_text() == "False"
