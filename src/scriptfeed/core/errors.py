"""scriptfeed error-code hierarchy.

Every failure the driver can report is a concrete exception class with a
stable error code.  Nothing in the core is recovered internally: each of
these terminates the overall operation, and the CLI maps all of them to
the generic failure status.

Hierarchy
---------
::

    ScriptFeedError
    +-- ValidationError       (SF-E1xx)
    +-- ExecutionError        (SF-E2xx)
    +-- SignalError           (SF-E3xx)
    +-- ConfigurationError    (SF-E4xx)

Usage
-----
Raise concrete subclasses directly::

    raise ShortWrite(details={"requested": 9, "written": 4})

Catch by category::

    try:
        ...
    except ExecutionError:
        # handles PipeFailure, SpawnFailure, ChildSignaled, etc.
        ...

Messages and details MUST NOT contain secret values or scripted line
contents.
"""
from __future__ import annotations

from typing import Any

# Outer process status for every fatal condition.
FAILURE_STATUS = 1

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class ScriptFeedError(Exception):
    """Base exception for all scriptfeed errors.

    Attributes
    ----------
    code : str
        Error code, e.g. ``"SF-E100"``.
    exit_status : int
        Process exit status the outer program reports for this error.
    message : str
        Human-readable description (MUST NOT contain secret values).
    details : dict[str, Any]
        Machine-readable context specific to the error instance.
    resolution : str
        Suggested action for the caller.
    """

    code: str = "SF-E000"
    exit_status: int = FAILURE_STATUS
    message: str = "Unknown scriptfeed error"
    resolution: str = ""

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        resolution: str | None = None,
    ) -> None:
        self.details: dict[str, Any] = details or {}
        if message is not None:
            self.message = message
        if resolution is not None:
            self.resolution = resolution
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the error for machine-readable diagnostics."""
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["detail"] = self.details
        if self.resolution:
            payload["resolution"] = self.resolution
        return {"error": payload}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# ===================================================================
# Category base classes
# ===================================================================

class ValidationError(ScriptFeedError):
    """SF-E1xx -- Untrusted input rejected before any process is created."""

    code = "SF-E1XX"


class ExecutionError(ScriptFeedError):
    """SF-E2xx -- OS-level failures and abnormal child termination."""

    code = "SF-E2XX"


class SignalError(ScriptFeedError):
    """SF-E3xx -- Signal disposition and delivery errors."""

    code = "SF-E3XX"


class ConfigurationError(ScriptFeedError):
    """SF-E4xx -- Invalid driver configuration."""

    code = "SF-E4XX"


# ===================================================================
# SF-E1xx  Validation Errors
# ===================================================================

class TooLong(ValidationError):
    """SF-E100 -- Input exceeds the policy's maximum length."""

    code = "SF-E100"
    message = "Input is too long"
    resolution = "Shorten the value to the documented limit."


class IllegalCharacter(ValidationError):
    """SF-E101 -- Input contains a control or non allow-listed character."""

    code = "SF-E101"
    message = "Input contains an illegal character"
    resolution = (
        "Use only ASCII letters, digits and the punctuation allowed "
        "for this kind of value."
    )


class IdentityConventionViolation(ValidationError):
    """SF-E102 -- Principal does not follow the configured naming convention."""

    code = "SF-E102"
    message = "Principal does not match the required naming convention"
    resolution = "Use a principal starting with one of the configured prefixes."


# ===================================================================
# SF-E2xx  Execution Errors
# ===================================================================

class PipeFailure(ExecutionError):
    """SF-E200 -- The pipe to the child could not be created."""

    code = "SF-E200"
    message = "Error creating pipe"


class SpawnFailure(ExecutionError):
    """SF-E201 -- The child process could not be created."""

    code = "SF-E201"
    message = "Error forking child process"


class DescriptorFailure(ExecutionError):
    """SF-E202 -- A pipe descriptor could not be closed or duplicated."""

    code = "SF-E202"
    message = "Error handling pipe descriptor"


class WriteFailure(ExecutionError):
    """SF-E203 -- Writing a scripted line reported an OS error."""

    code = "SF-E203"
    message = "Error writing to child process"


class ShortWrite(ExecutionError):
    """SF-E204 -- Fewer bytes were written than requested."""

    code = "SF-E204"
    message = "Short write to child process"
    resolution = "This indicates an environment fault; partial writes are not retried."


class WaitFailure(ExecutionError):
    """SF-E205 -- Waiting for the child process failed."""

    code = "SF-E205"
    message = "Error waiting for child process"


class ChildSignaled(ExecutionError):
    """SF-E206 -- The child process was terminated by a signal."""

    code = "SF-E206"
    message = "Child process was terminated by a signal"

    def __init__(self, pid: int, signum: int, *, result: Any = None) -> None:
        self.pid = pid
        self.signum = signum
        self.result = result
        super().__init__(
            f"Child process {pid} exited on signal {signum}",
            details={"pid": pid, "signal": signum},
        )


class UnexpectedWaitStatus(ExecutionError):
    """SF-E207 -- The wait status was neither a normal exit nor a signal."""

    code = "SF-E207"
    message = "Unexpected wait status from child process"


# ===================================================================
# SF-E3xx  Signal Errors
# ===================================================================

class SignalPolicyFailure(SignalError):
    """SF-E300 -- A signal disposition could not be installed."""

    code = "SF-E300"
    message = "Error installing signal disposition"


class TerminationRequested(SignalError):
    """SF-E301 -- A termination-request signal was delivered."""

    code = "SF-E301"
    message = "Interrupted by termination request"

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__(
            f"Interrupted by signal {signum}",
            details={"signal": signum},
        )


class UnexpectedSignal(SignalError):
    """SF-E302 -- A signal outside the policy reached the catch-all handler."""

    code = "SF-E302"
    message = "Interrupted by unexpected signal"

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__(
            f"Interrupted, signal {signum} - confused",
            details={"signal": signum},
        )


# ===================================================================
# SF-E4xx  Configuration Errors
# ===================================================================

class InvalidConfiguration(ConfigurationError):
    """SF-E400 -- A configuration value is malformed."""

    code = "SF-E400"
    message = "Invalid configuration"


# ---------------------------------------------------------------------------
# Lookup helper
# ---------------------------------------------------------------------------

_CODE_MAP: dict[str, type[ScriptFeedError]] = {
    cls.code: cls
    for cls in [
        # E1xx
        TooLong,
        IllegalCharacter,
        IdentityConventionViolation,
        # E2xx
        PipeFailure,
        SpawnFailure,
        DescriptorFailure,
        WriteFailure,
        ShortWrite,
        WaitFailure,
        ChildSignaled,
        UnexpectedWaitStatus,
        # E3xx
        SignalPolicyFailure,
        TerminationRequested,
        UnexpectedSignal,
        # E4xx
        InvalidConfiguration,
    ]
}


def error_class_for(code: str) -> type[ScriptFeedError]:
    """Return the exception class registered for *code*.

    Raises
    ------
    KeyError
        If *code* is not a recognised scriptfeed error code.
    """
    return _CODE_MAP[code]
