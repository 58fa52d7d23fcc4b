"""Process isolation for scripted execution.

This subpackage implements the process-facing half of the driver.  It
provides:

* **ScriptedPipeline** -- fork/exec of the driven program with its stdin
  on a pipe, ordered line transmission with short-write detection, and
  exit-status classification.
* **SignalPolicy** -- deterministic signal dispositions installed once
  before any child is created.
* **SecretBuffer** -- wipeable storage for secret-bearing lines, with
  context-manager support.
* **build_child_env** -- explicit child environment construction.

The core guarantee is:

    Every buffer that held a secret is zeroed before the call that
    produced it returns, on success and on every error path.
"""
from __future__ import annotations

from scriptfeed.isolation.environment import build_child_env, check_env_name
from scriptfeed.isolation.memory import SecretBuffer, wipe
from scriptfeed.isolation.pipeline import EXEC_FAILURE_STATUS, ScriptedPipeline
from scriptfeed.isolation.signals import (
    IGNORED_SIGNALS,
    NOOP_SIGNALS,
    TERMINATION_SIGNALS,
    SignalPolicy,
)

__all__ = [
    # Scripted execution
    "ScriptedPipeline",
    "EXEC_FAILURE_STATUS",
    # Signal dispositions
    "SignalPolicy",
    "NOOP_SIGNALS",
    "IGNORED_SIGNALS",
    "TERMINATION_SIGNALS",
    # Secure memory
    "SecretBuffer",
    "wipe",
    # Environment
    "build_child_env",
    "check_env_name",
]
