"""scriptfeed -- drive interactive programs with scripted stdin.

Launches an external command-line program, types a fixed sequence of
lines into its standard input, and reports its exit status, wiping every
secret-bearing buffer along the way.

Layers
------
1. Input validation (:mod:`scriptfeed.defense`)
2. Process isolation (:mod:`scriptfeed.isolation`)
3. Password change application (:mod:`scriptfeed.cpw`)
"""
from __future__ import annotations

__version__ = "1.0.0"

from scriptfeed.core.config import DriverConfig
from scriptfeed.core.errors import (
    ConfigurationError,
    ExecutionError,
    ScriptFeedError,
    SignalError,
    ValidationError,
)
from scriptfeed.core.types import (
    Exited,
    ProcessResult,
    ScriptedCommand,
    Signaled,
)
from scriptfeed.cpw import build_password_script, change_password
from scriptfeed.defense import (
    IDENTITY_POLICY,
    SECRET_POLICY,
    InputValidator,
    ValidationPolicy,
    validate,
)
from scriptfeed.isolation import (
    ScriptedPipeline,
    SecretBuffer,
    SignalPolicy,
    build_child_env,
    wipe,
)

__all__ = [
    # Meta
    "__version__",
    # Core types
    "ProcessResult",
    "Exited",
    "Signaled",
    "ScriptedCommand",
    # Config
    "DriverConfig",
    # Error hierarchy
    "ScriptFeedError",
    "ValidationError",
    "ExecutionError",
    "SignalError",
    "ConfigurationError",
    # Validation
    "validate",
    "InputValidator",
    "ValidationPolicy",
    "IDENTITY_POLICY",
    "SECRET_POLICY",
    # Isolation
    "ScriptedPipeline",
    "SignalPolicy",
    "SecretBuffer",
    "wipe",
    "build_child_env",
    # Application
    "change_password",
    "build_password_script",
]
