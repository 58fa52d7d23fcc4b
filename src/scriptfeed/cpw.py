"""Change a Kerberos principal's password by scripting ``kadmin``.

The administrative tool is driven through its interactive ``cpw``
command: the first line names the principal, the next two lines answer
the new-password and verification prompts.  Both inputs are validated
before any buffer is built or any process is created.
"""
from __future__ import annotations

import logging

from scriptfeed.core.config import DriverConfig
from scriptfeed.core.errors import IdentityConventionViolation
from scriptfeed.core.types import ScriptedCommand, ScriptLine
from scriptfeed.defense.validation import IDENTITY_EXTRA_CHARS, SECRET_EXTRA_CHARS, validate
from scriptfeed.isolation.environment import build_child_env
from scriptfeed.isolation.memory import SecretBuffer
from scriptfeed.isolation.pipeline import ScriptedPipeline

logger = logging.getLogger(__name__)


def check_principal(principal: str, config: DriverConfig) -> None:
    """Validate *principal* against the identity policy and prefix rule."""
    validate(
        principal,
        IDENTITY_EXTRA_CHARS,
        config.identity_max_length,
        category="username",
    )
    if config.identity_prefixes and not principal.startswith(
        tuple(config.identity_prefixes),
    ):
        raise IdentityConventionViolation(
            "Username does not look like a valid username for this site",
            details={"prefixes": list(config.identity_prefixes)},
        )


def check_password(password: str, config: DriverConfig) -> None:
    """Validate *password* against the secret policy."""
    validate(
        password,
        SECRET_EXTRA_CHARS,
        config.secret_max_length,
        category="password",
    )


def build_password_script(
    principal: str,
    password: str,
    template: str = "cpw {principal}",
) -> list[ScriptLine]:
    """Return the three ``cpw`` lines: command, password, verification.

    The two password lines are :class:`SecretBuffer` objects; the caller
    owns them and must wipe them.
    """
    first = SecretBuffer.from_text(password)
    try:
        second = SecretBuffer.from_text(password)
    except BaseException:
        first.wipe()
        raise
    return [template.format(principal=principal) + "\n", first, second]


def change_password(
    principal: str,
    password: str,
    config: DriverConfig | None = None,
    *,
    pipeline: ScriptedPipeline | None = None,
) -> int:
    """Change *principal*'s password and return the tool's exit code.

    Raises
    ------
    ValidationError
        If either input is rejected; nothing has been executed.
    ExecutionError
        If the tool cannot be run or was killed by a signal.
    """
    config = config or DriverConfig()
    check_principal(principal, config)
    check_password(password, config)

    env = build_child_env(config.inherit_env_vars)
    pipeline = pipeline or ScriptedPipeline(disable_core_dumps=config.disable_core_dumps)

    lines = build_password_script(principal, password, config.command_template)
    try:
        command = ScriptedCommand(
            executable=config.program,
            argv=config.argv,
            lines=tuple(lines),
            environment=env,
        )
        logger.debug("Changing password of %s with %s", principal, config.program)
        result = pipeline.execute(command)
    finally:
        for line in lines:
            if isinstance(line, SecretBuffer):
                line.wipe()
    return result.code
