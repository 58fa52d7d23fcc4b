"""scriptfeed driver configuration.

Defines the validated configuration model consumed by the password-change
application and the CLI.  Every field has a default, so an empty
configuration drives ``/usr/bin/kadmin`` with no extra arguments and an
empty environment.
"""
from __future__ import annotations

import os
import shlex
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from scriptfeed.core.errors import InvalidConfiguration
from scriptfeed.defense.validation import IDENTITY_MAX_LENGTH, SECRET_MAX_LENGTH

# Prefix of the environment variables read by :meth:`DriverConfig.from_env`.
ENV_PREFIX = "SCRIPTFEED_"


class DriverConfig(BaseModel):
    """Configuration for one scripted password change."""

    model_config = ConfigDict(strict=True, frozen=True)

    program: str = Field(
        default="/usr/bin/kadmin",
        min_length=1,
        description="Absolute path of the administrative tool to drive.",
    )
    program_args: list[str] = Field(
        default_factory=list,
        description=(
            "Arguments after argv[0], e.g. ``-p admin/changepw -k -t keytab``."
        ),
    )
    command_template: str = Field(
        default="cpw {principal}",
        description="First scripted line; ``{principal}`` is substituted.",
    )
    identity_max_length: int = Field(
        default=IDENTITY_MAX_LENGTH,
        ge=1,
        le=IDENTITY_MAX_LENGTH,
        description="Maximum principal length; may only be lowered.",
    )
    secret_max_length: int = Field(
        default=SECRET_MAX_LENGTH,
        ge=1,
        le=SECRET_MAX_LENGTH,
        description="Maximum password length; may only be lowered.",
    )
    identity_prefixes: list[str] = Field(
        default_factory=list,
        description=(
            "When non-empty, the principal must start with one of these "
            "prefixes (site naming convention)."
        ),
    )
    inherit_env_vars: list[str] = Field(
        default_factory=list,
        description=(
            "Environment variables passed through to the driven program. "
            "Nothing is inherited by default."
        ),
    )
    disable_core_dumps: bool = Field(
        default=True,
        description="Disable core dumps in the child before exec.",
    )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> DriverConfig:
        """Build a configuration from ``SCRIPTFEED_*`` variables.

        Recognised variables: ``SCRIPTFEED_PROGRAM``,
        ``SCRIPTFEED_PROGRAM_ARGS`` (shell-split),
        ``SCRIPTFEED_COMMAND_TEMPLATE``, ``SCRIPTFEED_IDENTITY_PREFIXES``
        and ``SCRIPTFEED_INHERIT_ENV`` (comma-separated).

        Raises
        ------
        InvalidConfiguration
            If a variable cannot be parsed or fails model validation.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, object] = {}

        program = environ.get(f"{ENV_PREFIX}PROGRAM")
        if program:
            values["program"] = program
        args = environ.get(f"{ENV_PREFIX}PROGRAM_ARGS")
        if args:
            try:
                values["program_args"] = shlex.split(args)
            except ValueError as exc:
                raise InvalidConfiguration(
                    f"Cannot parse {ENV_PREFIX}PROGRAM_ARGS: {exc}",
                    details={"variable": f"{ENV_PREFIX}PROGRAM_ARGS"},
                ) from exc
        template = environ.get(f"{ENV_PREFIX}COMMAND_TEMPLATE")
        if template:
            values["command_template"] = template
        prefixes = environ.get(f"{ENV_PREFIX}IDENTITY_PREFIXES")
        if prefixes:
            values["identity_prefixes"] = _split_list(prefixes)
        inherit = environ.get(f"{ENV_PREFIX}INHERIT_ENV")
        if inherit:
            values["inherit_env_vars"] = _split_list(inherit)

        return cls.build(**values)

    @classmethod
    def build(cls, **values: object) -> DriverConfig:
        """Validate *values* into a config, mapping errors to ours."""
        try:
            return cls(**values)
        except PydanticValidationError as exc:
            raise InvalidConfiguration(
                f"Invalid configuration: {exc.error_count()} error(s)",
                details={"errors": [err["msg"] for err in exc.errors()]},
            ) from exc

    @property
    def argv(self) -> tuple[str, ...]:
        """Return the full argument vector, ``argv[0]`` included."""
        return (os.path.basename(self.program), *self.program_args)


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]
