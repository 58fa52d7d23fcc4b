"""Command-line entry point: ``scriptfeed-cpw PRINCIPAL [PASSWORD]``."""
from __future__ import annotations

import logging
import sys

import click

from scriptfeed.core.config import DriverConfig
from scriptfeed.core.errors import ScriptFeedError
from scriptfeed.cpw import change_password
from scriptfeed.isolation.signals import SignalPolicy

logger = logging.getLogger(__name__)


def _read_password(password: str | None, password_stdin: bool) -> str:
    if password is not None and password_stdin:
        raise click.UsageError('Cannot use both PASSWORD and --password-stdin.')
    if password is not None:
        return password
    if password_stdin:
        line = sys.stdin.readline()
        if not line:
            raise click.ClickException('No password on standard input')
        return line.rstrip('\r\n')
    return click.prompt(
        'New password',
        hide_input=True,
        confirmation_prompt=True,
        type=str,
    )


@click.command(
    'scriptfeed-cpw',
    help='''
        Change the password of a Kerberos principal by scripting kadmin.

        The administrative tool is started with its standard input connected
        to a pipe and receives three lines, exactly as if typed:

        \b
          cpw PRINCIPAL
          PASSWORD
          PASSWORD

        Principal and password are checked against strict character
        allow-lists before anything is executed. The exit status is the
        tool's own exit status, or 1 for any validation or system error.

        Options not given on the command line fall back to the SCRIPTFEED_*
        environment variables (SCRIPTFEED_PROGRAM, SCRIPTFEED_PROGRAM_ARGS,
        SCRIPTFEED_COMMAND_TEMPLATE, SCRIPTFEED_IDENTITY_PREFIXES,
        SCRIPTFEED_INHERIT_ENV).

        Passing PASSWORD as an argument exposes it in the process list;
        prefer --password-stdin or the interactive prompt.
    ''',
)
@click.option(
    '--program',
    type=str,
    default=None,
    help='Path of the administrative tool (default /usr/bin/kadmin)',
)
@click.option(
    '--arg', 'program_args',
    type=str,
    multiple=True,
    help='Argument passed to the tool; repeat for several (use --arg=-p)',
)
@click.option(
    '--prefix', 'prefixes',
    type=str,
    multiple=True,
    help='Required principal prefix; repeat to allow several',
)
@click.option(
    '--inherit-env', 'inherit_env',
    type=str,
    multiple=True,
    help='Environment variable passed through to the tool',
)
@click.option(
    '--password-stdin',
    is_flag=True,
    default=False,
    help='Read the password from the first line of standard input',
)
@click.option(
    '-v', '--verbose',
    is_flag=True,
    default=False,
    help='Log progress to standard error',
)
@click.argument('principal', type=str)
@click.argument('password', type=str, required=False)
@click.pass_context
def cli(
    ctx,
    program: str | None,
    program_args: tuple[str, ...],
    prefixes: tuple[str, ...],
    inherit_env: tuple[str, ...],
    password_stdin: bool,
    verbose: bool,
    principal: str,
    password: str | None,
) -> None:
    """Validate inputs, run the tool, and exit with its status."""

    SignalPolicy().install()

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
    )

    try:
        base = DriverConfig.from_env()
        overrides: dict[str, object] = {}
        if program is not None:
            overrides['program'] = program
        if program_args:
            overrides['program_args'] = list(program_args)
        if prefixes:
            overrides['identity_prefixes'] = list(prefixes)
        if inherit_env:
            overrides['inherit_env_vars'] = list(inherit_env)
        config = DriverConfig.build(**{**base.model_dump(), **overrides})

        secret = _read_password(password, password_stdin)
        status = change_password(principal, secret, config)

    except ScriptFeedError as e:
        logger.debug('Failed with %s', e.code)
        raise click.ClickException(e.message) from e

    ctx.exit(status)


def main() -> None:
    cli(prog_name='scriptfeed-cpw')


if __name__ == "__main__":
    main()
