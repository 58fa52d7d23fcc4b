"""Allow-list validation of untrusted input strings.

Principal names and secrets arrive from the command line and are later
typed into an administrative tool, so they are checked against a strict
allow-list before any line is built or any process is created:

* Length limit -- checked first.
* Control characters (below 0x20 or above 0x7E) -- always illegal, even
  if they appear in an allow-list string by mistake.
* ASCII letters and digits -- always legal.
* Anything else must be in the policy's extra-character allow-list.

The check is pure and locale-independent: ``str.isalnum()`` is not used
because it accepts non-ASCII letters.
"""
from __future__ import annotations

from dataclasses import dataclass

from scriptfeed.core.errors import IllegalCharacter, TooLong

_ASCII_ALNUM = frozenset(
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "0123456789"
)

# Conservative Kerberos limits; no definitive upper bound is published.
IDENTITY_MAX_LENGTH = 512
SECRET_MAX_LENGTH = 512

IDENTITY_EXTRA_CHARS = "@_.-/"
SECRET_EXTRA_CHARS = "~@*_.-+:?/{}[]"


def is_control(ch: str) -> bool:
    """Return ``True`` if *ch* is outside the printable ASCII range."""
    code = ord(ch)
    return code < 0x20 or code > 0x7E


# ---------------------------------------------------------------------------
# ValidationPolicy
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ValidationPolicy:
    """Allow-listed punctuation plus a length limit for one input category."""

    name: str
    allowed_extra_chars: str
    max_length: int


IDENTITY_POLICY = ValidationPolicy("identity", IDENTITY_EXTRA_CHARS, IDENTITY_MAX_LENGTH)
SECRET_POLICY = ValidationPolicy("secret", SECRET_EXTRA_CHARS, SECRET_MAX_LENGTH)


def validate(
    s: str,
    allowed_extra_chars: str,
    max_length: int,
    *,
    category: str = "input",
) -> None:
    """Check *s* against an allow-list and a length limit.

    Error details name the *category*, the position and the code point of
    the offending character.  They never include *s* itself, which may be
    a secret.

    Raises
    ------
    TooLong
        If ``len(s) > max_length``.
    IllegalCharacter
        If *s* holds a control character or a character that is neither
        ASCII alphanumeric nor in *allowed_extra_chars*.
    """
    if len(s) > max_length:
        raise TooLong(
            f"{category.capitalize()} too long",
            details={"category": category, "length": len(s), "max_length": max_length},
        )
    allowed = frozenset(allowed_extra_chars)
    for pos, ch in enumerate(s):
        if ch in _ASCII_ALNUM:
            continue
        if is_control(ch) or ch not in allowed:
            raise IllegalCharacter(
                f"Alien characters in {category}",
                details={"category": category, "position": pos, "code_point": ord(ch)},
            )


# ---------------------------------------------------------------------------
# InputValidator
# ---------------------------------------------------------------------------

class InputValidator:
    """Validates strings of one category against its :class:`ValidationPolicy`.

    Usage::

        InputValidator(IDENTITY_POLICY).validate("alice@EXAMPLE.ORG")
    """

    def __init__(self, policy: ValidationPolicy) -> None:
        self._policy = policy

    @property
    def policy(self) -> ValidationPolicy:
        return self._policy

    def validate(self, s: str) -> None:
        """Raise :class:`TooLong` or :class:`IllegalCharacter` if *s* is rejected."""
        validate(
            s,
            self._policy.allowed_extra_chars,
            self._policy.max_length,
            category=self._policy.name,
        )

    def is_valid(self, s: str) -> bool:
        """Return ``True`` if *s* passes the policy."""
        try:
            self.validate(s)
        except (TooLong, IllegalCharacter):
            return False
        return True
