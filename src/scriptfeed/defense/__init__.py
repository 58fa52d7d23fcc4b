"""Input validation.

This subpackage gates every untrusted string before it reaches the
driven program.  It provides:

* **validate** -- the pure allow-list and length check.
* **InputValidator** / **ValidationPolicy** -- a policy bound to one
  input category, with the identity and secret policies predefined.
"""
from __future__ import annotations

from scriptfeed.defense.validation import (
    IDENTITY_POLICY,
    SECRET_POLICY,
    InputValidator,
    ValidationPolicy,
    is_control,
    validate,
)

__all__ = [
    "IDENTITY_POLICY",
    "InputValidator",
    "SECRET_POLICY",
    "ValidationPolicy",
    "is_control",
    "validate",
]
