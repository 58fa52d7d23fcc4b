"""Secure memory handling for secret-bearing lines.

Every buffer assembled to hold a secret line is a ``bytearray`` owned by
a :class:`SecretBuffer` and is overwritten with zero bytes on every path
out of the scope that produced it.

**Python limitation:** ``str`` objects are immutable and managed by the
garbage collector, which may copy objects in memory.  There is no way to
zero a ``str`` that held a secret.  Secret lines are therefore encoded
straight into a pre-sized ``bytearray`` and never joined as ``str``.

The :class:`SecretBuffer` context manager provides automatic cleanup::

    with SecretBuffer.from_text(password) as line:
        # use line
    # line has been wiped
"""
from __future__ import annotations

import ctypes
import logging

logger = logging.getLogger(__name__)


def wipe(data: bytearray) -> None:
    """Overwrite *data* with zeros in-place.

    Uses ``ctypes.memset`` on the underlying buffer so the store is not
    elided by the runtime.

    Raises
    ------
    TypeError
        If *data* is not a ``bytearray``.
    """
    if not isinstance(data, bytearray):
        raise TypeError(f"Expected bytearray, got {type(data).__name__}")
    if len(data) == 0:
        return
    buf = (ctypes.c_char * len(data)).from_buffer(data)
    ctypes.memset(ctypes.addressof(buf), 0, len(data))
    del buf


class SecretBuffer:
    """A wipeable container for one secret-bearing line.

    ``str()``, ``repr()`` and ``format()`` all return a redacted
    placeholder, so a buffer can sit inside objects that are logged.
    The raw bytes are only reachable through :attr:`data`.

    Usage::

        with SecretBuffer(bytearray(b"Secr3t!\\n")) as data:
            use_secret(data)
        # data has been wiped with zeros
    """

    __slots__ = ("_data", "_wiped")

    def __init__(self, data: bytearray) -> None:
        if not isinstance(data, bytearray):
            raise TypeError(f"SecretBuffer requires bytearray, got {type(data).__name__}")
        self._data = data
        self._wiped = False

    @classmethod
    def from_text(
        cls,
        secret: str,
        *,
        prefix: str = "",
        suffix: str = "\n",
    ) -> SecretBuffer:
        """Build ``prefix + secret + suffix`` directly into a bytearray.

        The buffer is sized once and filled character by character; the
        joined line never exists as an immutable object.  Only ASCII is
        accepted.

        Raises
        ------
        ValueError
            If any character is outside the ASCII range.  The partially
            filled buffer is wiped first.
        """
        head = prefix.encode("ascii")
        tail = suffix.encode("ascii")
        data = bytearray(len(head) + len(secret) + len(tail))
        data[: len(head)] = head
        pos = len(head)
        for ch in secret:
            code = ord(ch)
            if code > 0x7F:
                wipe(data)
                raise ValueError("SecretBuffer.from_text accepts ASCII text only")
            data[pos] = code
            pos += 1
        data[pos:] = tail
        return cls(data)

    @property
    def data(self) -> bytearray:
        """Return the managed buffer (zeroed once wiped)."""
        return self._data

    @property
    def wiped(self) -> bool:
        """Return ``True`` if the buffer has been wiped."""
        return self._wiped

    def wipe(self) -> None:
        """Explicitly wipe the managed buffer.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        if not self._wiped:
            wipe(self._data)
            self._wiped = True

    def __enter__(self) -> bytearray:
        return self._data

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.wipe()

    def __len__(self) -> int:
        return len(self._data)

    def __str__(self) -> str:
        return "[REDACTED]"

    def __repr__(self) -> str:
        return f"SecretBuffer([REDACTED], wiped={self._wiped})"

    def __format__(self, format_spec: str) -> str:
        return "[REDACTED]"

    def __del__(self) -> None:
        # Last chance for buffers dropped without an explicit wipe.
        try:
            if not self._wiped:
                logger.debug("SecretBuffer collected without explicit wipe")
                self.wipe()
        except AttributeError:
            pass
