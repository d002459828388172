"""Identifier generation.

Identifiers are ``{prefix}_{time}_{suffix}``:

- ``time`` is the current epoch milliseconds in base36, left-padded to a fixed
  width so that ids of the same prefix sort lexicographically by creation
  time.
- ``suffix`` is random base36 text, so independent processes can mint ids
  without any coordination.
"""

from __future__ import annotations

import secrets
import time

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_TIME_WIDTH = 9  # base36 epoch-ms fits in 9 chars until the year 5188
_SUFFIX_LEN = 8


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def new_id(prefix: str, *, now_ms: int | None = None) -> str:
    """Return a new time-sortable, collision-resistant identifier."""
    ms = int(time.time() * 1000) if now_ms is None else now_ms
    stamp = _base36(ms).rjust(_TIME_WIDTH, "0")
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(_SUFFIX_LEN))
    return f"{prefix}_{stamp}_{suffix}"


def new_thread_id() -> str:
    return new_id("thread")


def new_subagent_id() -> str:
    return new_id("subagent")


def new_step_id() -> str:
    return new_id("step")


def new_checkpoint_id() -> str:
    return new_id("ckpt")


def new_outbox_id() -> str:
    return new_id("outbox")
