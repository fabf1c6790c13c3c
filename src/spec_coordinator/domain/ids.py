"""Session identifier generation: ``ses-<ULID>``."""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
SESSION_ID_PREFIX: Final[str] = "ses"
_PREFIX_SEPARATOR: Final[str] = "-"

_DECODE_TABLE: Final[dict[str, int]] = {
    char: index for index, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}

_RandBytes = Callable[[int], bytes]

__all__ = [
    "SESSION_ID_PREFIX",
    "ULID_LENGTH",
    "generate_session_id",
    "generate_ulid",
    "validate_session_id",
]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= ts_ms < (1 << 48):
        raise ValueError(f"timestamp_ms out of range: {ts_ms}")
    provider = secrets.token_bytes if randbytes is None else randbytes
    random_bytes = bytes(provider(ULID_RANDOM_BYTES))
    if len(random_bytes) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")

    value = (ts_ms << 80) | int.from_bytes(random_bytes, "big")
    chars = ["0"] * ULID_LENGTH
    for index in range(ULID_LENGTH - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[value & 0b11111]
        value >>= 5
    return "".join(chars)


def generate_session_id(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Session ids sort by creation time, which keeps report listings ordered."""
    ulid = generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)
    return f"{SESSION_ID_PREFIX}{_PREFIX_SEPARATOR}{ulid}"


def validate_session_id(id_str: str) -> None:
    """Raise ``ValueError`` unless ``id_str`` is ``ses-<ULID>``.

    Session ids become file names, so anything else is rejected outright.
    """
    if not isinstance(id_str, str):
        raise ValueError(f"session id must be a string, got {type(id_str).__name__}")
    expected_lead = f"{SESSION_ID_PREFIX}{_PREFIX_SEPARATOR}"
    if not id_str.startswith(expected_lead):
        raise ValueError(f"expected prefix '{expected_lead}'")
    ulid_part = id_str[len(expected_lead) :]
    if len(ulid_part) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(ulid_part)}")
    for index, char in enumerate(ulid_part):
        if char.upper() not in _DECODE_TABLE:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")
