"""
Content hashing helpers.

Hashes bytes, and bytes only. Callers encode text (UTF-8) before
hashing so that one source always maps to one digest.

Digests identify compiled templates in the compile cache and render
outputs in logs.
"""

import hashlib
from typing import Union


def sha256_hex(data: Union[bytes, bytearray]) -> str:
    """
    Hex SHA-256 digest of ``data``.

    Raises:
        TypeError: when ``data`` is not bytes. Text must be encoded by
            the caller.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError(
            "sha256_hex expects bytes, "
            f"got {type(data).__name__}"
        )
    return hashlib.sha256(data).hexdigest()


def output_digest(data: Union[bytes, bytearray]) -> str:
    """Human-readable digest with an explicit algorithm prefix."""
    return f"SHA-256:{sha256_hex(data)}"
