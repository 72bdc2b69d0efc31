"""Stable, metric-name-safe identities for meters.

Vendor serials collide across devices of the same model, so identity is
derived from the connection path instead. Paths can be long and contain
characters metric names cannot (spaces, colons on macOS), hence the digest.
Replugging a meter into another port yields a new identity.
"""

from __future__ import annotations

import hashlib

IDENTITY_SIZE = hashlib.sha1().digest_size


def sensor_identity(path: str) -> bytes:
    return hashlib.sha1(path.encode("utf-8")).digest()


def identity_hex(identity: bytes) -> str:
    return identity.hex()
