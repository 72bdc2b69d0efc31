"""Errors raised by meter transports."""

from __future__ import annotations


class DeviceError(Exception):
    """Base class for transport failures."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class DeviceOpenError(DeviceError):
    """The meter could not be claimed (busy, permissions, gone since enumeration)."""


class DeviceReadError(DeviceError):
    """A read failed: I/O error, malformed report, or disconnect."""
