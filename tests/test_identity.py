"""Unit tests for sensor identities."""

from __future__ import annotations

import hashlib

from services.identity import IDENTITY_SIZE, identity_hex, sensor_identity


def test_identity_is_sha1_of_path() -> None:
    path = "/dev/hidraw0"

    assert sensor_identity(path) == hashlib.sha1(path.encode("utf-8")).digest()
    assert len(sensor_identity(path)) == IDENTITY_SIZE == 20


def test_identity_is_deterministic() -> None:
    assert sensor_identity("/dev/hid0") == sensor_identity("/dev/hid0")


def test_distinct_paths_have_distinct_identities() -> None:
    paths = ["/dev/hid0", "/dev/hid1", "IOService:/AppleACPIPlatformExpert/PCI0@0/XHC1@14", ""]

    identities = {sensor_identity(path) for path in paths}

    assert len(identities) == len(paths)


def test_identity_hex_is_lowercase_and_metric_safe() -> None:
    rendered = identity_hex(sensor_identity("IOService:/Apple Internal Keyboard @14"))

    assert len(rendered) == 40
    assert rendered == rendered.lower()
    assert all(ch in "0123456789abcdef" for ch in rendered)
