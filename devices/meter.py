"""Linux hidraw transport for Holtek/ZyAura USB CO2 monitors.

The meters report 8-byte HID frames, each carrying a single operation: an
operation code, a 16-bit big-endian value, a checksum and a ``0x0d``
terminator. Older firmware scrambles frames with the key sent in the feature
report on open; newer firmware sends them in the clear.
"""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from devices.errors import DeviceOpenError, DeviceReadError
from models.records import Reading, SensorDescriptor

logger = logging.getLogger(__name__)

VENDOR_ID = 0x04D9
PRODUCT_ID = 0xA052

FRAME_SIZE = 8
FRAME_TERMINATOR = 0x0D

OP_TEMPERATURE = 0x42
OP_CO2 = 0x50

DEFAULT_KEY = bytes((0xC4, 0xC6, 0xC0, 0x92, 0x40, 0x23, 0xDC, 0x96))

_CSTATE = (0x48, 0x74, 0x65, 0x6D, 0x70, 0x39, 0x39, 0x65)
_SHUFFLE = (2, 4, 0, 7, 1, 6, 5, 3)

_IOC_WRITE = 1
_IOC_READ = 2


def hidiocsfeature(length: int) -> int:
    """ioctl request number for HIDIOCSFEATURE(length)."""
    direction = _IOC_WRITE | _IOC_READ
    return (direction << 30) | (length << 16) | (ord("H") << 8) | 0x06


def decrypt(key: Sequence[int], data: Sequence[int]) -> bytes:
    phase1 = [0] * FRAME_SIZE
    for index, target in enumerate(_SHUFFLE):
        phase1[target] = data[index]
    phase2 = [phase1[i] ^ key[i] for i in range(FRAME_SIZE)]
    phase3 = [
        ((phase2[i] >> 3) | (phase2[(i - 1) % FRAME_SIZE] << 5)) & 0xFF
        for i in range(FRAME_SIZE)
    ]
    ctmp = [((c >> 4) | (c << 4)) & 0xFF for c in _CSTATE]
    return bytes((0x100 + phase3[i] - ctmp[i]) & 0xFF for i in range(FRAME_SIZE))


def _is_valid(frame: Sequence[int]) -> bool:
    return frame[4] == FRAME_TERMINATOR and (frame[0] + frame[1] + frame[2]) & 0xFF == frame[3]


def decode_frame(frame: bytes, key: Sequence[int] = DEFAULT_KEY) -> Tuple[int, int]:
    """Return ``(operation, value)`` for one raw report.

    Raises ``ValueError`` when the frame is neither a valid plain frame nor a
    valid scrambled one.
    """
    if len(frame) != FRAME_SIZE:
        raise ValueError(f"expected {FRAME_SIZE} bytes, got {len(frame)}")

    plain = frame if _is_valid(frame) else decrypt(key, frame)
    if not _is_valid(plain):
        raise ValueError(f"checksum error in frame {frame.hex()}")
    return plain[0], (plain[1] << 8) | plain[2]


class HidrawMeter:
    """An open hidraw device node."""

    def __init__(self, fd: int, path: str, key: bytes = DEFAULT_KEY) -> None:
        self.fd = fd
        self.path = path
        self.key = key

    def read(self) -> Reading:
        temperature: Optional[float] = None
        co2: Optional[int] = None
        while temperature is None or co2 is None:
            frame = self._read_frame()
            try:
                operation, value = decode_frame(frame, self.key)
            except ValueError as exc:
                raise DeviceReadError(self.path, str(exc)) from exc

            if operation == OP_TEMPERATURE:
                temperature = value / 16.0 - 273.15
            elif operation == OP_CO2:
                co2 = value
        return Reading(temperature=temperature, co2=co2)

    def close(self) -> None:
        try:
            os.close(self.fd)
        except OSError:
            logger.debug("Device already closed", extra={"device_path": self.path})

    def _read_frame(self) -> bytes:
        try:
            frame = os.read(self.fd, FRAME_SIZE)
        except OSError as exc:
            raise DeviceReadError(self.path, exc.strerror or str(exc)) from exc
        if not frame:
            raise DeviceReadError(self.path, "device disconnected")
        if len(frame) != FRAME_SIZE:
            raise DeviceReadError(self.path, f"short read of {len(frame)} bytes")
        return frame

    def __repr__(self) -> str:
        return f"HidrawMeter(path={self.path!r})"


def _parse_uevent(text: str) -> Dict[str, str]:
    entries: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            entries[key.strip()] = value.strip()
    return entries


def _parse_hid_id(value: str) -> Optional[Tuple[int, int]]:
    parts = value.split(":")
    if len(parts) != 3:
        return None
    try:
        return int(parts[1], 16), int(parts[2], 16)
    except ValueError:
        return None


class HidrawTransport:
    name = "hidraw"

    def __init__(
        self,
        sysfs_root: Path = Path("/sys/class/hidraw"),
        dev_root: Path = Path("/dev"),
        key: bytes = DEFAULT_KEY,
    ) -> None:
        self.sysfs_root = sysfs_root
        self.dev_root = dev_root
        self.key = key

    def enumerate(self) -> List[SensorDescriptor]:
        if not self.sysfs_root.is_dir():
            logger.warning("hidraw class directory missing", extra={"device_path": str(self.sysfs_root)})
            return []

        descriptors: List[SensorDescriptor] = []
        for entry in sorted(self.sysfs_root.iterdir(), key=lambda p: p.name):
            uevent_path = entry / "device" / "uevent"
            try:
                uevent = _parse_uevent(uevent_path.read_text())
            except OSError:
                continue

            ids = _parse_hid_id(uevent.get("HID_ID", ""))
            if ids != (VENDOR_ID, PRODUCT_ID):
                continue

            descriptors.append(
                SensorDescriptor(
                    path=str(self.dev_root / entry.name),
                    serial=uevent.get("HID_UNIQ") or None,
                )
            )
        return descriptors

    def open(self, descriptor: SensorDescriptor) -> HidrawMeter:
        try:
            fd = os.open(descriptor.path, os.O_RDWR)
        except OSError as exc:
            raise DeviceOpenError(descriptor.path, exc.strerror or str(exc)) from exc

        report = bytes([0x00]) + self.key
        try:
            fcntl.ioctl(fd, hidiocsfeature(len(report)), report)
        except OSError as exc:
            os.close(fd)
            raise DeviceOpenError(
                descriptor.path, f"feature report rejected: {exc.strerror or exc}"
            ) from exc

        logger.debug("Opened meter", extra={"device_path": descriptor.path})
        return HidrawMeter(fd=fd, path=descriptor.path, key=self.key)
