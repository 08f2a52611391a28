"""Flash cart helpers: UNFLoader framing, SummerCart64 codes and system writers."""

from __future__ import annotations

import enum
from typing import Callable

UNF_HEARTBEAT = b"DMA@\x05\x00\x00\x04\x00\x02\x00\x01CMPH"
UNF_MAX_PACKET = (1 << 24) - 1
_UNF_TYPE_TEXT = 1


class UNFLoaderWriter:
    """Wraps a byte stream so that every write is sent as an UNFLoader text packet."""

    def __init__(self, stream) -> None:
        self._stream = stream
        # Announces the protocol version to the host.
        self._stream.write(UNF_HEARTBEAT)

    def write(self, data: bytes) -> int:
        data = bytes(data)
        written = 0
        while data:
            nn = min(len(data), UNF_MAX_PACKET)
            self._stream.write(
                b"DMA@" + bytes([_UNF_TYPE_TEXT, (nn >> 16) & 0xFF, (nn >> 8) & 0xFF, nn & 0xFF])
            )
            # The body is kept at an even length; an odd last byte goes into the footer.
            self._stream.write(data[:nn & ~1])
            if nn % 2:
                self._stream.write(data[nn - 1:nn] + b"CMPH0")
            else:
                self._stream.write(b"CMPH")
            data = data[nn:]
            written += nn
        return written


_ERROR_MESSAGES = {
    1: "bad argument",
    2: "bad address",
    3: "bad config id",
    4: "timeout",
    5: "sdcard",
    0xFFFFFF: "unknown command",
}


class SummerCartError(Exception):
    """An error status reported by the SummerCart64."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def error_for_code(code: int) -> SummerCartError | None:
    """Map a SummerCart64 result code to an error; unknown codes map to None."""
    message = _ERROR_MESSAGES.get(code)
    if message is None:
        return None
    return SummerCartError(code, message)


class ConfigOption(enum.IntEnum):
    BOOTLOADER_SWITCH = 0
    ROM_WRITE_ENABLE = 1
    ROM_SHADOW_ENABLE = 2
    DD_MODE = 3
    ISV_ADDRESS = 4
    BOOT_MODE = 5
    SAVE_TYPE = 6
    CIC_SEED = 7
    TV_TYPE = 8
    DD_SD_ENABLE = 9
    DD_DRIVE_TYPE = 10
    DD_DISK_STATE = 11
    BUTTON_STATE = 12
    BUTTON_MODE = 13
    ROM_EXTENDED_ENABLE = 14


class ButtonMode(enum.IntEnum):
    DISABLED = 0
    INTERRUPT = 1
    USB_PACKET = 2
    DD_DISK_CHANGE = 3


def system_writer(stream) -> Callable[[int, bytes], int]:
    """Return a writer taking (fd, data) that writes to stream and returns the count."""

    def write(fd: int, data: bytes) -> int:
        try:
            result = stream.write(data)
        except OSError:
            return 0
        return result if isinstance(result, int) else len(data)

    return write