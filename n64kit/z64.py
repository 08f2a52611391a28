"""Building N64 ROM images: header, boot code checksum and output formats."""

from __future__ import annotations

import os
import struct
from pathlib import Path

from .uf2 import write_uf2

N64_CHECKSUM_LEN = 1024 * 1024
CIC_NUS6102_SEED = 0xF8CA4DDC
_MASK = 0xFFFFFFFF

TITLE_OFFSET = 0x20
TITLE_LEN = 0x14
CRC_OFFSET = 0x10

N64_HEADER = (
    bytes([
        0x80, 0x37, 0x12, 0x40,  # PI BSD DOM1 configuration flags
        0x00, 0x00, 0x00, 0x0F,  # clock rate
        0x80, 0x00, 0x04, 0x00,  # boot address
        0x00, 0x00, 0x14, 0x44,  # libultra version
    ])
    + bytes(0x3B - 0x10)  # check code, reserved, title, reserved
    + b"N"  # category code: game pak
    + b"  "  # unique code
    + b" "  # destination code
    + b"\0"  # ROM version
)

FORMATS = ("z64", "uf2")


class UnsupportedFormatError(ValueError):
    """The requested output format is not known."""


def n64_crc(buf: bytes) -> tuple[int, int]:
    """Compute the two 32-bit check words over buf (CIC-NUS-6102 seed)."""
    if len(buf) % 4:
        raise ValueError("buffer length must be a multiple of 4")
    t1 = t2 = t3 = t4 = t5 = t6 = CIC_NUS6102_SEED
    for (c1,) in struct.iter_unpack(">I", buf):
        k1 = (t6 + c1) & _MASK
        if k1 < t6:
            t4 = (t4 + 1) & _MASK
        t6 = k1
        t3 ^= c1
        k2 = c1 & 0x1F
        k1 = ((c1 << k2) | (c1 >> (32 - k2))) & _MASK
        t5 = (t5 + k1) & _MASK
        if c1 < t2:
            t2 ^= k1
        else:
            t2 ^= t6 ^ c1
        t1 = (t1 + (c1 ^ t5)) & _MASK
    return t6 ^ t4 ^ t3, t5 ^ t2 ^ t1


def build_rom(title, payload: bytes, ipl3: bytes) -> bytes:
    """Assemble header, IPL3 and payload (padded with 0xff to the checksummed length)."""
    body = bytes(payload)
    if len(body) < N64_CHECKSUM_LEN:
        body += b"\xff" * (N64_CHECKSUM_LEN - len(body))
    crc0, crc1 = n64_crc(body[:N64_CHECKSUM_LEN])

    header = bytearray(N64_HEADER)
    struct.pack_into(">II", header, CRC_OFFSET, crc0, crc1)
    raw_title = title.encode("utf-8") if isinstance(title, str) else bytes(title)
    raw_title = raw_title[:TITLE_LEN]
    header[TITLE_OFFSET:TITLE_OFFSET + len(raw_title)] = raw_title
    return bytes(header) + bytes(ipl3) + body


def write_rom_file(path, fmt: str, payload: bytes, ipl3: bytes) -> None:
    """Write a ROM in the given format; the output path doubles as the game title."""
    if fmt not in FORMATS:
        raise UnsupportedFormatError(f"objcopy: {fmt} format not supported")
    rom = build_rom(os.fspath(path), payload, ipl3)
    if fmt == "z64":
        Path(path).write_bytes(rom)
    else:
        write_uf2(path, rom)