"""UF2 container writing and the chunk-compressed ROM layout for flash carts."""

from __future__ import annotations

import struct
from pathlib import Path

UF2_NOT_MAIN_FLASH = 0x00000001
UF2_FILE_CONTAINER = 0x00001000
UF2_FAMILY_ID_PRESENT = 0x00002000
UF2_MD5_CHECKSUM_PRESENT = 0x00004000
UF2_EXTENSION_TAGS_PRESENT = 0x00008000

UF2_FAMILY_RP2040 = 0xE48BFF56
UF2_FAMILY_ABSOLUTE = 0xE48BFF57
UF2_FAMILY_DATA = 0xE48BFF58
UF2_FAMILY_RP2350_ARM_S = 0xE48BFF59
UF2_FAMILY_RP2350_RISCV = 0xE48BFF5A
UF2_FAMILY_RP2350_ARM_NS = 0xE48BFF5B

UF2_MAGIC0 = 0x0A324655
UF2_MAGIC1 = 0x9E5D5157
UF2_MAGIC2 = 0x0AB16F30

UF2_PAYLOAD_SIZE = 256
UF2_DATA_AREA = 476
UF2_BLOCK_SIZE = 512

CHUNK_SIZE = 1024
COMPRESSED_HEADER = b"picocartcompress"
CHUNK_MAP_LEN = (0x8000 - len(COMPRESSED_HEADER)) // 2

_MIB = 1024 * 1024
ROM_LOAD_ADDR = 0x10030000
FLASH_START = 0x10000000
FLASH_END = FLASH_START + 2 * _MIB


class ChunkMapOverflowError(ValueError):
    """The ROM has more chunks than the chunk map can hold."""

    def __init__(self, message: str = "n64 uf2: chunk map overflow") -> None:
        super().__init__(message)


class UF2Writer:
    """Packs a byte stream into consecutive 512-byte UF2 blocks."""

    def __init__(self, stream, addr: int, flags: int, family: int, size: int) -> None:
        self._stream = stream
        self.addr = addr
        self.flags = flags
        self.family = family
        self.seq = 0
        self.total = (size + UF2_PAYLOAD_SIZE - 1) // UF2_PAYLOAD_SIZE
        self._pending = bytearray()

    def _emit(self, payload: bytes) -> None:
        block = (
            struct.pack("<8I", UF2_MAGIC0, UF2_MAGIC1, self.flags, self.addr,
                        UF2_PAYLOAD_SIZE, self.seq, self.total, self.family)
            + payload
            + bytes(UF2_DATA_AREA - UF2_PAYLOAD_SIZE)
            + struct.pack("<I", UF2_MAGIC2)
        )
        self._stream.write(block)
        self.addr += UF2_PAYLOAD_SIZE
        self.seq += 1

    def write(self, data: bytes) -> int:
        """Buffer data, writing out every block that becomes full."""
        self._pending += data
        while len(self._pending) >= UF2_PAYLOAD_SIZE:
            self._emit(bytes(self._pending[:UF2_PAYLOAD_SIZE]))
            del self._pending[:UF2_PAYLOAD_SIZE]
        return len(data)

    def flush(self) -> None:
        """Write a partly filled block, padded with zeroes."""
        if not self._pending:
            return
        self._emit(bytes(self._pending).ljust(UF2_PAYLOAD_SIZE, b"\0"))
        self._pending.clear()

    def __enter__(self) -> "UF2Writer":
        return self

    def __exit__(self, *exc) -> None:
        self.flush()


def _find_chunk(chunk: bytes, chunk_data: bytearray, index: dict[bytes, int]) -> int | None:
    if len(chunk) == CHUNK_SIZE:
        return index.get(chunk)
    return next(
        (k // CHUNK_SIZE for k in range(0, len(chunk_data), CHUNK_SIZE)
         if chunk_data.startswith(chunk, k)),
        None,
    )


def compress_rom(rom: bytes) -> bytes:
    """Deduplicate 1 KiB chunks: header, chunk map (uint16 LE) and unique chunks."""
    chunk_data = bytearray()
    index: dict[bytes, int] = {}
    chunk_map: list[int] = []

    for start in range(0, len(rom), CHUNK_SIZE):
        chunk = bytes(rom[start:start + CHUNK_SIZE])
        number = _find_chunk(chunk, chunk_data, index)
        if number is None:
            number = len(chunk_data) // CHUNK_SIZE
            chunk_data += chunk
            if len(chunk) == CHUNK_SIZE:
                index[chunk] = number
        if len(chunk_map) >= CHUNK_MAP_LEN:
            raise ChunkMapOverflowError()
        chunk_map.append(number)

    chunk_map += [0] * (CHUNK_MAP_LEN - len(chunk_map))
    return COMPRESSED_HEADER + struct.pack(f"<{CHUNK_MAP_LEN}H", *chunk_map) + bytes(chunk_data)


def write_uf2(path, rom: bytes) -> None:
    """Compress a ROM and save it as a UF2 file for an RP2040 based cart."""
    payload = compress_rom(rom)
    last_addr = ROM_LOAD_ADDR + len(payload)
    if last_addr > FLASH_END:
        print(
            "n64 uf2: the compressed ROM requires "
            f"{(last_addr - FLASH_START + _MIB - 1) // _MIB} MiB of Flash (> 2 MiB)"
        )
    with Path(path).open("wb") as f:
        with UF2Writer(f, ROM_LOAD_ADDR, UF2_FAMILY_ID_PRESENT, UF2_FAMILY_RP2040,
                       len(payload)) as writer:
            writer.write(payload)