"""Extraction of the loadable contents of an ELF file as one flat image."""

from __future__ import annotations

import struct
import sys
from dataclasses import dataclass
from pathlib import Path

SHT_PROGBITS = 1
SHF_ALLOC = 0x2

_ELF_MAGIC = b"\x7fELF"
_IDENT_LEN = 16
_HEADER_FORMATS = {1: "HHIIIIIHHHHHH", 2: "HHIQQQIHHHHHH"}
_SECTION_FORMATS = {1: "IIIIIIIIII", 2: "IIQQQQIIQQ"}
_ENDIANNESS = {1: "<", 2: ">"}


class ElfError(ValueError):
    """The input is not a usable ELF file."""


@dataclass
class Section:
    """A loadable section: its address, its file offset and its contents."""

    addr: int
    offset: int
    data: bytes


@dataclass(frozen=True)
class _SectionHeader:
    name: str
    type: int
    flags: int
    addr: int
    offset: int
    size: int

    @property
    def loadable(self) -> bool:
        return self.type == SHT_PROGBITS and self.flags & SHF_ALLOC != 0


def _c_string(table: bytes, offset: int) -> str:
    if offset >= len(table):
        return ""
    end = table.find(b"\0", offset)
    if end < 0:
        end = len(table)
    return table[offset:end].decode("utf-8", errors="replace")


def _section_headers(data: bytes) -> list[_SectionHeader]:
    if len(data) < _IDENT_LEN or data[:4] != _ELF_MAGIC:
        raise ElfError("bad magic number in ELF header")
    elf_class, encoding = data[4], data[5]
    if elf_class not in _HEADER_FORMATS:
        raise ElfError(f"unknown ELF class {elf_class}")
    if encoding not in _ENDIANNESS:
        raise ElfError(f"unknown ELF data encoding {encoding}")
    endian = _ENDIANNESS[encoding]

    header = struct.Struct(endian + _HEADER_FORMATS[elf_class])
    if len(data) < _IDENT_LEN + header.size:
        raise ElfError("truncated ELF header")
    fields = header.unpack_from(data, _IDENT_LEN)
    shoff, shentsize, shnum, shstrndx = fields[5], fields[10], fields[11], fields[12]
    if shnum == 0:
        return []

    entry = struct.Struct(endian + _SECTION_FORMATS[elf_class])
    if shentsize < entry.size:
        raise ElfError("invalid section header entry size")
    if shoff + shnum * shentsize > len(data):
        raise ElfError("section header table beyond end of file")

    raw = [entry.unpack_from(data, pos)
           for pos in range(shoff, shoff + shnum * shentsize, shentsize)]

    names = b""
    if 0 < shstrndx < len(raw):
        str_off, str_size = raw[shstrndx][4], raw[shstrndx][5]
        if str_off + str_size > len(data):
            raise ElfError("section name table beyond end of file")
        names = data[str_off:str_off + str_size]

    return [
        _SectionHeader(_c_string(names, name), typ, flags, addr, offset, size)
        for name, typ, flags, addr, offset, size, *_ in raw
    ]


def read_sections(data: bytes) -> list[Section]:
    """Return the allocated PROGBITS sections of an ELF image in file order.

    A non-loadable section lying between two loadable ones is reported on
    standard error, as its bytes are replaced by padding.
    """
    headers = _section_headers(data)
    sections: list[Section] = []
    followers = headers[1:] + [None]
    for header, following in zip(headers, followers):
        if not header.loadable:
            if sections and following is not None and following.loadable:
                print(
                    f"objcopy: skipping section '{header.name}' ({header.size} bytes)",
                    file=sys.stderr,
                )
            continue
        end = header.offset + header.size
        if end > len(data):
            raise ElfError(f"section '{header.name}' beyond end of file")
        sections.append(Section(header.addr, header.offset, bytes(data[header.offset:end])))
    return sections


def flatten_sections(sections: list[Section]) -> bytes:
    """Lay sections out by file offset, filling the gaps with 0xff."""
    if not sections:
        return b""
    ordered = sorted(sections, key=lambda s: s.offset)
    start = ordered[0].offset
    out = bytearray()
    followers = ordered[1:] + [None]
    for section, following in zip(ordered, followers):
        out += section.data
        if following is None:
            continue
        pad = (following.offset - start) - (section.offset - start) - len(section.data)
        if pad < 0:
            raise ElfError("overlapping sections")
        out += b"\xff" * pad
    return bytes(out)


def objcopy(path) -> bytes:
    """Read an ELF file and return its loadable contents as a flat image."""
    return flatten_sections(read_sections(Path(path).read_bytes()))