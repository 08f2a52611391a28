import struct

import pytest

from n64kit.objcopy import (
    ElfError,
    Section,
    flatten_sections,
    objcopy,
    read_sections,
)

PROGBITS = 1
NOBITS = 8


def make_elf(specs, bits=32, endian=">"):
    """Build an ELF image; specs are (name, type, flags, addr, offset, data)."""
    hdr_fmt = "HHIIIIIHHHHHH" if bits == 32 else "HHIQQQIHHHHHH"
    sh_fmt = "IIIIIIIIII" if bits == 32 else "IIQQQQIIQQ"
    ehsize = 16 + struct.calcsize(endian + hdr_fmt)
    shentsize = struct.calcsize(endian + sh_fmt)

    strtab = bytearray(b"\0")
    name_offsets = []
    for name in [s[0] for s in specs] + [".shstrtab"]:
        name_offsets.append(len(strtab))
        strtab += name.encode() + b"\0"

    body_end = max([ehsize] + [s[4] + len(s[5]) for s in specs])
    image = bytearray(body_end)
    for _, typ, _, _, off, data in specs:
        if typ != NOBITS:
            image[off:off + len(data)] = data
    strtab_off = len(image)
    image += strtab
    shoff = len(image)

    headers = [struct.pack(endian + sh_fmt, *([0] * 10))]
    for (_, typ, flags, addr, off, data), noff in zip(specs, name_offsets):
        headers.append(struct.pack(endian + sh_fmt, noff, typ, flags, addr, off,
                                   len(data), 0, 0, 1, 0))
    headers.append(struct.pack(endian + sh_fmt, name_offsets[-1], 3, 0, 0, strtab_off,
                               len(strtab), 0, 0, 1, 0))
    image += b"".join(headers)

    ident = b"\x7fELF" + bytes([1 if bits == 32 else 2, 1 if endian == "<" else 2, 1])
    ident += bytes(16 - len(ident))
    hdr = struct.pack(endian + hdr_fmt, 2, 8, 1, 0, 0, shoff, 0, ehsize, 0, 0,
                      shentsize, len(headers), len(headers) - 1)
    image[:ehsize] = ident + hdr
    return bytes(image)


def test_read_sections_keeps_only_allocated_progbits(capsys):
    elf = make_elf([
        (".text", PROGBITS, 0x6, 0x80000400, 0x100, b"\x01\x02\x03\x04"),
        (".data", PROGBITS, 0x3, 0x80000480, 0x180, b"\xaa\xbb"),
        (".comment", PROGBITS, 0x0, 0, 0x200, b"compiler"),
    ])
    sections = read_sections(elf)
    assert sections == [
        Section(0x80000400, 0x100, b"\x01\x02\x03\x04"),
        Section(0x80000480, 0x180, b"\xaa\xbb"),
    ]
    assert capsys.readouterr().err == ""


def test_skipped_section_between_loadable_ones_is_reported(capsys):
    elf = make_elf([
        (".text", PROGBITS, 0x6, 0x80000400, 0x100, b"\x01\x02"),
        (".bss", NOBITS, 0x3, 0x80000410, 0x110, bytes(16)),
        (".data", PROGBITS, 0x3, 0x80000420, 0x120, b"\x03"),
    ])
    sections = read_sections(elf)
    assert [s.data for s in sections] == [b"\x01\x02", b"\x03"]
    assert "objcopy: skipping section '.bss' (16 bytes)" in capsys.readouterr().err


def test_flatten_sorts_and_pads_with_ff():
    sections = [
        Section(0x80000410, 0x1010, b"cd"),
        Section(0x80000400, 0x1000, b"ab"),
    ]
    flat = flatten_sections(sections)
    assert flat == b"ab" + b"\xff" * 14 + b"cd"


def test_flatten_adjacent_sections_have_no_padding():
    sections = [Section(0, 0x40, b"xyz"), Section(3, 0x43, b"w")]
    assert flatten_sections(sections) == b"xyzw"


def test_flatten_empty_is_empty():
    assert flatten_sections([]) == b""


def test_flatten_overlap_is_rejected():
    with pytest.raises(ElfError):
        flatten_sections([Section(0, 0x10, b"abcd"), Section(2, 0x12, b"ef")])


@pytest.mark.parametrize("data", [b"", b"not an elf file at all", b"\x7fELF\x03\x01" + bytes(60)])
def test_invalid_input_raises(data):
    with pytest.raises(ElfError):
        read_sections(data)


def test_truncated_header_raises():
    with pytest.raises(ElfError):
        read_sections(b"\x7fELF\x01\x02\x01" + bytes(12))


def test_objcopy_reads_64bit_little_endian_file(tmp_path):
    elf = make_elf([
        (".text", PROGBITS, 0x6, 0x1000, 0x100, b"\x10\x20\x30\x40"),
        (".rodata", PROGBITS, 0x2, 0x1008, 0x108, b"\x50"),
    ], bits=64, endian="<")
    path = tmp_path / "prog.elf"
    path.write_bytes(elf)
    assert objcopy(path) == b"\x10\x20\x30\x40" + b"\xff" * 4 + b"\x50"


def test_objcopy_without_loadable_sections_is_empty(tmp_path):
    path = tmp_path / "empty.elf"
    path.write_bytes(make_elf([(".comment", PROGBITS, 0, 0, 0x100, b"x")]))
    assert objcopy(path) == b""