import struct

import pytest

from n64kit.mkrom import main, output_path
from n64kit.uf2 import UF2_BLOCK_SIZE, UF2_MAGIC0
from n64kit.z64 import N64_CHECKSUM_LEN

TEXT = b"\x3c\x09\xa4\x00\x8d\x29\x00\x00"
IPL3 = bytes(range(256)) * 2


def make_elf(text):
    """A 32-bit big-endian ELF with a single allocated .text section."""
    endian = ">"
    hdr_fmt = "HHIIIIIHHHHHH"
    sh_fmt = "IIIIIIIIII"
    ehsize = 16 + struct.calcsize(endian + hdr_fmt)
    shentsize = struct.calcsize(endian + sh_fmt)
    text_off = 0x100
    strtab = b"\0.text\0.shstrtab\0"
    image = bytearray(text_off) + text
    strtab_off = len(image)
    image += strtab
    shoff = len(image)
    image += struct.pack(endian + sh_fmt, *([0] * 10))
    image += struct.pack(endian + sh_fmt, 1, 1, 0x6, 0x80000400, text_off, len(text), 0, 0, 4, 0)
    image += struct.pack(endian + sh_fmt, 7, 3, 0, 0, strtab_off, len(strtab), 0, 0, 1, 0)
    ident = b"\x7fELF\x01\x02\x01" + bytes(9)
    image[:ehsize] = ident + struct.pack(endian + hdr_fmt, 2, 8, 1, 0x80000400, 0, shoff,
                                         0, ehsize, 0, 0, shentsize, 3, 2)
    return bytes(image)


@pytest.fixture
def inputs(tmp_path):
    elf = tmp_path / "game.elf"
    elf.write_bytes(make_elf(TEXT))
    ipl3 = tmp_path / "ipl3.bin"
    ipl3.write_bytes(IPL3)
    return elf, ipl3


@pytest.mark.parametrize("infile, fmt, expected", [
    ("game.elf", "z64", "game.z64"),
    ("game", "uf2", "game.uf2"),
    ("a.elf.elf", "z64", "a.elf.z64"),
])
def test_output_path(infile, fmt, expected):
    assert output_path(infile, fmt) == expected


def test_main_without_arguments_prints_usage(capsys):
    assert main([]) == 1
    assert "ELF to n64 ROM converter." in capsys.readouterr().err


def test_main_with_two_files_fails(inputs, capsys):
    elf, ipl3 = inputs
    assert main(["-ipl3", str(ipl3), str(elf), str(elf)]) == 1
    assert "ELF to n64 ROM converter." in capsys.readouterr().err


def test_main_writes_z64(inputs, tmp_path):
    elf, ipl3 = inputs
    assert main(["-ipl3", str(ipl3), str(elf)]) == 0
    rom = (tmp_path / "game.z64").read_bytes()
    assert len(rom) == 0x40 + len(IPL3) + N64_CHECKSUM_LEN
    assert rom[:4] == b"\x80\x37\x12\x40"
    assert rom[0x40:0x40 + len(IPL3)] == IPL3
    assert rom[0x40 + len(IPL3):0x40 + len(IPL3) + len(TEXT)] == TEXT


def test_main_writes_uf2(inputs, tmp_path):
    elf, ipl3 = inputs
    assert main(["-format", "uf2", "-ipl3", str(ipl3), str(elf)]) == 0
    data = (tmp_path / "game.uf2").read_bytes()
    assert len(data) % UF2_BLOCK_SIZE == 0
    assert struct.unpack_from("<I", data, 0)[0] == UF2_MAGIC0


def test_main_rejects_unknown_format(inputs, tmp_path, capsys):
    elf, ipl3 = inputs
    assert main(["-format", "bin", "-ipl3", str(ipl3), str(elf)]) == 1
    assert "bin format not supported" in capsys.readouterr().err
    assert not (tmp_path / "game.bin").exists()


def test_main_missing_input_fails(inputs, tmp_path):
    _, ipl3 = inputs
    assert main(["-ipl3", str(ipl3), str(tmp_path / "missing.elf")]) == 1
    assert not (tmp_path / "missing.z64").exists()


def test_main_requires_ipl3(inputs, capsys):
    elf, _ = inputs
    assert main([str(elf)]) == 1
    assert "-ipl3" in capsys.readouterr().err