import struct
from pathlib import Path

import pytest
from PIL import Image

from n64kit.mkfont import (
    FontMap,
    FontMapError,
    _TrueTypeInfo,
    main,
    output_directory,
    render_font,
    save_font_map,
)


def _sfnt(tables):
    header = struct.pack(">IHHHH", 0x00010000, len(tables), 0, 0, 0)
    offset = 12 + 16 * len(tables)
    directory = b""
    body = b""
    for tag, data in tables.items():
        directory += struct.pack(">4sIII", tag, 0, offset + len(body), len(data))
        body += data + b"\0" * (-len(data) % 4)
    return header + directory + body


def _cmap4(start, end):
    sub = struct.pack(">7H", 4, 0, 0, 4, 0, 0, 0)
    sub += struct.pack(">HH", end, 0xFFFF)
    sub += struct.pack(">H", 0)
    sub += struct.pack(">HH", start, 0xFFFF)
    sub += struct.pack(">hh", 1 - start, 1)
    sub += struct.pack(">HH", 0, 0)
    return struct.pack(">HH", 0, 1) + struct.pack(">HHI", 3, 1, 12) + sub


def _name_table(full):
    raw = full.encode("utf-16-be")
    return struct.pack(">HHH", 0, 1, 18) + struct.pack(">6H", 3, 1, 0x409, 4, len(raw), 0) + raw


def test_output_directory_strips_spaces_and_lowercases():
    assert output_directory("DejaVu Sans Mono", 12) == Path("fonts/dejavusansmono12")


def test_output_directory_rounds_size():
    assert output_directory("Foo", 9.0) == Path("fonts/foo9")


def test_save_font_map_round_trip(tmp_path):
    image = Image.new("L", (256, 20), 0)
    image.putpixel((3, 4), 200)
    positions = bytes([0, 12, 7, 7, 12, 5])
    font_map = FontMap(image, positions, "Test Font", 12)

    png_path, pos_path = save_font_map(font_map, tmp_path / "out", 0, 0xFF)

    assert png_path.name == "0000_00ff.png"
    assert pos_path.name == "0000_00ff.pos"
    assert pos_path.read_bytes() == positions
    with Image.open(png_path) as loaded:
        assert loaded.size == (256, 20)
        assert loaded.getpixel((3, 4)) == 200
        assert loaded.getpixel((0, 0)) == 0


def test_save_font_map_basename_uses_range(tmp_path):
    font_map = FontMap(Image.new("L", (256, 8)), b"", "x", 10)
    png_path, pos_path = save_font_map(font_map, tmp_path, 0x20, 0x7E)
    assert png_path.name == "0020_007e.png"
    assert pos_path.read_bytes() == b""


def test_render_font_rejects_non_font(tmp_path):
    bogus = tmp_path / "bogus.ttf"
    bogus.write_bytes(b"this is not a font file at all")
    with pytest.raises(FontMapError):
        render_font(bogus)


def test_render_font_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        render_font(tmp_path / "missing.ttf")


def test_truetype_info_cmap_lookup():
    data = _sfnt({b"cmap": _cmap4(ord("A"), ord("C")), b"name": _name_table("Made Up Sans")})
    info = _TrueTypeInfo(data)
    assert info.has_glyph(ord("A"))
    assert info.has_glyph(ord("C"))
    assert not info.has_glyph(ord("D"))
    assert not info.has_glyph(0)
    assert info.full_name == "Made Up Sans"


def test_truetype_info_requires_cmap():
    data = _sfnt({b"name": _name_table("No Map")})
    with pytest.raises(FontMapError):
        _TrueTypeInfo(data)


def test_main_missing_font_returns_error(tmp_path, capsys):
    assert main(["-fontfile", str(tmp_path / "missing.ttf")]) == 1
    assert "missing.ttf" in capsys.readouterr().err