"""Rendering a TrueType font into a glyph map image plus a glyph position table."""

from __future__ import annotations

import argparse
import io
import struct
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from PIL import Image, ImageDraw, ImageFont

DIM = 256
_NAME_ID_FULL_NAME = 4
_SFNT_VERSIONS = (b"\x00\x01\x00\x00", b"true")


class FontMapError(Exception):
    """The font cannot be read or its glyphs do not fit into the map."""


@dataclass
class FontMap:
    """A rendered glyph map: grayscale image and 3 bytes (x, y, advance) per glyph."""

    image: Image.Image
    positions: bytes
    name: str
    size: float


def _u16(data: bytes, offset: int) -> int:
    return struct.unpack_from(">H", data, offset)[0]


def _read_tables(data: bytes) -> dict[bytes, bytes]:
    if len(data) < 12 or data[:4] not in _SFNT_VERSIONS:
        raise FontMapError("bad TTF version")
    count = _u16(data, 4)
    directory = data[12:12 + 16 * count]
    if len(directory) < 16 * count:
        raise FontMapError("truncated table directory")
    tables = {}
    for tag, _checksum, offset, length in struct.iter_unpack(">4sIII", directory):
        if offset + length > len(data):
            raise FontMapError(f"table {tag.decode('latin-1')} beyond end of file")
        tables[tag] = data[offset:offset + length]
    return tables


def _format0(sub: bytes) -> Callable[[int], int]:
    glyphs = sub[6:6 + 256]
    return lambda cp: glyphs[cp] if cp < len(glyphs) else 0


def _format4(sub: bytes) -> Callable[[int], int]:
    seg_x2 = _u16(sub, 6)
    n = seg_x2 // 2
    ends = struct.unpack_from(f">{n}H", sub, 14)
    starts = struct.unpack_from(f">{n}H", sub, 16 + seg_x2)
    deltas = struct.unpack_from(f">{n}H", sub, 16 + 2 * seg_x2)
    range_pos = 16 + 3 * seg_x2
    ranges = struct.unpack_from(f">{n}H", sub, range_pos)

    def lookup(cp: int) -> int:
        if cp > 0xFFFF:
            return 0
        for i, (end, start, delta, range_off) in enumerate(zip(ends, starts, deltas, ranges)):
            if end < cp:
                continue
            if start > cp:
                return 0
            if range_off == 0:
                return (cp + delta) & 0xFFFF
            addr = range_pos + 2 * i + range_off + 2 * (cp - start)
            if addr + 2 > len(sub):
                return 0
            glyph = _u16(sub, addr)
            return (glyph + delta) & 0xFFFF if glyph else 0
        return 0

    return lookup


def _format6(sub: bytes) -> Callable[[int], int]:
    first, count = struct.unpack_from(">HH", sub, 6)
    glyphs = struct.unpack_from(f">{count}H", sub, 10)

    def lookup(cp: int) -> int:
        if first <= cp < first + count:
            return glyphs[cp - first]
        return 0

    return lookup


def _format12(sub: bytes) -> Callable[[int], int]:
    count = struct.unpack_from(">I", sub, 12)[0]
    groups = list(struct.iter_unpack(">III", sub[16:16 + 12 * count]))

    def lookup(cp: int) -> int:
        for start, end, glyph in groups:
            if start <= cp <= end:
                return glyph + cp - start
        return 0

    return lookup


_CMAP_FORMATS = {0: _format0, 4: _format4, 6: _format6, 12: _format12}
_CMAP_PREFERENCE = [(3, 10), (0, 6), (0, 4), (3, 1), (0, 3), (0, 2), (0, 1), (0, 0), (1, 0)]


def _select_cmap(cmap: bytes) -> Callable[[int], int]:
    count = _u16(cmap, 2)
    records = {
        (platform, encoding): offset
        for platform, encoding, offset in struct.iter_unpack(">HHI", cmap[4:4 + 8 * count])
    }
    for key in _CMAP_PREFERENCE:
        offset = records.get(key)
        if offset is None or offset + 2 > len(cmap):
            continue
        parser = _CMAP_FORMATS.get(_u16(cmap, offset))
        if parser is not None:
            return parser(cmap[offset:])
    raise FontMapError("no supported cmap subtable")


def _full_name(name: bytes) -> str:
    if len(name) < 6:
        return ""
    count, string_off = struct.unpack_from(">HH", name, 2)
    fallback = ""
    for platform, _enc, _lang, name_id, length, offset in struct.iter_unpack(
        ">6H", name[6:6 + 12 * count]
    ):
        if name_id != _NAME_ID_FULL_NAME:
            continue
        raw = name[string_off + offset:string_off + offset + length]
        if platform in (0, 3):
            return raw.decode("utf-16-be", errors="replace")
        if platform == 1 and not fallback:
            fallback = raw.decode("latin-1")
    return fallback


class _TrueTypeInfo:
    """Character map and naming information read from a TrueType file."""

    def __init__(self, data: bytes) -> None:
        try:
            tables = _read_tables(data)
            cmap = tables.get(b"cmap")
            if cmap is None:
                raise FontMapError("font has no cmap table")
            self._lookup = _select_cmap(cmap)
            self.full_name = _full_name(tables.get(b"name", b""))
        except struct.error as exc:
            raise FontMapError(f"malformed font: {exc}") from None

    def has_glyph(self, codepoint: int) -> bool:
        return self._lookup(codepoint) != 0


def _to_fixed(points: float, dpi: float) -> int:
    return int(points * dpi * (64.0 / 72.0))


def _ceil(value: int) -> int:
    return (value + 63) >> 6


def _floor(value: int) -> int:
    return value >> 6


def render_font(font_path, size: float = 12.0, dpi: float = 72.0, spacing: float = 1.25,
                start: int = 0, end: int = 0xFF, hinting: str = "none") -> FontMap:
    """Render the characters start..end into a 256 pixel wide glyph map.

    Characters missing from the font all share the entry of the first missing one.
    """
    data = Path(font_path).read_bytes()
    info = _TrueTypeInfo(data)
    try:
        font = ImageFont.truetype(io.BytesIO(data), size * dpi / 72,
                                  layout_engine=ImageFont.Layout.BASIC)
    except OSError as exc:
        raise FontMapError(f"cannot load font: {exc}") from None

    image = Image.new("L", (DIM, DIM), 0)
    draw = ImageDraw.Draw(image)
    full_hinting = hinting == "full"

    line_height = _ceil(_to_fixed(size * spacing, dpi))
    pt_x, pt_y = 0, line_height << 6
    positions = bytearray()
    missing: bytes | None = None

    for codepoint in range(start, end + 1):
        present = info.has_glyph(codepoint)
        if not present and missing is not None:
            positions += missing
            continue
        pt_x, pt_y = _ceil(pt_x) << 6, _ceil(pt_y) << 6

        char = chr(codepoint)
        advance = round(font.getlength(char) * 64)
        if full_hinting:
            advance = ((advance + 32) >> 6) << 6
        next_x, next_y = pt_x + advance, pt_y

        take_missing = not present and missing is None
        if take_missing and positions:
            missing = bytes(positions[-3:])
            take_missing = False

        adv = (_floor(next_x) - _floor(pt_x)) & 0xFF
        if _ceil(next_x) >= DIM:
            pt_y += _to_fixed(line_height, dpi)
            pt_x = 0
        if _ceil(next_y) >= DIM:
            raise FontMapError("Too many glyphs to fit into font image map")

        positions += bytes([_floor(pt_x) & 0xFF, _floor(pt_y) & 0xFF, adv])
        if take_missing:
            missing = bytes(positions[-3:])

        if char != "\n":
            draw.text((pt_x / 64, pt_y / 64), char, fill=255, font=font, anchor="ls")
        pt_x += advance

    last_line = min(_ceil(pt_y) + line_height, DIM)
    name = info.full_name or " ".join(part for part in font.getname() if part)
    return FontMap(image.crop((0, 0, DIM, last_line)), bytes(positions), name, size)


def output_directory(font_name: str, size: float) -> Path:
    """Directory for a font's files: fonts/<name><size> in lower case without spaces."""
    directory = f"fonts/{font_name}{size:.0f}/".replace(" ", "").lower()
    return Path(directory)


def save_font_map(font_map: FontMap, directory, start: int, end: int) -> tuple[Path, Path]:
    """Write <start>_<end>.png and .pos into directory; return both paths."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    basename = f"{start:04x}_{end:04x}"
    png_path = directory / f"{basename}.png"
    pos_path = directory / f"{basename}.pos"
    font_map.image.save(png_path, format="PNG")
    pos_path.write_bytes(font_map.positions)
    return png_path, pos_path


def _uint(text: str) -> int:
    try:
        value = int(text, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid value {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"invalid value {text!r}")
    return value


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mkfont",
        description="Render a TrueType font into a glyph map and position table.",
    )
    parser.add_argument("-dpi", "--dpi", type=float, default=72.0,
                        help="screen resolution in Dots Per Inch")
    parser.add_argument("-fontfile", "--fontfile", default="",
                        help="filename of the ttf font")
    parser.add_argument("-hinting", "--hinting", default="none", help="none | full")
    parser.add_argument("-size", "--size", type=float, default=12.0,
                        help="font size in points")
    parser.add_argument("-spacing", "--spacing", type=float, default=1.25,
                        help="line spacing")
    parser.add_argument("-start", "--start", type=_uint, default=0,
                        help="Unicode value of first character")
    parser.add_argument("-end", "--end", type=_uint, default=0xFF,
                        help="Unicode value of last character")
    return parser


def main(argv=None) -> int:
    args = _parser().parse_args(argv)
    try:
        font_map = render_font(args.fontfile, args.size, args.dpi, args.spacing,
                               args.start, args.end, args.hinting)
        directory = output_directory(font_map.name, args.size)
        png_path, pos_path = save_font_map(font_map, directory, args.start, args.end)
    except (OSError, FontMapError) as exc:
        print(exc, file=sys.stderr)
        return 1
    print(f"Wrote {png_path}")
    print(f"Wrote {pos_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())