# n64kit

Tools for Nintendo 64 homebrew development:

- **`n64kit.pakfs`**: read and write Controller Pak (`.mpk`) images. You can
  list, open, create, rename, truncate and remove game notes.
- **`n64kit.mkrom`**: the `n64-mkrom` command. It turns a linked ELF file into
  a `.z64` ROM, or into a compressed `.uf2` image for RP2040 based flash carts.
  It builds on `n64kit.objcopy`, `n64kit.z64` and `n64kit.uf2`.
- **`n64kit.mkfont`**: the `n64-mkfont` command. It renders a TrueType font
  into a grayscale glyph map (`.png`) and a glyph position table (`.pos`).
- **`n64kit.controller`**: tracks controller state between polls. It reports
  pressed and released buttons, stick deltas, and plug and pak events.
- **`n64kit.carts`**: UNFLoader packet framing, SummerCart64 configuration
  options and error codes, and a `(fd, data)` system writer wrapper.

## Installation

```
pip install .
```

## Building a ROM

```
n64-mkrom --ipl3 ipl3.bin game.elf              # writes game.z64
n64-mkrom --ipl3 ipl3.bin --format uf2 game.elf # writes game.uf2
```

`--ipl3` is required. It names a file that holds the IPL3 boot code, which
is placed after the ROM header. A trailing `.elf` in the input name is replaced
by the format's extension, and the output file name is also written into the
header as the game title. The title is cut to 20 bytes.

The allocated `PROGBITS` sections of the ELF file are laid out in file order,
and the gaps between them are filled with `0xff`. The payload is padded with
`0xff` to 1 MiB, and the two check words are computed over that first MiB.
`n64kit.z64.build_rom(title, payload, ipl3)` and `n64kit.z64.n64_crc(buf)`
are also available from Python.

For `uf2`, the ROM is split into 1 KiB chunks and duplicate chunks are
removed (`n64kit.uf2.compress_rom`). The result is then written as UF2 blocks
for address `0x10030000`. If the image needs more than 2 MiB of flash, a
warning is printed. A ROM with too many chunks for the chunk map raises
`ChunkMapOverflowError`.

## Making a font map

```
n64-mkfont --fontfile DejaVuSans.ttf --size 12 --start 0x20 --end 0x7e
```

Options: `--dpi` (default 72), `--hinting none|full`, `--size` (default 12),
`--spacing` (default 1.25), `--start` (default 0) and `--end` (default 0xff).

The command writes `fonts/<fullname><size>/<start>_<end>.png` and a matching
`.pos` file. The `fonts` directory is made under the current directory, and
the name is lower-cased with spaces removed. The map is 256 pixels wide. The
`.pos` file holds three bytes per glyph: x, y and advance. Characters that the
font lacks all share the entry of the first missing one. If the glyphs do not
fit into the map, `FontMapError` is raised. From Python, use
`render_font(...)`, `output_directory(name, size)` and
`save_font_map(font_map, directory, start, end)`.

## Controller Pak images

```python
from n64kit.pakfs import read_pakfs

with open("save.mpk", "r+b") as image:
    fs = read_pakfs(image)
    for entry in fs.read_dir_root():
        print(entry.name(), entry.info().size())

    note = fs.create("HELLO.TXT")
    note.write_at(b"hello pak", 0)
    print(fs.free(), "bytes free of", fs.size())
```

`read_pakfs` accepts a binary file, a `bytearray` (writable) or `bytes`
(read-only). Note sizes are always whole 256-byte pages. `PakFile.read_at(size,
offset)` returns fewer bytes at the end of a note. `write_at` allocates
zero-filled pages as needed.

By default, note names are encoded with a strict table. The table maps space,
digits, upper-case letters and the characters ``!"#'*+,-./:=?@`` to their
ASCII byte values. A different mapping can be passed as
`read_pakfs(device, NameCodec(table))`. A name is at most 16 encoded bytes,
and an extension at most 4.

Errors:

- `InconsistentError`: damaged ID sectors or inode tables.
- `NoSpaceError`: no free pages or notes are left.
- `ReadOnlyError`: the device cannot be written.
- `NameTooLongError`: a name or extension does not fit.

All four are subclasses of `PakFSError`. Other problems raise the usual Python
exceptions: `FileNotFoundError`, `FileExistsError`, `IsADirectoryError`,
`ValueError` for invalid paths or sizes, and `UnicodeEncodeError` for
characters that cannot be encoded.

## What the package does not do

- It does not talk to hardware. `Controller.update(...)` is fed poll results
  by the caller. `UNFLoaderWriter` and `system_writer` wrap any byte stream
  you give them. There is no cart probing and no joybus access.
- It has no command to mount a pak image as a file system. Use
  `n64kit.pakfs` from Python.
- It does not ship IPL3 boot code. You must supply it with `--ipl3`.

## Running the tests

```
pip install .[test]
pytest
```