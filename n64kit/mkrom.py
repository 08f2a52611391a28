"""Command line tool converting an ELF executable into an N64 ROM."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .objcopy import ElfError, objcopy
from .uf2 import ChunkMapOverflowError
from .z64 import UnsupportedFormatError, write_rom_file

DESCRIPTION = "ELF to n64 ROM converter."


def output_path(infile: str, fmt: str) -> str:
    """Replace a trailing .elf suffix of infile with the format's extension."""
    return infile.removesuffix(".elf") + "." + fmt


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mkrom",
        usage="%(prog)s [flags] <elffile>",
        description=DESCRIPTION,
    )
    parser.add_argument("-format", "--format", dest="format", default="z64",
                        help="z64 | uf2")
    parser.add_argument("-ipl3", "--ipl3", dest="ipl3",
                        help="file holding the IPL3 boot code")
    parser.add_argument("elffile", nargs="*", help=argparse.SUPPRESS)
    return parser


def main(argv=None) -> int:
    parser = _parser()
    args = parser.parse_args(argv)

    if len(args.elffile) != 1:
        parser.print_help(sys.stderr)
        return 1
    if args.ipl3 is None:
        print("mkrom: the -ipl3 flag is required", file=sys.stderr)
        return 1

    infile = args.elffile[0]
    outfile = output_path(infile, args.format)
    try:
        ipl3 = Path(args.ipl3).read_bytes()
        payload = objcopy(infile)
        write_rom_file(outfile, args.format, payload, ipl3)
    except (OSError, ElfError, UnsupportedFormatError, ChunkMapOverflowError) as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())