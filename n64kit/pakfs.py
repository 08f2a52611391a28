"""Controller Pak file system: reading and writing game notes in a pak image."""

from __future__ import annotations

import posixpath
import stat as _stat
import struct
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import islice
from typing import Iterator

PAGES_PER_BANK = 128
PAGE_BITS = 8
PAGE_SIZE = 1 << PAGE_BITS
PAGE_MASK = PAGE_SIZE - 1

BLOCK_LEN = 32
BASE_LABEL = 0x0000
_ID_BASES = (0x0020, 0x0060, 0x0080, 0x00C0)

NOTE_COUNT = 16
NOTE_BITS = 5

INODE_LAST = 1
INODE_FREE = 3

_ID_FORMAT = ">II16sHBBHH"
_NOTE_FORMAT = ">4s2sHBBH4s16s"
_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class PakFSError(Exception):
    """Base class for pak file system errors."""


class InconsistentError(PakFSError):
    """The file system structures are damaged."""

    def __init__(self, message: str = "damaged filesystem") -> None:
        super().__init__(message)


class NoSpaceError(PakFSError):
    """No free pages or notes are left."""

    def __init__(self, message: str = "no space left on device") -> None:
        super().__init__(message)


class ReadOnlyError(PakFSError):
    """The underlying device cannot be written."""

    def __init__(self, message: str = "read-only file system") -> None:
        super().__init__(message)


class NameTooLongError(PakFSError):
    """A file name or extension does not fit into a note."""

    def __init__(self, message: str = "file name too long") -> None:
        super().__init__(message)


_DEFAULT_CHARSET = " !\"#'*+,-./0123456789:=?@ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class NameCodec:
    """Strict character codec for note names, mapping characters to single bytes."""

    def __init__(self, table: dict[str, int] | None = None) -> None:
        if table is None:
            table = {c: ord(c) for c in _DEFAULT_CHARSET}
        self._encode = dict(table)
        self._decode = {v: k for k, v in table.items()}

    def encode(self, text: str) -> bytes:
        out = bytearray()
        for i, char in enumerate(text):
            try:
                out.append(self._encode[char])
            except KeyError:
                raise UnicodeEncodeError(
                    "pakfs-name", text, i, i + 1, "character not representable"
                ) from None
        return bytes(out)

    def decode(self, data: bytes) -> str:
        return "".join(self._decode.get(b, "\ufffd") for b in data)


class _Device:
    """Uniform random access over bytes, bytearrays and binary files."""

    def __init__(self, dev) -> None:
        self._dev = dev
        if isinstance(dev, bytes):
            self.writable = False
        elif isinstance(dev, bytearray):
            self.writable = True
        else:
            probe = getattr(dev, "writable", None)
            self.writable = bool(probe()) if callable(probe) else False

    def read_at(self, size: int, offset: int) -> bytes:
        if isinstance(self._dev, (bytes, bytearray)):
            return bytes(self._dev[offset:offset + size])
        self._dev.seek(offset)
        return self._dev.read(size)

    def write_at(self, data: bytes, offset: int) -> None:
        if not self.writable:
            raise ReadOnlyError()
        if isinstance(self._dev, bytearray):
            end = offset + len(data)
            if end > len(self._dev):
                raise OSError("write beyond end of device")
            self._dev[offset:end] = data
            return
        self._dev.seek(offset)
        self._dev.write(data)
        flush = getattr(self._dev, "flush", None)
        if callable(flush):
            flush()


@dataclass
class _IdSector:
    repaired: int
    random: int
    serial: bytes
    device_id: int
    bank_count: int
    version: int
    checksum: int
    checksum_inv: int

    @classmethod
    def unpack(cls, raw: bytes) -> "_IdSector":
        return cls(*struct.unpack(_ID_FORMAT, raw))

    def compute_checksum(self) -> tuple[int, int]:
        body = struct.pack(
            _ID_FORMAT, self.repaired, self.random, self.serial, self.device_id,
            self.bank_count, self.version, 0, 0,
        )[:BLOCK_LEN - 4]
        csum = sum(struct.unpack(">14H", body)) & 0xFFFF
        return csum, (0xFFF2 - csum) & 0xFFFF

    def valid(self) -> bool:
        return self.compute_checksum() == (self.checksum, self.checksum_inv)


@dataclass
class _Note:
    game_code: bytes = b"\0" * 4
    publisher_code: bytes = b"\0" * 2
    start_page: int = 0
    status: int = 0
    reserved1: int = 0
    reserved2: int = 0
    extension: bytes = b"\0" * 4
    file_name: bytes = b"\0" * 16

    @classmethod
    def unpack(cls, raw: bytes) -> "_Note":
        return cls(*struct.unpack(_NOTE_FORMAT, raw))

    def pack(self) -> bytes:
        return struct.pack(
            _NOTE_FORMAT, self.game_code, self.publisher_code, self.start_page,
            self.status, self.reserved1, self.reserved2, self.extension, self.file_name,
        )


def _inodes_offset(bank_count: int) -> tuple[int, int]:
    return PAGE_SIZE, bank_count << PAGE_BITS


def _inodes_backup_offset(bank_count: int) -> tuple[int, int]:
    return (1 + bank_count) << PAGE_BITS, bank_count << PAGE_BITS


def _note_offset(bank_count: int, index: int) -> int:
    return ((1 + (bank_count << 1)) << PAGE_BITS) + (index << NOTE_BITS)


def _valid_path(name: str) -> bool:
    if name == ".":
        return True
    if not name or name.startswith("/") or name.endswith("/"):
        return False
    return all(elem not in ("", ".", "..") for elem in name.split("/"))


def _dirname(name: str) -> str:
    return posixpath.dirname(name) or "."


def _split_ext(name: str) -> tuple[str, str]:
    dot = name.rfind(".")
    if dot < 0:
        return name, ""
    ext = name[dot:]
    if ext == ".":
        return name, ""
    return name[:dot], ext[1:]


class PakFS:
    """A Controller Pak file system backed by an image."""

    def __init__(self, device: _Device, codec: NameCodec, ident: _IdSector,
                 inodes: list[int], notes: list[_Note]) -> None:
        self._dev = device
        self._codec = codec
        self._id = ident
        self._inodes = inodes
        self._notes = notes
        self._lock = threading.RLock()

    # internal helpers

    def _first_page(self) -> int:
        return 1 + (self._id.bank_count << 1) + 2

    def _valid_page(self, page: int) -> bool:
        return not (page < self._first_page() or page >= len(self._inodes)
                    or page & PAGE_MASK == 0)

    def _iter_inodes(self) -> Iterator[tuple[int, int]]:
        page = self._first_page()
        last = PAGES_PER_BANK
        for _ in range(self._id.bank_count):
            while page < last:
                yield page, self._inodes[page]
                page += 1
            page += 1
            last += PAGES_PER_BANK

    def _inodes_checksum(self, update: bool) -> bool:
        valid = True
        csum = 0
        for page, inode in self._iter_inodes():
            csum = (csum + inode) & 0xFFFF
            if (page + 1) % PAGES_PER_BANK == 0:
                idx = page & ~(PAGES_PER_BANK - 1)
                if csum & 0xFF != self._inodes[idx] & 0xFF:
                    valid = False
                    if not update:
                        return False
                    self._inodes[idx] = (csum & 0xFF) | (self._inodes[idx] & 0xFF00)
                csum = 0
        return valid

    def _sync(self) -> None:
        if not self._dev.writable:
            raise ReadOnlyError()
        self._inodes_checksum(True)
        raw = struct.pack(f">{len(self._inodes)}H", *self._inodes)
        for offset_fn in (_inodes_offset, _inodes_backup_offset):
            offset, _ = offset_fn(self._id.bank_count)
            self._dev.write_at(raw, offset)

    def _open(self, name: str):
        if not _valid_path(name):
            raise ValueError(f"open {name}: invalid argument")
        if name == ".":
            return RootDir(self)
        for index, note in enumerate(self._notes):
            if note.start_page == 0:
                continue
            f = PakFile(self, index)
            if f._name() == name:
                return f
        raise FileNotFoundError(f"open {name}: file does not exist")

    def _remove(self, name: str) -> None:
        f = self._open(name)
        if not isinstance(f, PakFile):
            raise IsADirectoryError(f"remove {name}: is a directory")
        f._free_pages(len(self._inodes))
        self._notes[f._index] = _Note()
        f._sync()

    # public API

    def open(self, name: str):
        """Open a note by name, or the root directory for "."."""
        with self._lock:
            return self._open(name)

    def label(self) -> str:
        with self._lock:
            try:
                raw = self._dev.read_at(BLOCK_LEN, BASE_LABEL)
            except OSError:
                return ""
            return raw.decode("latin-1")

    def root(self) -> "RootDir":
        return RootDir(self)

    def read_dir_root(self) -> list["DirEntry"]:
        with self._lock:
            return [
                DirEntry(self, PakFile(self, i)._name())
                for i, note in enumerate(self._notes)
                if note.start_page != 0
            ]

    def size(self) -> int:
        with self._lock:
            bc = self._id.bank_count
            total = len(self._inodes) - bc - (bc << 1) - 2
            return total << PAGE_BITS

    def free(self) -> int:
        with self._lock:
            count = sum(1 for _, inode in self._iter_inodes() if inode == INODE_FREE)
            return count << PAGE_BITS

    def create(self, name: str) -> "PakFile":
        if not _valid_path(name):
            raise ValueError(f"create {name}: invalid argument")
        if _dirname(name) != ".":
            raise FileNotFoundError(f"create {name}: file does not exist")
        with self._lock:
            try:
                self._open(name)
            except FileNotFoundError:
                pass
            else:
                raise FileExistsError(f"create {name}: file already exists")
            index = next(
                (i for i, note in enumerate(self._notes) if note.start_page == 0), None
            )
            if index is None:
                raise NoSpaceError()
            f = PakFile(self, index)
            f._set_name(name)
            note = self._notes[index]
            note.start_page = INODE_LAST
            note.status = 0x2
            f._sync()
            return f

    def remove(self, name: str) -> None:
        with self._lock:
            self._remove(name)

    def rename(self, old_name: str, new_name: str) -> None:
        if old_name == new_name:
            return
        if _dirname(new_name) != ".":
            raise FileNotFoundError(f"rename {old_name}: file does not exist")
        with self._lock:
            f = self._open(old_name)
            if not isinstance(f, PakFile):
                raise IsADirectoryError(f"rename {old_name}: is a directory")
            try:
                self._remove(new_name)
            except FileNotFoundError:
                pass
            f._set_name(new_name)
            f._sync()

    def truncate(self, name: str, size: int) -> None:
        if not self._dev.writable:
            raise ReadOnlyError()
        if size < 0:
            raise ValueError("truncate: invalid size")
        with self._lock:
            f = self._open(name)
            if not isinstance(f, PakFile):
                raise IsADirectoryError(f"truncate {name}: is a directory")
            pages = f._pages()
            delta = ((size + PAGE_MASK) >> PAGE_BITS) - len(pages)
            if delta > 0:
                f._alloc_pages(delta)
                return
            f._free_pages(-delta)
            last_idx = len(pages) - 1 + delta
            tail = size & PAGE_MASK
            if last_idx >= 0 and tail:
                page_addr = pages[last_idx] << PAGE_BITS
                self._dev.write_at(bytes(PAGE_SIZE - tail), page_addr + tail)


def read_pakfs(device, codec: NameCodec | None = None) -> PakFS:
    """Read a pak file system from bytes (read-only), a bytearray or a binary file."""
    dev = _Device(device)
    codec = codec or NameCodec()

    for base in _ID_BASES:
        raw = dev.read_at(BLOCK_LEN, base)
        if len(raw) < BLOCK_LEN:
            raise InconsistentError("short read of id sector")
        ident = _IdSector.unpack(raw)
        if ident.valid():
            break
    else:
        raise InconsistentError()

    fs = PakFS(dev, codec, ident, [], [])
    for offset_fn in (_inodes_offset, _inodes_backup_offset):
        offset, n = offset_fn(ident.bank_count)
        raw = dev.read_at(n, offset)
        if len(raw) < n:
            raise InconsistentError("short read of inode table")
        fs._inodes = list(struct.unpack(f">{n // 2}H", raw))
        if fs._inodes_checksum(False):
            break
    else:
        raise InconsistentError()

    raw = dev.read_at(NOTE_COUNT * BLOCK_LEN, _note_offset(ident.bank_count, 0))
    if len(raw) < NOTE_COUNT * BLOCK_LEN:
        raise InconsistentError("short read of note table")
    fs._notes = [
        _Note.unpack(raw[i:i + BLOCK_LEN]) for i in range(0, len(raw), BLOCK_LEN)
    ]
    return fs


class PakFile:
    """An open game note."""

    def __init__(self, fs: PakFS, index: int) -> None:
        self._fs = fs
        self._index = index
        self._pos = 0
        self._closed = False

    @property
    def _note(self) -> _Note:
        return self._fs._notes[self._index]

    def _pages(self) -> list[int]:
        pages: list[int] = []
        page = self._note.start_page
        if page == 0:
            return pages
        while page != INODE_LAST:
            if not self._fs._valid_page(page) or len(pages) > len(self._fs._inodes):
                raise InconsistentError()
            pages.append(page)
            page = self._fs._inodes[page]
        return pages

    def _section(self, offset: int, n: int) -> tuple[list[int], int]:
        if offset < 0:
            raise ValueError("negative offset")
        if n <= 0:
            return [], 0
        pages = self._pages()
        start = offset >> PAGE_BITS
        end = (offset + n + PAGE_MASK) >> PAGE_BITS
        beyond = 0
        if end > len(pages):
            beyond = end - len(pages)
            end = len(pages)
            start = min(start, end)
        return pages[start:end], beyond

    def _alloc_pages(self, count: int) -> None:
        fs = self._fs
        if not fs._dev.writable:
            raise ReadOnlyError()
        if count <= 0:
            return
        free_pages = (p for p, inode in fs._iter_inodes() if inode == INODE_FREE)
        new_pages = list(islice(free_pages, count))
        if len(new_pages) < count:
            raise NoSpaceError()
        pages = self._pages()
        for page, nxt in zip(new_pages, new_pages[1:]):
            fs._inodes[page] = nxt
        fs._inodes[new_pages[-1]] = INODE_LAST
        if pages:
            fs._inodes[pages[-1]] = new_pages[0]
        else:
            self._note.start_page = new_pages[0]
            self._sync()
        for page in new_pages:
            fs._dev.write_at(bytes(PAGE_SIZE), page << PAGE_BITS)
        fs._sync()

    def _free_pages(self, count: int) -> None:
        fs = self._fs
        pages = self._pages()
        count = min(count, len(pages))
        for page in pages[len(pages) - count:]:
            fs._inodes[page] = INODE_FREE
        pages = pages[:len(pages) - count]
        if pages:
            fs._inodes[pages[-1]] = INODE_LAST
        else:
            self._note.start_page = INODE_LAST
            self._sync()
        fs._sync()

    def _sync(self) -> None:
        fs = self._fs
        fs._dev.write_at(self._note.pack(), _note_offset(fs._id.bank_count, self._index))

    def _name(self) -> str:
        def field_text(raw: bytes) -> str:
            null = raw.find(b"\0")
            return self._fs._codec.decode(raw if null < 0 else raw[:null])

        ext = field_text(self._note.extension)
        base = field_text(self._note.file_name)
        return f"{base}.{ext}" if ext else base

    def _set_name(self, filename: str) -> None:
        base, ext = _split_ext(filename)
        codec = self._fs._codec
        encoded_base = codec.encode(base)
        encoded_ext = codec.encode(ext)
        if len(encoded_base) > 16 or len(encoded_ext) > 4:
            raise NameTooLongError()
        self._note.file_name = encoded_base.ljust(16, b"\0")
        self._note.extension = encoded_ext.ljust(4, b"\0")

    def read_at(self, size: int, offset: int) -> bytes:
        """Read up to size bytes at offset; fewer are returned at end of file."""
        with self._fs._lock:
            pages, _ = self._section(offset, size)
            out = bytearray()
            page_off = offset & PAGE_MASK
            for page in pages:
                length = min(PAGE_SIZE - page_off, size - len(out))
                out += self._fs._dev.read_at(length, (page << PAGE_BITS) + page_off)
                page_off = 0
            return bytes(out)

    def write_at(self, data: bytes, offset: int) -> int:
        """Write data at offset, allocating pages as needed. Returns bytes written."""
        with self._fs._lock:
            if not self._fs._dev.writable:
                raise ReadOnlyError()
            pages, beyond = self._section(offset, len(data))
            if beyond > 0:
                self._alloc_pages(beyond)
                pages, _ = self._section(offset, len(data))
            written = 0
            page_off = offset & PAGE_MASK
            for page in pages:
                length = min(PAGE_SIZE - page_off, len(data) - written)
                self._fs._dev.write_at(
                    data[written:written + length], (page << PAGE_BITS) + page_off
                )
                written += length
                page_off = 0
            return written

    def read(self, size: int = -1) -> bytes:
        """Read sequentially from the current position."""
        if self._closed:
            raise ValueError("read from closed file")
        if size is None or size < 0:
            size = max(self.size() - self._pos, 0)
        data = self.read_at(size, self._pos)
        self._pos += len(data)
        return data

    def stat(self) -> "PakFile":
        return self

    def close(self) -> None:
        """End sequential reading; the read position is reset."""
        self._closed = True
        self._pos = 0

    def __enter__(self) -> "PakFile":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def name(self) -> str:
        with self._fs._lock:
            return self._name()

    def size(self) -> int:
        with self._fs._lock:
            try:
                return len(self._pages()) << PAGE_BITS
            except InconsistentError:
                return 0

    def mode(self) -> int:
        return 0o666

    def mod_time(self) -> datetime:
        return _EPOCH

    def is_dir(self) -> bool:
        return _stat.S_ISDIR(self.mode())

    def company_code(self) -> bytes:
        with self._fs._lock:
            return self._note.publisher_code

    def set_company_code(self, code: bytes) -> None:
        if len(code) != 2:
            raise ValueError("company code must be 2 bytes")
        with self._fs._lock:
            self._note.publisher_code = bytes(code)
            self._sync()

    def game_code(self) -> bytes:
        with self._fs._lock:
            return self._note.game_code

    def set_game_code(self, code: bytes) -> None:
        if len(code) != 4:
            raise ValueError("game code must be 4 bytes")
        with self._fs._lock:
            self._note.game_code = bytes(code)
            self._sync()


@dataclass
class RootDir:
    """The only directory of a pak file system."""

    fs: PakFS
    _entries: list | None = field(default=None, repr=False)
    _closed: bool = field(default=False, repr=False)

    def read_dir(self, n: int = 0) -> list["DirEntry"]:
        """Return up to n entries (all remaining if n <= 0).

        With n > 0, EOFError is raised once no entries remain.
        """
        if self._entries is None:
            self._entries = self.fs.read_dir_root()
        if n <= 0:
            result, self._entries = self._entries, []
            return result
        if not self._entries:
            raise EOFError("no more directory entries")
        result, self._entries = self._entries[:n], self._entries[n:]
        return result

    def stat(self) -> "RootDir":
        return self

    def read(self, size: int = -1) -> bytes:
        """Directories hold no data; reading always fails."""
        if self._closed:
            raise ValueError("read from closed directory")
        raise IsADirectoryError(f"cannot read {size} bytes from a directory")

    def close(self) -> None:
        """Drop any pending directory listing."""
        self._closed = True
        self._entries = None

    def name(self) -> str:
        return "."

    def size(self) -> int:
        return 0

    def mode(self) -> int:
        return _stat.S_IFDIR | 0o777

    def mod_time(self) -> datetime:
        return _EPOCH

    def is_dir(self) -> bool:
        return True


@dataclass(frozen=True)
class DirEntry:
    """A directory entry holding only a name; info() opens the note."""

    fs: PakFS
    entry_name: str

    def name(self) -> str:
        return self.entry_name

    def is_dir(self) -> bool:
        return _stat.S_ISDIR(self.type())

    def type(self) -> int:
        return 0o666

    def info(self):
        return self.fs.open(self.entry_name).stat()