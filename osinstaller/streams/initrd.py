"""Reading and writing initrd images made of concatenated CPIO archives."""

from __future__ import annotations

import io
import lzma
import re
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Iterator, Union

from osinstaller.streams.compress import DecompressReader
from osinstaller.streams.copying import BUFFER_SIZE

_NEWC_MAGICS = (b"070701", b"070702")
_HEADER_LEN = 110
_TRAILER = "TRAILER!!!"
_S_IFMT = 0o170_000
_S_IFREG = 0o100_000
_S_IFDIR = 0o040_000
_DIR_MODE = 0o40_755
_FILE_MODE = 0o100_600

Source = Union[bytes, bytearray, memoryview, BinaryIO]


class InitrdError(ValueError):
    """An initrd or CPIO archive is malformed."""


def _pad(length: int) -> int:
    return -length % 4


def _translate_glob(pattern: str) -> re.Pattern[str]:
    """Compile a shell-style glob into a regular expression.

    ``*`` and ``?`` match any character including ``/``; ``**`` must form
    a whole path component; ``[...]`` and ``[!...]`` are character classes.
    """
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "?":
            out.append(".")
            i += 1
        elif c == "*":
            j = i
            while j < n and pattern[j] == "*":
                j += 1
            count = j - i
            if count == 1:
                out.append(".*")
                i = j
            elif count == 2:
                if i > 0 and pattern[i - 1] != "/":
                    raise ValueError(
                        f"recursive wildcards must form a single path component in '{pattern}'"
                    )
                if j == n:
                    out.append(".*")
                    i = j
                elif pattern[j] == "/":
                    out.append("(?:.*/)?")
                    i = j + 1
                else:
                    raise ValueError(
                        f"recursive wildcards must form a single path component in '{pattern}'"
                    )
            else:
                raise ValueError(
                    f"wildcards are either regular `*` or recursive `**` in '{pattern}'"
                )
        elif c == "[":
            negated = i + 1 < n and pattern[i + 1] == "!"
            start = i + 2 if negated else i + 1
            close = pattern.find("]", start + 1)
            if close == -1:
                raise ValueError(f"invalid range pattern in '{pattern}'")
            out.append(_translate_class(pattern[start:close], negated))
            i = close + 1
        else:
            out.append(re.escape(c))
            i += 1
    return re.compile("".join(out), re.DOTALL)


def _translate_class(body: str, negated: bool) -> str:
    items: list[str] = []
    k = 0
    while k < len(body):
        if k + 2 < len(body) and body[k + 1] == "-":
            lo, hi = body[k], body[k + 2]
            if lo <= hi:
                items.append(f"{re.escape(lo)}-{re.escape(hi)}")
            k += 3
        else:
            items.append(re.escape(body[k]))
            k += 1
    if not items:
        return "." if negated else "(?!)"
    return "[" + ("^" if negated else "") + "".join(items) + "]"


class GlobMatcher:
    """Matches paths against any of several glob patterns."""

    def __init__(self, globs: Iterable[str]) -> None:
        self._patterns = [_translate_glob(glob) for glob in globs]

    def matches(self, path: str) -> bool:
        return any(p.fullmatch(path) for p in self._patterns)


_ALL_GLOB = GlobMatcher(["*"])


@dataclass(frozen=True)
class NewcEntry:
    """One member of a newc-format CPIO archive."""

    name: str
    mode: int
    data: bytes

    @property
    def is_dir(self) -> bool:
        return self.mode & _S_IFMT == _S_IFDIR

    @property
    def is_file(self) -> bool:
        return self.mode & _S_IFMT == _S_IFREG


class _PeekableReader:
    """Buffered reader offering ``peek`` over any binary source."""

    def __init__(self, source: BinaryIO) -> None:
        self._source = source
        self._buffer = b""

    def peek(self, size: int = 1) -> bytes:
        wanted = max(size, 1)
        while len(self._buffer) < wanted:
            chunk = self._source.read(BUFFER_SIZE)
            if not chunk:
                break
            self._buffer += chunk
        return self._buffer

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data = self._buffer + self._source.read()
            self._buffer = b""
            return data
        if not self._buffer and size > 0:
            self.peek(1)
        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def skip_zeros(self) -> None:
        """Consume any run of zero bytes at the current position."""
        while True:
            buf = self.peek(1)
            if not buf:
                return
            stripped = buf.lstrip(b"\0")
            self.read(len(buf) - len(stripped))
            if stripped:
                return


def _as_stream(source: Source) -> BinaryIO:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return io.BytesIO(bytes(source))
    return source


def _read_exact(reader, size: int) -> bytes:
    parts = []
    remaining = size
    while remaining > 0:
        chunk = reader.read(remaining)
        if not chunk:
            raise EOFError("unexpected end of CPIO archive")
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


def _skip(reader, size: int) -> None:
    while size > 0:
        chunk = reader.read(min(size, BUFFER_SIZE))
        if not chunk:
            raise EOFError("unexpected end of CPIO archive")
        size -= len(chunk)


def _read_header(reader) -> tuple[str, int, int]:
    """Read one entry header and name; return (name, mode, file size)."""
    header = _read_exact(reader, _HEADER_LEN)
    if header[:6] not in _NEWC_MAGICS:
        raise InitrdError("reading CPIO entry: invalid header magic")
    try:
        fields = [int(header[pos:pos + 8], 16) for pos in range(6, _HEADER_LEN, 8)]
    except ValueError as err:
        raise InitrdError("reading CPIO entry: invalid header field") from err
    mode, filesize, namesize = fields[1], fields[6], fields[11]
    raw_name = _read_exact(reader, namesize)
    _skip(reader, _pad(_HEADER_LEN + namesize))
    try:
        name = raw_name.split(b"\0", 1)[0].decode("utf-8")
    except UnicodeDecodeError as err:
        raise InitrdError("reading CPIO entry: name is not UTF-8") from err
    return name, mode, filesize


def iter_newc_entries(data: bytes) -> Iterator[NewcEntry]:
    """Yield the entries of an uncompressed newc CPIO archive, up to the trailer."""
    reader = io.BytesIO(bytes(data))
    while True:
        name, mode, size = _read_header(reader)
        if name == _TRAILER:
            return
        contents = _read_exact(reader, size)
        _skip(reader, _pad(size))
        yield NewcEntry(name, mode, contents)


def _newc_record(ino: int, name: str, mode: int, data: bytes) -> bytes:
    name_bytes = name.encode("utf-8") + b"\0"
    fields = (ino, mode, 0, 0, 1, 0, len(data), 0, 0, 0, 0, len(name_bytes), 0)
    header = b"070701" + b"".join(f"{v:08X}".encode("ascii") for v in fields)
    return (
        header
        + name_bytes
        + b"\0" * _pad(_HEADER_LEN + len(name_bytes))
        + data
        + b"\0" * _pad(len(data))
    )


class Initrd:
    """A set of regular files destined for an initrd image."""

    def __init__(self) -> None:
        self._members: dict[str, bytes] = {}

    def to_bytes(self) -> bytes:
        """Generate an xz-compressed newc CPIO archive of the members.

        Parent directories are created for every file, since the kernel
        will not unpack a file whose directory is missing.
        """
        records: list[tuple[str, int, bytes]] = []
        cwd: list[str] = []
        for path in sorted(self._members):
            parent = path.split("/")[:-1]
            common = 0
            for a, b in zip(cwd, parent):
                if a != b:
                    break
                common += 1
            cwd = cwd[:common]
            for component in parent[common:]:
                cwd.append(component)
                records.append(("/".join(cwd), _DIR_MODE, b""))
            records.append((path, _FILE_MODE, self._members[path]))
        records.append((_TRAILER, 0, b""))
        archive = b"".join(
            _newc_record(ino, name, mode, data)
            for ino, (name, mode, data) in enumerate(records, start=1)
        )
        # the kernel requires CRC32 checks in xz-compressed initrds
        return lzma.compress(
            archive, format=lzma.FORMAT_XZ, check=lzma.CHECK_CRC32, preset=9
        )

    @classmethod
    def from_reader(cls, source: Source) -> Initrd:
        """Read an initrd of compressed and/or uncompressed archives."""
        return cls.from_reader_filtered(source, _ALL_GLOB)

    @classmethod
    def from_reader_filtered(cls, source: Source, matcher: GlobMatcher) -> Initrd:
        """Read an initrd, keeping only regular files whose paths match."""
        result = cls()
        stream = _PeekableReader(_as_stream(source))
        while stream.peek(1):
            decompressor = DecompressReader.for_concatenated(stream)
            result._read_archive(decompressor, matcher)
            if decompressor.compressed():
                # padding is fine; data is not
                if any(decompressor.read_all()):
                    raise InitrdError(
                        "found trailing garbage inside compressed archive"
                    )
            stream = decompressor.into_inner()
            stream.skip_zeros()
        return result

    def _read_archive(self, reader, matcher: GlobMatcher) -> None:
        while True:
            name, mode, size = _read_header(reader)
            if name == _TRAILER:
                return
            if mode & _S_IFMT == _S_IFREG and matcher.matches(name):
                # the last copy of a path wins, as in the kernel
                self._members[name] = _read_exact(reader, size)
            else:
                _skip(reader, size)
            _skip(reader, _pad(size))

    def get(self, path: str) -> bytes | None:
        return self._members.get(path)

    def find(self, matcher: GlobMatcher) -> dict[str, bytes]:
        """Return the matching members, ordered by path."""
        return {
            path: self._members[path]
            for path in sorted(self._members)
            if matcher.matches(path)
        }

    def add(self, path: str, contents: bytes) -> None:
        self._members[path] = bytes(contents)

    def remove(self, path: str) -> None:
        self._members.pop(path, None)

    def is_empty(self) -> bool:
        return not self._members