"""Minimal ISO 9660 reader: volume descriptors, directories and file extents.

Only the fields needed to locate files are parsed.  Rock Ridge and Joliet
extensions are not supported.
"""

from __future__ import annotations

import enum
import string
import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Union

from osinstaller.streams.limit import LimitWriter

SECTOR_SIZE = 2048
"""The only logical sector size supported."""

_VOLUME_DESCRIPTORS_SECTOR = 0x10

_TYPE_BOOT = 0
_TYPE_PRIMARY = 1
_TYPE_SUPPLEMENTARY = 2
_TYPE_TERMINATOR = 255

_DESCRIPTOR_ID = b"CD001"
_DESCRIPTOR_VERSION = 1

_ROOT_RECORD_OFFSET = 156
_ROOT_RECORD_LENGTH = 34
_RECORD_HEADER_LENGTH = 33

_PLAIN_CHARS = frozenset((string.ascii_letters + string.digits + "_ ").encode("ascii"))
# the full file character set also includes the D-characters
_FILE_CHARS = frozenset(b"!\"%&'()*+,-.:<=>?")
# the full A-character set also includes the file characters
_A_CHARS = frozenset(b";/")


class IsoError(ValueError):
    """The ISO image is malformed or an entry has the wrong type."""


class NotFound(IsoError):
    """A requested path does not exist in the ISO image."""


class _StringKind(enum.Enum):
    STR_A = "a"
    STR_D = "d"
    FILE = "file"


@dataclass(frozen=True)
class Address:
    """Location of an extent, in ISO 9660 sectors."""

    sector: int

    def as_offset(self) -> int:
        return self.sector * SECTOR_SIZE

    def as_sector(self) -> int:
        return self.sector


@dataclass(frozen=True)
class Directory:
    """A directory record."""

    name: str
    address: Address
    length: int

    def try_into_dir(self) -> Directory:
        return self

    def try_into_file(self) -> File:
        raise IsoError(f"entry {self.name} is a directory")


@dataclass(frozen=True)
class File:
    """A file record."""

    name: str
    address: Address
    length: int

    def try_into_dir(self) -> Directory:
        raise IsoError(f"entry {self.name} is a file")

    def try_into_file(self) -> File:
        return self


Record = Union[Directory, File]


@dataclass(frozen=True)
class _BootVolumeDescriptor:
    boot_system_id: str
    boot_id: str


@dataclass(frozen=True)
class _PrimaryVolumeDescriptor:
    system_id: str
    volume_id: str
    root: Directory


@dataclass(frozen=True)
class _SupplementaryVolumeDescriptor:
    pass


@dataclass(frozen=True)
class _UnknownVolumeDescriptor:
    type_id: int


_VolumeDescriptor = Union[
    _BootVolumeDescriptor,
    _PrimaryVolumeDescriptor,
    _SupplementaryVolumeDescriptor,
    _UnknownVolumeDescriptor,
]


def _read_exact(file: BinaryIO, size: int) -> bytes:
    parts = []
    remaining = size
    while remaining > 0:
        chunk = file.read(remaining)
        if not chunk:
            raise EOFError("unexpected end of file")
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


def _parse_string(data: bytes, pos: int, length: int, kind: _StringKind) -> str:
    """Decode an ISO 9660 string of ``length`` bytes at ``pos``."""
    if pos + length > len(data):
        raise IsoError("incomplete string name; corrupt ISO?")
    raw = bytes(data[pos:pos + length])
    if kind is _StringKind.FILE:
        if raw.endswith(b";1"):
            raw = raw[:-2]
        if raw.endswith(b"."):
            raw = raw[:-1]
    chars: list[str] = []
    for byte in raw:
        if byte in _PLAIN_CHARS:
            chars.append(chr(byte))
        elif byte in _FILE_CHARS and kind in (_StringKind.FILE, _StringKind.STR_A):
            chars.append(chr(byte))
        elif byte in _A_CHARS and kind is _StringKind.STR_A:
            chars.append(chr(byte))
        elif byte in _A_CHARS and kind is _StringKind.FILE:
            # matches what the kernel does
            chars.append(".")
        elif byte == 0:
            break
        else:
            raise IsoError(f"invalid string name {raw!r}")
    result = "".join(chars)
    if kind in (_StringKind.STR_A, _StringKind.STR_D):
        result = result.rstrip(" ")
    return result


def _next_record(
    data: bytes, pos: int, is_root: bool = False
) -> tuple[Optional[Record], int]:
    """Parse the directory record at ``pos``; return it and the next position.

    The "." and ".." entries are skipped, except that "." is returned when
    parsing the root record of the primary volume descriptor.
    """
    end = len(data)
    while True:
        if pos >= end:
            return None, end
        start = pos
        record_len = data[pos]
        pos += 1
        if record_len == 0:
            # records don't cross sector boundaries; skip the padding
            jump = ((pos + SECTOR_SIZE) & ~(SECTOR_SIZE - 1)) - pos
            if jump >= end - pos:
                return None, end
            pos += jump
            continue
        # the record length includes the length byte already read
        if record_len > end - pos + 1 or record_len < _RECORD_HEADER_LENGTH:
            raise IsoError("incomplete directory record; corrupt ISO?")

        (address,) = struct.unpack_from("<I", data, start + 2)
        (length,) = struct.unpack_from("<I", data, start + 10)
        flags = data[start + 25]
        name_len = data[start + 32]
        name_pos = start + _RECORD_HEADER_LENGTH
        name: Optional[str]
        if name_len == 1 and name_pos < end and data[name_pos] in (0, 1):
            # "." or ".."
            name = "." if is_root and data[name_pos] == 0 else None
        else:
            try:
                name = _parse_string(data, name_pos, name_len, _StringKind.FILE)
            except IsoError as err:
                raise IsoError(f"parsing record name: {err}") from err
        if record_len < _RECORD_HEADER_LENGTH + name_len:
            raise IsoError("incomplete directory record; corrupt ISO?")

        pos = start + record_len
        if name is not None:
            if flags & 2:
                return Directory(name, Address(address), length), pos
            return File(name, Address(address), length), pos


def _iter_records(data: bytes) -> Iterator[Record]:
    pos = 0
    while True:
        try:
            record, pos = _next_record(data, pos)
        except IsoError as err:
            raise IsoError(f"reading next record: {err}") from err
        if record is None:
            return
        yield record


def _verify_header(buf: bytes) -> None:
    descriptor_id = bytes(buf[1:6])
    if descriptor_id != _DESCRIPTOR_ID:
        raise IsoError(f"unknown descriptor ID: {descriptor_id!r}")
    version = buf[6]
    if version != _DESCRIPTOR_VERSION:
        raise IsoError(f"unknown descriptor version: {version}")


def _parse_field(buf: bytes, pos: int, length: int, kind: _StringKind, what: str) -> str:
    try:
        return _parse_string(buf, pos, length, kind)
    except IsoError as err:
        raise IsoError(f"{what}: {err}") from err


def _parse_boot(buf: bytes) -> _BootVolumeDescriptor:
    try:
        _verify_header(buf)
    except IsoError as err:
        raise IsoError(f"parsing boot descriptor: {err}") from err
    return _BootVolumeDescriptor(
        boot_system_id=_parse_field(buf, 7, 32, _StringKind.STR_A, "parsing boot system ID"),
        boot_id=_parse_field(buf, 39, 32, _StringKind.STR_A, "parsing boot ID"),
    )


def _parse_primary(buf: bytes) -> _PrimaryVolumeDescriptor:
    try:
        _verify_header(buf)
    except IsoError as err:
        raise IsoError(f"parsing primary descriptor: {err}") from err
    system_id = _parse_field(buf, 8, 32, _StringKind.STR_A, "parsing system id")
    # technically D-characters, but non-compliance is common
    volume_id = _parse_field(buf, 40, 32, _StringKind.STR_A, "parsing volume id")
    root_data = bytes(
        buf[_ROOT_RECORD_OFFSET:_ROOT_RECORD_OFFSET + _ROOT_RECORD_LENGTH]
    )
    root, _ = _next_record(root_data, 0, is_root=True)
    if not isinstance(root, Directory):
        raise IsoError("failed to parse root directory record from primary descriptor")
    return _PrimaryVolumeDescriptor(system_id, volume_id, root)


def _read_descriptor(file: BinaryIO) -> Optional[_VolumeDescriptor]:
    try:
        buf = _read_exact(file, SECTOR_SIZE)
    except (OSError, EOFError) as err:
        raise IsoError(f"reading volume descriptor: {err}") from err
    type_id = buf[0]
    if type_id == _TYPE_BOOT:
        return _parse_boot(buf)
    if type_id == _TYPE_PRIMARY:
        return _parse_primary(buf)
    if type_id == _TYPE_SUPPLEMENTARY:
        return _SupplementaryVolumeDescriptor()
    if type_id == _TYPE_TERMINATOR:
        return None
    return _UnknownVolumeDescriptor(type_id)


def _read_descriptors(file: BinaryIO) -> list[_VolumeDescriptor]:
    try:
        file.seek(_VOLUME_DESCRIPTORS_SECTOR * SECTOR_SIZE)
    except OSError as err:
        raise IsoError(f"seeking to volume descriptors: {err}") from err
    descriptors: list[_VolumeDescriptor] = []
    while True:
        try:
            descriptor = _read_descriptor(file)
        except IsoError as err:
            raise IsoError(
                f"getting volume descriptor #{len(descriptors) + 1}: {err}"
            ) from err
        if descriptor is None:
            return descriptors
        descriptors.append(descriptor)


class _ExtentReader:
    """Reads one file extent from the image."""

    def __init__(self, file: BinaryIO, offset: int, length: int) -> None:
        self._file = file
        self._offset = offset
        self._length = length
        self._pos = 0

    def read(self, size: int = -1) -> bytes:
        remaining = self._length - self._pos
        if size is None or size < 0 or size > remaining:
            size = remaining
        if size == 0:
            return b""
        self._file.seek(self._offset + self._pos)
        data = self._file.read(size)
        self._pos += len(data)
        return data


def path_components(path: str) -> list[str]:
    """Split a path into components, resolving "." and ".." and dropping the root.

    An empty path is treated like "/".
    """
    components: list[str] = []
    for component in path.split("/"):
        if component in ("", "."):
            continue
        if component == "..":
            if components:
                components.pop()
            continue
        components.append(component)
    return components


class IsoFs:
    """An ISO 9660 filesystem in a seekable binary file."""

    def __init__(self, file: BinaryIO) -> None:
        self.descriptors = _read_descriptors(file)
        self._file = file

    @classmethod
    def from_file(cls, file: BinaryIO) -> IsoFs:
        return cls(file)

    def as_file(self) -> BinaryIO:
        """Return the underlying file, rewound to the start."""
        try:
            self._file.seek(0)
        except OSError as err:
            raise IsoError(f"seeking to start of ISO: {err}") from err
        return self._file

    def _primary(self) -> _PrimaryVolumeDescriptor:
        for descriptor in self.descriptors:
            if isinstance(descriptor, _PrimaryVolumeDescriptor):
                return descriptor
        raise IsoError("no primary volume descriptor found in ISO")

    def get_root_directory(self) -> Directory:
        try:
            return self._primary().root
        except IsoError as err:
            raise IsoError(f"getting root directory: {err}") from err

    def list_dir(self, directory: Directory) -> Iterator[Record]:
        """Return an iterator over the records of a directory."""
        try:
            self._file.seek(directory.address.as_offset())
        except OSError as err:
            raise IsoError(f"seeking to directory {directory.name}: {err}") from err
        try:
            data = _read_exact(self._file, directory.length)
        except (OSError, EOFError) as err:
            raise IsoError(f"reading directory {directory.name}: {err}") from err
        return _iter_records(data)

    def walk(self) -> Iterator[tuple[str, Record]]:
        """Yield ``(path, record)`` for every entry, depth first."""
        root = self.get_root_directory()
        return self._walk(self.list_dir(root), "")

    def _walk(self, records: Iterator[Record], prefix: str) -> Iterator[tuple[str, Record]]:
        for record in records:
            path = f"{prefix}/{record.name}" if prefix else record.name
            if isinstance(record, Directory):
                children = self.list_dir(record)
                yield path, record
                yield from self._walk(children, path)
            else:
                yield path, record

    def _get_dir_record(self, directory: Directory, name: str) -> Optional[Record]:
        try:
            records = self.list_dir(directory)
        except IsoError as err:
            raise IsoError(f"listing directory {directory.name}: {err}") from err
        for record in records:
            if record.name == name:
                return record
        return None

    def get_path(self, path: str) -> Record:
        """Return the record for ``path``; raise NotFound if it doesn't exist."""
        directory = self.get_root_directory()
        components = path_components(path)
        if not components:
            return directory
        *parents, filename = components
        for component in parents:
            record = self._get_dir_record(directory, component)
            if record is None:
                raise NotFound(f"intermediate directory {component} does not exist")
            if not isinstance(record, Directory):
                raise NotFound(
                    f'component "{component}" in path {path} is not a directory'
                )
            directory = record
        record = self._get_dir_record(directory, filename)
        if record is None:
            raise NotFound(
                f"no record for {filename} in directory {'/'.join(parents)}"
            )
        return record

    def read_file(self, file: File) -> _ExtentReader:
        """Return a reader for the contents of a file record."""
        offset = file.address.as_offset()
        try:
            self._file.seek(offset)
        except OSError as err:
            raise IsoError(f"seeking to file {file.name}: {err}") from err
        return _ExtentReader(self._file, offset, file.length)

    def overwrite_file(self, file: File) -> LimitWriter:
        """Return a writer that overwrites a file in place, within its length."""
        try:
            self._file.seek(file.address.as_offset())
        except OSError as err:
            raise IsoError(f"seeking to file {file.name}: {err}") from err
        return LimitWriter(self._file, file.length, f"end of file {file.name}")