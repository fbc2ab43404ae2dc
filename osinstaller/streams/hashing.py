"""Message digests: Ignition-style hashes and SHA-256 helpers."""

from __future__ import annotations

import enum
import hashlib
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

from osinstaller.streams.copying import BUFFER_SIZE

_HEX_RE = re.compile(r"(?:[0-9a-fA-F]{2})*")
_VALIDATE_CHUNK = 128 * 1024


class HashKind(enum.Enum):
    SHA256 = "sha256"
    SHA512 = "sha512"

    @property
    def bits(self) -> int:
        return 256 if self is HashKind.SHA256 else 512


def _decode_hex(text: str) -> bytes:
    if not _HEX_RE.fullmatch(text):
        raise ValueError("decoding hex digest")
    return bytes.fromhex(text)


@dataclass(frozen=True)
class IgnitionHash:
    """A digest in the ``<type>-<hex value>`` form used by Ignition."""

    kind: HashKind
    digest: bytes

    @classmethod
    def parse(cls, text: str) -> IgnitionHash:
        parts = text.split("-", 1)
        if len(parts) != 2:
            raise ValueError(f"failed to detect hash-type and digest in '{text}'")
        kind_name, hex_digest = parts
        try:
            kind = HashKind(kind_name)
        except ValueError:
            raise ValueError(f"unknown hash type '{kind_name}'") from None
        digest = _decode_hex(hex_digest)
        if len(digest) * 8 != kind.bits:
            raise ValueError(f"wrong digest length ({len(digest) * 8})")
        return cls(kind, digest)

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.digest.hex()}"

    def validate(self, stream: BinaryIO) -> None:
        """Digest all of ``stream`` and raise ValueError on mismatch."""
        hasher = hashlib.new(self.kind.value)
        while True:
            try:
                chunk = stream.read(_VALIDATE_CHUNK)
            except InterruptedError:
                continue
            if not chunk:
                break
            hasher.update(chunk)
        computed = hasher.digest()
        if computed != self.digest:
            raise ValueError(
                f"hash mismatch, computed '{computed.hex()}' "
                f"but expected '{self.digest.hex()}'"
            )


@dataclass(frozen=True)
class Sha256Digest:
    """A 32-byte SHA-256 digest."""

    value: bytes = bytes(32)

    def __post_init__(self) -> None:
        if len(self.value) != 32:
            raise ValueError("converting to SHA256")

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> Sha256Digest:
        """Calculate the SHA-256 of a file by path."""
        try:
            with open(path, "rb") as f:
                return cls.from_file(f)
        except OSError as err:
            raise OSError(f"opening {Path(path)!r}: {err}") from err

    @classmethod
    def from_file(cls, file: BinaryIO) -> Sha256Digest:
        """Calculate the SHA-256 of an open file, hinting sequential access."""
        fadvise = getattr(os, "posix_fadvise", None)
        if fadvise is not None:
            try:
                fadvise(file.fileno(), 0, 0, os.POSIX_FADV_SEQUENTIAL)
            except OSError as err:
                print(
                    f"posix_fadvise(SEQUENTIAL) failed (errno {err.errno}) -- ignoring...",
                    file=sys.stderr,
                )
        return cls.from_reader(file)

    @classmethod
    def from_reader(cls, reader: Any) -> Sha256Digest:
        """Calculate the SHA-256 of everything a reader yields."""
        hasher = hashlib.sha256()
        while chunk := reader.read(BUFFER_SIZE):
            hasher.update(chunk)
        return cls(hasher.digest())

    def to_hex_string(self) -> str:
        return self.value.hex()


class WriteHasher:
    """Writer wrapper that hashes everything written through it."""

    def __init__(self, writer: Any, hasher: Any) -> None:
        self._writer = writer
        self._hasher = hasher

    @classmethod
    def new_sha256(cls, writer: Any) -> WriteHasher:
        return cls(writer, hashlib.sha256())

    def write(self, data: bytes) -> int:
        if not data:
            return 0
        written = self._writer.write(data)
        if written is None:
            written = len(data)
        self._hasher.update(bytes(data[:written]))
        return written

    def flush(self) -> None:
        flush = getattr(self._writer, "flush", None)
        if flush is not None:
            flush()

    def digest(self) -> Sha256Digest:
        """Return the SHA-256 digest of the data written so far."""
        return Sha256Digest(self._hasher.digest())