"""Bounded copying between readers and writers."""

from __future__ import annotations

from typing import BinaryIO, Protocol

BUFFER_SIZE = 256 * 1024
"""Chunk size large enough to amortize system call overhead."""


class _Reader(Protocol):
    def read(self, size: int = ..., /) -> bytes: ...


class _Writer(Protocol):
    def write(self, data: bytes, /) -> int | None: ...


def _write_all(writer: _Writer | BinaryIO, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = writer.write(view)
        if written is None:
            return
        if written == 0:
            raise OSError("failed to write whole buffer")
        view = view[written:]


def copy_n(reader: _Reader, writer: _Writer, n: int) -> int:
    """Copy at most ``n`` bytes from ``reader`` to ``writer``.

    Stops early at end of input.  Returns the number of bytes copied.
    """
    written = 0
    while n > 0:
        chunk = reader.read(min(n, BUFFER_SIZE))
        if not chunk:
            break
        if len(chunk) > n:
            raise OSError("reader returned more bytes than requested")
        _write_all(writer, chunk)
        written += len(chunk)
        n -= len(chunk)
    return written


def copy_exactly_n(reader: _Reader, writer: _Writer, n: int) -> int:
    """Copy exactly ``n`` bytes, raising EOFError if the input runs short."""
    copied = copy_n(reader, writer, n)
    if copied != n:
        raise EOFError(
            f"expected to copy {n} bytes but instead copied {copied} bytes"
        )
    return n