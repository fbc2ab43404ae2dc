"""Readers and writers that refuse to go past a fixed length."""

from __future__ import annotations

from typing import BinaryIO

from osinstaller.streams.copying import BUFFER_SIZE


class LimitReader:
    """Read at most ``length`` bytes; fail if the source has more."""

    def __init__(self, source: BinaryIO, length: int, conflict: str) -> None:
        self._source = source
        self._length = length
        self._remaining = length
        self._conflict = conflict

    def _collision(self) -> OSError:
        return OSError(f"collision with {self._conflict} at offset {self._length}")

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything when ``size`` is negative."""
        if size is None or size < 0:
            parts = []
            while chunk := self.read(BUFFER_SIZE):
                parts.append(chunk)
            return b"".join(parts)
        if size == 0:
            return b""
        allowed = min(self._remaining, size)
        if allowed == 0:
            # at the limit; only an error if the source has more data
            if self._source.read(1):
                raise self._collision()
            return b""
        data = self._source.read(allowed)
        if len(data) > self._remaining:
            raise OSError("read more bytes than allowed")
        self._remaining -= len(data)
        return data


class LimitWriter:
    """Write at most ``length`` bytes; fail on any write beyond that."""

    def __init__(self, sink: BinaryIO, length: int, conflict: str) -> None:
        self._sink = sink
        self._length = length
        self._remaining = length
        self._conflict = conflict

    def write(self, data: bytes) -> int:
        """Write a prefix of ``data`` within the limit; return its length."""
        if not data:
            return 0
        allowed = min(self._remaining, len(data))
        if allowed == 0:
            raise OSError(
                f"collision with {self._conflict} at offset {self._length}"
            )
        written = self._sink.write(bytes(data[:allowed]))
        if written is None:
            written = allowed
        if written > self._remaining:
            raise OSError("wrote more bytes than allowed")
        self._remaining -= written
        return written

    def write_all(self, data: bytes) -> None:
        """Write all of ``data`` or raise."""
        view = memoryview(data)
        while view:
            written = self.write(view)
            if written == 0:
                raise OSError("failed to write whole buffer")
            view = view[written:]

    def flush(self) -> None:
        flush = getattr(self._sink, "flush", None)
        if flush is not None:
            flush()