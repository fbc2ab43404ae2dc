"""Reader wrapper that copies what it reads to a writer."""

from __future__ import annotations

from typing import BinaryIO


class TeeReader:
    """Read from ``source`` and copy every byte read to ``dest``."""

    def __init__(self, source: BinaryIO, dest: BinaryIO) -> None:
        self._source = source
        self._dest = dest

    def read(self, size: int = -1) -> bytes:
        if size == 0:
            return b""
        data = self._source.read(size)
        view = memoryview(data)
        while view:
            written = self._dest.write(view)
            if written is None:
                break
            if written == 0:
                raise OSError("failed to write whole buffer")
            view = view[written:]
        return data

    def into_inner(self) -> tuple[BinaryIO, BinaryIO]:
        """Return the wrapped source and destination."""
        return self._source, self._dest