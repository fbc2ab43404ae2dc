"""xz stream decoder that stops cleanly at the end of the compressed stream."""

from __future__ import annotations

import lzma
from typing import BinaryIO


class XzStreamDecoder:
    """Decode one xz stream from a buffered source.

    The source must offer ``peek`` and ``read``, like ``io.BufferedReader``.
    Input past the end of the xz stream is left unread in the source, and
    reading returns ``b""`` there instead of failing, so the caller can
    decide what to do about trailing data.
    """

    def __init__(self, source: BinaryIO) -> None:
        self._source = source
        self._decompressor = lzma.LZMADecompressor(format=lzma.FORMAT_XZ)
        self._pending = b""

    def read(self, size: int = -1) -> bytes:
        if size == 0:
            return b""
        while True:
            if self._pending:
                if size is None or size < 0:
                    out, self._pending = self._pending, b""
                else:
                    out, self._pending = self._pending[:size], self._pending[size:]
                return out
            if self._decompressor.eof:
                return b""
            chunk = self._source.peek(1)
            if not chunk:
                return b""
            decoded = self._decompressor.decompress(chunk)
            if self._decompressor.eof:
                consumed = len(chunk) - len(self._decompressor.unused_data)
            else:
                consumed = len(chunk)
            self._source.read(consumed)
            self._pending = decoded

    def into_inner(self) -> BinaryIO:
        """Return the source, positioned just after the consumed input."""
        return self._source