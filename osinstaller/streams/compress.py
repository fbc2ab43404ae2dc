"""Format-sniffing decompressing reader."""

from __future__ import annotations

import zlib
from typing import BinaryIO

from osinstaller.streams.copying import BUFFER_SIZE
from osinstaller.streams.xz import XzStreamDecoder

_GZIP_MAGIC = b"\x1f\x8b"
_XZ_MAGIC = b"\xfd7zXZ\x00"

# Bound on compressed input fed to zlib at once, to keep output bounded.
_GZIP_INPUT_CHUNK = 16 * 1024


class _GzipStreamDecoder:
    """Decode one gzip member from a buffered source.

    Input past the end of the member is left unread in the source.
    """

    def __init__(self, source: BinaryIO) -> None:
        self._source = source
        self._decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
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
            chunk = self._source.peek(1)[:_GZIP_INPUT_CHUNK]
            if not chunk:
                raise EOFError("unexpected end of gzip stream")
            try:
                decoded = self._decompressor.decompress(chunk)
            except zlib.error as err:
                raise OSError(f"corrupt gzip stream: {err}") from err
            consumed = len(chunk) - len(self._decompressor.unused_data)
            self._source.read(consumed)
            self._pending = decoded

    def into_inner(self) -> BinaryIO:
        return self._source


class DecompressReader:
    """Reader that transparently decompresses gzip or xz input.

    The source must be buffered, offering ``peek`` and ``read`` like
    ``io.BufferedReader``.  Input that is neither gzip nor xz is passed
    through unchanged.  Unless ``allow_trailing`` is set, data after the
    end of a compressed stream is an error.
    """

    def __init__(self, source: BinaryIO, allow_trailing: bool = False) -> None:
        self._source = source
        self._allow_trailing = allow_trailing
        sniff = source.peek(6)
        self._decoder: _GzipStreamDecoder | XzStreamDecoder | None
        if len(sniff) > 2 and sniff[:2] == _GZIP_MAGIC:
            self._decoder = _GzipStreamDecoder(source)
        elif len(sniff) > 6 and sniff[:6] == _XZ_MAGIC:
            self._decoder = XzStreamDecoder(source)
        else:
            self._decoder = None

    @classmethod
    def for_concatenated(cls, source: BinaryIO) -> DecompressReader:
        """Create a reader that leaves trailing data in the source."""
        return cls(source, allow_trailing=True)

    def compressed(self) -> bool:
        """Whether the input was detected as compressed."""
        return self._decoder is not None

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            return self.read_all()
        if self._decoder is None:
            return self._source.read(size)
        data = self._decoder.read(size)
        if not data and size > 0 and not self._allow_trailing:
            # Decompressors stop at the stream trailer, so check for
            # extra input that would indicate a problem.
            if self._source.read(1):
                raise OSError("found trailing data after compressed stream")
        return data

    def read_all(self) -> bytes:
        """Read until end of the (decompressed) stream."""
        parts = []
        while chunk := self.read(BUFFER_SIZE):
            parts.append(chunk)
        return b"".join(parts)

    def into_inner(self) -> BinaryIO:
        """Return the underlying source."""
        return self._source