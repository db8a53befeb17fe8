"""
Byte source - random access over the data being sent.

Retransmission needs to re-read bytes that were already sent. Rather than
mark/reset on a sequential stream, the engine asks for bytes at an explicit
offset and the source seeks there.
"""

import io
import logging
from typing import BinaryIO, Optional, Union

from .errors import SourceError


logger = logging.getLogger(__name__)


class ByteSource:
    """
    Seekable reader over a binary stream.

    Usage:
        with ByteSource.open("data.bin") as source:
            chunk = source.read_at(1000, 500)
    """

    def __init__(self, stream: BinaryIO, name: Optional[str] = None):
        self._stream = stream
        self._owned = False
        self.name = name or getattr(stream, "name", "<stream>")

    @classmethod
    def open(cls, path: str) -> "ByteSource":
        """Open a file for reading."""
        try:
            stream = open(path, "rb")
        except OSError as e:
            raise SourceError(f"Cannot open {path}: {e}") from e
        source = cls(stream, name=path)
        source._owned = True
        return source

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray]) -> "ByteSource":
        """Wrap an in-memory buffer."""
        return cls(io.BytesIO(bytes(data)), name="<memory>")

    def read_at(self, offset: int, size: int) -> bytes:
        """
        Read up to `size` bytes starting at `offset`.

        Returns fewer bytes (possibly none) at end of data.

        Raises:
            SourceError: If seeking or reading fails.
        """
        if offset < 0 or size < 0:
            raise ValueError(f"Invalid read: offset={offset}, size={size}")
        if size == 0:
            return b""
        try:
            self._stream.seek(offset)
            return self._stream.read(size)
        except (OSError, ValueError) as e:
            raise SourceError(f"Read of {self.name} at offset {offset} failed: {e}") from e

    def close(self):
        if self._owned:
            self._stream.close()

    def __enter__(self) -> "ByteSource":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __str__(self) -> str:
        return f"ByteSource({self.name})"
