"""Lazy byte producers used as response bodies."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable


@runtime_checkable
class StreamSource(Protocol):
    """Forward-only byte producer: ``open``, then ``readinto`` until it returns 0, then ``close``."""

    def open(self) -> None: ...

    def readinto(self, buffer: bytearray | memoryview) -> int: ...

    def close(self) -> None: ...


@contextmanager
def opened(source: StreamSource) -> Iterator[StreamSource]:
    """Open ``source`` for the duration of the block and always close it."""
    source.open()
    try:
        yield source
    finally:
        source.close()


class BytesStreamSource:
    """Memory-backed source."""

    def __init__(self, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._data = data
        self._position = 0

    def __len__(self) -> int:
        return len(self._data)

    def open(self) -> None:
        self._position = 0

    def readinto(self, buffer: bytearray | memoryview) -> int:
        chunk = self._data[self._position : self._position + len(buffer)]
        buffer[: len(chunk)] = chunk
        self._position += len(chunk)
        return len(chunk)

    def close(self) -> None:
        self._position = len(self._data)


class FileStreamSource:
    """File-backed source reading ``length`` bytes from ``offset`` (to EOF when length is None)."""

    def __init__(self, path: Path | str, *, offset: int = 0, length: int | None = None) -> None:
        if offset < 0:
            raise ValueError("offset cannot be negative")
        if length is not None and length < 0:
            raise ValueError("length cannot be negative")
        self.path = Path(path)
        self.offset = offset
        self.length = length
        self._file: BinaryIO | None = None
        self._remaining: int | None = None

    def open(self) -> None:
        self._file = self.path.open("rb")
        self._file.seek(self.offset)
        self._remaining = self.length

    def readinto(self, buffer: bytearray | memoryview) -> int:
        if self._file is None:
            raise ValueError("read from a source that is not open")
        view = memoryview(buffer)
        if self._remaining is not None:
            if self._remaining == 0:
                return 0
            view = view[: self._remaining]
        read = self._file.readinto(view) or 0
        if self._remaining is not None:
            self._remaining -= read
        return read

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


class IterableStreamSource:
    """Adapter for any iterable of byte chunks, such as a remote content reader."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks = chunks
        self._iterator: Iterator[bytes] | None = None
        self._pending = b""

    def open(self) -> None:
        if self._iterator is not None:
            raise ValueError("source cannot be restarted")
        self._iterator = iter(self._chunks)

    def readinto(self, buffer: bytearray | memoryview) -> int:
        if self._iterator is None:
            raise ValueError("read from a source that is not open")
        while not self._pending:
            try:
                self._pending = next(self._iterator)
            except StopIteration:
                return 0
        chunk = self._pending[: len(buffer)]
        self._pending = self._pending[len(chunk) :]
        buffer[: len(chunk)] = chunk
        return len(chunk)

    def close(self) -> None:
        close = getattr(self._iterator, "close", None)
        if close is not None:
            close()
        self._pending = b""
