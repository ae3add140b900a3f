"""A single migration step and the buffering of its body."""

from __future__ import annotations

import io
import threading
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Optional

DEFAULT_BUFFER_SIZE = 100_000
"""Bytes read ahead from every pre-read migration body."""

_CHUNK_SIZE = 64 * 1024


class _PipeReader(io.RawIOBase):
    """Read end of an in-memory pipe; writers block until data is consumed."""

    def __init__(self) -> None:
        super().__init__()
        self._cond = threading.Condition()
        self._data = bytearray()
        self._eof = False
        self._error: Optional[BaseException] = None
        self._reader_closed = False

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        with self._cond:
            while not self._data and not self._eof and not self._reader_closed:
                self._cond.wait()
            if self._reader_closed:
                raise ValueError("read on closed pipe")
            if not self._data:
                if self._error is not None:
                    raise self._error
                return 0
            count = min(len(view), len(self._data))
            view[:count] = self._data[:count]
            del self._data[:count]
            self._cond.notify_all()
            return count

    def close(self) -> None:
        with self._cond:
            self._reader_closed = True
            self._cond.notify_all()
        super().close()

    def feed(self, data: bytes) -> None:
        """Hand ``data`` to the reader and wait until it has been read."""
        with self._cond:
            if self._eof:
                raise ValueError("write on closed pipe")
            if self._reader_closed:
                raise BrokenPipeError("write on closed pipe")
            self._data += data
            self._cond.notify_all()
            while self._data and not self._reader_closed:
                self._cond.wait()
            if self._data:
                raise BrokenPipeError("write on closed pipe")

    def finish(self, error: Optional[BaseException] = None) -> None:
        """Signal end of data, optionally with an error for the reader."""
        with self._cond:
            self._eof = True
            self._error = error
            self._cond.notify_all()


def _read_up_to(stream: BinaryIO, size: int) -> bytes:
    parts = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


@dataclass(eq=False)
class Migration:
    """A migration from ``version`` that leaves the database at ``target_version``.

    Without a body this is an empty migration that only sets the version.
    A ``target_version`` of -1 means no version.
    """

    identifier: str = ""
    version: int = 0
    target_version: int = 0
    body: Optional[BinaryIO] = None
    buffer_size: int = field(default_factory=lambda: DEFAULT_BUFFER_SIZE)
    buffered_body: Optional[_PipeReader] = field(default=None, init=False, repr=False)
    scheduled: float = field(default=0.0, init=False)
    started_buffering: float = field(default=0.0, init=False)
    finished_buffering: float = field(default=0.0, init=False)
    finished_reading: float = field(default=0.0, init=False)
    bytes_read: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        now = time.monotonic()
        self.scheduled = now
        if self.body is None:
            if not self.identifier:
                self.identifier = "<empty>"
            self.started_buffering = now
            self.finished_buffering = now
            self.finished_reading = now
            return
        self.buffered_body = _PipeReader()

    def __str__(self) -> str:
        return f"{self.identifier} [{self.version}=>{self.target_version}]"

    def log_string(self) -> str:
        """Describe the migration for people reading logs."""
        direction = "d" if self.target_version < self.version else "u"
        return f"{self.version}/{direction} {self.identifier}"

    def buffer(self) -> None:
        """Read the body ahead and stream it to ``buffered_body``.

        Blocks until everything has been consumed; run it in its own thread.
        """
        if self.body is None:
            return

        pipe = self.buffered_body
        self.started_buffering = time.monotonic()
        total = 0
        try:
            head = _read_up_to(self.body, self.buffer_size)
            self.finished_buffering = time.monotonic()
            if head:
                pipe.feed(head)
                total += len(head)
            while chunk := self.body.read(_CHUNK_SIZE):
                pipe.feed(chunk)
                total += len(chunk)
        except BaseException as exc:
            pipe.finish(exc)
            raise

        self.finished_reading = time.monotonic()
        self.bytes_read = total
        pipe.finish()
        self.body.close()


def new_migration(
    body: Optional[BinaryIO], identifier: str, version: int, target_version: int
) -> Migration:
    """Create a migration; a missing body makes it an empty migration."""
    return Migration(
        identifier=identifier,
        version=version,
        target_version=target_version,
        body=body,
    )