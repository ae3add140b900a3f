"""Interfaces for loggers, migration sources and databases."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import BinaryIO

NIL_VERSION = -1
"""Version stored in a database to which no migration has been applied."""


class Logger(ABC):
    """Receives log output from a migration run."""

    @abstractmethod
    def printf(self, format: str, *args: object) -> None:
        """Write ``format % args``."""

    @abstractmethod
    def verbose(self) -> bool:
        """Return True when verbose output is wanted."""


class SourceDriver(ABC):
    """Supplies migrations by version.

    Methods that find no matching migration raise FileNotFoundError.
    """

    @abstractmethod
    def first(self) -> int:
        """Return the first available version."""

    @abstractmethod
    def next(self, version: int) -> int:
        """Return the version that follows ``version``."""

    @abstractmethod
    def prev(self, version: int) -> int:
        """Return the version that precedes ``version``."""

    @abstractmethod
    def read_up(self, version: int) -> tuple[BinaryIO, str]:
        """Return the up migration body of ``version`` and its identifier."""

    @abstractmethod
    def read_down(self, version: int) -> tuple[BinaryIO, str]:
        """Return the down migration body of ``version`` and its identifier."""

    @abstractmethod
    def close(self) -> None:
        """Release the source."""

    def __enter__(self) -> SourceDriver:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class DatabaseDriver(ABC):
    """Applies migrations to a database and records its version."""

    @abstractmethod
    def lock(self) -> None:
        """Acquire the migration lock; raise if it cannot be taken."""

    @abstractmethod
    def unlock(self) -> None:
        """Release the migration lock."""

    @abstractmethod
    def run(self, migration: BinaryIO) -> None:
        """Execute the migration read from the given stream."""

    @abstractmethod
    def set_version(self, version: int, dirty: bool) -> None:
        """Record ``version`` and whether it is dirty."""

    @abstractmethod
    def version(self) -> tuple[int, bool]:
        """Return the recorded version and dirty flag; NIL_VERSION if none."""

    @abstractmethod
    def drop(self) -> None:
        """Delete everything in the database."""

    @abstractmethod
    def close(self) -> None:
        """Release the database connection."""

    def __enter__(self) -> DatabaseDriver:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()