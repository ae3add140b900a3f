"""Runs migrations from a source against a database."""

from __future__ import annotations

import queue
import threading
import time
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional, Union

from .drivers import NIL_VERSION, DatabaseDriver, Logger, SourceDriver
from .exceptions import (
    DirtyError,
    InvalidVersionError,
    LockedError,
    LockTimeoutError,
    NilVersionError,
    NoChangeError,
    ShortLimitError,
)
from .migration import Migration, new_migration

DEFAULT_PREFETCH_MIGRATIONS = 10
"""Number of migrations read ahead of the one being executed."""

DEFAULT_LOCK_TIMEOUT = 15.0
"""Seconds a database driver is given to acquire its lock."""

_DONE = object()
_POLL_INTERVAL = 0.05

_QueueItem = Union[Migration, BaseException, object]


def _format_duration(seconds: float) -> str:
    if seconds < 1e-6:
        return f"{seconds * 1e9:.0f}ns"
    if seconds < 1e-3:
        return f"{seconds * 1e6:.3f}µs"
    if seconds < 1:
        return f"{seconds * 1e3:.3f}ms"
    return f"{seconds:.3f}s"


class Migrate:
    """Moves a database between the versions offered by a migration source.

    The drivers are kept simple; all migration logic lives here.
    """

    def __init__(
        self,
        source_name: str,
        source_driver: SourceDriver,
        database_name: str,
        database_driver: DatabaseDriver,
    ) -> None:
        self.source_name = source_name
        self.database_name = database_name
        self._source = source_driver
        self._database = database_driver
        self.log: Optional[Logger] = None
        self.prefetch_migrations = DEFAULT_PREFETCH_MIGRATIONS
        self.lock_timeout = DEFAULT_LOCK_TIMEOUT
        self._stop_requested = threading.Event()
        self._locked_mutex = threading.Lock()
        self._is_locked = False

    def __enter__(self) -> Migrate:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the source and the database; raise the first failure."""
        self._log_verbose("Closing source and database\n")
        errors = []
        for closer in (self._source.close, self._database.close):
            try:
                closer()
            except Exception as exc:
                errors.append(exc)
        if errors:
            raise errors[0]

    def request_stop(self) -> None:
        """Stop running migrations at the next safe point."""
        self._stop_requested.set()

    def migrate(self, version: int) -> None:
        """Migrate up or down from the current version to ``version``."""
        with self._locked():
            current = self._clean_version()
            self._run_migrations(self.read(current, version))

    def steps(self, n: int) -> None:
        """Apply ``n`` up migrations if positive, ``-n`` down ones if negative."""
        if n == 0:
            raise NoChangeError()
        with self._locked():
            current = self._clean_version()
            if n > 0:
                self._run_migrations(self.read_up(current, n))
            else:
                self._run_migrations(self.read_down(current, -n))

    def up(self) -> None:
        """Apply every remaining up migration."""
        with self._locked():
            current = self._clean_version()
            self._run_migrations(self.read_up(current, -1))

    def down(self) -> None:
        """Apply every down migration."""
        with self._locked():
            current = self._clean_version()
            self._run_migrations(self.read_down(current, -1))

    def drop(self) -> None:
        """Delete everything in the database."""
        with self._locked():
            self._database.drop()

    def run(self, *args: Migration) -> None:
        """Run the given migrations without looking at the current version."""
        if not args:
            raise NoChangeError()
        with self._locked():
            self._clean_version()
            self._run_migrations(self._scheduled(args))

    def force(self, version: int) -> None:
        """Record ``version`` as clean without running any migration."""
        if version < NIL_VERSION:
            raise InvalidVersionError()
        with self._locked():
            self._database.set_version(version, False)

    def version(self) -> tuple[int, bool]:
        """Return the current version and dirty flag.

        Raises NilVersionError if no migration has been applied.
        """
        version, dirty = self._database.version()
        if version == NIL_VERSION:
            raise NilVersionError()
        return version, dirty

    def read(self, from_version: int, to_version: int) -> Iterator[Migration]:
        """Yield the migrations that lead from ``from_version`` to ``to_version``."""
        if from_version >= 0:
            self._version_exists(from_version)
        if to_version >= 0:
            self._version_exists(to_version)

        if from_version == to_version:
            raise NoChangeError()

        if from_version < to_version:
            if from_version == NIL_VERSION:
                first = self._source.first()
                yield self._new_migration(first, first)
                from_version = first

            while from_version < to_version:
                if self._stopped():
                    return
                following = self._source.next(from_version)
                yield self._new_migration(following, following)
                from_version = following
            return

        while from_version > to_version and from_version >= 0:
            if self._stopped():
                return
            try:
                previous = self._source.prev(from_version)
            except FileNotFoundError:
                if to_version != NIL_VERSION:
                    raise
                yield self._new_migration(from_version, NIL_VERSION)
                return
            yield self._new_migration(from_version, previous)
            from_version = previous

    def read_up(self, from_version: int, limit: int) -> Iterator[Migration]:
        """Yield up to ``limit`` up migrations after ``from_version``; -1 means all."""
        if from_version >= 0:
            self._version_exists(from_version)

        if limit == 0:
            raise NoChangeError()

        count = 0
        while limit == -1 or count < limit:
            if self._stopped():
                return

            if from_version == NIL_VERSION:
                first = self._source.first()
                yield self._new_migration(first, first)
                from_version = first
                count += 1
                continue

            try:
                following = self._source.next(from_version)
            except FileNotFoundError:
                if limit == -1 and count == 0:
                    raise NoChangeError() from None
                if limit == -1:
                    return
                if count == 0:
                    raise
                raise ShortLimitError(limit - count) from None

            yield self._new_migration(following, following)
            from_version = following
            count += 1

    def read_down(self, from_version: int, limit: int) -> Iterator[Migration]:
        """Yield up to ``limit`` down migrations from ``from_version``; -1 means all."""
        if from_version >= 0:
            self._version_exists(from_version)

        if limit == 0:
            raise NoChangeError()

        if from_version == NIL_VERSION and limit == -1:
            raise NoChangeError()

        if from_version == NIL_VERSION and limit > 0:
            raise FileNotFoundError(f"no migration below version {from_version}")

        count = 0
        while limit == -1 or count < limit:
            if self._stopped():
                return

            try:
                previous = self._source.prev(from_version)
            except FileNotFoundError:
                previous = None

            if previous is None:
                if limit == -1 or limit - count > 0:
                    first = self._source.first()
                    yield self._new_migration(first, NIL_VERSION)
                    count += 1
                if count < limit:
                    raise ShortLimitError(limit - count)
                return

            yield self._new_migration(from_version, previous)
            from_version = previous
            count += 1

    def _scheduled(self, migrations: Iterable[object]) -> Iterator[Migration]:
        for migr in migrations:
            if not isinstance(migr, Migration):
                raise TypeError(
                    f"unknown type: {type(migr).__name__} with value: {migr!r}"
                )
            self._log_scheduled(migr)
            yield migr

    def _clean_version(self) -> int:
        version, dirty = self._database.version()
        if dirty:
            raise DirtyError(version)
        return version

    def _run_migrations(self, migrations: Iterator[Migration]) -> None:
        items: queue.Queue = queue.Queue(maxsize=max(self.prefetch_migrations, 1))
        cancelled = threading.Event()
        producer = threading.Thread(
            target=self._produce, args=(migrations, items, cancelled), daemon=True
        )
        producer.start()
        try:
            while True:
                item = items.get()
                if item is _DONE:
                    return
                if self._stopped():
                    return
                if isinstance(item, BaseException):
                    raise item
                self._apply(item)
        finally:
            cancelled.set()

    def _produce(
        self,
        migrations: Iterator[Migration],
        items: queue.Queue,
        cancelled: threading.Event,
    ) -> None:
        try:
            for migr in migrations:
                if not self._offer(items, migr, cancelled):
                    return
                if migr.body is not None:
                    threading.Thread(
                        target=self._buffer, args=(migr,), daemon=True
                    ).start()
        except Exception as exc:
            self._offer(items, exc, cancelled)
            return
        self._offer(items, _DONE, cancelled)

    @staticmethod
    def _offer(items: queue.Queue, item: _QueueItem, cancelled: threading.Event) -> bool:
        while not cancelled.is_set():
            try:
                items.put(item, timeout=_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def _buffer(self, migr: Migration) -> None:
        try:
            migr.buffer()
        except Exception as exc:
            self._log_err(exc)

    def _apply(self, migr: Migration) -> None:
        self._database.set_version(migr.target_version, True)

        if migr.body is not None:
            self._log_verbose("Read and execute %s\n", migr.log_string())
            self._database.run(migr.buffered_body)

        self._database.set_version(migr.target_version, False)

        end = time.monotonic()
        read_time = migr.finished_reading - migr.started_buffering
        run_time = end - migr.finished_reading

        if self.log is not None:
            if self.log.verbose():
                self.log.printf(
                    "Finished %s (read %s, ran %s)\n",
                    migr.log_string(),
                    _format_duration(read_time),
                    _format_duration(run_time),
                )
            else:
                self.log.printf(
                    "%s (%s)\n", migr.log_string(), _format_duration(read_time + run_time)
                )

    def _version_exists(self, version: int) -> None:
        missing: Optional[FileNotFoundError] = None
        for reader in (self._source.read_up, self._source.read_down):
            try:
                body, _ = reader(version)
            except FileExistsError:
                return
            except FileNotFoundError as exc:
                missing = exc
                continue
            body.close()
            return

        error = FileNotFoundError(f"no migration found for version {version}: {missing}")
        self._log_err(error)
        raise error from missing

    def _stopped(self) -> bool:
        return self._stop_requested.is_set()

    def _new_migration(self, version: int, target_version: int) -> Migration:
        reader = self._source.read_up if target_version >= version else self._source.read_down
        try:
            body, identifier = reader(version)
        except FileNotFoundError:
            migr = new_migration(None, "", version, target_version)
        else:
            migr = new_migration(body, identifier, version, target_version)
        self._log_scheduled(migr)
        return migr

    def _log_scheduled(self, migr: Migration) -> None:
        if self.prefetch_migrations > 0 and migr.body is not None:
            self._log_verbose("Start buffering %s\n", migr.log_string())
        else:
            self._log_verbose("Scheduled %s\n", migr.log_string())

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self._lock()
        try:
            yield
        finally:
            self._unlock()

    def _lock(self) -> None:
        with self._locked_mutex:
            if self._is_locked:
                raise LockedError()

            outcome: queue.Queue = queue.Queue(maxsize=1)

            def acquire() -> None:
                try:
                    self._database.lock()
                except BaseException as exc:
                    outcome.put(exc)
                else:
                    outcome.put(None)

            threading.Thread(target=acquire, daemon=True).start()
            try:
                error = outcome.get(timeout=self.lock_timeout)
            except queue.Empty:
                raise LockTimeoutError() from None
            if error is not None:
                raise error
            self._is_locked = True

    def _unlock(self) -> None:
        with self._locked_mutex:
            self._database.unlock()
            self._is_locked = False

    def _log_verbose(self, format: str, *args: object) -> None:
        if self.log is not None and self.log.verbose():
            self.log.printf(format, *args)

    def _log_err(self, error: BaseException) -> None:
        if self.log is not None:
            self.log.printf("error: %s", error)