"""Errors raised while migrating a database."""

from __future__ import annotations


class MigrateError(Exception):
    """Base class for all migration errors."""

    default_message = "migration error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class NoChangeError(MigrateError):
    """Nothing had to be done."""

    default_message = "no change"


class NilVersionError(MigrateError):
    """No migration has been applied yet."""

    default_message = "no migration"


class InvalidVersionError(MigrateError, ValueError):
    """A version below -1 was given."""

    default_message = "version must be >= -1"


class LockedError(MigrateError):
    """The database is already locked by this instance."""

    default_message = "database locked"


class LockTimeoutError(MigrateError, TimeoutError):
    """The database lock could not be acquired in time."""

    default_message = "timeout: can't acquire database lock"


class ShortLimitError(MigrateError):
    """The source could not supply as many migrations as requested."""

    def __init__(self, short: int) -> None:
        self.short = short
        super().__init__(f"limit {short} short")

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.short == other.short

    def __hash__(self) -> int:
        return hash((type(self), self.short))


class DirtyError(MigrateError):
    """The database was left in a dirty state by a failed migration."""

    def __init__(self, version: int) -> None:
        self.version = version
        super().__init__(f"Dirty database version {version}. Fix and force version.")

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.version == other.version

    def __hash__(self) -> int:
        return hash((type(self), self.version))