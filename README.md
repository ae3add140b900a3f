# schemaflow

schemaflow reads migrations from a *source* and applies them to a *database*.
Sources and databases are plugged in as drivers that you write; the migration
logic — walking versions up and down, locking, dirty-state tracking, read-ahead
of migration bodies and graceful stopping — lives in the package itself.

## Concepts

- **Version** — every migration has a non-negative integer version. A database
  that has never been migrated is at the nil version, `-1`
  (`schemaflow.drivers.NIL_VERSION`).
- **Up / down** — each version may have an up migration, a down migration, or
  both. A missing half is applied as an empty migration, so the version still
  moves.
- **Dirty** — the database is marked dirty while a migration runs and clean
  once it finishes. A dirty database refuses further migrations until it is
  fixed by hand and a version is forced.

## Drivers

Subclass `schemaflow.drivers.SourceDriver` to supply migrations:

- `first()`, `next(version)` and `prev(version)` walk the available versions
  and raise `FileNotFoundError` when there is none;
- `read_up(version)` and `read_down(version)` return a `(binary stream,
  identifier)` pair, or raise `FileNotFoundError`;
- `close()` releases the source.

Subclass `schemaflow.drivers.DatabaseDriver` to apply them:

- `lock()` / `unlock()` guard against concurrent runs;
- `run(migration)` executes a migration read from a binary stream;
- `set_version(version, dirty)` and `version()` record and report state;
  `version()` returns `(NIL_VERSION, False)` when nothing is recorded;
- `drop()` removes everything from the database;
- `close()` releases the connection.

Both driver classes can be used as context managers that call `close()`.

An optional `schemaflow.drivers.Logger` (with `printf(format, *args)` and
`verbose()`) receives progress messages.

## Running migrations

```python
from schemaflow.migrate import Migrate
from schemaflow.exceptions import NoChangeError

with Migrate("files", my_source, "mydb", my_database) as m:
    try:
        m.up()            # apply every pending up migration
    except NoChangeError:
        pass              # already current

    m.steps(-1)           # roll back one migration
    m.migrate(3)          # go to version 3, up or down as needed
    m.force(3)            # record version 3 as clean without running anything

    version, dirty = m.version()
```

Leaving the `with` block calls `close()`, which closes both drivers and
re-raises the first error either of them raised.

Attributes that can be set on a `Migrate` instance:

- `log` — a `Logger`, or `None` (the default) for no output;
- `prefetch_migrations` — how many migrations are read ahead of the one being
  executed (default `10`);
- `lock_timeout` — seconds allowed for `DatabaseDriver.lock()` (default `15.0`).

Call `m.request_stop()` from another thread (for instance a signal handler) to
stop after the migration currently running, leaving the database clean.

`read(from_version, to_version)`, `read_up(from_version, limit)` and
`read_down(from_version, limit)` are generators that yield the `Migration`
objects a move would apply, without running them; a `limit` of `-1` means no
limit.

### Errors

The package's own errors derive from `schemaflow.exceptions.MigrateError`:

| Exception             | Meaning                                              |
|-----------------------|------------------------------------------------------|
| `NoChangeError`       | nothing to do                                        |
| `NilVersionError`     | no migration has been applied yet                    |
| `InvalidVersionError` | a forced version below -1                            |
| `LockedError`         | this instance already holds the lock                 |
| `LockTimeoutError`    | the database lock was not acquired in time           |
| `ShortLimitError`     | fewer migrations were available than requested (`short` holds how many) |
| `DirtyError`          | the database is dirty (`version` holds its version)  |

A version that the source does not know raises `FileNotFoundError`, and
errors raised by the drivers are passed on unchanged. The lock is released
whenever an operation ends, whether it succeeded or not.

## Individual migrations

`schemaflow.migration.new_migration(body, identifier, version, target_version)`
builds a `Migration`. A `target_version` of -1 means the nil version, and a
missing body makes an empty migration whose identifier defaults to
`<empty>`. `Migrate.run(...)` applies such migrations directly, without
consulting the source for what comes next.

```python
from schemaflow.migration import new_migration

migration = new_migration(None, "", 1486686016, 1486689359)
print(migration.log_string())   # 1486686016/u <empty>
```

## URLs

`schemaflow.url.scheme_from_url(url)` returns everything before the first
colon of a driver URL, and raises `EmptyURLError` for an empty string or
`NoSchemeError` when there is no scheme.

## Command helpers

`schemaflow.commands` holds the building blocks of a command-line front end:

- `create_cmd(directory, start_time, format, name, ext, seq, seq_digits, print_paths)`
  writes an empty `<version>_<name>.up<ext>` / `<version>_<name>.down<ext>`
  pair, where the version is either the next zero-padded sequence number
  (`seq=True`, which requires the default `format`) or a timestamp of
  `start_time` (`"unix"`, `"unixNano"` or a reference-time layout such as
  `20060102150405`, the default `DEFAULT_TIME_FORMAT`). An existing file with
  the same version raises `ValueError`;
- `next_seq_version(matches, seq_digits)` and `time_version(start_time, format)`
  compute those versions;
- `create_file(filename)` creates an empty file, failing if it exists;
- `goto_cmd`, `up_cmd`, `down_cmd`, `drop_cmd`, `force_cmd` and `version_cmd`
  drive a `Migrate` instance; "no change" is printed rather than raised;
- `num_down_migrations_from_args(apply_all, args)` interprets the arguments of
  a "down" command and returns `(count, needs_confirmation)`.

`schemaflow.clilog.CliLog(verbose)` is a `Logger` that writes to standard
error, adding a timestamp to each line when verbose.

## What is not included

- No command-line program is installed; `schemaflow.commands` provides the
  pieces, but argument parsing and a `main` entry point are left to you.
- No source or database drivers ship with the package, and there is no
  registry that opens drivers from URLs: construct `Migrate` with driver
  instances of your own.