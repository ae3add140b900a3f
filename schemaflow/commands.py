"""Implementations of the command-line subcommands."""

from __future__ import annotations

import errno
import glob
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from .clilog import CliLog
from .exceptions import NoChangeError

DEFAULT_TIME_FORMAT = "20060102150405"
"""Layout of timestamp versions: year, month, day, hour, minute, second."""

DEFAULT_TIMEZONE = "UTC"

_UINT64_MAX = 2**64 - 1
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_log = CliLog(False)


def _parse_uint(text: str) -> int:
    if not text or not (text.isascii() and text.isdigit()):
        raise ValueError(f'parsing "{text}": invalid syntax')
    value = int(text)
    if value > _UINT64_MAX:
        raise ValueError(f'parsing "{text}": value out of range')
    return value


def next_seq_version(matches: Sequence[str], seq_digits: int) -> str:
    """Return the zero-padded sequence number after the last of ``matches``."""
    if seq_digits <= 0:
        raise ValueError("Digits must be positive")

    next_seq = 1
    if matches:
        filename = matches[-1]
        base = os.path.basename(filename)
        index = base.find("_")
        # At least one digit must precede the underscore.
        if index < 1:
            raise ValueError(f"Malformed migration filename: {filename}")
        next_seq = _parse_uint(base[:index]) + 1

    version = f"{next_seq:0{seq_digits}d}"
    if len(version) > seq_digits:
        raise ValueError(
            f"Next sequence number {version} too large. "
            f"At most {seq_digits} digits are allowed"
        )
    return version


_MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
_DAY_NAMES = (
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
)


def _hour12(moment: datetime) -> int:
    hour = moment.hour % 12
    return hour if hour else 12


def _offset(moment: datetime, token: str) -> str:
    delta = moment.utcoffset() or timedelta(0)
    total = int(delta.total_seconds())
    if token.startswith("Z") and total == 0:
        return "Z"
    sign = "-" if total < 0 else "+"
    hours, rest = divmod(abs(total), 3600)
    minutes, seconds = divmod(rest, 60)
    core = token[1:]
    if core == "07":
        return f"{sign}{hours:02d}"
    if core == "0700":
        return f"{sign}{hours:02d}{minutes:02d}"
    if core == "07:00":
        return f"{sign}{hours:02d}:{minutes:02d}"
    if core == "070000":
        return f"{sign}{hours:02d}{minutes:02d}{seconds:02d}"
    return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"


def _zone_name(moment: datetime) -> str:
    name = moment.tzname() if moment.tzinfo is not None else None
    return name if name else _offset(moment, "-0700")


def _offset_renderer(token: str) -> Callable[[datetime], str]:
    return lambda moment: _offset(moment, token)


_TOKENS: tuple[tuple[str, Callable[[datetime], str]], ...] = (
    ("January", lambda t: _MONTH_NAMES[t.month - 1]),
    ("Jan", lambda t: _MONTH_NAMES[t.month - 1][:3]),
    ("Monday", lambda t: _DAY_NAMES[t.weekday()]),
    ("Mon", lambda t: _DAY_NAMES[t.weekday()][:3]),
    ("MST", _zone_name),
    ("2006", lambda t: f"{t.year:04d}"),
    ("_2006", lambda t: f"_{t.year:04d}"),
    ("002", lambda t: f"{t.timetuple().tm_yday:03d}"),
    ("01", lambda t: f"{t.month:02d}"),
    ("02", lambda t: f"{t.day:02d}"),
    ("03", lambda t: f"{_hour12(t):02d}"),
    ("04", lambda t: f"{t.minute:02d}"),
    ("05", lambda t: f"{t.second:02d}"),
    ("06", lambda t: f"{t.year % 100:02d}"),
    ("15", lambda t: f"{t.hour:02d}"),
    ("__2", lambda t: f"{t.timetuple().tm_yday:>3}"),
    ("_2", lambda t: f"{t.day:>2}"),
    ("1", lambda t: str(t.month)),
    ("2", lambda t: str(t.day)),
    ("3", lambda t: str(_hour12(t))),
    ("4", lambda t: str(t.minute)),
    ("5", lambda t: str(t.second)),
    ("PM", lambda t: "PM" if t.hour >= 12 else "AM"),
    ("pm", lambda t: "pm" if t.hour >= 12 else "am"),
) + tuple(
    (token, _offset_renderer(token))
    for token in (
        "-07:00:00", "-070000", "-07:00", "-0700", "-07",
        "Z07:00:00", "Z070000", "Z07:00", "Z0700", "Z07",
    )
)

# Names that only count as tokens when no lowercase letter follows.
_WORD_TOKENS = frozenset({"Jan", "Mon"})


def _fraction_at(layout: str, index: int) -> Optional[tuple[int, str]]:
    if layout[index] not in ".," or index + 1 >= len(layout):
        return None
    kind = layout[index + 1]
    if kind not in "09":
        return None
    end = index + 1
    while end < len(layout) and layout[end] == kind:
        end += 1
    if end < len(layout) and layout[end].isdigit():
        return None
    return end - index - 1, kind


def _format_layout(moment: datetime, layout: str) -> str:
    """Format ``moment`` by the reference-time layout "Mon Jan 2 15:04:05 MST 2006"."""
    out = []
    index = 0
    while index < len(layout):
        fraction = _fraction_at(layout, index)
        if fraction is not None:
            width, kind = fraction
            digits = f"{moment.microsecond * 1000:09d}"[:width]
            if kind == "9":
                digits = digits.rstrip("0")
            if digits:
                out.append(layout[index] + digits)
            index += 1 + width
            continue

        for token, render in _TOKENS:
            if not layout.startswith(token, index):
                continue
            after = layout[index + len(token):index + len(token) + 1]
            if token in _WORD_TOKENS and "a" <= after <= "z" and after:
                continue
            out.append(render(moment))
            index += len(token)
            break
        else:
            out.append(layout[index])
            index += 1
    return "".join(out)


def _unix_parts(moment: datetime) -> tuple[int, int]:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    delta = moment - _EPOCH
    return delta.days * 86400 + delta.seconds, delta.microseconds


def time_version(start_time: datetime, format: str) -> str:
    """Return the timestamp version of ``start_time``.

    ``format`` is "unix", "unixNano" or a reference-time layout.
    """
    if format == "":
        raise ValueError("Time format may not be empty")
    if format == "unix":
        return str(_unix_parts(start_time)[0])
    if format == "unixNano":
        seconds, micros = _unix_parts(start_time)
        return str(seconds * 1_000_000_000 + micros * 1000)
    return _format_layout(start_time, format)


def _join(directory: str, name: str) -> str:
    return os.path.normpath(os.path.join(directory, name))


def _glob(pattern: str) -> list[str]:
    try:
        return sorted(glob.glob(pattern))
    except ValueError:
        return []


def create_cmd(
    directory: str,
    start_time: datetime,
    format: str,
    name: str,
    ext: str,
    seq: bool,
    seq_digits: int,
    print_paths: bool,
) -> None:
    """Create an empty up and down migration file named ``name`` in ``directory``."""
    if seq and format != DEFAULT_TIME_FORMAT:
        raise ValueError("The seq and format options are mutually exclusive")

    directory = os.path.normpath(directory)
    ext = "." + ext.removeprefix(".")

    if seq:
        version = next_seq_version(_glob(_join(directory, "*" + ext)), seq_digits)
    else:
        version = time_version(start_time, format)

    if _glob(_join(directory, f"{version}_*{ext}")):
        raise ValueError(f"duplicate migration version: {version}")

    try:
        os.makedirs(directory, exist_ok=True)
    except ValueError as exc:
        raise OSError(errno.EINVAL, f"mkdir {directory}: invalid argument") from exc

    for direction in ("up", "down"):
        filename = _join(directory, f"{version}_{name}.{direction}{ext}")
        create_file(filename)
        if print_paths:
            _log.println(os.path.abspath(filename))


def create_file(filename: str) -> None:
    """Create an empty file; raise FileExistsError if it already exists."""
    fd = os.open(filename, os.O_RDWR | os.O_CREAT | os.O_EXCL, 0o666)
    os.close(fd)


def goto_cmd(migrator, version: int) -> None:
    """Migrate to ``version``; having nothing to do is only reported."""
    try:
        migrator.migrate(version)
    except NoChangeError as exc:
        _log.println(exc)


def up_cmd(migrator, limit: int) -> None:
    """Apply ``limit`` up migrations, or all of them when ``limit`` is negative."""
    try:
        if limit >= 0:
            migrator.steps(limit)
        else:
            migrator.up()
    except NoChangeError as exc:
        _log.println(exc)


def down_cmd(migrator, limit: int) -> None:
    """Apply ``limit`` down migrations, or all of them when ``limit`` is negative."""
    try:
        if limit >= 0:
            migrator.steps(-limit)
        else:
            migrator.down()
    except NoChangeError as exc:
        _log.println(exc)


def drop_cmd(migrator) -> None:
    """Delete everything in the database."""
    migrator.drop()


def force_cmd(migrator, version: int) -> None:
    """Set ``version`` without running any migration."""
    migrator.force(version)


def version_cmd(migrator) -> None:
    """Print the current version, marking it when dirty."""
    version, dirty = migrator.version()
    if dirty:
        _log.printf("%s (dirty)\n", version)
    else:
        _log.println(version)


def num_down_migrations_from_args(
    apply_all: bool, args: Sequence[str]
) -> tuple[int, bool]:
    """Return how many down migrations to apply (-1 for all) and whether to confirm."""
    if apply_all:
        if args:
            raise ValueError("-all cannot be used with other arguments")
        return -1, False

    if len(args) == 0:
        return -1, True
    if len(args) == 1:
        try:
            return _parse_uint(args[0]), False
        except ValueError:
            raise ValueError("can't read limit argument N") from None
    raise ValueError("too many arguments")