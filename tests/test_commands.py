import errno
import os
import re
from datetime import datetime, timezone

import pytest

from schemaflow.commands import (
    DEFAULT_TIME_FORMAT,
    create_cmd,
    create_file,
    down_cmd,
    drop_cmd,
    force_cmd,
    goto_cmd,
    next_seq_version,
    num_down_migrations_from_args,
    time_version,
    up_cmd,
    version_cmd,
)
from schemaflow.exceptions import DirtyError, NoChangeError

TS = datetime(2000, 12, 25, 0, 1, 2, 3456, tzinfo=timezone.utc)
TS_UNIX = str(int(TS.timestamp()))
TS_UNIX_NANO = "977702462003456000"


class FakeMigrator:
    def __init__(self, error=None, version=(0, False)):
        self.calls = []
        self.error = error
        self._version = version

    def _record(self, *call):
        self.calls.append(call)
        if self.error is not None:
            raise self.error

    def migrate(self, version):
        self._record("migrate", version)

    def steps(self, n):
        self._record("steps", n)

    def up(self):
        self._record("up")

    def down(self):
        self._record("down")

    def drop(self):
        self._record("drop")

    def force(self, version):
        self._record("force", version)

    def version(self):
        self._record("version")
        return self._version


@pytest.mark.parametrize(
    "matches, digits, expected, error",
    [
        ([], 0, None, "Digits must be positive"),
        ([], 1, "1", None),
        (["bad"], 1, None, "Malformed migration filename: bad"),
        (["bad_bad"], 1, None, 'parsing "bad": invalid syntax'),
        (["-5_test"], 1, None, 'parsing "-5": invalid syntax'),
        (["3_test", "4_test"], 1, "5", None),
        (["9_test"], 1, None, "Next sequence number 10 too large. At most 1 digits are allowed"),
        ([], 6, "000001", None),
        (["bad"], 6, None, "Malformed migration filename: bad"),
        (["bad_bad"], 6, None, 'parsing "bad": invalid syntax'),
        (["-000005_test"], 6, None, 'parsing "-000005": invalid syntax'),
        (["000003_test", "000004_test"], 6, "000005", None),
        (["999999_test"], 6, None, "Next sequence number 1000000 too large. At most 6 digits are allowed"),
        (["/migrationDir/000001_test"], 6, "000002", None),
        (["migrationDir/000001_test"], 6, "000002", None),
        (["./migrationDir/000001_test"], 6, "000002", None),
        (["../migrationDir/000001_test"], 6, "000002", None),
        (["000001_test"], 6, "000002", None),
    ],
)
def test_next_seq_version(matches, digits, expected, error):
    if error is not None:
        with pytest.raises(ValueError, match=re.escape(error)):
            next_seq_version(matches, digits)
    else:
        assert next_seq_version(matches, digits) == expected


@pytest.mark.parametrize(
    "fmt, expected",
    [
        ("unix", TS_UNIX),
        ("unixNano", TS_UNIX_NANO),
        ("20060102150405", "20001225000102"),
        ("2006-01-02T15:04:05.000Z07:00", "2000-12-25T00:01:02.003Z"),
    ],
)
def test_time_version(fmt, expected):
    assert time_version(TS, fmt) == expected


def test_time_version_empty_format():
    with pytest.raises(ValueError, match="Time format may not be empty"):
        time_version(TS, "")


def test_default_time_format_renders_full_timestamp():
    assert time_version(TS, DEFAULT_TIME_FORMAT) == "20001225000102"


CREATE_CASES = [
    ("seq and format", None, "", None, None,
     "The seq and format options are mutually exclusive", ".", "unix", True, 4, "name"),
    ("seq init dir dot", None, "", None, ["0001_name.up.sql", "0001_name.down.sql"],
     None, ".", DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir dot trailing slash", None, "", None,
     ["0001_name.up.sql", "0001_name.down.sql"], None, "./", DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir double dot", ["subdir"], "subdir", None,
     ["0001_name.up.sql", "0001_name.down.sql"], None, "..", DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir double dot trailing slash", ["subdir"], "subdir", None,
     ["0001_name.up.sql", "0001_name.down.sql"], None, "../", DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir absolute", ["subdir"], "", None,
     ["subdir/0001_name.up.sql", "subdir/0001_name.down.sql"], None, "/subdir",
     DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir absolute trailing slash", ["subdir"], "", None,
     ["subdir/0001_name.up.sql", "subdir/0001_name.down.sql"], None, "/subdir/",
     DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir relative", ["subdir"], "", None,
     ["subdir/0001_name.up.sql", "subdir/0001_name.down.sql"], None, "subdir",
     DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir relative trailing slash", ["subdir"], "", None,
     ["subdir/0001_name.up.sql", "subdir/0001_name.down.sql"], None, "subdir/",
     DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir dot relative", ["subdir"], "", None,
     ["subdir/0001_name.up.sql", "subdir/0001_name.down.sql"], None, "./subdir",
     DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir dot relative trailing slash", ["subdir"], "", None,
     ["subdir/0001_name.up.sql", "subdir/0001_name.down.sql"], None, "./subdir/",
     DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir double dot relative", ["subdir"], "subdir", None,
     ["subdir/0001_name.up.sql", "subdir/0001_name.down.sql"], None, "../subdir",
     DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir double dot relative trailing slash", ["subdir"], "subdir", None,
     ["subdir/0001_name.up.sql", "subdir/0001_name.down.sql"], None, "../subdir/",
     DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq init dir maze", ["subdir"], "subdir", None,
     ["0001_name.up.sql", "0001_name.down.sql"], None, "..//subdir/./.././/subdir/..",
     DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq width invalid", None, "", None, None, "Digits must be positive", ".",
     DEFAULT_TIME_FORMAT, True, 0, "name"),
    ("seq malformed", None, "", ["bad.sql"], ["bad.sql"],
     "Malformed migration filename: bad.sql", ".", DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq not int", None, "", ["bad_bad.sql"], ["bad_bad.sql"],
     'parsing "bad": invalid syntax', ".", DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq negative", None, "", ["-5_negative.sql"], ["-5_negative.sql"],
     'parsing "-5": invalid syntax', ".", DEFAULT_TIME_FORMAT, True, 4, "name"),
    ("seq increment", None, "", ["3_three.sql", "4_four.sql"],
     ["3_three.sql", "4_four.sql", "0005_five.up.sql", "0005_five.down.sql"], None, ".",
     DEFAULT_TIME_FORMAT, True, 4, "five"),
    ("seq overflow", None, "", ["9_nine.sql"], ["9_nine.sql"],
     "Next sequence number 10 too large. At most 1 digits are allowed", ".",
     DEFAULT_TIME_FORMAT, True, 1, "ten"),
    ("time empty format", None, "", None, None, "Time format may not be empty", ".",
     "", False, 0, "name"),
    ("time unix", None, "", None, [TS_UNIX + "_name.up.sql", TS_UNIX + "_name.down.sql"],
     None, ".", "unix", False, 0, "name"),
    ("time unixNano", None, "", None,
     [TS_UNIX_NANO + "_name.up.sql", TS_UNIX_NANO + "_name.down.sql"], None, ".",
     "unixNano", False, 0, "name"),
    ("time custom format", None, "", None,
     ["20001225000102_name.up.sql", "20001225000102_name.down.sql"], None, ".",
     "20060102150405", False, 0, "name"),
    ("time version collision", None, "", ["20001225_name.up.sql", "20001225_name.down.sql"],
     ["20001225_name.up.sql", "20001225_name.down.sql"],
     "duplicate migration version: 20001225", ".", "20060102", False, 0, "name"),
]


@pytest.mark.parametrize(
    "tid, existing_dirs, cwd, existing_files, expected_files, error, directory, fmt, seq, digits, name",
    CREATE_CASES,
    ids=[case[0] for case in CREATE_CASES],
)
def test_create_cmd(
    tmp_path, monkeypatch, tid, existing_dirs, cwd, existing_files, expected_files,
    error, directory, fmt, seq, digits, name,
):
    for sub in existing_dirs or []:
        (tmp_path / sub).mkdir(parents=True, exist_ok=True)
    monkeypatch.chdir(tmp_path / cwd if cwd else tmp_path)
    for filename in existing_files or []:
        (tmp_path / filename).write_text("")

    if directory.startswith("/"):
        directory = str(tmp_path) + directory

    if error is not None:
        with pytest.raises(ValueError, match=re.escape(error)):
            create_cmd(directory, TS, fmt, name, "sql", seq, digits, False)
    else:
        create_cmd(directory, TS, fmt, name, "sql", seq, digits, False)

    if not expected_files:
        assert os.listdir(tmp_path) == []
    else:
        for filename in expected_files:
            assert (tmp_path / filename).is_file()


def test_create_cmd_invalid_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "file").write_text("")
    with pytest.raises(OSError) as info:
        create_cmd("'test: this is invalid dir name'\0", TS, "unix", "name", "sql",
                   False, 0, False)
    assert info.value.errno == errno.EINVAL
    assert os.listdir(tmp_path) == ["file"]


def test_create_cmd_prints_absolute_paths(tmp_path, capsys):
    create_cmd(str(tmp_path), TS, DEFAULT_TIME_FORMAT, "users", ".sql", True, 6, True)
    lines = capsys.readouterr().err.splitlines()
    assert lines == [
        str(tmp_path / "000001_users.up.sql"),
        str(tmp_path / "000001_users.down.sql"),
    ]


def test_create_cmd_makes_missing_directory(tmp_path):
    target = tmp_path / "a" / "b"
    create_cmd(str(target), TS, DEFAULT_TIME_FORMAT, "x", "sql", True, 2, False)
    assert sorted(os.listdir(target)) == ["01_x.down.sql", "01_x.up.sql"]


def test_create_file_is_exclusive(tmp_path):
    path = tmp_path / "new.sql"
    create_file(str(path))
    assert path.read_bytes() == b""
    with pytest.raises(FileExistsError):
        create_file(str(path))


@pytest.mark.parametrize(
    "apply_all, args, expected",
    [
        (False, [], (-1, True)),
        (True, [], (-1, False)),
        (False, ["5"], (5, False)),
    ],
)
def test_num_down_migrations_from_args(apply_all, args, expected):
    assert num_down_migrations_from_args(apply_all, args) == expected


@pytest.mark.parametrize(
    "apply_all, args, message",
    [
        (False, ["N"], "can't read limit argument N"),
        (True, ["5"], "-all cannot be used with other arguments"),
        (False, ["5", "-all"], "too many arguments"),
    ],
)
def test_num_down_migrations_from_args_errors(apply_all, args, message):
    with pytest.raises(ValueError, match=re.escape(message)):
        num_down_migrations_from_args(apply_all, args)


def test_goto_cmd_migrates():
    migrator = FakeMigrator()
    goto_cmd(migrator, 3)
    assert migrator.calls == [("migrate", 3)]


def test_goto_cmd_reports_no_change(capsys):
    goto_cmd(FakeMigrator(error=NoChangeError()), 3)
    assert capsys.readouterr().err == "no change\n"


def test_goto_cmd_propagates_other_errors():
    with pytest.raises(DirtyError):
        goto_cmd(FakeMigrator(error=DirtyError(2)), 3)


@pytest.mark.parametrize("limit, expected", [(3, ("steps", 3)), (0, ("steps", 0)), (-1, ("up",))])
def test_up_cmd(limit, expected):
    migrator = FakeMigrator()
    up_cmd(migrator, limit)
    assert migrator.calls == [expected]


@pytest.mark.parametrize("limit, expected", [(2, ("steps", -2)), (-1, ("down",))])
def test_down_cmd(limit, expected):
    migrator = FakeMigrator()
    down_cmd(migrator, limit)
    assert migrator.calls == [expected]


def test_up_and_down_report_no_change(capsys):
    up_cmd(FakeMigrator(error=NoChangeError()), -1)
    down_cmd(FakeMigrator(error=NoChangeError()), 1)
    assert capsys.readouterr().err == "no change\nno change\n"


def test_down_cmd_propagates_other_errors():
    with pytest.raises(FileNotFoundError):
        down_cmd(FakeMigrator(error=FileNotFoundError("missing")), -1)


def test_drop_and_force_cmd():
    migrator = FakeMigrator()
    drop_cmd(migrator)
    force_cmd(migrator, 7)
    assert migrator.calls == [("drop",), ("force", 7)]


def test_force_cmd_propagates_errors():
    with pytest.raises(DirtyError):
        force_cmd(FakeMigrator(error=DirtyError(1)), 1)


def test_version_cmd_clean(capsys):
    version_cmd(FakeMigrator(version=(7, False)))
    assert capsys.readouterr().err == "7\n"


def test_version_cmd_dirty(capsys):
    version_cmd(FakeMigrator(version=(7, True)))
    assert capsys.readouterr().err == "7 (dirty)\n"