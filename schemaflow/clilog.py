"""Console logger used by the command-line interface."""

from __future__ import annotations

import sys
import time
from typing import NoReturn

from .drivers import Logger

_TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S "


def _timestamp() -> str:
    return time.strftime(_TIMESTAMP_FORMAT)


class CliLog(Logger):
    """Writes to standard error, with timestamps when verbose."""

    def __init__(self, verbose: bool = False) -> None:
        self._verbose = verbose

    def printf(self, format: str, *args: object) -> None:
        """Write ``format % args``; verbose output gets a timestamp and newline."""
        message = format % args if args else format
        if self._verbose:
            if not message.endswith("\n"):
                message += "\n"
            self._write(_timestamp() + message)
        else:
            self._write(message)

    def println(self, *args: object) -> None:
        """Write the arguments separated by spaces and end the line."""
        line = " ".join(str(arg) for arg in args) + "\n"
        if self._verbose:
            line = _timestamp() + line
        self._write(line)

    def verbose(self) -> bool:
        """Return True when verbose output is enabled."""
        return self._verbose

    def _fatal(self, *args: object) -> NoReturn:
        self.println(*args)
        raise SystemExit(1)

    def _fatal_err(self, error: BaseException) -> NoReturn:
        self._fatal("error:", error)

    @staticmethod
    def _write(text: str) -> None:
        stream = sys.stderr
        stream.write(text)
        stream.flush()